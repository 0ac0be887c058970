"""Ollama backend for local models, with function calling support."""

from typing import Any

import httpx
import structlog

from zentry_books.clients.base import BackendResponse
from zentry_books.config import get_settings
from zentry_books.errors import (
    BackendUnavailableError,
    InterpretationTimeout,
    MalformedOutputError,
    RateLimitedError,
)

logger = structlog.get_logger(__name__)


class OllamaClient:
    """Backend for Ollama's local /api/chat endpoint.

    Ollama accepts OpenAI-style tool declarations, so models such as
    qwen3:30b can stand in for the cloud backends.
    """

    name = "ollama"

    def __init__(
        self,
        base_url: str | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        settings = get_settings()
        self._base_url = (base_url or settings.ollama_base_url).rstrip("/")
        self._model = model or settings.ollama_model
        self._max_tokens = max_tokens or settings.llm_max_tokens
        self._temperature = temperature if temperature is not None else settings.llm_temperature

        self._client = http_client or httpx.AsyncClient(timeout=120.0)  # Local models can be slow
        self._logger = logger.bind(client=self.name, model=self._model)

    def _convert_tools_to_ollama_format(
        self, tools: list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool["name"],
                    "description": tool["description"],
                    "parameters": tool["input_schema"],
                },
            }
            for tool in tools
        ]

    def _convert_messages_to_ollama_format(
        self, system_prompt: str, messages: list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        ollama_messages = [{"role": "system", "content": system_prompt}]
        for msg in messages:
            if msg["role"] in ("user", "assistant"):
                # Ollama requires content to always be present
                ollama_messages.append({"role": msg["role"], "content": msg.get("content") or ""})
        return ollama_messages

    def _parse_response(self, response_data: Any) -> BackendResponse:
        """Parse an /api/chat reply, leaving tool arguments as produced."""
        if not isinstance(response_data, dict) or not isinstance(
            response_data.get("message"), dict
        ):
            raise MalformedOutputError("Reply has no message object", backend=self.name)

        message = response_data["message"]
        tool_calls = []
        raw_calls = message.get("tool_calls")
        for tc in raw_calls if isinstance(raw_calls, list) else []:
            # A broken entry still becomes a call so the validator reports it
            if not isinstance(tc, dict):
                tc = {}
            func = tc.get("function")
            if not isinstance(func, dict):
                func = {}
            tool_calls.append({
                "id": tc.get("id", f"call_{len(tool_calls)}"),
                "name": func.get("name", ""),
                # Usually a dict, sometimes a JSON string
                "arguments": func.get("arguments", {}),
            })

        done_reason = response_data.get("done_reason", "")
        if tool_calls:
            stop_reason = "tool_use"
        elif done_reason == "length":
            stop_reason = "max_tokens"
        else:
            stop_reason = "end_turn"

        return BackendResponse(
            text=message.get("content") or "",
            raw_tool_calls=tool_calls,
            stop_reason=stop_reason,
            usage={
                "input_tokens": response_data.get("prompt_eval_count", 0),
                "output_tokens": response_data.get("eval_count", 0),
            },
        )

    async def send(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> BackendResponse:
        """Send the conversation to the local Ollama model."""
        self._logger.debug(
            "sending_request",
            message_count=len(messages),
            tool_count=len(tools) if tools else 0,
        )

        payload: dict[str, Any] = {
            "model": self._model,
            "messages": self._convert_messages_to_ollama_format(system_prompt, messages),
            "stream": False,
            "options": {
                "num_predict": self._max_tokens,
                "temperature": self._temperature,
            },
        }
        if tools:
            payload["tools"] = self._convert_tools_to_ollama_format(tools)

        try:
            response = await self._client.post(f"{self._base_url}/api/chat", json=payload)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            self._logger.warning("api_timeout", error=str(e))
            raise InterpretationTimeout(str(e), backend=self.name) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            self._logger.error("api_error", status=status, error=str(e))
            if status == 429:
                raise RateLimitedError(str(e), backend=self.name) from e
            raise BackendUnavailableError(str(e), backend=self.name) from e
        except httpx.RequestError as e:
            self._logger.error("connection_error", error=str(e))
            raise BackendUnavailableError(str(e), backend=self.name) from e

        try:
            response_data = response.json()
        except ValueError as e:
            raise MalformedOutputError("Reply is not JSON", backend=self.name) from e

        parsed = self._parse_response(response_data)
        self._logger.info(
            "response_received",
            stop_reason=parsed.stop_reason,
            tool_calls=len(parsed.raw_tool_calls),
            input_tokens=parsed.usage["input_tokens"],
            output_tokens=parsed.usage["output_tokens"],
        )
        return parsed

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
