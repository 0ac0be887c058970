"""OpenAI chat completions backend with function calling support."""

from typing import Any

import openai
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


class OpenAIClient:
    """Backend for OpenAI's chat completions API.

    Also supports OpenAI-compatible servers such as LM Studio via a custom
    base_url.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ):
        settings = get_settings()
        configured_key = (
            settings.openai_api_key.get_secret_value() if settings.openai_api_key else None
        )
        self._api_key = api_key or configured_key
        if not self._api_key:
            raise BackendUnavailableError("OpenAI API key is not configured", backend="openai")
        self._base_url = base_url  # None means use OpenAI's default
        self._model = model or settings.gpt_model
        self._max_tokens = max_tokens or settings.llm_max_tokens
        self._temperature = temperature if temperature is not None else settings.llm_temperature

        client_kwargs: dict[str, Any] = {"api_key": self._api_key}
        if self._base_url:
            client_kwargs["base_url"] = self._base_url

        self._client = openai.AsyncOpenAI(**client_kwargs)
        self.name = "lm_studio" if self._base_url else "openai"
        self._logger = logger.bind(client=self.name, model=self._model)

    def _convert_tools_to_openai_format(
        self, tools: list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        """Wrap catalog descriptors as OpenAI function tools."""
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

    def _convert_messages_to_openai_format(
        self, system_prompt: str, messages: list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        """Prepend the system prompt; roles map one to one."""
        openai_messages = [{"role": "system", "content": system_prompt}]
        for msg in messages:
            if msg["role"] in ("user", "assistant"):
                openai_messages.append({"role": msg["role"], "content": msg.get("content") or ""})
        return openai_messages

    def _parse_response(self, response: Any) -> BackendResponse:
        """Parse a chat completion, leaving tool arguments undecoded."""
        if not getattr(response, "choices", None):
            raise MalformedOutputError("Completion has no choices", backend=self.name)

        choice = response.choices[0]
        message = choice.message
        tool_calls = []
        for tc in message.tool_calls or []:
            tool_calls.append({
                "id": tc.id,
                "name": tc.function.name,
                "arguments": tc.function.arguments,
            })

        stop_reason_map = {
            "stop": "end_turn",
            "tool_calls": "tool_use",
            "length": "max_tokens",
            "content_filter": "content_filter",
        }
        usage = response.usage
        return BackendResponse(
            text=message.content or "",
            raw_tool_calls=tool_calls,
            stop_reason=stop_reason_map.get(choice.finish_reason or "stop", "end_turn"),
            usage={
                "input_tokens": usage.prompt_tokens if usage else 0,
                "output_tokens": usage.completion_tokens if usage else 0,
            },
        )

    async def send(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> BackendResponse:
        """Send the conversation to the chat completions endpoint.

        Args:
            system_prompt: Instructions and business context.
            messages: Conversation history.
            tools: Catalog tool descriptors.

        Returns:
            BackendResponse with text and raw tool calls.
        """
        self._logger.debug(
            "sending_request",
            message_count=len(messages),
            tool_count=len(tools) if tools else 0,
        )

        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": self._convert_messages_to_openai_format(system_prompt, messages),
        }
        # Reasoning-era models take max_completion_tokens and a fixed temperature
        if self._model.startswith(("gpt-5", "o3", "o4")):
            kwargs["max_completion_tokens"] = self._max_tokens
        else:
            kwargs["max_tokens"] = self._max_tokens
            kwargs["temperature"] = self._temperature
        if tools:
            kwargs["tools"] = self._convert_tools_to_openai_format(tools)
            kwargs["tool_choice"] = "auto"

        try:
            response = await self._client.chat.completions.create(**kwargs)
        except openai.APITimeoutError as e:
            self._logger.warning("api_timeout", error=str(e))
            raise InterpretationTimeout(str(e), backend=self.name) from e
        except openai.RateLimitError as e:
            self._logger.warning("api_rate_limited", error=str(e))
            raise RateLimitedError(str(e), backend=self.name) from e
        except openai.APIError as e:
            self._logger.error("api_error", error=str(e))
            raise BackendUnavailableError(str(e), backend=self.name) from e

        parsed = self._parse_response(response)
        self._logger.info(
            "response_received",
            stop_reason=parsed.stop_reason,
            tool_calls=len(parsed.raw_tool_calls),
            input_tokens=parsed.usage["input_tokens"],
            output_tokens=parsed.usage["output_tokens"],
        )
        return parsed
