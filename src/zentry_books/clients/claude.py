"""Claude (Anthropic) backend with tool use support."""

from typing import Any

import anthropic
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


class ClaudeClient:
    """Backend for Anthropic's Messages API."""

    name = "claude"

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ):
        settings = get_settings()
        configured_key = (
            settings.anthropic_api_key.get_secret_value() if settings.anthropic_api_key else None
        )
        self._api_key = api_key or configured_key
        if not self._api_key:
            raise BackendUnavailableError("Anthropic API key is not configured", backend=self.name)
        self._model = model or settings.claude_model
        self._max_tokens = max_tokens or settings.llm_max_tokens
        self._temperature = temperature if temperature is not None else settings.llm_temperature

        self._client = anthropic.AsyncAnthropic(api_key=self._api_key)
        self._logger = logger.bind(client=self.name, model=self._model)

    def _convert_tools_to_anthropic_format(
        self, tools: list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        """Catalog descriptors already use Anthropic's shape; copy the keys it accepts."""
        return [
            {
                "name": tool["name"],
                "description": tool["description"],
                "input_schema": tool["input_schema"],
            }
            for tool in tools
        ]

    def _convert_messages_to_anthropic_format(
        self, messages: list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        """Keep user/assistant turns and merge consecutive same-role turns.

        The Messages API rejects two consecutive turns with the same role,
        which happens after a cancellation notice follows an assistant reply.
        """
        anthropic_messages: list[dict[str, Any]] = []
        for msg in messages:
            role = msg["role"]
            if role not in ("user", "assistant"):
                continue
            content = msg.get("content") or ""
            if anthropic_messages and anthropic_messages[-1]["role"] == role:
                anthropic_messages[-1]["content"] += "\n\n" + content
            else:
                anthropic_messages.append({"role": role, "content": content})
        return anthropic_messages

    def _parse_response(self, response: Any) -> BackendResponse:
        """Collect text blocks and tool_use blocks."""
        if getattr(response, "content", None) is None:
            raise MalformedOutputError("Message has no content", backend=self.name)

        texts = []
        tool_calls = []
        for block in response.content:
            if block.type == "text":
                texts.append(block.text)
            elif block.type == "tool_use":
                tool_calls.append({
                    "id": block.id,
                    "name": block.name,
                    "arguments": block.input,
                })

        return BackendResponse(
            text="\n".join(texts),
            raw_tool_calls=tool_calls,
            stop_reason=response.stop_reason or "end_turn",
            usage={
                "input_tokens": response.usage.input_tokens,
                "output_tokens": response.usage.output_tokens,
            },
        )

    async def send(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> BackendResponse:
        """Send the conversation to Claude."""
        self._logger.debug(
            "sending_request",
            message_count=len(messages),
            tool_count=len(tools) if tools else 0,
        )

        kwargs: dict[str, Any] = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "system": system_prompt,
            "messages": self._convert_messages_to_anthropic_format(messages),
        }
        # Tool use works better with the default temperature
        if tools:
            kwargs["tools"] = self._convert_tools_to_anthropic_format(tools)
        else:
            kwargs["temperature"] = self._temperature

        try:
            response = await self._client.messages.create(**kwargs)
        except anthropic.APITimeoutError as e:
            self._logger.warning("api_timeout", error=str(e))
            raise InterpretationTimeout(str(e), backend=self.name) from e
        except anthropic.RateLimitError as e:
            self._logger.warning("api_rate_limited", error=str(e))
            raise RateLimitedError(str(e), backend=self.name) from e
        except anthropic.APIError as e:
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
