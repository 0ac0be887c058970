"""Google Gemini backend with function calling support.

Uses the google-genai SDK's async surface (``client.aio``).
"""

from collections.abc import Callable
from typing import Any, cast

import structlog
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from zentry_books.clients.base import BackendResponse
from zentry_books.config import get_settings
from zentry_books.errors import (
    BackendUnavailableError,
    InterpretationTimeout,
    MalformedOutputError,
    RateLimitedError,
)

logger = structlog.get_logger(__name__)


class GeminiClient:
    """Backend for Google's Gemini API."""

    name = "gemini"

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ):
        settings = get_settings()
        configured_key = (
            settings.google_api_key.get_secret_value() if settings.google_api_key else None
        )
        self._api_key = api_key or configured_key
        if not self._api_key:
            raise BackendUnavailableError("Google API key is not configured", backend=self.name)
        self._model_name = model or settings.gemini_model
        self._max_tokens = max_tokens or settings.llm_max_tokens
        self._temperature = temperature if temperature is not None else settings.llm_temperature

        self._client = genai.Client(api_key=self._api_key)
        self._logger = logger.bind(client=self.name, model=self._model_name)

    def _convert_json_schema_to_gemini(self, schema: dict[str, Any]) -> dict[str, Any]:
        """Convert JSON Schema to Gemini's OpenAPI subset.

        ``additionalProperties`` and ``format`` are dropped; Gemini rejects them.
        Free-form objects become an OBJECT with no declared properties.
        """
        gemini_schema: dict[str, Any] = {}

        if "type" in schema:
            type_map = {
                "string": "STRING",
                "integer": "INTEGER",
                "number": "NUMBER",
                "boolean": "BOOLEAN",
                "array": "ARRAY",
                "object": "OBJECT",
            }
            schema_type = schema["type"]
            # Nullable fields are declared as ["string", "null"]
            if isinstance(schema_type, list):
                non_null = [t for t in schema_type if t != "null"]
                schema_type = non_null[0] if non_null else "string"
                gemini_schema["nullable"] = True
            gemini_schema["type"] = type_map.get(schema_type, "STRING")

        if "description" in schema:
            gemini_schema["description"] = schema["description"]

        if "enum" in schema:
            gemini_schema["enum"] = [str(v) for v in schema["enum"]]

        if "properties" in schema:
            gemini_schema["properties"] = {
                k: self._convert_json_schema_to_gemini(v)
                for k, v in schema["properties"].items()
            }

        if schema.get("required"):
            gemini_schema["required"] = schema["required"]

        if "items" in schema:
            gemini_schema["items"] = self._convert_json_schema_to_gemini(schema["items"])

        return gemini_schema

    def _convert_tools_to_gemini_format(
        self, tools: list[dict[str, Any]]
    ) -> list[types.Tool]:
        """Bundle catalog descriptors into a single Gemini tool."""
        function_declarations = []
        for tool in tools:
            parameters = types.Schema.model_validate(
                self._convert_json_schema_to_gemini(tool["input_schema"])
            )
            function_declarations.append(
                types.FunctionDeclaration(
                    name=tool["name"],
                    description=tool["description"],
                    parameters=parameters,
                )
            )
        return [types.Tool(function_declarations=function_declarations)]

    def _convert_messages_to_gemini_format(
        self, messages: list[dict[str, Any]]
    ) -> list[types.Content]:
        """Map user/assistant turns onto Gemini's user/model contents."""
        gemini_contents = []
        for msg in messages:
            if msg["role"] == "user":
                role = "user"
            elif msg["role"] == "assistant":
                role = "model"
            else:
                continue
            gemini_contents.append(
                types.Content(role=role, parts=[types.Part(text=msg.get("content") or "")])
            )
        return gemini_contents

    def _parse_response(self, response: Any) -> BackendResponse:
        """Parse the first candidate into a BackendResponse."""
        if not getattr(response, "candidates", None):
            raise MalformedOutputError("Response has no candidates", backend=self.name)

        candidate = response.candidates[0]
        texts: list[str] = []
        tool_calls: list[dict[str, Any]] = []

        parts = candidate.content.parts if candidate.content and candidate.content.parts else []
        for part in parts:
            if getattr(part, "function_call", None):
                fc = part.function_call
                tool_calls.append({
                    "id": fc.id or f"call_{fc.name}_{len(tool_calls)}",
                    "name": fc.name,
                    "arguments": dict(fc.args) if fc.args else {},
                })
            elif getattr(part, "text", None):
                texts.append(part.text)

        stop_reason_map = {
            "STOP": "end_turn",
            "MAX_TOKENS": "max_tokens",
            "SAFETY": "content_filter",
            "RECITATION": "content_filter",
        }
        finish_reason = candidate.finish_reason
        finish_name = getattr(finish_reason, "name", str(finish_reason))
        stop_reason = stop_reason_map.get(finish_name, "end_turn")
        if tool_calls:
            stop_reason = "tool_use"

        usage = {"input_tokens": 0, "output_tokens": 0}
        if getattr(response, "usage_metadata", None):
            usage["input_tokens"] = response.usage_metadata.prompt_token_count or 0
            usage["output_tokens"] = response.usage_metadata.candidates_token_count or 0

        return BackendResponse(
            text="\n".join(texts),
            raw_tool_calls=tool_calls,
            stop_reason=stop_reason,
            usage=usage,
        )

    async def send(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> BackendResponse:
        """Send the conversation to Gemini.

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

        config = types.GenerateContentConfig(
            max_output_tokens=self._max_tokens,
            temperature=self._temperature,
            system_instruction=system_prompt,
        )
        if tools:
            config.tools = cast(
                list[types.Tool | Callable[..., Any]],
                self._convert_tools_to_gemini_format(tools),
            )
        contents_payload = cast(list[Any], self._convert_messages_to_gemini_format(messages))

        try:
            response = await self._client.aio.models.generate_content(
                model=self._model_name,
                contents=contents_payload,
                config=config,
            )
        except genai_errors.APIError as e:
            if e.code == 429:
                self._logger.warning("api_rate_limited", error=str(e))
                raise RateLimitedError(str(e), backend=self.name) from e
            if e.code in (408, 504):
                self._logger.warning("api_timeout", error=str(e))
                raise InterpretationTimeout(str(e), backend=self.name) from e
            self._logger.error("api_error", status=e.code, error=str(e))
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
