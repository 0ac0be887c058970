"""Tests for Gemini LLM client."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from google.genai import errors as genai_errors

from zentry_books.clients.gemini import GeminiClient
from zentry_books.errors import (
    BackendUnavailableError,
    InterpretationTimeout,
    MalformedOutputError,
    RateLimitedError,
)
from zentry_books.tools.definitions import ActionKind, build_catalog


def _text_part(text):
    return MagicMock(text=text, function_call=None)


def _call_part(name, args, call_id=None):
    fc = MagicMock()
    fc.name = name
    fc.args = args
    fc.id = call_id
    return MagicMock(text=None, function_call=fc)


def _response(parts, finish="STOP"):
    candidate = MagicMock()
    candidate.content.parts = parts
    candidate.finish_reason = MagicMock()
    candidate.finish_reason.name = finish
    response = MagicMock()
    response.candidates = [candidate]
    response.usage_metadata = MagicMock(prompt_token_count=7, candidates_token_count=3)
    return response


def _api_error(code):
    return genai_errors.APIError(code, {"error": {"message": "boom", "status": "ERR"}})


class TestSchemaConversion:
    """Tests for JSON schema conversion."""

    def test_nullable_types_and_enums(self):
        """Test nullable unions and enum values survive conversion."""
        client = GeminiClient()
        schema = {
            "type": "object",
            "properties": {
                "dueDate": {"type": ["string", "null"], "format": "date"},
                "taxRate": {"type": "number", "enum": [0, 0.08, 0.1]},
            },
            "required": ["taxRate"],
        }

        converted = client._convert_json_schema_to_gemini(schema)

        assert converted["type"] == "OBJECT"
        assert converted["properties"]["dueDate"] == {"type": "STRING", "nullable": True}
        assert converted["properties"]["taxRate"]["enum"] == ["0", "0.08", "0.1"]
        assert converted["required"] == ["taxRate"]

    def test_catalog_nullable_field_declared_nullable(self):
        """Test a field the catalog marks nullable reaches Gemini as nullable."""
        client = GeminiClient()
        entry = build_catalog().get(ActionKind.UPDATE_TASK)

        schema = entry.tool_descriptor()["input_schema"]
        converted = client._convert_json_schema_to_gemini(schema)

        assert schema["properties"]["dueDate"]["type"] == ["string", "null"]
        assert converted["properties"]["dueDate"]["type"] == "STRING"
        assert converted["properties"]["dueDate"]["nullable"] is True
        assert "nullable" not in converted["properties"]["title"]

    def test_tools_bundled_into_one_declaration_set(self):
        """Test every catalog tool becomes a function declaration."""
        client = GeminiClient()
        tools = [
            {"name": "a", "description": "A", "input_schema": {"type": "object", "properties": {}}},
            {"name": "b", "description": "B", "input_schema": {"type": "object", "properties": {}}},
        ]

        converted = client._convert_tools_to_gemini_format(tools)

        assert len(converted) == 1
        assert [d.name for d in converted[0].function_declarations] == ["a", "b"]

    def test_assistant_turns_become_model_role(self):
        """Test roles map onto user/model."""
        client = GeminiClient()

        contents = client._convert_messages_to_gemini_format(
            [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}]
        )

        assert [c.role for c in contents] == ["user", "model"]
        assert contents[1].parts[0].text == "hello"


class TestGeminiParse:
    """Tests for GeminiClient._parse_response."""

    def test_parse_text_and_calls(self):
        """Test text and function calls are collected."""
        client = GeminiClient()
        response = _response(
            [_text_part("Let me check"), _call_part("find_client", {"name": "ACME"})]
        )

        parsed = client._parse_response(response)

        assert parsed.text == "Let me check"
        assert parsed.raw_tool_calls == [
            {"id": "call_find_client_0", "name": "find_client", "arguments": {"name": "ACME"}}
        ]
        assert parsed.stop_reason == "tool_use"
        assert parsed.usage == {"input_tokens": 7, "output_tokens": 3}

    def test_parse_uses_call_id_when_present(self):
        """Test a server-assigned call id is kept."""
        client = GeminiClient()

        parsed = client._parse_response(_response([_call_part("search_task", None, "fc_9")]))

        assert parsed.raw_tool_calls[0]["id"] == "fc_9"
        assert parsed.raw_tool_calls[0]["arguments"] == {}

    def test_parse_max_tokens(self):
        """Test MAX_TOKENS maps to max_tokens."""
        client = GeminiClient()

        parsed = client._parse_response(_response([_text_part("Partial")], finish="MAX_TOKENS"))

        assert parsed.stop_reason == "max_tokens"

    def test_parse_without_candidates(self):
        """Test an empty candidate list is malformed output."""
        client = GeminiClient()
        response = MagicMock()
        response.candidates = []

        with pytest.raises(MalformedOutputError):
            client._parse_response(response)


class TestGeminiSend:
    """Tests for GeminiClient.send."""

    @pytest.mark.asyncio
    async def test_send_passes_system_instruction(self):
        """Test the system prompt travels in the request config."""
        client = GeminiClient()
        client._client = MagicMock()
        client._client.aio.models.generate_content = AsyncMock(
            return_value=_response([_text_part("ok")])
        )

        result = await client.send("SYSTEM", [{"role": "user", "content": "hi"}])

        kwargs = client._client.aio.models.generate_content.call_args.kwargs
        assert kwargs["config"].system_instruction == "SYSTEM"
        assert kwargs["config"].tools is None
        assert result.text == "ok"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "code,expected",
        [
            (429, RateLimitedError),
            (504, InterpretationTimeout),
            (503, BackendUnavailableError),
            (400, BackendUnavailableError),
        ],
    )
    async def test_send_maps_status_codes(self, code, expected):
        """Test API error codes become typed interpretation errors."""
        client = GeminiClient()
        client._client = MagicMock()
        client._client.aio.models.generate_content = AsyncMock(side_effect=_api_error(code))

        with pytest.raises(expected) as exc_info:
            await client.send("SYSTEM", [])

        assert exc_info.value.backend == "gemini"
