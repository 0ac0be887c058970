"""Tests for the intent interpreter and provider factory."""

import asyncio
from unittest.mock import MagicMock

import pytest
from pydantic import SecretStr

from conftest import ScriptedBackend, reply, tool_call
from zentry_books.clients.ollama import OllamaClient
from zentry_books.config import FlatSettings, get_settings
from zentry_books.errors import (
    BackendUnavailableError,
    InterpretationTimeout,
    RateLimitedError,
)
from zentry_books.interpreter import (
    HybridInterpreter,
    IntentInterpreter,
    LLMProvider,
    available_providers,
    create_interpreter,
    default_provider,
)
from zentry_books.tools.definitions import build_catalog


class SlowBackend:
    name = "slow"

    async def send(self, system_prompt, messages, tools=None):
        await asyncio.sleep(5)


@pytest.fixture
def catalog():
    return build_catalog()


class TestInterpret:
    """Tests for IntentInterpreter.interpret."""

    @pytest.mark.asyncio
    async def test_passes_history_and_tools_to_backend(self, catalog):
        """Test the backend receives the prompt, full history and catalog tools."""
        backend = ScriptedBackend(reply("Hello"))
        interpreter = IntentInterpreter(backend, timeout=1)
        history = [{"role": "user", "content": "hi"}]

        result = await interpreter.interpret(history, catalog, "SYSTEM")

        assert result.assistant_text == "Hello"
        assert result.candidates == []
        call = backend.calls[0]
        assert call["system_prompt"] == "SYSTEM"
        assert call["messages"] == history
        assert {t["name"] for t in call["tools"]} == set(catalog.kinds)

    @pytest.mark.asyncio
    async def test_decodes_string_and_dict_arguments(self, catalog):
        """Test JSON-string and dict arguments both become dicts."""
        backend = ScriptedBackend(
            reply(
                "",
                tool_call("find_client", '{"name": "ACME"}', "c1"),
                tool_call("find_client", {"name": "Beta"}, "c2"),
            )
        )
        interpreter = IntentInterpreter(backend, timeout=1)

        result = await interpreter.interpret([], catalog, "SYSTEM")

        assert [c.arguments for c in result.candidates] == [{"name": "ACME"}, {"name": "Beta"}]
        assert [c.id for c in result.candidates] == ["c1", "c2"]
        assert all(c.parse_error is None for c in result.candidates)

    @pytest.mark.asyncio
    async def test_malformed_candidate_keeps_siblings_and_text(self, catalog):
        """Test one unparseable call does not discard the rest."""
        backend = ScriptedBackend(
            reply(
                "Here is what I found",
                tool_call("find_client", '{"name": "ACME"', "bad"),
                tool_call("find_client", '{"name": "Beta"}', "good"),
                tool_call("find_client", "[1, 2]", "list"),
            )
        )
        interpreter = IntentInterpreter(backend, timeout=1)

        result = await interpreter.interpret([], catalog, "SYSTEM")

        assert result.assistant_text == "Here is what I found"
        assert len(result.candidates) == 3
        bad, good, as_list = result.candidates
        assert bad.arguments is None
        assert "JSON" in bad.parse_error
        assert good.arguments == {"name": "Beta"}
        assert as_list.parse_error == "arguments must be a JSON object"

    @pytest.mark.asyncio
    async def test_non_object_tool_call_becomes_unparseable_candidate(self, catalog):
        """Test a tool call that is not a mapping is reported, not fatal."""
        backend = ScriptedBackend(
            reply("Sure", None, tool_call("find_client", {"name": "ACME"}, "good"))
        )
        interpreter = IntentInterpreter(backend, timeout=1)

        result = await interpreter.interpret([], catalog, "SYSTEM")

        assert result.assistant_text == "Sure"
        broken, good = result.candidates
        assert broken.id == "call_0"
        assert broken.parse_error == "tool call is not a JSON object"
        assert good.arguments == {"name": "ACME"}

    @pytest.mark.asyncio
    async def test_broken_ollama_call_keeps_text_and_siblings(self, catalog, mock_httpx_client):
        """Test a null function entry from Ollama leaves the rest of the turn intact."""
        response = MagicMock()
        response.raise_for_status = MagicMock()
        response.json.return_value = {
            "message": {
                "content": "Here you go",
                "tool_calls": [
                    {"function": None},
                    {"function": {"name": "find_client", "arguments": {"name": "ACME"}}},
                ],
            },
        }
        mock_httpx_client.post.return_value = response
        interpreter = IntentInterpreter(OllamaClient(http_client=mock_httpx_client), timeout=1)

        result = await interpreter.interpret([], catalog, "SYSTEM")

        assert result.assistant_text == "Here you go"
        assert [c.name for c in result.candidates] == ["", "find_client"]
        assert result.candidates[1].arguments == {"name": "ACME"}

    @pytest.mark.asyncio
    async def test_empty_argument_string_is_empty_object(self, catalog):
        """Test an empty argument string decodes to an empty payload."""
        backend = ScriptedBackend(reply("", tool_call("search_task", "")))
        interpreter = IntentInterpreter(backend, timeout=1)

        result = await interpreter.interpret([], catalog, "SYSTEM")

        assert result.candidates[0].arguments == {}

    @pytest.mark.asyncio
    async def test_timeout_raises_typed_error(self, catalog):
        """Test a slow backend is cut off with InterpretationTimeout."""
        interpreter = IntentInterpreter(SlowBackend(), timeout=0.01)

        with pytest.raises(InterpretationTimeout) as exc_info:
            await interpreter.interpret([], catalog, "SYSTEM")

        assert exc_info.value.reason == "timeout"
        assert exc_info.value.backend == "slow"

    @pytest.mark.asyncio
    async def test_per_call_timeout_overrides_default(self, catalog):
        """Test the caller-supplied timeout wins."""
        interpreter = IntentInterpreter(SlowBackend(), timeout=60)

        with pytest.raises(InterpretationTimeout):
            await interpreter.interpret([], catalog, "SYSTEM", timeout=0.01)

    @pytest.mark.asyncio
    async def test_backend_interpretation_error_propagates(self, catalog):
        """Test typed backend errors pass through unchanged."""
        error = RateLimitedError("slow down", backend="scripted")
        interpreter = IntentInterpreter(ScriptedBackend(error), timeout=1)

        with pytest.raises(RateLimitedError) as exc_info:
            await interpreter.interpret([], catalog, "SYSTEM")

        assert exc_info.value is error

    @pytest.mark.asyncio
    async def test_unexpected_backend_exception_wrapped(self, catalog):
        """Test an arbitrary backend exception becomes BackendUnavailableError."""
        interpreter = IntentInterpreter(ScriptedBackend(KeyError("choices")), timeout=1)

        with pytest.raises(BackendUnavailableError):
            await interpreter.interpret([], catalog, "SYSTEM")


class TestProviderFactory:
    """Tests for provider discovery and interpreter creation."""

    def test_available_providers_follow_keys(self):
        """Test only providers with credentials are offered, plus local ones."""
        settings = FlatSettings(
            _env_file=None,
            OPENAI_API_KEY=None,
            ANTHROPIC_API_KEY=SecretStr("sk-ant"),
            GOOGLE_API_KEY=None,
            NOTION_API_KEY=None,
        )

        assert available_providers(settings) == [
            LLMProvider.CLAUDE,
            LLMProvider.OLLAMA,
            LLMProvider.LM_STUDIO,
        ]

    def test_hybrid_needs_openai_and_notion(self):
        """Test hybrid is offered first when both keys exist."""
        settings = FlatSettings(
            _env_file=None,
            OPENAI_API_KEY=SecretStr("sk"),
            NOTION_API_KEY=SecretStr("secret_notion"),
        )

        assert available_providers(settings)[:2] == [LLMProvider.HYBRID, LLMProvider.OPENAI]

    def test_default_provider_honours_llm_provider(self):
        """Test LLM_PROVIDER picks the provider when it is available."""
        settings = FlatSettings(_env_file=None, OPENAI_API_KEY=SecretStr("sk"), LLM_PROVIDER="ollama")

        assert default_provider(settings) == LLMProvider.OLLAMA

    def test_default_provider_ignores_unavailable_choice(self):
        """Test an unusable LLM_PROVIDER falls back to the first available."""
        settings = FlatSettings(
            _env_file=None,
            OPENAI_API_KEY=SecretStr("sk"),
            ANTHROPIC_API_KEY=None,
            GOOGLE_API_KEY=None,
            NOTION_API_KEY=None,
            LLM_PROVIDER="claude",
        )

        assert default_provider(settings) == LLMProvider.OPENAI

    def test_create_interpreter_for_claude(self):
        """Test an explicit provider builds the matching backend."""
        interpreter = create_interpreter("claude", timeout=5)

        assert isinstance(interpreter, IntentInterpreter)
        assert interpreter.name == "claude"
        assert interpreter.timeout == 5
        assert interpreter.workspace is None

    def test_create_interpreter_for_lm_studio(self):
        """Test LM Studio uses the OpenAI backend with a local base URL."""
        interpreter = create_interpreter(LLMProvider.LM_STUDIO)

        assert interpreter.name == "lm_studio"

    def test_create_hybrid_without_notion_key_fails(self, monkeypatch):
        """Test hybrid mode refuses to start without a Notion key."""
        monkeypatch.delenv("NOTION_API_KEY", raising=False)
        get_settings.cache_clear()

        with pytest.raises(BackendUnavailableError):
            create_interpreter(LLMProvider.HYBRID)

        get_settings.cache_clear()

    def test_create_hybrid_with_notion_key(self, monkeypatch):
        """Test hybrid mode carries a Notion workspace."""
        monkeypatch.setenv("NOTION_API_KEY", "secret_notion")
        get_settings.cache_clear()

        interpreter = create_interpreter(LLMProvider.HYBRID)

        get_settings.cache_clear()
        assert isinstance(interpreter, HybridInterpreter)
        assert interpreter.workspace is not None
        assert interpreter.name == "openai"
