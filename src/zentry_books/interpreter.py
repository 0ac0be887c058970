"""Intent interpreter: turns a conversation into untrusted candidate actions.

The interpreter wraps one language backend behind a single contract. It
never validates arguments; that is the validator's job. It only guarantees
that every backend failure surfaces as an ``InterpretationError`` and that
one malformed tool call does not take its siblings or the reply text down
with it.
"""

import asyncio
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

from zentry_books.clients import (
    ClaudeClient,
    GeminiClient,
    LLMBackend,
    NotionClient,
    OllamaClient,
    OpenAIClient,
)
from zentry_books.config import FlatSettings, get_settings
from zentry_books.errors import (
    BackendUnavailableError,
    InterpretationError,
    InterpretationTimeout,
)
from zentry_books.tools.definitions import ActionCatalog

logger = structlog.get_logger(__name__)


class LLMProvider(str, Enum):
    """Interpreter backend selection."""

    OPENAI = "openai"
    CLAUDE = "claude"
    GEMINI = "gemini"
    OLLAMA = "ollama"
    LM_STUDIO = "lm_studio"
    HYBRID = "hybrid"


@dataclass
class CandidateAction:
    """A tool call as the backend produced it.

    ``arguments`` is None when the raw payload could not be decoded; the
    reason is kept in ``parse_error`` so it can be reported to the user.
    """

    id: str
    name: str
    arguments: dict[str, Any] | None
    parse_error: str | None = None


@dataclass
class Interpretation:
    """Assistant text plus zero or more candidate actions."""

    assistant_text: str
    candidates: list[CandidateAction] = field(default_factory=list)


def _decode_arguments(raw: Any) -> tuple[dict[str, Any] | None, str | None]:
    if isinstance(raw, dict):
        return raw, None
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return {}, None
    if isinstance(raw, str):
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError as e:
            return None, f"arguments are not valid JSON ({e.msg})"
        if isinstance(decoded, dict):
            return decoded, None
        return None, "arguments must be a JSON object"
    return None, f"arguments have unsupported type {type(raw).__name__}"


class IntentInterpreter:
    """Calls a backend with the conversation and the catalog's tools.

    Args:
        backend: Any object implementing ``LLMBackend``.
        timeout: Seconds to wait for the backend; defaults to settings.
        workspace: Workspace store whose kinds this interpreter may propose.
    """

    def __init__(
        self,
        backend: LLMBackend,
        timeout: float | None = None,
        workspace: NotionClient | None = None,
    ):
        self.backend = backend
        self.timeout = timeout if timeout is not None else get_settings().interpret_timeout
        self.workspace = workspace
        self._logger = logger.bind(backend=getattr(backend, "name", type(backend).__name__))

    @property
    def name(self) -> str:
        return getattr(self.backend, "name", type(self.backend).__name__)

    async def interpret(
        self,
        history: list[dict[str, Any]],
        catalog: ActionCatalog,
        system_prompt: str,
        timeout: float | None = None,
    ) -> Interpretation:
        """Ask the backend what the user wants done.

        Args:
            history: Conversation so far as role/content dicts, oldest first.
            catalog: Actions the backend may propose.
            system_prompt: Instructions and business context.
            timeout: Overrides the interpreter's default for this call.

        Returns:
            Interpretation with untrusted candidates.

        Raises:
            InterpretationError: Backend failed, timed out or returned garbage.
        """
        limit = timeout if timeout is not None else self.timeout
        try:
            response = await asyncio.wait_for(
                self.backend.send(system_prompt, history, catalog.tool_descriptors()),
                timeout=limit,
            )
        except asyncio.TimeoutError as e:
            self._logger.warning("interpretation_timeout", timeout=limit)
            raise InterpretationTimeout(
                f"No reply within {limit:g} seconds", backend=self.name
            ) from e
        except InterpretationError as e:
            self._logger.warning("interpretation_failed", reason=e.reason, error=str(e))
            raise
        except Exception as e:
            self._logger.exception("interpretation_backend_error")
            raise BackendUnavailableError(str(e), backend=self.name) from e

        candidates = []
        for index, call in enumerate(response.raw_tool_calls or []):
            if not isinstance(call, dict):
                candidates.append(
                    CandidateAction(
                        id=f"call_{index}",
                        name="",
                        arguments=None,
                        parse_error="tool call is not a JSON object",
                    )
                )
                self._logger.warning("candidate_unparseable", index=index)
                continue
            arguments, parse_error = _decode_arguments(call.get("arguments"))
            candidate = CandidateAction(
                id=str(call.get("id") or f"call_{index}"),
                name=str(call.get("name") or ""),
                arguments=arguments,
                parse_error=parse_error,
            )
            if parse_error:
                self._logger.warning(
                    "candidate_unparseable", name=candidate.name, error=parse_error
                )
            candidates.append(candidate)

        self._logger.info(
            "interpretation_complete",
            candidates=len(candidates),
            has_text=bool(response.text),
        )
        return Interpretation(assistant_text=response.text or "", candidates=candidates)


class HybridInterpreter(IntentInterpreter):
    """OpenAI interprets; workspace kinds execute against Notion."""

    def __init__(
        self,
        backend: LLMBackend,
        workspace: NotionClient,
        timeout: float | None = None,
    ):
        super().__init__(backend, timeout=timeout, workspace=workspace)


def available_providers(settings: FlatSettings | None = None) -> list[LLMProvider]:
    """Providers that can be created with the current configuration.

    Cloud providers need their API key; local servers are always listed.
    """
    settings = settings or get_settings()
    providers = []
    if settings.openai_api_key and settings.notion_api_key:
        providers.append(LLMProvider.HYBRID)
    if settings.openai_api_key:
        providers.append(LLMProvider.OPENAI)
    if settings.anthropic_api_key:
        providers.append(LLMProvider.CLAUDE)
    if settings.google_api_key:
        providers.append(LLMProvider.GEMINI)
    providers.extend([LLMProvider.OLLAMA, LLMProvider.LM_STUDIO])
    return providers


def default_provider(settings: FlatSettings | None = None) -> LLMProvider:
    """LLM_PROVIDER when set and usable, else the first available provider."""
    settings = settings or get_settings()
    available = available_providers(settings)
    requested = settings.llm_provider.lower()
    if requested:
        try:
            provider = LLMProvider(requested)
        except ValueError:
            logger.warning("unknown_llm_provider", requested=requested)
        else:
            if provider in available:
                return provider
            logger.warning("llm_provider_unavailable", requested=requested)
    return available[0]


def create_interpreter(
    provider: LLMProvider | str | None = None,
    timeout: float | None = None,
) -> IntentInterpreter:
    """Build an interpreter for the given provider.

    Raises:
        BackendUnavailableError: The provider's credentials are missing.
    """
    settings = get_settings()
    provider = LLMProvider(provider) if provider else default_provider(settings)

    if provider == LLMProvider.OPENAI:
        backend: LLMBackend = OpenAIClient()
    elif provider == LLMProvider.CLAUDE:
        backend = ClaudeClient()
    elif provider == LLMProvider.GEMINI:
        backend = GeminiClient()
    elif provider == LLMProvider.OLLAMA:
        backend = OllamaClient()
    elif provider == LLMProvider.LM_STUDIO:
        backend = OpenAIClient(
            api_key="lm-studio",  # LM Studio doesn't require a real key
            base_url=settings.lm_studio_base_url,
            model=settings.lm_studio_model or None,
        )
    else:
        if not settings.notion_api_key:
            raise BackendUnavailableError(
                "Hybrid mode needs a Notion API key", backend=provider.value
            )
        logger.info("interpreter_created", provider=provider.value)
        return HybridInterpreter(OpenAIClient(), workspace=NotionClient(), timeout=timeout)

    logger.info("interpreter_created", provider=provider.value)
    return IntentInterpreter(backend, timeout=timeout)
