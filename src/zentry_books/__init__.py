"""Zentry Books - bookkeeping back office with a human-approved action agent."""

__version__ = "0.1.0"

from zentry_books.audit import InMemoryAuditSink, LoggingAuditSink
from zentry_books.clients import ClaudeClient, GeminiClient, NotionClient, OllamaClient, OpenAIClient
from zentry_books.config import configure_logging, get_settings
from zentry_books.interpreter import (
    HybridInterpreter,
    IntentInterpreter,
    LLMProvider,
    available_providers,
    create_interpreter,
    default_provider,
)
from zentry_books.invoicing import InvoiceService, recompute
from zentry_books.pipeline import AgentPipeline, Decision, GateState, TurnResult
from zentry_books.repository import InMemoryRepository, Repository
from zentry_books.tools import ActionExecutor, ActionOutcome, ActionValidator, build_catalog

__all__ = [
    # Version
    "__version__",
    # Pipeline
    "AgentPipeline",
    "Decision",
    "GateState",
    "TurnResult",
    # Interpreter
    "IntentInterpreter",
    "HybridInterpreter",
    "LLMProvider",
    "available_providers",
    "create_interpreter",
    "default_provider",
    # Backends
    "ClaudeClient",
    "OpenAIClient",
    "GeminiClient",
    "OllamaClient",
    "NotionClient",
    # Books
    "Repository",
    "InMemoryRepository",
    "InvoiceService",
    "recompute",
    # Actions
    "ActionExecutor",
    "ActionOutcome",
    "ActionValidator",
    "build_catalog",
    # Audit
    "LoggingAuditSink",
    "InMemoryAuditSink",
    # Config
    "get_settings",
    "configure_logging",
]
