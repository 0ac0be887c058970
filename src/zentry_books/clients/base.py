"""Shared contract for language backends.

Every backend takes a system prompt, the conversation as plain
``{"role": "user" | "assistant", "content": str}`` dicts and the tool
descriptors from the action catalog, and answers with a ``BackendResponse``.
Backend-specific request and response shapes never leave the client
module. Failures are raised as ``InterpretationError`` subclasses.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass
class BackendResponse:
    """A backend's reply.

    ``raw_tool_calls`` entries are ``{"id", "name", "arguments"}`` where
    ``arguments`` is whatever the backend produced: a dict, or a JSON string
    that has not been decoded yet. Nothing here is trusted.
    """

    text: str
    raw_tool_calls: list[dict[str, Any]] = field(default_factory=list)
    stop_reason: str = "end_turn"
    usage: dict[str, int] = field(default_factory=dict)


class LLMBackend(Protocol):
    """A language backend the interpreter can call."""

    name: str

    async def send(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> BackendResponse: ...
