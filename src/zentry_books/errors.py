"""Exception hierarchy for the agent action pipeline.

Every failure is recovered at the action or turn boundary; these types let
the pipeline decide which boundary that is.
"""

from dataclasses import dataclass
from typing import Any


class ZentryBooksError(Exception):
    """Base exception for all pipeline errors."""


# === Interpretation ===


class InterpretationError(ZentryBooksError):
    """The language backend could not produce a usable reply."""

    reason = "backend_error"

    def __init__(self, message: str, backend: str | None = None, details: Any = None):
        super().__init__(message)
        self.backend = backend
        self.details = details


class InterpretationTimeout(InterpretationError):
    """The backend did not answer within the caller's timeout."""

    reason = "timeout"


class BackendUnavailableError(InterpretationError):
    """The backend could not be reached or answered with an error status."""

    reason = "unavailable"


class RateLimitedError(InterpretationError):
    """The backend refused the request because of rate limiting."""

    reason = "rate_limited"


class MalformedOutputError(InterpretationError):
    """The backend answered with something that is not a chat completion."""

    reason = "malformed_output"


# === Validation ===


@dataclass(frozen=True)
class FieldViolation:
    """A single field that failed validation."""

    field: str
    message: str

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


class ActionValidationError(ZentryBooksError):
    """A candidate action failed validation.

    Carries every violation found, not just the first.
    """

    def __init__(self, kind: str, violations: list[FieldViolation]):
        details = "; ".join(str(v) for v in violations)
        super().__init__(f"Invalid arguments for '{kind}': {details}")
        self.kind = kind
        self.violations = violations


# === Execution ===


class ExecutionError(ZentryBooksError):
    """A repository or store operation failed for an approved action."""


class EntityNotFoundError(ExecutionError):
    """The entity an action refers to does not exist."""

    def __init__(self, entity_type: str, entity_id: str):
        super().__init__(f"{entity_type} {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class InvalidStatusTransitionError(ExecutionError):
    """An invoice status change would move backwards or skip a step."""

    def __init__(self, invoice_id: str, current: str, requested: str):
        super().__init__(
            f"Invoice {invoice_id} cannot move from '{current}' to '{requested}'"
        )
        self.invoice_id = invoice_id
        self.current = current
        self.requested = requested


class WorkspaceUnavailableError(ExecutionError):
    """A workspace-sync action was approved but no workspace store is configured."""


class ConsistencyError(ExecutionError):
    """A line write landed but the matching totals write could not be completed."""

    def __init__(self, invoice_id: str, attempts: int, cause: Exception | None = None):
        super().__init__(
            f"Invoice {invoice_id} totals could not be written after {attempts} attempts"
        )
        self.invoice_id = invoice_id
        self.attempts = attempts
        self.cause = cause


# === Conversation ===


class BatchNotFoundError(ZentryBooksError):
    """No pending batch with the given id exists for the conversation."""

    def __init__(self, conversation_id: str, batch_id: str):
        super().__init__(
            f"No pending batch {batch_id} in conversation {conversation_id}"
        )
        self.conversation_id = conversation_id
        self.batch_id = batch_id
