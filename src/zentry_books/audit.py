"""Audit sinks for executed actions.

Auditing is fire-and-forget: the executor calls ``record`` after an action
succeeds and ignores any failure, so a broken sink can never undo or block
bookkeeping work.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class AuditEntry:
    """One audited action."""

    actor_id: str
    action_kind: str
    entity_id: str | None
    detail: dict[str, Any] = field(default_factory=dict)
    recorded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class AuditSink(Protocol):
    """Anything that can record an audit entry."""

    def record(
        self,
        actor_id: str,
        action_kind: str,
        entity_id: str | None,
        detail: dict[str, Any] | None = None,
    ) -> None: ...


class LoggingAuditSink:
    """Writes audit entries to the structured log."""

    def record(
        self,
        actor_id: str,
        action_kind: str,
        entity_id: str | None,
        detail: dict[str, Any] | None = None,
    ) -> None:
        logger.info(
            "audit",
            actor_id=actor_id,
            action_kind=action_kind,
            entity_id=entity_id,
            detail=detail or {},
        )


class InMemoryAuditSink:
    """Keeps the most recent audit entries in memory.

    Useful for tests and for showing a recent-activity list.
    """

    def __init__(self, buffer_size: int = 100):
        self._entries: deque[AuditEntry] = deque(maxlen=buffer_size)

    @property
    def entries(self) -> list[AuditEntry]:
        return list(self._entries)

    def record(
        self,
        actor_id: str,
        action_kind: str,
        entity_id: str | None,
        detail: dict[str, Any] | None = None,
    ) -> None:
        self._entries.append(
            AuditEntry(
                actor_id=actor_id,
                action_kind=action_kind,
                entity_id=entity_id,
                detail=detail or {},
            )
        )
