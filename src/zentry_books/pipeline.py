"""Conversation state, the approval gate and the pipeline entry point.

A conversation moves through::

    idle --message--> awaiting_approval --approve--> executing --> idle
                                        --reject---> cancelled --> idle

Only one batch can be pending per conversation. A new user message while a
batch is pending cancels that batch before the message is interpreted.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

import structlog

from zentry_books.audit import AuditSink
from zentry_books.errors import (
    ActionValidationError,
    BatchNotFoundError,
    InterpretationError,
)
from zentry_books.interpreter import CandidateAction, IntentInterpreter
from zentry_books.prompts import build_system_prompt
from zentry_books.repository import Repository
from zentry_books.tools.definitions import ActionCatalog, ProposedAction, build_catalog
from zentry_books.tools.executor import ActionExecutor, ActionOutcome
from zentry_books.tools.validator import ActionValidator

logger = structlog.get_logger(__name__)

TRY_AGAIN_REPLY = "Sorry, I couldn't process that request just now. Please try again."
CONFIRM_REPLY = "Shall I carry out the following actions?"
NO_ACTION_REPLY = "I couldn't work out what to do. Could you give me a little more detail?"
REJECTED_NOTICE = "Cancelled. None of the proposed actions were carried out."
SUPERSEDED_NOTICE = (
    "The pending actions were cancelled because a new message arrived. "
    "None of them were carried out."
)


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class GateState(str, Enum):
    """Approval gate states."""

    IDLE = "idle"
    AWAITING_APPROVAL = "awaiting_approval"
    EXECUTING = "executing"
    CANCELLED = "cancelled"


class Decision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


@dataclass(frozen=True)
class Message:
    """One entry in a conversation. Never modified after it is appended."""

    role: Role
    text: str
    proposed_actions: tuple[ProposedAction, ...] = ()
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class PendingBatch:
    """Actions proposed together in one assistant turn."""

    actions: tuple[ProposedAction, ...]
    id: str = field(default_factory=lambda: f"batch_{uuid4().hex[:12]}")


@dataclass
class Conversation:
    """Message history plus the approval gate for one conversation."""

    id: str
    messages: list[Message] = field(default_factory=list)
    state: GateState = GateState.IDLE
    pending: PendingBatch | None = None

    def append(self, message: Message) -> None:
        self.messages.append(message)

    def history(self) -> list[dict[str, Any]]:
        """Messages in the shape backends take."""
        return [{"role": m.role.value, "content": m.text} for m in self.messages]


@dataclass
class TurnResult:
    """What the user sees after sending a message."""

    assistant_text: str
    pending_batch: PendingBatch | None = None
    previews: list[str] = field(default_factory=list)
    violations: list[str] = field(default_factory=list)


class AgentPipeline:
    """Entry point: user messages in, approved bookkeeping actions out.

    The interpreter is passed in explicitly; nothing here picks a backend.
    Workspace actions are offered only when the interpreter carries a
    workspace store.
    """

    def __init__(
        self,
        interpreter: IntentInterpreter,
        repository: Repository,
        executor: ActionExecutor | None = None,
        catalog: ActionCatalog | None = None,
        audit_sink: AuditSink | None = None,
        timeout: float | None = None,
    ):
        self.interpreter = interpreter
        self.repository = repository
        self.catalog = catalog or build_catalog(
            include_workspace=interpreter.workspace is not None
        )
        self.validator = ActionValidator(self.catalog)
        self.executor = executor or ActionExecutor(
            repository,
            validator=self.validator,
            audit_sink=audit_sink,
            workspace=interpreter.workspace,
        )
        self.timeout = timeout
        self._conversations: dict[str, Conversation] = {}

    def conversation(self, conversation_id: str) -> Conversation:
        """Get a conversation, creating it on first use."""
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            conversation = Conversation(id=conversation_id)
            self._conversations[conversation_id] = conversation
        return conversation

    async def submit_user_message(self, conversation_id: str, text: str) -> TurnResult:
        """Interpret a user message and surface any proposed actions.

        Never raises for backend or validation problems; those end up in the
        reply text and leave the gate idle.
        """
        with structlog.contextvars.bound_contextvars(conversation_id=conversation_id):
            conversation = self.conversation(conversation_id)
            if conversation.state == GateState.AWAITING_APPROVAL:
                self._cancel(conversation, SUPERSEDED_NOTICE)

            conversation.append(Message(Role.USER, text))
            logger.info("user_message_received", length=len(text))

            try:
                system_prompt = await build_system_prompt(self.repository, self.catalog)
            except Exception:
                logger.exception("system_prompt_failed")
                return self._fail_turn(conversation)

            try:
                interpretation = await self.interpreter.interpret(
                    conversation.history(), self.catalog, system_prompt, timeout=self.timeout
                )
            except InterpretationError as e:
                logger.warning("turn_failed", reason=e.reason, backend=e.backend)
                return self._fail_turn(conversation)

            actions, violations = self._validate_candidates(interpretation.candidates)

            reply = interpretation.assistant_text.strip()
            if not reply:
                reply = CONFIRM_REPLY if actions else NO_ACTION_REPLY
            if violations:
                reply += "\n\nSome proposed actions were invalid and were dropped:\n" + "\n".join(
                    f"- {v}" for v in violations
                )

            batch = None
            if actions:
                batch = PendingBatch(actions=tuple(actions))
                conversation.pending = batch
                conversation.state = GateState.AWAITING_APPROVAL
                logger.info("batch_proposed", batch_id=batch.id, actions=len(actions))

            conversation.append(Message(Role.ASSISTANT, reply, tuple(actions)))
            return TurnResult(
                assistant_text=reply,
                pending_batch=batch,
                previews=[self.catalog.preview(a) for a in actions],
                violations=violations,
            )

    async def resolve_batch(
        self,
        conversation_id: str,
        batch_id: str,
        decision: Decision | str,
    ) -> list[ActionOutcome]:
        """Approve or reject the pending batch.

        Approval runs every action in order and always returns one outcome
        per action. Rejection returns an empty list.

        Raises:
            BatchNotFoundError: No pending batch with this id.
        """
        decision = Decision(decision)
        with structlog.contextvars.bound_contextvars(
            conversation_id=conversation_id, batch_id=batch_id
        ):
            conversation = self._conversations.get(conversation_id)
            if conversation is None or conversation.pending is None or (
                conversation.pending.id != batch_id
            ):
                raise BatchNotFoundError(conversation_id, batch_id)

            if decision == Decision.REJECT:
                self._cancel(conversation, REJECTED_NOTICE)
                logger.info("batch_rejected")
                return []

            batch = conversation.pending
            conversation.pending = None
            conversation.state = GateState.EXECUTING
            try:
                outcomes = await self.executor.execute_batch(list(batch.actions))
            finally:
                conversation.state = GateState.IDLE

            conversation.append(Message(Role.ASSISTANT, self._summarize(outcomes)))
            logger.info("batch_approved", actions=len(outcomes))
            return outcomes

    def _validate_candidates(
        self, candidates: list[CandidateAction]
    ) -> tuple[list[ProposedAction], list[str]]:
        actions: list[ProposedAction] = []
        violations: list[str] = []
        for candidate in candidates:
            label = self.catalog.label(candidate.name or "unnamed action")
            if candidate.parse_error:
                violations.append(f"{label}: {candidate.parse_error}")
                continue
            try:
                actions.append(
                    self.validator.validate(candidate.name, candidate.arguments, candidate.id)
                )
            except ActionValidationError as e:
                violations.extend(f"{label}: {v}" for v in e.violations)
        return actions, violations

    def _fail_turn(self, conversation: Conversation) -> TurnResult:
        conversation.append(Message(Role.ASSISTANT, TRY_AGAIN_REPLY))
        conversation.state = GateState.IDLE
        return TurnResult(assistant_text=TRY_AGAIN_REPLY)

    def _cancel(self, conversation: Conversation, notice: str) -> None:
        conversation.state = GateState.CANCELLED
        conversation.pending = None
        conversation.append(Message(Role.ASSISTANT, notice))
        conversation.state = GateState.IDLE

    def _summarize(self, outcomes: list[ActionOutcome]) -> str:
        lines = ["Results:"]
        for outcome in outcomes:
            label = self.catalog.label(outcome.kind)
            if outcome.success:
                lines.append(f"[done] {label}: {outcome.summary}")
            else:
                lines.append(f"[failed] {label}: {outcome.error}")
        return "\n".join(lines)

