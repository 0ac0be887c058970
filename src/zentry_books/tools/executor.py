"""Action executor that applies approved actions to the books."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

import structlog

from zentry_books.audit import AuditSink, LoggingAuditSink
from zentry_books.clients.notion import NotionClient
from zentry_books.config import get_settings
from zentry_books.errors import (
    ActionValidationError,
    ConsistencyError,
    ExecutionError,
    WorkspaceUnavailableError,
)
from zentry_books.invoicing import InvoiceService
from zentry_books.models import (
    Client,
    Invoice,
    Task,
    TaskPriority,
    TaskStatus,
    Transaction,
)
from zentry_books.repository import Repository
from zentry_books.tools.definitions import (
    ActionKind,
    AddInvoiceLine,
    AmendTransaction,
    CreateClient,
    CreateTask,
    DraftInvoice,
    FindClient,
    ProposedAction,
    RecordTransaction,
    SaveToNotion,
    SearchNotion,
    SearchTask,
    SetInvoiceStatus,
    UpdateTask,
)
from zentry_books.tools.validator import ActionValidator

logger = structlog.get_logger(__name__)


@dataclass
class ActionOutcome:
    """Result of attempting one approved action."""

    action_id: str
    kind: str
    success: bool
    summary: str = ""
    error: str | None = None
    error_type: str | None = None
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class _HandlerResult:
    summary: str
    entity_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)


def _yen(amount: int) -> str:
    return f"¥{amount:,}"


class ActionExecutor:
    """Executes approved actions against the repository.

    Actions run one at a time in the order given. Each one is re-validated
    first, and its outcome is reported on its own: a failure never stops the
    actions after it.
    """

    def __init__(
        self,
        repository: Repository,
        validator: ActionValidator | None = None,
        invoice_service: InvoiceService | None = None,
        audit_sink: AuditSink | None = None,
        workspace: NotionClient | None = None,
        actor_id: str = "agent",
        client_search_limit: int | None = None,
        payment_term_days: int | None = None,
    ):
        settings = get_settings()
        self.repository = repository
        self.validator = validator or ActionValidator()
        self.invoices = invoice_service or InvoiceService(repository)
        self.audit_sink: AuditSink = audit_sink or LoggingAuditSink()
        self.workspace = workspace
        self.actor_id = actor_id
        self._client_search_limit = client_search_limit or settings.client_search_limit
        self._payment_term_days = (
            payment_term_days
            if payment_term_days is not None
            else settings.company_default_payment_term_days
        )

        self._handlers: dict[ActionKind, Callable[[Any], Awaitable[_HandlerResult]]] = {
            # Transactions
            ActionKind.RECORD_TRANSACTION: self._record_transaction,
            ActionKind.AMEND_TRANSACTION: self._amend_transaction,
            # Clients
            ActionKind.FIND_CLIENT: self._find_client,
            ActionKind.CREATE_CLIENT: self._create_client,
            # Invoices
            ActionKind.DRAFT_INVOICE: self._draft_invoice,
            ActionKind.ADD_INVOICE_LINE: self._add_invoice_line,
            ActionKind.SET_INVOICE_STATUS: self._set_invoice_status,
            # Tasks
            ActionKind.CREATE_TASK: self._create_task,
            ActionKind.UPDATE_TASK: self._update_task,
            ActionKind.SEARCH_TASK: self._search_task,
            # Workspace
            ActionKind.SAVE_TO_NOTION: self._save_to_notion,
            ActionKind.SEARCH_NOTION: self._search_notion,
        }

    async def execute(self, action: ProposedAction) -> ActionOutcome:
        """Execute one action and report its outcome. Never raises."""
        kind = action.kind.value
        log = logger.bind(action_id=action.id, kind=kind)

        try:
            checked = self.validator.revalidate(action)
            handler = self._handlers.get(checked.kind)
            if handler is None:
                raise ExecutionError(f"No handler for action '{kind}'")

            log.info("executing_action")
            result = await handler(checked.arguments)
        except ActionValidationError as e:
            log.warning("action_rejected", violations=[str(v) for v in e.violations])
            return ActionOutcome(action.id, kind, False, error=str(e), error_type="validation")
        except ConsistencyError as e:
            log.error("action_inconsistent", invoice_id=e.invoice_id, attempts=e.attempts)
            return ActionOutcome(action.id, kind, False, error=str(e), error_type="consistency")
        except ExecutionError as e:
            log.warning("action_failed", error=str(e))
            return ActionOutcome(action.id, kind, False, error=str(e), error_type="execution")
        except Exception as e:
            log.exception("action_execution_error")
            return ActionOutcome(action.id, kind, False, error=str(e), error_type="execution")

        log.info("action_executed", entity_id=result.entity_id)
        self._audit(kind, result)
        return ActionOutcome(
            action.id, kind, True, summary=result.summary, data=result.data
        )

    async def execute_batch(self, actions: list[ProposedAction]) -> list[ActionOutcome]:
        """Execute actions sequentially, in order.

        Sequential execution also serializes actions that touch the same
        invoice, so their total recomputations cannot race.
        """
        outcomes = []
        for action in actions:
            outcomes.append(await self.execute(action))
        logger.info(
            "batch_executed",
            actions=len(outcomes),
            failed=sum(1 for o in outcomes if not o.success),
        )
        return outcomes

    def _audit(self, kind: str, result: _HandlerResult) -> None:
        try:
            self.audit_sink.record(self.actor_id, kind, result.entity_id, {"summary": result.summary})
        except Exception as e:
            logger.warning("audit_record_failed", kind=kind, error=str(e))

    # === Transaction Handlers ===

    async def _record_transaction(self, args: RecordTransaction) -> _HandlerResult:
        transaction = await self.repository.create_transaction(
            Transaction(
                direction=args.direction,
                date=args.date,
                category=args.category,
                counterparty_name=args.counterparty_name,
                amount_minor_units=args.amount_minor_units,
                memo=args.memo,
            )
        )
        return _HandlerResult(
            summary=(
                f"Recorded {transaction.direction.value} {_yen(transaction.amount_minor_units)}"
                f" ({transaction.category}, {transaction.counterparty_name}). ID: {transaction.id}"
            ),
            entity_id=transaction.id,
            data={"transaction_id": transaction.id},
        )

    async def _amend_transaction(self, args: AmendTransaction) -> _HandlerResult:
        changes = args.changes()
        transaction = await self.repository.update_transaction(args.transaction_id, **changes)
        return _HandlerResult(
            summary=f"Updated transaction {transaction.id} ({', '.join(changes)}).",
            entity_id=transaction.id,
            data={"transaction_id": transaction.id, "changed": list(changes)},
        )

    # === Client Handlers ===

    async def _find_client(self, args: FindClient) -> _HandlerResult:
        clients = await self.repository.find_clients(args.name, limit=self._client_search_limit)
        if clients:
            lines = [f"- {c.name}" + (f" ({c.email})" if c.email else "") for c in clients]
            summary = "Clients found:\n" + "\n".join(lines)
        else:
            summary = f'No clients matching "{args.name}".'
        return _HandlerResult(
            summary=summary,
            data={"clients": [{"id": c.id, "name": c.name, "email": c.email} for c in clients]},
        )

    async def _create_client(self, args: CreateClient) -> _HandlerResult:
        client = await self.repository.create_client(
            Client(
                name=args.name,
                email=args.email,
                address=args.address,
                tax_registration_id=args.tax_registration_id,
            )
        )
        return _HandlerResult(
            summary=f"Registered client {client.name}. ID: {client.id}",
            entity_id=client.id,
            data={"client_id": client.id},
        )

    # === Invoice Handlers ===

    async def _draft_invoice(self, args: DraftInvoice) -> _HandlerResult:
        matches = await self.repository.find_clients(args.client_name, limit=1)
        created_client = not matches
        if matches:
            client = matches[0]
        else:
            client = await self.repository.create_client(Client(name=args.client_name))
            logger.info("client_created_for_invoice", client_id=client.id, name=client.name)

        due_date = args.due_date or args.issue_date + timedelta(days=self._payment_term_days)
        invoice = await self.repository.create_invoice(
            Invoice(
                client_id=client.id,
                issue_date=args.issue_date,
                due_date=due_date,
                notes=args.notes,
                bank_account=args.bank_account,
            )
        )
        summary = f"Drafted invoice for {client.name} (due {due_date.isoformat()}). ID: {invoice.id}"
        if created_client:
            summary += f"\nNew client registered: {client.name}"
        return _HandlerResult(
            summary=summary,
            entity_id=invoice.id,
            data={
                "invoice_id": invoice.id,
                "client_id": client.id,
                "client_created": created_client,
            },
        )

    async def _add_invoice_line(self, args: AddInvoiceLine) -> _HandlerResult:
        line, totals = await self.invoices.add_line(
            args.invoice_id,
            description=args.description,
            quantity=args.quantity,
            unit_price_minor_units=args.unit_price_minor_units,
            tax_rate=args.tax_rate,
        )
        return _HandlerResult(
            summary=(
                f"Added line '{line.description}' to invoice {line.invoice_id}. "
                f"Subtotal {_yen(totals.subtotal)}, tax {_yen(totals.tax)}, "
                f"total {_yen(totals.total)}."
            ),
            entity_id=line.invoice_id,
            data={
                "line_id": line.id,
                "invoice_id": line.invoice_id,
                "subtotal": totals.subtotal,
                "tax": totals.tax,
                "total": totals.total,
            },
        )

    async def _set_invoice_status(self, args: SetInvoiceStatus) -> _HandlerResult:
        invoice = await self.invoices.set_status(args.invoice_id, args.status)
        return _HandlerResult(
            summary=f"Invoice {invoice.id} is now {invoice.status.value}.",
            entity_id=invoice.id,
            data={"invoice_id": invoice.id, "status": invoice.status.value},
        )

    # === Task Handlers ===

    async def _create_task(self, args: CreateTask) -> _HandlerResult:
        task = await self.repository.create_task(
            Task(
                title=args.title,
                description=args.description,
                status=args.status or TaskStatus.NOT_STARTED,
                priority=args.priority or TaskPriority.MEDIUM,
                due_date=args.due_date,
                tags=list(args.tags),
            )
        )
        return _HandlerResult(
            summary=f"Created task '{task.title}'. ID: {task.id}",
            entity_id=task.id,
            data={"task_id": task.id},
        )

    async def _update_task(self, args: UpdateTask) -> _HandlerResult:
        changes = args.changes()
        if "tags" in changes:
            changes["tags"] = list(changes["tags"] or ())
        task = await self.repository.update_task(args.task_id, **changes)
        return _HandlerResult(
            summary=f"Updated task '{task.title}' ({', '.join(changes)}).",
            entity_id=task.id,
            data={"task_id": task.id, "changed": list(changes)},
        )

    async def _search_task(self, args: SearchTask) -> _HandlerResult:
        tasks = await self.repository.search_tasks(
            query=args.query, status=args.status, priority=args.priority
        )
        if tasks:
            summary = f"{len(tasks)} task(s) found:\n" + "\n".join(
                f"- {t.title} [{t.status.value}, {t.priority.value}]" for t in tasks
            )
        else:
            summary = "No matching tasks."
        return _HandlerResult(
            summary=summary,
            data={
                "count": len(tasks),
                "tasks": [
                    {
                        "id": t.id,
                        "title": t.title,
                        "status": t.status.value,
                        "priority": t.priority.value,
                        "due_date": t.due_date.isoformat() if t.due_date else None,
                        "tags": list(t.tags),
                    }
                    for t in tasks
                ],
            },
        )

    # === Workspace Handlers ===

    def _require_workspace(self) -> NotionClient:
        if self.workspace is None:
            raise WorkspaceUnavailableError("Notion workspace is not configured")
        return self.workspace

    async def _save_to_notion(self, args: SaveToNotion) -> _HandlerResult:
        workspace = self._require_workspace()
        page = await workspace.create_page(
            title=args.title,
            database_id=args.database_id,
            content=args.content,
            properties=dict(args.properties),
        )
        return _HandlerResult(
            summary=f"Saved '{args.title}' to Notion: {page['url']}",
            entity_id=page["page_id"],
            data=page,
        )

    async def _search_notion(self, args: SearchNotion) -> _HandlerResult:
        workspace = self._require_workspace()
        results = await workspace.query_database(args.query, database_id=args.database_id)
        if results:
            summary = f"{len(results)} result(s) found:\n" + "\n".join(
                f"- {r.get('url') or r.get('id')}" for r in results[:5]
            )
        else:
            summary = "No matching Notion pages."
        return _HandlerResult(summary=summary, data={"results": results})
