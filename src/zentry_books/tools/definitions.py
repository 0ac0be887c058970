"""Action catalog: the closed set of actions the agent may propose.

Each catalog entry declares the wire-level argument fields, the typed
arguments variant the validator builds from them, a human-readable label and
a preview formatter. The same field declarations render the JSON-schema tool
descriptors handed to the language backends, so what the model is told and
what the validator enforces cannot drift apart.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import uuid4

from zentry_books.models import Direction, InvoiceStatus, TaskPriority, TaskStatus


class ActionKind(str, Enum):
    """Every action kind the pipeline knows how to validate and execute."""

    RECORD_TRANSACTION = "record_transaction"
    DRAFT_INVOICE = "draft_invoice"
    ADD_INVOICE_LINE = "add_invoice_line"
    FIND_CLIENT = "find_client"
    CREATE_CLIENT = "create_client"
    SET_INVOICE_STATUS = "set_invoice_status"
    AMEND_TRANSACTION = "amend_transaction"
    # Task board
    CREATE_TASK = "create_task"
    UPDATE_TASK = "update_task"
    SEARCH_TASK = "search_task"
    # Workspace sync (Notion)
    SAVE_TO_NOTION = "save_to_notion"
    SEARCH_NOTION = "search_notion"


WORKSPACE_KINDS = frozenset({ActionKind.SAVE_TO_NOTION, ActionKind.SEARCH_NOTION})


class FieldType(str, Enum):
    TEXT = "text"
    POSITIVE_INT = "positive_int"
    DATE = "date"
    CHOICE = "choice"
    TAX_RATE = "tax_rate"
    EMAIL = "email"
    TEXT_LIST = "text_list"
    OBJECT = "object"


@dataclass(frozen=True)
class FieldSpec:
    """One argument of an action, as seen on the wire and in the variant."""

    name: str
    attr: str
    type: FieldType
    description: str
    required: bool = True
    choices: tuple[str, ...] = ()
    nullable: bool = False

    def json_schema(self) -> dict[str, Any]:
        """Render this field as a JSON Schema property."""
        schema: dict[str, Any]
        if self.type == FieldType.POSITIVE_INT:
            schema = {"type": "integer", "minimum": 1}
        elif self.type == FieldType.TAX_RATE:
            schema = {"type": "number", "enum": [0, 0.08, 0.1]}
        elif self.type == FieldType.DATE:
            schema = {"type": "string", "format": "date"}
        elif self.type == FieldType.EMAIL:
            schema = {"type": "string", "format": "email"}
        elif self.type == FieldType.CHOICE:
            schema = {"type": "string", "enum": list(self.choices)}
        elif self.type == FieldType.TEXT_LIST:
            schema = {"type": "array", "items": {"type": "string"}}
        elif self.type == FieldType.OBJECT:
            schema = {"type": "object"}
        else:
            schema = {"type": "string"}
        if self.nullable:
            schema["type"] = [schema["type"], "null"]
        schema["description"] = self.description
        return schema


# === Typed argument variants ===
#
# One frozen dataclass per kind. Only the validator constructs these;
# nothing downstream of it ever sees an untyped payload.


@dataclass(frozen=True)
class RecordTransaction:
    direction: Direction
    date: date
    category: str
    counterparty_name: str
    amount_minor_units: int
    memo: str | None = None


@dataclass(frozen=True)
class DraftInvoice:
    client_name: str
    issue_date: date
    due_date: date | None = None
    notes: str | None = None
    bank_account: str | None = None


@dataclass(frozen=True)
class AddInvoiceLine:
    invoice_id: str
    description: str
    quantity: int
    unit_price_minor_units: int
    tax_rate: Decimal


@dataclass(frozen=True)
class FindClient:
    name: str


@dataclass(frozen=True)
class CreateClient:
    name: str
    email: str | None = None
    address: str | None = None
    tax_registration_id: str | None = None


@dataclass(frozen=True)
class SetInvoiceStatus:
    invoice_id: str
    status: InvoiceStatus


@dataclass(frozen=True)
class AmendTransaction:
    transaction_id: str
    direction: Direction | None = None
    date: date | None = None
    category: str | None = None
    counterparty_name: str | None = None
    amount_minor_units: int | None = None
    memo: str | None = None
    provided: frozenset[str] = frozenset()

    def changes(self) -> dict[str, Any]:
        """Fields the caller actually asked to change."""
        return {name: getattr(self, name) for name in sorted(self.provided)}


@dataclass(frozen=True)
class CreateTask:
    title: str
    description: str | None = None
    status: TaskStatus | None = None
    priority: TaskPriority | None = None
    due_date: date | None = None
    tags: tuple[str, ...] = ()


@dataclass(frozen=True)
class UpdateTask:
    task_id: str
    title: str | None = None
    description: str | None = None
    status: TaskStatus | None = None
    priority: TaskPriority | None = None
    due_date: date | None = None
    tags: tuple[str, ...] | None = None
    provided: frozenset[str] = frozenset()

    def changes(self) -> dict[str, Any]:
        """Fields the caller asked to change; a provided None due date clears it."""
        return {name: getattr(self, name) for name in sorted(self.provided)}


@dataclass(frozen=True)
class SearchTask:
    query: str | None = None
    status: TaskStatus | None = None
    priority: TaskPriority | None = None


@dataclass(frozen=True)
class SaveToNotion:
    title: str
    database_id: str | None = None
    content: str | None = None
    properties: tuple[tuple[str, Any], ...] = ()


@dataclass(frozen=True)
class SearchNotion:
    query: str
    database_id: str | None = None


ActionArguments = (
    RecordTransaction
    | DraftInvoice
    | AddInvoiceLine
    | FindClient
    | CreateClient
    | SetInvoiceStatus
    | AmendTransaction
    | CreateTask
    | UpdateTask
    | SearchTask
    | SaveToNotion
    | SearchNotion
)


@dataclass(frozen=True)
class ProposedAction:
    """A validated action awaiting approval."""

    kind: ActionKind
    arguments: ActionArguments
    id: str = field(default_factory=lambda: f"act_{uuid4().hex[:12]}")


def _yen(amount: int) -> str:
    return f"¥{amount:,}"


def _preview_record_transaction(a: RecordTransaction) -> str:
    label = "Income" if a.direction == Direction.INCOME else "Expense"
    return f"{label}: {a.counterparty_name} - {a.category} - {_yen(a.amount_minor_units)} ({a.date.isoformat()})"


def _preview_add_invoice_line(a: AddInvoiceLine) -> str:
    return (
        f"Add line: {a.description} - {a.quantity} x {_yen(a.unit_price_minor_units)}"
        f" (tax {int(a.tax_rate * 100)}%)"
    )


def _preview_create_client(a: CreateClient) -> str:
    suffix = f" / registration no. {a.tax_registration_id}" if a.tax_registration_id else ""
    return f"Register client: {a.name}{suffix}"


@dataclass(frozen=True)
class CatalogEntry:
    """Static description of one action kind."""

    kind: ActionKind
    label: str
    description: str
    fields: tuple[FieldSpec, ...]
    arguments_type: type
    preview: Callable[[Any], str]
    requires_change: bool = False

    def tool_descriptor(self) -> dict[str, Any]:
        """Render the tool definition in the provider-neutral format."""
        return {
            "name": self.kind.value,
            "description": self.description,
            "input_schema": {
                "type": "object",
                "properties": {spec.name: spec.json_schema() for spec in self.fields},
                "required": [spec.name for spec in self.fields if spec.required],
            },
        }

    def to_payload(self, arguments: ActionArguments) -> dict[str, Any]:
        """Turn a typed variant back into its wire payload."""
        provided = getattr(arguments, "provided", None)
        payload: dict[str, Any] = {}
        for spec in self.fields:
            value = getattr(arguments, spec.attr)
            if provided is not None and not spec.required:
                if spec.attr not in provided:
                    continue
            elif value is None or value == ():
                continue
            payload[spec.name] = _to_wire(spec, value)
        return payload


def _to_wire(spec: FieldSpec, value: Any) -> Any:
    if value is None:
        return None
    if spec.type == FieldType.DATE:
        return value.isoformat()
    if spec.type == FieldType.TAX_RATE:
        return float(value)
    if spec.type == FieldType.CHOICE:
        return value.value if isinstance(value, Enum) else value
    if spec.type == FieldType.TEXT_LIST:
        return list(value)
    if spec.type == FieldType.OBJECT:
        return dict(value)
    return value


_DIRECTIONS = tuple(d.value for d in Direction)
_INVOICE_STATUSES = tuple(s.value for s in InvoiceStatus)
_TASK_STATUSES = tuple(s.value for s in TaskStatus)
_TASK_PRIORITIES = tuple(p.value for p in TaskPriority)

# === Core bookkeeping actions ===

RECORD_TRANSACTION = CatalogEntry(
    kind=ActionKind.RECORD_TRANSACTION,
    label="Record transaction",
    description="Record an income or expense transaction.",
    fields=(
        FieldSpec("direction", "direction", FieldType.CHOICE, "income or expense", choices=_DIRECTIONS),
        FieldSpec("date", "date", FieldType.DATE, "Transaction date (YYYY-MM-DD)"),
        FieldSpec("category", "category", FieldType.TEXT, "Account category, e.g. fuel, sales, travel"),
        FieldSpec("counterpartyName", "counterparty_name", FieldType.TEXT, "Name of the counterparty"),
        FieldSpec("amount", "amount_minor_units", FieldType.POSITIVE_INT, "Amount in yen (positive integer)"),
        FieldSpec("memo", "memo", FieldType.TEXT, "Optional memo", required=False),
    ),
    arguments_type=RecordTransaction,
    preview=_preview_record_transaction,
)

DRAFT_INVOICE = CatalogEntry(
    kind=ActionKind.DRAFT_INVOICE,
    label="Draft invoice",
    description=(
        "Create a draft invoice for a client. The client is looked up by name and "
        "created if no match exists."
    ),
    fields=(
        FieldSpec("clientName", "client_name", FieldType.TEXT, "Client name"),
        FieldSpec("issueDate", "issue_date", FieldType.DATE, "Issue date (YYYY-MM-DD)"),
        FieldSpec(
            "dueDate",
            "due_date",
            FieldType.DATE,
            "Payment due date (YYYY-MM-DD); defaults to the standard payment term",
            required=False,
        ),
        FieldSpec("notes", "notes", FieldType.TEXT, "Notes printed on the invoice", required=False),
        FieldSpec("bankAccount", "bank_account", FieldType.TEXT, "Bank account for payment", required=False),
    ),
    arguments_type=DraftInvoice,
    preview=lambda a: f"Draft invoice: {a.client_name} - issued {a.issue_date.isoformat()}",
)

ADD_INVOICE_LINE = CatalogEntry(
    kind=ActionKind.ADD_INVOICE_LINE,
    label="Add invoice line",
    description="Add a line item to an invoice. Invoice totals are recalculated.",
    fields=(
        FieldSpec("invoiceId", "invoice_id", FieldType.TEXT, "Invoice ID"),
        FieldSpec("description", "description", FieldType.TEXT, "Line description"),
        FieldSpec("quantity", "quantity", FieldType.POSITIVE_INT, "Quantity (positive integer)"),
        FieldSpec("unitPrice", "unit_price_minor_units", FieldType.POSITIVE_INT, "Unit price in yen (positive integer)"),
        FieldSpec("taxRate", "tax_rate", FieldType.TAX_RATE, "Tax rate: 0, 0.08 or 0.1"),
    ),
    arguments_type=AddInvoiceLine,
    preview=_preview_add_invoice_line,
)

FIND_CLIENT = CatalogEntry(
    kind=ActionKind.FIND_CLIENT,
    label="Find client",
    description="Search clients by (partial) name.",
    fields=(FieldSpec("name", "name", FieldType.TEXT, "Name or part of a name"),),
    arguments_type=FindClient,
    preview=lambda a: f'Find client: "{a.name}"',
)

CREATE_CLIENT = CatalogEntry(
    kind=ActionKind.CREATE_CLIENT,
    label="Create client",
    description="Register a new client.",
    fields=(
        FieldSpec("name", "name", FieldType.TEXT, "Client name"),
        FieldSpec("email", "email", FieldType.EMAIL, "Email address", required=False),
        FieldSpec("address", "address", FieldType.TEXT, "Postal address", required=False),
        FieldSpec(
            "taxRegistrationId",
            "tax_registration_id",
            FieldType.TEXT,
            "Qualified invoice issuer registration number",
            required=False,
        ),
    ),
    arguments_type=CreateClient,
    preview=_preview_create_client,
)

SET_INVOICE_STATUS = CatalogEntry(
    kind=ActionKind.SET_INVOICE_STATUS,
    label="Set invoice status",
    description="Move an invoice forward: draft -> sent -> paid.",
    fields=(
        FieldSpec("invoiceId", "invoice_id", FieldType.TEXT, "Invoice ID"),
        FieldSpec("status", "status", FieldType.CHOICE, "New status", choices=_INVOICE_STATUSES),
    ),
    arguments_type=SetInvoiceStatus,
    preview=lambda a: f"Invoice status: ID={a.invoice_id} -> {a.status.value}",
)

AMEND_TRANSACTION = CatalogEntry(
    kind=ActionKind.AMEND_TRANSACTION,
    label="Amend transaction",
    description="Change fields of an existing transaction.",
    fields=(
        FieldSpec("id", "transaction_id", FieldType.TEXT, "Transaction ID"),
        FieldSpec("direction", "direction", FieldType.CHOICE, "income or expense", required=False, choices=_DIRECTIONS),
        FieldSpec("date", "date", FieldType.DATE, "Transaction date (YYYY-MM-DD)", required=False),
        FieldSpec("category", "category", FieldType.TEXT, "Account category", required=False),
        FieldSpec("counterpartyName", "counterparty_name", FieldType.TEXT, "Counterparty name", required=False),
        FieldSpec("amount", "amount_minor_units", FieldType.POSITIVE_INT, "Amount in yen", required=False),
        FieldSpec("memo", "memo", FieldType.TEXT, "Memo", required=False),
    ),
    arguments_type=AmendTransaction,
    preview=lambda a: f"Amend transaction: ID={a.transaction_id} ({', '.join(sorted(a.provided))})",
    requires_change=True,
)

# === Task board ===

CREATE_TASK = CatalogEntry(
    kind=ActionKind.CREATE_TASK,
    label="Create task",
    description="Create a task with optional status, priority, due date and tags.",
    fields=(
        FieldSpec("title", "title", FieldType.TEXT, "Task title"),
        FieldSpec("description", "description", FieldType.TEXT, "Task description", required=False),
        FieldSpec("status", "status", FieldType.CHOICE, "Task status", required=False, choices=_TASK_STATUSES),
        FieldSpec("priority", "priority", FieldType.CHOICE, "Task priority", required=False, choices=_TASK_PRIORITIES),
        FieldSpec("dueDate", "due_date", FieldType.DATE, "Due date (YYYY-MM-DD)", required=False),
        FieldSpec("tags", "tags", FieldType.TEXT_LIST, "Tags", required=False),
    ),
    arguments_type=CreateTask,
    preview=lambda a: f"Create task: {a.title}",
)

UPDATE_TASK = CatalogEntry(
    kind=ActionKind.UPDATE_TASK,
    label="Update task",
    description="Update a task. Pass dueDate as null to clear it.",
    fields=(
        FieldSpec("id", "task_id", FieldType.TEXT, "Task ID"),
        FieldSpec("title", "title", FieldType.TEXT, "Task title", required=False),
        FieldSpec("description", "description", FieldType.TEXT, "Task description", required=False),
        FieldSpec("status", "status", FieldType.CHOICE, "Task status", required=False, choices=_TASK_STATUSES),
        FieldSpec("priority", "priority", FieldType.CHOICE, "Task priority", required=False, choices=_TASK_PRIORITIES),
        FieldSpec("dueDate", "due_date", FieldType.DATE, "Due date (YYYY-MM-DD) or null", required=False, nullable=True),
        FieldSpec("tags", "tags", FieldType.TEXT_LIST, "Tags", required=False),
    ),
    arguments_type=UpdateTask,
    preview=lambda a: f"Update task: ID={a.task_id}",
    requires_change=True,
)

SEARCH_TASK = CatalogEntry(
    kind=ActionKind.SEARCH_TASK,
    label="Search tasks",
    description="Search tasks by title, status or priority.",
    fields=(
        FieldSpec("query", "query", FieldType.TEXT, "Text to look for in the title", required=False),
        FieldSpec("status", "status", FieldType.CHOICE, "Filter by status", required=False, choices=_TASK_STATUSES),
        FieldSpec("priority", "priority", FieldType.CHOICE, "Filter by priority", required=False, choices=_TASK_PRIORITIES),
    ),
    arguments_type=SearchTask,
    preview=lambda a: f'Search tasks: "{a.query or ""}"',
)

# === Workspace sync ===

SAVE_TO_NOTION = CatalogEntry(
    kind=ActionKind.SAVE_TO_NOTION,
    label="Save to Notion",
    description="Save a page (transaction, invoice or client notes) to a Notion database.",
    fields=(
        FieldSpec("title", "title", FieldType.TEXT, "Page title"),
        FieldSpec("databaseId", "database_id", FieldType.TEXT, "Notion database ID", required=False),
        FieldSpec("content", "content", FieldType.TEXT, "Page body text", required=False),
        FieldSpec("properties", "properties", FieldType.OBJECT, "Extra Notion page properties", required=False),
    ),
    arguments_type=SaveToNotion,
    preview=lambda a: f"Save to Notion: {a.title} (database {a.database_id or 'default'})",
)

SEARCH_NOTION = CatalogEntry(
    kind=ActionKind.SEARCH_NOTION,
    label="Search Notion",
    description="Search a Notion database by page title.",
    fields=(
        FieldSpec("query", "query", FieldType.TEXT, "Text to look for in page titles"),
        FieldSpec("databaseId", "database_id", FieldType.TEXT, "Notion database ID", required=False),
    ),
    arguments_type=SearchNotion,
    preview=lambda a: f'Search Notion: "{a.query}" (database {a.database_id or "default"})',
)

CORE_ENTRIES: tuple[CatalogEntry, ...] = (
    RECORD_TRANSACTION,
    DRAFT_INVOICE,
    ADD_INVOICE_LINE,
    FIND_CLIENT,
    CREATE_CLIENT,
    SET_INVOICE_STATUS,
    AMEND_TRANSACTION,
)
TASK_ENTRIES: tuple[CatalogEntry, ...] = (CREATE_TASK, UPDATE_TASK, SEARCH_TASK)
WORKSPACE_ENTRIES: tuple[CatalogEntry, ...] = (SAVE_TO_NOTION, SEARCH_NOTION)


class ActionCatalog:
    """An immutable lookup of catalog entries by kind."""

    def __init__(self, entries: tuple[CatalogEntry, ...]):
        self._entries = {entry.kind.value: entry for entry in entries}

    def __contains__(self, kind: object) -> bool:
        key = kind.value if isinstance(kind, ActionKind) else kind
        return key in self._entries

    def __iter__(self):
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, kind: str | ActionKind) -> CatalogEntry | None:
        key = kind.value if isinstance(kind, ActionKind) else kind
        return self._entries.get(key)

    @property
    def kinds(self) -> list[str]:
        return list(self._entries)

    def tool_descriptors(self) -> list[dict[str, Any]]:
        return [entry.tool_descriptor() for entry in self._entries.values()]

    def describe(self) -> str:
        """Numbered list of actions for the system prompt."""
        return "\n".join(
            f"{i}. {entry.kind.value}: {entry.description}"
            for i, entry in enumerate(self._entries.values(), start=1)
        )

    def preview(self, action: ProposedAction) -> str:
        entry = self.get(action.kind)
        if entry is None:
            return str(action.arguments)
        return entry.preview(action.arguments)

    def label(self, kind: str | ActionKind) -> str:
        entry = self.get(kind)
        return entry.label if entry else str(kind)


def build_catalog(include_tasks: bool = True, include_workspace: bool = False) -> ActionCatalog:
    """Assemble the catalog offered to the model.

    Workspace kinds are only offered when a workspace store is wired in.
    """
    entries = CORE_ENTRIES
    if include_tasks:
        entries += TASK_ENTRIES
    if include_workspace:
        entries += WORKSPACE_ENTRIES
    return ActionCatalog(entries)


