"""Domain entities for the back office books.

Money is always an integer count of minor units (yen); tax rates are exact
decimals drawn from a fixed whitelist.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from uuid import uuid4

ALLOWED_TAX_RATES: tuple[Decimal, ...] = (Decimal("0"), Decimal("0.08"), Decimal("0.10"))


def new_id() -> str:
    """Generate a new entity id."""
    return str(uuid4())


class Direction(str, Enum):
    """Whether a transaction is money in or money out."""

    INCOME = "income"
    EXPENSE = "expense"


class InvoiceStatus(str, Enum):
    """Invoice lifecycle. Only ever moves forward."""

    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"

    def can_move_to(self, target: "InvoiceStatus") -> bool:
        """Check whether a transition to ``target`` is allowed.

        Staying in place is allowed; otherwise only the next step is.
        """
        order = list(InvoiceStatus)
        return order.index(target) - order.index(self) in (0, 1)


class TaskStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ON_HOLD = "on_hold"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


@dataclass
class Transaction:
    """A single income or expense entry."""

    direction: Direction
    date: date
    category: str
    counterparty_name: str
    amount_minor_units: int
    memo: str | None = None
    id: str = field(default_factory=new_id)


@dataclass
class Client:
    """A customer that can be invoiced."""

    name: str
    email: str | None = None
    address: str | None = None
    tax_registration_id: str | None = None
    id: str = field(default_factory=new_id)


@dataclass(frozen=True)
class InvoiceTotals:
    """Aggregated invoice amounts in minor units."""

    subtotal: int = 0
    tax: int = 0
    total: int = 0


@dataclass
class Invoice:
    """An invoice header. Totals are owned by the aggregation engine."""

    client_id: str
    issue_date: date
    due_date: date
    status: InvoiceStatus = InvoiceStatus.DRAFT
    subtotal_minor_units: int = 0
    tax_minor_units: int = 0
    total_minor_units: int = 0
    notes: str | None = None
    bank_account: str | None = None
    id: str = field(default_factory=new_id)

    @property
    def totals(self) -> InvoiceTotals:
        return InvoiceTotals(
            subtotal=self.subtotal_minor_units,
            tax=self.tax_minor_units,
            total=self.total_minor_units,
        )


@dataclass
class InvoiceLine:
    """A line item on an invoice."""

    invoice_id: str
    description: str
    quantity: int
    unit_price_minor_units: int
    tax_rate: Decimal
    id: str = field(default_factory=new_id)

    @property
    def line_amount_minor_units(self) -> int:
        return self.quantity * self.unit_price_minor_units


@dataclass
class Task:
    """A to-do item on the back office task board."""

    title: str
    description: str | None = None
    status: TaskStatus = TaskStatus.NOT_STARTED
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: date | None = None
    tags: list[str] = field(default_factory=list)
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
