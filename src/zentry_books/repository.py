"""Repository interface for the books and an in-memory implementation.

The pipeline never talks to storage directly. Any store can be plugged in
as long as it honours ``invoice_section``: everything done to one invoice
inside that context (add a line, recompute, write totals) is atomic with
respect to other callers working on the same invoice.
"""

import asyncio
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import Any

import structlog

from zentry_books.errors import EntityNotFoundError
from zentry_books.models import (
    Client,
    Invoice,
    InvoiceLine,
    InvoiceStatus,
    InvoiceTotals,
    Task,
    TaskPriority,
    TaskStatus,
    Transaction,
)

logger = structlog.get_logger(__name__)


class Repository(ABC):
    """Narrow async CRUD interface over the books."""

    # === Transactions ===

    @abstractmethod
    async def create_transaction(self, transaction: Transaction) -> Transaction:
        pass

    @abstractmethod
    async def get_transaction(self, transaction_id: str) -> Transaction | None:
        pass

    @abstractmethod
    async def update_transaction(self, transaction_id: str, **changes: Any) -> Transaction:
        """Apply field changes to a transaction. Raises EntityNotFoundError."""
        pass

    @abstractmethod
    async def list_transactions(self, limit: int | None = None) -> list[Transaction]:
        """List transactions, most recent date first."""
        pass

    # === Clients ===

    @abstractmethod
    async def create_client(self, client: Client) -> Client:
        pass

    @abstractmethod
    async def get_client(self, client_id: str) -> Client | None:
        pass

    @abstractmethod
    async def find_clients(self, name: str, limit: int | None = None) -> list[Client]:
        """Case-insensitive substring match on client name."""
        pass

    @abstractmethod
    async def list_clients(self, limit: int | None = None) -> list[Client]:
        """List clients ordered by name."""
        pass

    # === Invoices ===

    @abstractmethod
    async def create_invoice(self, invoice: Invoice) -> Invoice:
        pass

    @abstractmethod
    async def get_invoice(self, invoice_id: str) -> Invoice | None:
        pass

    @abstractmethod
    async def list_invoices(self, limit: int | None = None) -> list[Invoice]:
        """List invoices, most recent issue date first."""
        pass

    @abstractmethod
    async def set_invoice_status(self, invoice_id: str, status: InvoiceStatus) -> Invoice:
        pass

    @abstractmethod
    async def set_invoice_totals(self, invoice_id: str, totals: InvoiceTotals) -> Invoice:
        """Replace the stored totals of an invoice."""
        pass

    @abstractmethod
    def invoice_section(self, invoice_id: str) -> Any:
        """Async context manager making work on one invoice atomic."""
        pass

    # === Invoice lines ===

    @abstractmethod
    async def add_invoice_line(self, line: InvoiceLine) -> InvoiceLine:
        pass

    @abstractmethod
    async def get_invoice_line(self, line_id: str) -> InvoiceLine | None:
        pass

    @abstractmethod
    async def update_invoice_line(self, line: InvoiceLine) -> InvoiceLine:
        pass

    @abstractmethod
    async def remove_invoice_line(self, line_id: str) -> None:
        pass

    @abstractmethod
    async def list_invoice_lines(self, invoice_id: str) -> list[InvoiceLine]:
        pass

    # === Tasks ===

    @abstractmethod
    async def create_task(self, task: Task) -> Task:
        pass

    @abstractmethod
    async def get_task(self, task_id: str) -> Task | None:
        pass

    @abstractmethod
    async def update_task(self, task_id: str, **changes: Any) -> Task:
        pass

    @abstractmethod
    async def search_tasks(
        self,
        query: str | None = None,
        status: TaskStatus | None = None,
        priority: TaskPriority | None = None,
    ) -> list[Task]:
        pass


class InMemoryRepository(Repository):
    """Dictionary-backed repository.

    Entities are copied on the way in and out so callers can never mutate
    stored state behind the repository's back.
    """

    def __init__(self) -> None:
        self._transactions: dict[str, Transaction] = {}
        self._clients: dict[str, Client] = {}
        self._invoices: dict[str, Invoice] = {}
        self._lines: dict[str, InvoiceLine] = {}
        self._tasks: dict[str, Task] = {}
        self._invoice_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # === Transactions ===

    async def create_transaction(self, transaction: Transaction) -> Transaction:
        self._transactions[transaction.id] = replace(transaction)
        logger.debug("transaction_stored", transaction_id=transaction.id)
        return replace(transaction)

    async def get_transaction(self, transaction_id: str) -> Transaction | None:
        stored = self._transactions.get(transaction_id)
        return replace(stored) if stored else None

    async def update_transaction(self, transaction_id: str, **changes: Any) -> Transaction:
        stored = self._transactions.get(transaction_id)
        if stored is None:
            raise EntityNotFoundError("Transaction", transaction_id)
        updated = replace(stored, **changes)
        self._transactions[transaction_id] = updated
        return replace(updated)

    async def list_transactions(self, limit: int | None = None) -> list[Transaction]:
        ordered = sorted(self._transactions.values(), key=lambda t: t.date, reverse=True)
        return [replace(t) for t in ordered[:limit]]

    # === Clients ===

    async def create_client(self, client: Client) -> Client:
        self._clients[client.id] = replace(client)
        logger.debug("client_stored", client_id=client.id)
        return replace(client)

    async def get_client(self, client_id: str) -> Client | None:
        stored = self._clients.get(client_id)
        return replace(stored) if stored else None

    async def find_clients(self, name: str, limit: int | None = None) -> list[Client]:
        needle = name.casefold()
        matches = [c for c in self._clients.values() if needle in c.name.casefold()]
        return [replace(c) for c in matches[:limit]]

    async def list_clients(self, limit: int | None = None) -> list[Client]:
        ordered = sorted(self._clients.values(), key=lambda c: c.name)
        return [replace(c) for c in ordered[:limit]]

    # === Invoices ===

    async def create_invoice(self, invoice: Invoice) -> Invoice:
        self._invoices[invoice.id] = replace(invoice)
        logger.debug("invoice_stored", invoice_id=invoice.id)
        return replace(invoice)

    async def get_invoice(self, invoice_id: str) -> Invoice | None:
        stored = self._invoices.get(invoice_id)
        return replace(stored) if stored else None

    async def list_invoices(self, limit: int | None = None) -> list[Invoice]:
        ordered = sorted(self._invoices.values(), key=lambda i: i.issue_date, reverse=True)
        return [replace(i) for i in ordered[:limit]]

    async def set_invoice_status(self, invoice_id: str, status: InvoiceStatus) -> Invoice:
        stored = self._require_invoice(invoice_id)
        updated = replace(stored, status=status)
        self._invoices[invoice_id] = updated
        return replace(updated)

    async def set_invoice_totals(self, invoice_id: str, totals: InvoiceTotals) -> Invoice:
        stored = self._require_invoice(invoice_id)
        updated = replace(
            stored,
            subtotal_minor_units=totals.subtotal,
            tax_minor_units=totals.tax,
            total_minor_units=totals.total,
        )
        self._invoices[invoice_id] = updated
        return replace(updated)

    @asynccontextmanager
    async def invoice_section(self, invoice_id: str) -> AsyncIterator[None]:
        async with self._invoice_locks[invoice_id]:
            yield

    def _require_invoice(self, invoice_id: str) -> Invoice:
        stored = self._invoices.get(invoice_id)
        if stored is None:
            raise EntityNotFoundError("Invoice", invoice_id)
        return stored

    # === Invoice lines ===

    async def add_invoice_line(self, line: InvoiceLine) -> InvoiceLine:
        self._require_invoice(line.invoice_id)
        self._lines[line.id] = replace(line)
        return replace(line)

    async def get_invoice_line(self, line_id: str) -> InvoiceLine | None:
        stored = self._lines.get(line_id)
        return replace(stored) if stored else None

    async def update_invoice_line(self, line: InvoiceLine) -> InvoiceLine:
        if line.id not in self._lines:
            raise EntityNotFoundError("InvoiceLine", line.id)
        self._lines[line.id] = replace(line)
        return replace(line)

    async def remove_invoice_line(self, line_id: str) -> None:
        if self._lines.pop(line_id, None) is None:
            raise EntityNotFoundError("InvoiceLine", line_id)

    async def list_invoice_lines(self, invoice_id: str) -> list[InvoiceLine]:
        return [replace(line) for line in self._lines.values() if line.invoice_id == invoice_id]

    # === Tasks ===

    async def create_task(self, task: Task) -> Task:
        self._tasks[task.id] = replace(task, tags=list(task.tags))
        return replace(task, tags=list(task.tags))

    async def get_task(self, task_id: str) -> Task | None:
        stored = self._tasks.get(task_id)
        return replace(stored, tags=list(stored.tags)) if stored else None

    async def update_task(self, task_id: str, **changes: Any) -> Task:
        stored = self._tasks.get(task_id)
        if stored is None:
            raise EntityNotFoundError("Task", task_id)
        updated = replace(stored, **changes)
        self._tasks[task_id] = updated
        return replace(updated, tags=list(updated.tags))

    async def search_tasks(
        self,
        query: str | None = None,
        status: TaskStatus | None = None,
        priority: TaskPriority | None = None,
    ) -> list[Task]:
        results = []
        for task in sorted(self._tasks.values(), key=lambda t: t.created_at, reverse=True):
            if status is not None and task.status != status:
                continue
            if priority is not None and task.priority != priority:
                continue
            if query and query.casefold() not in task.title.casefold():
                continue
            results.append(replace(task, tags=list(task.tags)))
        return results
