"""Invoice aggregation engine and line-item mutations.

Invoice totals are never set by callers. Every line add, edit or removal
goes through ``InvoiceService``, which recomputes the totals from the full
set of current lines and replaces the stored values in the same
``invoice_section`` as the line write.
"""

import asyncio
from collections.abc import Iterable
from dataclasses import replace
from decimal import ROUND_FLOOR, Decimal

import structlog

from zentry_books.config import get_settings
from zentry_books.errors import (
    ActionValidationError,
    ConsistencyError,
    EntityNotFoundError,
    FieldViolation,
    InvalidStatusTransitionError,
)
from zentry_books.models import (
    ALLOWED_TAX_RATES,
    Invoice,
    InvoiceLine,
    InvoiceStatus,
    InvoiceTotals,
)
from zentry_books.repository import Repository

logger = structlog.get_logger(__name__)


def line_tax(line: InvoiceLine) -> int:
    """Tax for a single line, floored to whole minor units.

    Uses exact decimal arithmetic so that e.g. 0.10 x 6500 is exactly 650.
    """
    taxed = Decimal(line.line_amount_minor_units) * line.tax_rate
    return int(taxed.to_integral_value(rounding=ROUND_FLOOR))


def recompute(lines: Iterable[InvoiceLine]) -> InvoiceTotals:
    """Aggregate line items into invoice totals.

    Tax is floored per line and then summed; flooring the summed tax once
    gives different results and is not the legal convention.

    Args:
        lines: The complete current set of lines for one invoice.

    Returns:
        InvoiceTotals where total == subtotal + tax.
    """
    subtotal = 0
    tax = 0
    for line in lines:
        subtotal += line.line_amount_minor_units
        tax += line_tax(line)
    return InvoiceTotals(subtotal=subtotal, tax=tax, total=subtotal + tax)


def check_line_values(
    quantity: int | None = None,
    unit_price_minor_units: int | None = None,
    tax_rate: Decimal | None = None,
    description: str | None = None,
) -> None:
    """Reject line values that would break the aggregation invariants."""
    violations = []
    if description is not None and not description.strip():
        violations.append(FieldViolation("description", "must not be empty"))
    if quantity is not None and (isinstance(quantity, bool) or quantity <= 0):
        violations.append(FieldViolation("quantity", "must be a positive integer"))
    if unit_price_minor_units is not None and (
        isinstance(unit_price_minor_units, bool) or unit_price_minor_units <= 0
    ):
        violations.append(FieldViolation("unitPrice", "must be a positive integer"))
    if tax_rate is not None and tax_rate not in ALLOWED_TAX_RATES:
        violations.append(FieldViolation("taxRate", "must be one of 0, 0.08, 0.10"))
    if violations:
        raise ActionValidationError("invoice_line", violations)


class InvoiceService:
    """Invoice mutations that keep totals derived from line items."""

    def __init__(
        self,
        repository: Repository,
        totals_write_retries: int | None = None,
        retry_delay: float = 0.05,
    ):
        self._repository = repository
        self._totals_write_retries = (
            totals_write_retries
            if totals_write_retries is not None
            else get_settings().totals_write_retries
        )
        self._retry_delay = retry_delay

    async def add_line(
        self,
        invoice_id: str,
        description: str,
        quantity: int,
        unit_price_minor_units: int,
        tax_rate: Decimal,
    ) -> tuple[InvoiceLine, InvoiceTotals]:
        """Add a line and return it together with the recomputed totals."""
        check_line_values(quantity, unit_price_minor_units, tax_rate, description)
        async with self._repository.invoice_section(invoice_id):
            await self._require_invoice(invoice_id)
            line = await self._repository.add_invoice_line(
                InvoiceLine(
                    invoice_id=invoice_id,
                    description=description,
                    quantity=quantity,
                    unit_price_minor_units=unit_price_minor_units,
                    tax_rate=tax_rate,
                )
            )
            totals = await self._write_totals(invoice_id)

        logger.info(
            "invoice_line_added",
            invoice_id=invoice_id,
            line_id=line.id,
            total=totals.total,
        )
        return line, totals

    async def update_line(
        self,
        line_id: str,
        description: str | None = None,
        quantity: int | None = None,
        unit_price_minor_units: int | None = None,
        tax_rate: Decimal | None = None,
    ) -> tuple[InvoiceLine, InvoiceTotals]:
        """Edit a line; omitted fields keep their current value."""
        check_line_values(quantity, unit_price_minor_units, tax_rate, description)
        current = await self._require_line(line_id)

        async with self._repository.invoice_section(current.invoice_id):
            current = await self._require_line(line_id)
            changes = {
                "description": description,
                "quantity": quantity,
                "unit_price_minor_units": unit_price_minor_units,
                "tax_rate": tax_rate,
            }
            updated = replace(current, **{k: v for k, v in changes.items() if v is not None})
            line = await self._repository.update_invoice_line(updated)
            totals = await self._write_totals(line.invoice_id)

        logger.info("invoice_line_updated", invoice_id=line.invoice_id, line_id=line_id)
        return line, totals

    async def remove_line(self, line_id: str) -> InvoiceTotals:
        """Delete a line and return the parent invoice's new totals."""
        current = await self._require_line(line_id)

        async with self._repository.invoice_section(current.invoice_id):
            await self._repository.remove_invoice_line(line_id)
            totals = await self._write_totals(current.invoice_id)

        logger.info("invoice_line_removed", invoice_id=current.invoice_id, line_id=line_id)
        return totals

    async def set_status(self, invoice_id: str, status: InvoiceStatus) -> Invoice:
        """Move an invoice forward through draft -> sent -> paid."""
        async with self._repository.invoice_section(invoice_id):
            invoice = await self._require_invoice(invoice_id)
            if not invoice.status.can_move_to(status):
                raise InvalidStatusTransitionError(
                    invoice_id, invoice.status.value, status.value
                )
            if invoice.status == status:
                return invoice
            updated = await self._repository.set_invoice_status(invoice_id, status)

        logger.info(
            "invoice_status_changed",
            invoice_id=invoice_id,
            previous=invoice.status.value,
            status=status.value,
        )
        return updated

    async def _write_totals(self, invoice_id: str) -> InvoiceTotals:
        """Recompute and persist totals, retrying until the write lands.

        Must be called inside ``invoice_section`` for ``invoice_id``. A line
        write has already happened at this point, so giving up silently
        would leave the invoice inconsistent.
        """
        last_error: Exception | None = None
        attempts = max(1, self._totals_write_retries + 1)

        for attempt in range(1, attempts + 1):
            try:
                lines = await self._repository.list_invoice_lines(invoice_id)
                totals = recompute(lines)
                await self._repository.set_invoice_totals(invoice_id, totals)
                return totals
            except EntityNotFoundError:
                raise
            except Exception as e:
                last_error = e
                logger.warning(
                    "invoice_totals_write_failed",
                    invoice_id=invoice_id,
                    attempt=attempt,
                    error=str(e),
                )
                if attempt < attempts and self._retry_delay:
                    await asyncio.sleep(self._retry_delay * attempt)

        logger.error("invoice_totals_inconsistent", invoice_id=invoice_id, attempts=attempts)
        raise ConsistencyError(invoice_id, attempts, last_error)

    async def _require_invoice(self, invoice_id: str) -> Invoice:
        invoice = await self._repository.get_invoice(invoice_id)
        if invoice is None:
            raise EntityNotFoundError("Invoice", invoice_id)
        return invoice

    async def _require_line(self, line_id: str) -> InvoiceLine:
        line = await self._repository.get_invoice_line(line_id)
        if line is None:
            raise EntityNotFoundError("InvoiceLine", line_id)
        return line
