"""System prompt for the bookkeeping agent."""

import json
from datetime import date
from decimal import Decimal

from zentry_books.config import FlatSettings, get_settings
from zentry_books.repository import Repository
from zentry_books.tools.definitions import ActionCatalog


def _percent(rate: Decimal) -> str:
    percent = rate * 100
    if percent == percent.to_integral_value():
        return str(int(percent))
    return str(percent.normalize())


SYSTEM_PROMPT_TEMPLATE = """You are the bookkeeping assistant for {company_name}.
Understand the user's natural-language requests and propose the actions that
carry them out, following {company_name}'s business rules.

Available actions:
{actions}

Important rules:
- Today is {today}. If no date is given, use today or ask the user.
- If no tax rate is given, assume {default_tax_percent}% but prefer to confirm with the user.
- Tax rates must be exactly 0, 0.08 or 0.10.
- Amounts are whole yen.
- If a client name is ambiguous, use find_client or ask the user.
- Every action you propose is shown to the user and only runs after they approve it.
  Never claim an action has already been carried out.

Company profile (use it in replies and as the basis for invoices):
- Name: {company_name}
- Address: {company_address}
- Email: {company_email}
- Qualified invoice issuer number: {company_invoice_reg_no}
- Default tax rate: {default_tax_rate}
- Standard payment term: {payment_term_days} days after the issue date

Current context:
- Recent transactions: {recent_transactions}
- Clients: {clients}
- Recent invoices: {recent_invoices}

Reply naturally in Japanese unless the user writes in another language."""


async def build_system_prompt(
    repository: Repository,
    catalog: ActionCatalog,
    settings: FlatSettings | None = None,
    today: date | None = None,
) -> str:
    """Render the system prompt with the company profile and a books snapshot.

    The snapshot holds the 5 most recent transactions, up to 20 clients and
    the 3 most recent invoices.
    """
    settings = settings or get_settings()
    today = today or date.today()

    transactions = await repository.list_transactions(limit=5)
    clients = await repository.list_clients(limit=20)
    invoices = await repository.list_invoices(limit=3)

    client_names = {c.id: c.name for c in clients}
    recent_invoices = []
    for invoice in invoices:
        client_name = client_names.get(invoice.client_id)
        if client_name is None:
            client = await repository.get_client(invoice.client_id)
            client_name = client.name if client else invoice.client_id
        recent_invoices.append({
            "id": invoice.id,
            "client": client_name,
            "total": invoice.total_minor_units,
            "status": invoice.status.value,
        })

    recent_transactions = [
        {
            "direction": t.direction.value,
            "date": t.date.isoformat(),
            "counterparty": t.counterparty_name,
            "amount": t.amount_minor_units,
        }
        for t in transactions
    ]

    return SYSTEM_PROMPT_TEMPLATE.format(
        company_name=settings.company_name,
        actions=catalog.describe(),
        today=today.isoformat(),
        default_tax_percent=_percent(settings.company_default_tax_rate),
        company_address=settings.company_address or "-",
        company_email=settings.company_email or "-",
        company_invoice_reg_no=settings.company_invoice_reg_no or "-",
        default_tax_rate=settings.company_default_tax_rate,
        payment_term_days=settings.company_default_payment_term_days,
        recent_transactions=json.dumps(recent_transactions, ensure_ascii=False),
        clients=", ".join(c.name for c in clients) or "(none)",
        recent_invoices=json.dumps(recent_invoices, ensure_ascii=False),
    )
