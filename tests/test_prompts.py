"""Tests for system prompt rendering."""

from datetime import date
from decimal import Decimal

import pytest

from zentry_books.config import FlatSettings
from zentry_books.models import Client, Direction, Invoice, Transaction
from zentry_books.prompts import _percent, build_system_prompt
from zentry_books.tools.definitions import build_catalog


@pytest.fixture
def settings():
    return FlatSettings(
        _env_file=None,
        COMPANY_NAME="Zentry合同会社",
        COMPANY_INVOICE_REG_NO="T1234567890123",
        COMPANY_DEFAULT_TAX_RATE="0.08",
        COMPANY_DEFAULT_PAYMENT_TERM_DAYS=45,
    )


@pytest.mark.parametrize(
    "rate,expected", [("0.10", "10"), ("0.08", "8"), ("0", "0"), ("0.125", "12.5")]
)
def test_percent_formatting(rate, expected):
    """Test rates render as plain percentages."""
    assert _percent(Decimal(rate)) == expected


@pytest.mark.asyncio
async def test_prompt_includes_profile_and_rules(repository, settings):
    """Test company profile, date and tax rules reach the prompt."""
    prompt = await build_system_prompt(
        repository, build_catalog(), settings=settings, today=date(2024, 4, 15)
    )

    assert "Zentry合同会社" in prompt
    assert "T1234567890123" in prompt
    assert "Today is 2024-04-15" in prompt
    assert "assume 8%" in prompt
    assert "45 days" in prompt
    assert "Clients: (none)" in prompt
    assert "1. record_transaction:" in prompt


@pytest.mark.asyncio
async def test_prompt_snapshot_is_bounded(repository, settings):
    """Test only the latest transactions and invoices are included."""
    client = await repository.create_client(Client(name="株式会社サンプル"))
    for day in range(1, 8):
        await repository.create_transaction(
            Transaction(
                direction=Direction.INCOME,
                date=date(2024, 4, day),
                category="Sales",
                counterparty_name=f"Customer {day}",
                amount_minor_units=1000 * day,
            )
        )
    for day in range(1, 5):
        await repository.create_invoice(
            Invoice(client_id=client.id, issue_date=date(2024, 4, day), due_date=date(2024, 5, day))
        )

    prompt = await build_system_prompt(
        repository, build_catalog(), settings=settings, today=date(2024, 4, 15)
    )

    assert "Customer 7" in prompt
    assert "Customer 3" in prompt
    assert "Customer 2" not in prompt
    assert prompt.count('"client": "株式会社サンプル"') == 3


@pytest.mark.asyncio
async def test_prompt_lists_workspace_actions_when_offered(repository, settings):
    """Test the action list follows the catalog."""
    prompt = await build_system_prompt(
        repository, build_catalog(include_workspace=True), settings=settings
    )

    assert "save_to_notion" in prompt
