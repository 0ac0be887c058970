"""Pytest configuration and fixtures."""

import os
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

# Set test environment variables before importing settings
os.environ.setdefault("ANTHROPIC_API_KEY", "sk-ant-test")
os.environ.setdefault("OPENAI_API_KEY", "sk-test")
os.environ.setdefault("GOOGLE_API_KEY", "test-key")
os.environ.setdefault("COMPANY_NAME", "Zentry合同会社")

from zentry_books.audit import InMemoryAuditSink  # noqa: E402
from zentry_books.clients.base import BackendResponse  # noqa: E402
from zentry_books.invoicing import InvoiceService  # noqa: E402
from zentry_books.models import Client, Invoice, InvoiceLine  # noqa: E402
from zentry_books.repository import InMemoryRepository  # noqa: E402


class ScriptedBackend:
    """Backend double that replays canned responses in order."""

    name = "scripted"

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    async def send(self, system_prompt, messages, tools=None):
        self.calls.append({"system_prompt": system_prompt, "messages": messages, "tools": tools})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def tool_call(name, arguments, call_id="call_1"):
    """Build a raw tool call the way backends report them."""
    return {"id": call_id, "name": name, "arguments": arguments}


def reply(text="", *calls):
    """Build a BackendResponse with optional tool calls."""
    return BackendResponse(
        text=text,
        raw_tool_calls=list(calls),
        stop_reason="tool_use" if calls else "end_turn",
    )


@pytest.fixture
def repository():
    """Fresh in-memory repository."""
    return InMemoryRepository()


@pytest.fixture
def audit_sink():
    """Audit sink that keeps entries in memory."""
    return InMemoryAuditSink()


@pytest.fixture
def invoice_service(repository):
    """Invoice service without retry back-off."""
    return InvoiceService(repository, retry_delay=0)


@pytest.fixture
async def client(repository):
    """A stored client."""
    return await repository.create_client(Client(name="株式会社サンプル", email="info@sample.jp"))


@pytest.fixture
async def invoice(repository, client):
    """A stored draft invoice with zero totals."""
    return await repository.create_invoice(
        Invoice(
            client_id=client.id,
            issue_date=date(2024, 4, 1),
            due_date=date(2024, 5, 1),
        )
    )


@pytest.fixture
def make_line():
    """Factory for unsaved invoice lines."""

    def _make(quantity, unit_price, tax_rate, invoice_id="inv_1", description="item"):
        return InvoiceLine(
            invoice_id=invoice_id,
            description=description,
            quantity=quantity,
            unit_price_minor_units=unit_price,
            tax_rate=Decimal(tax_rate),
        )

    return _make


@pytest.fixture
def mock_httpx_client():
    """Create a mock httpx AsyncClient."""
    client = AsyncMock()
    client.request = AsyncMock()
    client.post = AsyncMock()
    client.get = AsyncMock()
    client.aclose = AsyncMock()
    return client
