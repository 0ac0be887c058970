"""Tests for the approval gate and pipeline entry point."""

from unittest.mock import AsyncMock

import pytest

from conftest import ScriptedBackend, reply, tool_call
from zentry_books.audit import InMemoryAuditSink
from zentry_books.errors import BackendUnavailableError, BatchNotFoundError, InterpretationTimeout
from zentry_books.interpreter import IntentInterpreter
from zentry_books.pipeline import (
    REJECTED_NOTICE,
    SUPERSEDED_NOTICE,
    TRY_AGAIN_REPLY,
    AgentPipeline,
    Decision,
    GateState,
    Role,
)


def make_pipeline(repository, *responses, workspace=None):
    backend = ScriptedBackend(*responses)
    interpreter = IntentInterpreter(backend, timeout=1, workspace=workspace)
    pipeline = AgentPipeline(interpreter, repository, audit_sink=InMemoryAuditSink())
    return pipeline, backend


async def snapshot(repository):
    return (
        await repository.list_transactions(),
        await repository.list_clients(),
        await repository.list_invoices(),
    )


CREATE_ACME = tool_call("create_client", {"name": "ACME"}, "call_acme")
FIND_GHOST = tool_call("find_client", {"name": "ghost"}, "call_find")


class TestSubmitUserMessage:
    """Tests for submit_user_message."""

    @pytest.mark.asyncio
    async def test_text_only_reply_stays_idle(self, repository):
        """Test a reply with no actions leaves the gate idle."""
        pipeline, _ = make_pipeline(repository, reply("Hello! How can I help?"))

        result = await pipeline.submit_user_message("conv", "hi")

        conversation = pipeline.conversation("conv")
        assert result.pending_batch is None
        assert result.assistant_text == "Hello! How can I help?"
        assert conversation.state == GateState.IDLE
        assert [m.role for m in conversation.messages] == [Role.USER, Role.ASSISTANT]

    @pytest.mark.asyncio
    async def test_valid_candidates_create_pending_batch(self, repository):
        """Test validated candidates become a pending batch awaiting approval."""
        pipeline, _ = make_pipeline(repository, reply("", CREATE_ACME))

        result = await pipeline.submit_user_message("conv", "Register ACME")

        conversation = pipeline.conversation("conv")
        assert conversation.state == GateState.AWAITING_APPROVAL
        assert result.pending_batch is conversation.pending
        assert [a.id for a in result.pending_batch.actions] == ["call_acme"]
        assert result.previews == ["Register client: ACME"]
        assert result.assistant_text == "Shall I carry out the following actions?"
        assert conversation.messages[-1].proposed_actions == result.pending_batch.actions

    @pytest.mark.asyncio
    async def test_invalid_candidates_dropped_with_violations(self, repository):
        """Test invalid candidates stay out of the batch and are reported verbatim."""
        bad_line = tool_call(
            "add_invoice_line",
            {
                "invoiceId": "inv_1",
                "description": "x",
                "quantity": 1,
                "unitPrice": 100,
                "taxRate": 0.05,
            },
            "call_bad",
        )
        pipeline, _ = make_pipeline(repository, reply("Done.", CREATE_ACME, bad_line))

        result = await pipeline.submit_user_message("conv", "do it")

        assert [a.id for a in result.pending_batch.actions] == ["call_acme"]
        assert len(result.violations) == 1
        assert result.violations[0].startswith("Add invoice line: taxRate:")
        assert result.violations[0] in result.assistant_text
        assert result.assistant_text.startswith("Done.")

    @pytest.mark.asyncio
    async def test_only_invalid_candidates_stays_idle(self, repository):
        """Test a turn whose candidates all fail creates no batch."""
        pipeline, _ = make_pipeline(
            repository, reply("", tool_call("find_client", '{"name": '), tool_call("nuke", {}))
        )

        result = await pipeline.submit_user_message("conv", "??")

        assert result.pending_batch is None
        assert len(result.violations) == 2
        assert pipeline.conversation("conv").state == GateState.IDLE

    @pytest.mark.asyncio
    async def test_history_sent_to_backend(self, repository):
        """Test each turn sends the full conversation history."""
        pipeline, backend = make_pipeline(repository, reply("First"), reply("Second"))

        await pipeline.submit_user_message("conv", "one")
        await pipeline.submit_user_message("conv", "two")

        assert backend.calls[1]["messages"] == [
            {"role": "user", "content": "one"},
            {"role": "assistant", "content": "First"},
            {"role": "user", "content": "two"},
        ]

    @pytest.mark.asyncio
    async def test_system_prompt_includes_company_and_clients(self, repository, client):
        """Test the system prompt carries the company profile and a books snapshot."""
        pipeline, backend = make_pipeline(repository, reply("ok"))

        await pipeline.submit_user_message("conv", "hi")

        prompt = backend.calls[0]["system_prompt"]
        assert "Zentry合同会社" in prompt
        assert client.name in prompt
        assert "record_transaction" in prompt

    @pytest.mark.asyncio
    async def test_workspace_kinds_only_offered_with_workspace(self, repository):
        """Test Notion tools are hidden when no workspace store is configured."""
        pipeline, backend = make_pipeline(repository, reply("ok"))

        await pipeline.submit_user_message("conv", "hi")

        names = {t["name"] for t in backend.calls[0]["tools"]}
        assert "save_to_notion" not in names
        assert "create_task" in names

    @pytest.mark.asyncio
    async def test_workspace_kinds_offered_with_workspace(self, repository):
        """Test Notion tools are offered when the interpreter carries a workspace."""
        pipeline, backend = make_pipeline(repository, reply("ok"), workspace=object())

        await pipeline.submit_user_message("conv", "hi")

        names = {t["name"] for t in backend.calls[0]["tools"]}
        assert {"save_to_notion", "search_notion"} <= names

    @pytest.mark.asyncio
    async def test_interpretation_failure_asks_to_try_again(self, repository):
        """Test a backend failure appends a try-again reply and creates no batch."""
        pipeline, _ = make_pipeline(
            repository, BackendUnavailableError("connection refused", backend="scripted")
        )

        result = await pipeline.submit_user_message("conv", "hi")

        conversation = pipeline.conversation("conv")
        assert result.assistant_text == TRY_AGAIN_REPLY
        assert result.pending_batch is None
        assert conversation.state == GateState.IDLE
        assert conversation.messages[-1].text == TRY_AGAIN_REPLY

    @pytest.mark.asyncio
    async def test_snapshot_failure_asks_to_try_again(self, repository):
        """Test a repository failure while building context ends the turn cleanly."""
        pipeline, backend = make_pipeline(repository, reply("", CREATE_ACME))
        first = await pipeline.submit_user_message("conv", "Register ACME")
        repository.list_transactions = AsyncMock(side_effect=RuntimeError("db down"))

        result = await pipeline.submit_user_message("conv", "hello")

        conversation = pipeline.conversation("conv")
        assert result.assistant_text == TRY_AGAIN_REPLY
        assert result.pending_batch is None
        assert conversation.state == GateState.IDLE
        assert [m.text for m in conversation.messages[-3:]] == [
            SUPERSEDED_NOTICE,
            "hello",
            TRY_AGAIN_REPLY,
        ]
        assert len(backend.calls) == 1
        with pytest.raises(BatchNotFoundError):
            await pipeline.resolve_batch("conv", first.pending_batch.id, Decision.APPROVE)

    @pytest.mark.asyncio
    async def test_timeout_fails_closed(self, repository):
        """Test a timeout leaves no pending batch."""
        pipeline, _ = make_pipeline(repository, InterpretationTimeout("too slow"))

        result = await pipeline.submit_user_message("conv", "hi")

        assert result.pending_batch is None
        assert pipeline.conversation("conv").pending is None

    @pytest.mark.asyncio
    async def test_new_message_cancels_pending_batch(self, repository):
        """Test a message while awaiting approval cancels the stale batch first."""
        pipeline, _ = make_pipeline(repository, reply("", CREATE_ACME), reply("Okay."))
        first = await pipeline.submit_user_message("conv", "Register ACME")

        await pipeline.submit_user_message("conv", "Actually, never mind")

        conversation = pipeline.conversation("conv")
        assert conversation.state == GateState.IDLE
        assert conversation.pending is None
        texts = [m.text for m in conversation.messages]
        assert texts.index(SUPERSEDED_NOTICE) < texts.index("Actually, never mind")
        with pytest.raises(BatchNotFoundError):
            await pipeline.resolve_batch("conv", first.pending_batch.id, Decision.APPROVE)
        assert await repository.list_clients() == []


class TestResolveBatch:
    """Tests for resolve_batch."""

    @pytest.mark.asyncio
    async def test_approve_executes_and_returns_to_idle(self, repository):
        """Test approval runs every action and appends a result summary."""
        pipeline, _ = make_pipeline(repository, reply("", CREATE_ACME))
        result = await pipeline.submit_user_message("conv", "Register ACME")

        outcomes = await pipeline.resolve_batch("conv", result.pending_batch.id, "approve")

        conversation = pipeline.conversation("conv")
        assert [o.success for o in outcomes] == [True]
        assert conversation.state == GateState.IDLE
        assert conversation.pending is None
        assert conversation.messages[-1].text.startswith("Results:")
        assert [c.name for c in await repository.list_clients()] == ["ACME"]

    @pytest.mark.asyncio
    async def test_reject_leaves_books_unchanged(self, repository, invoice):
        """Test rejecting a batch changes nothing in the books."""
        line = tool_call(
            "add_invoice_line",
            {
                "invoiceId": invoice.id,
                "description": "x",
                "quantity": 1,
                "unitPrice": 100,
                "taxRate": 0.1,
            },
        )
        pipeline, _ = make_pipeline(repository, reply("", CREATE_ACME, line))
        result = await pipeline.submit_user_message("conv", "do it")
        before = await snapshot(repository)

        outcomes = await pipeline.resolve_batch("conv", result.pending_batch.id, Decision.REJECT)

        assert outcomes == []
        assert await snapshot(repository) == before
        conversation = pipeline.conversation("conv")
        assert conversation.state == GateState.IDLE
        assert conversation.messages[-1].text == REJECTED_NOTICE

    @pytest.mark.asyncio
    async def test_reject_after_empty_find_client(self, repository):
        """Test rejecting after a zero-result search still notes the cancellation."""
        pipeline, _ = make_pipeline(
            repository,
            reply("", FIND_GHOST),
            reply("Shall I register ghost as a new client?", tool_call("create_client", {"name": "ghost"})),
        )
        first = await pipeline.submit_user_message("conv", "Find ghost")
        outcomes = await pipeline.resolve_batch("conv", first.pending_batch.id, Decision.APPROVE)
        assert outcomes[0].success
        assert outcomes[0].data["clients"] == []

        second = await pipeline.submit_user_message("conv", "Then create it?")
        await pipeline.resolve_batch("conv", second.pending_batch.id, Decision.REJECT)

        conversation = pipeline.conversation("conv")
        assert conversation.messages[-1].text == REJECTED_NOTICE
        assert conversation.state == GateState.IDLE
        assert await repository.list_clients() == []

    @pytest.mark.asyncio
    async def test_failing_action_does_not_stop_batch(self, repository):
        """Test a failure in the middle of a batch still attempts the rest."""
        bad_status = tool_call(
            "set_invoice_status", {"invoiceId": "missing", "status": "sent"}, "call_2"
        )
        pipeline, _ = make_pipeline(
            repository,
            reply(
                "",
                tool_call("create_client", {"name": "One"}, "call_1"),
                bad_status,
                tool_call("create_client", {"name": "Three"}, "call_3"),
            ),
        )
        result = await pipeline.submit_user_message("conv", "batch")

        outcomes = await pipeline.resolve_batch("conv", result.pending_batch.id, Decision.APPROVE)

        assert [(o.action_id, o.success) for o in outcomes] == [
            ("call_1", True),
            ("call_2", False),
            ("call_3", True),
        ]
        assert pipeline.conversation("conv").state == GateState.IDLE
        assert "[failed]" in pipeline.conversation("conv").messages[-1].text

    @pytest.mark.asyncio
    async def test_unknown_batch_id(self, repository):
        """Test resolving an unknown batch raises BatchNotFoundError."""
        pipeline, _ = make_pipeline(repository, reply("", CREATE_ACME))
        await pipeline.submit_user_message("conv", "Register ACME")

        with pytest.raises(BatchNotFoundError):
            await pipeline.resolve_batch("conv", "batch_nope", Decision.APPROVE)
        with pytest.raises(BatchNotFoundError):
            await pipeline.resolve_batch("other", "batch_nope", Decision.REJECT)

    @pytest.mark.asyncio
    async def test_batch_cannot_be_resolved_twice(self, repository):
        """Test a batch is consumed by its first resolution."""
        pipeline, _ = make_pipeline(repository, reply("", CREATE_ACME))
        result = await pipeline.submit_user_message("conv", "Register ACME")
        await pipeline.resolve_batch("conv", result.pending_batch.id, Decision.APPROVE)

        with pytest.raises(BatchNotFoundError):
            await pipeline.resolve_batch("conv", result.pending_batch.id, Decision.APPROVE)

        assert len(await repository.list_clients()) == 1

    @pytest.mark.asyncio
    async def test_conversations_are_independent(self, repository):
        """Test each conversation has its own gate."""
        pipeline, _ = make_pipeline(repository, reply("", CREATE_ACME), reply("hi"))

        await pipeline.submit_user_message("a", "Register ACME")
        await pipeline.submit_user_message("b", "hello")

        assert pipeline.conversation("a").state == GateState.AWAITING_APPROVAL
        assert pipeline.conversation("b").state == GateState.IDLE
