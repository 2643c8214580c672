"""Approval workflow: one terminal transition, lazy expiry, audited resolutions, release on approve."""

import asyncio
from datetime import timedelta

import pytest

from opsguard.domain.exceptions import (
    AlreadyResolvedError,
    ApprovalExpiredError,
    NotFoundError,
    ValidationError,
)
from opsguard.domain.models.operation import AuditResult, Operation
from opsguard.governance.approval_workflow import (
    APPROVALS_COLLECTION,
    ApprovalStatus,
    ApprovalWorkflow,
)


@pytest.fixture
def workflow(storage, audit_logger, state, clock, sink):
    return ApprovalWorkflow(
        storage,
        audit_logger,
        state,
        ttl=timedelta(minutes=30),
        clock=clock,
        sink=sink,
    )


@pytest.fixture
def operation():
    return Operation(category="write", action="dm", source="agent-1", target="user-9")


async def test_request_creates_live_pending_approval(workflow, operation, clock):
    approval = await workflow.request(operation, "direct messages require approval")
    assert approval.status == ApprovalStatus.PENDING
    assert approval.expires_at == clock() + timedelta(minutes=30)
    assert [a.id for a in await workflow.get_pending_approvals()] == [approval.id]


async def test_approve_succeeds_once_then_returns_false(workflow, operation, sink, audit_logger):
    approval = await workflow.request(operation, "needs approval")

    assert await workflow.approve(approval.id, "alice") is True
    assert await workflow.approve(approval.id, "bob") is False
    assert await workflow.deny(approval.id, "bob") is False

    entries = audit_logger.audit_log.query()
    assert [e.result for e in entries] == [AuditResult.APPROVED]
    assert entries[0].user_id == "alice"
    assert entries[0].approval_id == approval.id
    assert [a.id for a in sink.released] == [approval.id]
    assert await workflow.is_approved(approval.id) is True


async def test_deny_records_reason_and_does_not_release(workflow, operation, sink, audit_logger):
    approval = await workflow.request(operation, "needs approval")
    assert await workflow.deny(approval.id, "carol", "not today") is True

    denied = await workflow.get(approval.id)
    assert denied.status == ApprovalStatus.DENIED
    assert denied.resolution_reason == "not today"
    assert sink.released == []
    assert audit_logger.audit_log.query()[0].result == AuditResult.DENIED


async def test_unknown_id_returns_false_and_resolve_raises(workflow):
    assert await workflow.approve("approval-missing", "alice") is False
    with pytest.raises(NotFoundError):
        await workflow.resolve("approval-missing", approved=True, actor="alice")


async def test_resolve_terminal_raises_already_resolved(workflow, operation):
    approval = await workflow.request(operation, "needs approval")
    await workflow.resolve(approval.id, approved=False, actor="alice")
    with pytest.raises(AlreadyResolvedError):
        await workflow.resolve(approval.id, approved=True, actor="bob")


async def test_blank_actor_is_rejected_before_any_change(workflow, operation):
    approval = await workflow.request(operation, "needs approval")
    with pytest.raises(ValidationError):
        await workflow.resolve(approval.id, approved=True, actor="  ")
    assert (await workflow.get(approval.id)).status == ApprovalStatus.PENDING


async def test_concurrent_approve_and_deny_only_one_wins(workflow, operation, audit_logger):
    approval = await workflow.request(operation, "needs approval")
    results = await asyncio.gather(
        workflow.approve(approval.id, "alice"),
        workflow.deny(approval.id, "bob"),
        workflow.approve(approval.id, "carol"),
    )
    assert results.count(True) == 1
    assert len(audit_logger.audit_log.query()) == 1


async def test_expired_approval_is_not_pending_and_not_approvable(
    workflow, operation, clock, audit_logger, sink, state
):
    approval = await workflow.request(operation, "needs approval")
    clock.advance(minutes=31)

    assert await workflow.get_pending_approvals() == []
    assert await workflow.approve(approval.id, "alice") is False
    with pytest.raises(ApprovalExpiredError):
        await workflow.resolve(approval.id, approved=True, actor="alice")

    assert (await workflow.get(approval.id)).status == ApprovalStatus.EXPIRED
    assert [e.result for e in audit_logger.audit_log.query()] == [AuditResult.EXPIRED]
    recent = await audit_logger.ledger.read_recent(1)
    assert recent[0].event == "approval_expired"
    assert sink.released == []
    assert (await state.snapshot()).counters.expired == 1


async def test_list_approvals_shows_overdue_as_expired(workflow, operation, clock):
    stale = await workflow.request(operation, "needs approval")
    clock.advance(minutes=45)
    fresh = await workflow.request(operation, "needs approval")

    approvals = await workflow.list_approvals()
    statuses = {a.id: a.status for a in approvals}
    assert statuses == {stale.id: ApprovalStatus.EXPIRED, fresh.id: ApprovalStatus.PENDING}
    expired = await workflow.list_approvals(ApprovalStatus.EXPIRED)
    assert [a.id for a in expired] == [stale.id]


async def test_release_failure_does_not_undo_approval(storage, audit_logger, state, clock, operation):
    class BrokenSink:
        async def release(self, approval):
            raise RuntimeError("executor offline")

    workflow = ApprovalWorkflow(storage, audit_logger, state, clock=clock, sink=BrokenSink())
    approval = await workflow.request(operation, "needs approval")
    assert await workflow.approve(approval.id, "alice") is True
    assert await workflow.is_approved(approval.id) is True


async def test_restore_reloads_persisted_approvals(workflow, storage, audit_logger, state, clock, operation):
    approval = await workflow.request(operation, "needs approval")
    await workflow.approve(approval.id, "alice")
    assert (await storage.get(APPROVALS_COLLECTION, approval.id))["status"] == "approved"

    reloaded = ApprovalWorkflow(storage, audit_logger, state, clock=clock)
    assert await reloaded.restore() == 1
    assert (await reloaded.get(approval.id)).resolved_by == "alice"
