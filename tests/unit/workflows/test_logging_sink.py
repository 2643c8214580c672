"""Logging release sink: records the approved operation and nothing else."""

import logging
from datetime import timedelta

from opsguard.domain.models.operation import Operation
from opsguard.governance.approval_workflow import ApprovalStatus, PendingApproval
from opsguard.workflows.logging_sink import LoggingOperationSink


async def test_release_logs_approval_metadata(caplog, clock):
    now = clock()
    approval = PendingApproval(
        id="apr-1",
        operation=Operation(category="write", action="dm", source="agent-1", agent_id="agent-1"),
        reason="direct messages require approval",
        created_at=now,
        expires_at=now + timedelta(minutes=30),
        status=ApprovalStatus.APPROVED,
        resolved_by="alice",
        resolved_at=now,
    )

    with caplog.at_level(logging.INFO, logger="opsguard.workflows.logging_sink"):
        await LoggingOperationSink().release(approval)

    records = [r for r in caplog.records if r.getMessage() == "approved_operation_released"]
    assert len(records) == 1
    assert records[0].approval_id == "apr-1"
    assert records[0].operation == "write:dm"
    assert records[0].agent_id == "agent-1"
    assert records[0].approved_by == "alice"
