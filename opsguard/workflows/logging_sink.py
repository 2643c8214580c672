"""Logging release sink: records approved operations only. Used when no executor is wired."""

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from opsguard.governance.approval_workflow import PendingApproval

logger = logging.getLogger(__name__)


class LoggingOperationSink:
    """Placeholder ApprovedOperationSink that only logs. Never fails the approval."""

    async def release(self, approval: "PendingApproval") -> None:
        logger.info(
            "approved_operation_released",
            extra={
                "approval_id": approval.id,
                "operation": approval.operation.key,
                "agent_id": approval.operation.agent_id,
                "approved_by": approval.resolved_by,
            },
        )
