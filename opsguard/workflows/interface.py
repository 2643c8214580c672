"""Approved-operation release interface. The governance core depends on this protocol; executors implement it."""

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from opsguard.governance.approval_workflow import PendingApproval


class ApprovedOperationSink(Protocol):
    """Receives operations a human approved. Execution is the implementation's concern."""

    async def release(self, approval: "PendingApproval") -> None:
        """Hand the approved operation to the executor. No return value."""
        ...
