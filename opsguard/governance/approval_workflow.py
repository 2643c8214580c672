"""Human-in-the-loop gating with expiry. No auto-approve; audit trail on every transition. No FastAPI."""

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from opsguard.core.clock import Clock, utc_now
from opsguard.domain.exceptions import (
    AlreadyResolvedError,
    ApprovalExpiredError,
    GovernanceError,
    NotFoundError,
)
from opsguard.domain.models.operation import AuditResult, Operation
from opsguard.domain.validators.operation_validator import validate_actor
from opsguard.governance.audit_logger import AuditLogger
from opsguard.governance.audit_models import AuditEntry, LedgerEvent
from opsguard.governance.exceptions import PersistenceDegradedError
from opsguard.governance.state import GovernanceState
from opsguard.infrastructure.storage.interface import StorageBackend
from opsguard.workflows.interface import ApprovedOperationSink

logger = logging.getLogger(__name__)

APPROVALS_COLLECTION = "approvals"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    EXPIRED = "expired"


_LEDGER_EVENTS = {
    ApprovalStatus.APPROVED: LedgerEvent.APPROVAL_GRANTED,
    ApprovalStatus.DENIED: LedgerEvent.APPROVAL_DENIED,
    ApprovalStatus.EXPIRED: LedgerEvent.APPROVAL_EXPIRED,
}

_AUDIT_RESULTS = {
    ApprovalStatus.APPROVED: AuditResult.APPROVED,
    ApprovalStatus.DENIED: AuditResult.DENIED,
    ApprovalStatus.EXPIRED: AuditResult.EXPIRED,
}


@dataclass(frozen=True)
class PendingApproval:
    """Single approval request. Status transitions happen once, by replacement."""

    id: str
    operation: Operation
    reason: str
    created_at: datetime
    expires_at: datetime
    status: ApprovalStatus = ApprovalStatus.PENDING
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolution_reason: Optional[str] = None

    def is_live(self, now: datetime) -> bool:
        return self.status == ApprovalStatus.PENDING and self.expires_at > now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "operation": self.operation.to_dict(),
            "reason": self.reason,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "status": self.status.value,
            "resolved_by": self.resolved_by,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolution_reason": self.resolution_reason,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PendingApproval":
        resolved_at = data.get("resolved_at")
        return cls(
            id=data["id"],
            operation=Operation.from_dict(data["operation"]),
            reason=data["reason"],
            created_at=datetime.fromisoformat(data["created_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
            status=ApprovalStatus(data["status"]),
            resolved_by=data.get("resolved_by"),
            resolved_at=datetime.fromisoformat(resolved_at) if resolved_at else None,
            resolution_reason=data.get("resolution_reason"),
        )


class ApprovalWorkflow:
    """
    Pending -> Approved | Denied | Expired. Terminal states are final.
    Expiry is resolved lazily when an approval is read or resolved; there is
    no background timer. Transitions run under the shared governance lock so
    two concurrent approve/deny calls on one id cannot both succeed.
    """

    def __init__(
        self,
        storage: StorageBackend,
        audit_logger: AuditLogger,
        state: GovernanceState,
        *,
        ttl: timedelta = timedelta(minutes=30),
        clock: Clock = utc_now,
        sink: Optional[ApprovedOperationSink] = None,
    ) -> None:
        self._storage = storage
        self._audit = audit_logger
        self._state = state
        self._ttl = ttl
        self._clock = clock
        self._sink = sink
        self._approvals: Dict[str, PendingApproval] = {}

    async def restore(self) -> int:
        """Reload the approval table from storage. Returns the number of approvals loaded."""
        records = await self._storage.list(APPROVALS_COLLECTION)
        async with self._state.lock:
            self._approvals = {r["id"]: PendingApproval.from_dict(r) for r in records}
            return len(self._approvals)

    async def request(self, operation: Operation, reason: str) -> PendingApproval:
        """Create a pending approval. The caller's decision entry is its audit record."""
        now = self._clock()
        approval = PendingApproval(
            id=f"approval-{uuid.uuid4().hex[:12]}",
            operation=operation,
            reason=reason,
            created_at=now,
            expires_at=now + self._ttl,
        )
        async with self._state.lock:
            self._approvals[approval.id] = approval
        await self._persist(approval)
        logger.info(
            "approval_requested",
            extra={
                "approval_id": approval.id,
                "operation": operation.key,
                "expires_at": approval.expires_at.isoformat(),
            },
        )
        return approval

    async def approve(self, approval_id: str, approved_by: str) -> bool:
        """True only for the first successful transition of a live approval."""
        try:
            await self.resolve(approval_id, approved=True, actor=approved_by)
        except GovernanceError as e:
            logger.info(
                "approval_not_actionable",
                extra={"approval_id": approval_id, "code": e.code},
            )
            return False
        return True

    async def deny(self, approval_id: str, denied_by: str, reason: Optional[str] = None) -> bool:
        try:
            await self.resolve(approval_id, approved=False, actor=denied_by, reason=reason)
        except GovernanceError as e:
            logger.info(
                "approval_not_actionable",
                extra={"approval_id": approval_id, "code": e.code},
            )
            return False
        return True

    async def resolve(
        self,
        approval_id: str,
        *,
        approved: bool,
        actor: str,
        reason: Optional[str] = None,
    ) -> PendingApproval:
        """
        Approve or deny. Raises NotFoundError for unknown ids, ApprovalExpiredError
        past expiry and AlreadyResolvedError for terminal approvals.
        """
        actor = validate_actor(actor, "approved_by" if approved else "denied_by")
        now = self._clock()
        async with self._state.lock:
            current = self._approvals.get(approval_id)
            if current is None:
                raise NotFoundError(f"Approval not found: {approval_id}")
            if current.status == ApprovalStatus.EXPIRED:
                raise ApprovalExpiredError(f"Approval expired: {approval_id}")
            if current.status != ApprovalStatus.PENDING:
                raise AlreadyResolvedError(
                    f"Approval not pending: {approval_id} (status={current.status.value})"
                )
            if current.expires_at <= now:
                updated = self._expire(current, now)
                expired = True
            else:
                status = ApprovalStatus.APPROVED if approved else ApprovalStatus.DENIED
                updated = replace(
                    current,
                    status=status,
                    resolved_by=actor,
                    resolved_at=now,
                    resolution_reason=reason,
                )
                self._approvals[approval_id] = updated
                expired = False

        await self._persist(updated)
        await self._record_transition(updated)
        if expired:
            raise ApprovalExpiredError(f"Approval expired: {approval_id}")
        if updated.status == ApprovalStatus.APPROVED:
            await self._release(updated)
        return updated

    async def get(self, approval_id: str) -> Optional[PendingApproval]:
        """Read one approval, expiring it first if its deadline has passed."""
        now = self._clock()
        async with self._state.lock:
            current = self._approvals.get(approval_id)
            if current is None:
                return None
            if current.status != ApprovalStatus.PENDING or current.expires_at > now:
                return current
            updated = self._expire(current, now)
        await self._persist(updated)
        await self._record_transition(updated)
        return updated

    async def get_pending_approvals(self) -> List[PendingApproval]:
        """Live approvals only: PENDING and not past expires_at at the time of the call."""
        now = self._clock()
        async with self._state.lock:
            live = [a for a in self._approvals.values() if a.is_live(now)]
        return sorted(live, key=lambda a: a.created_at)

    async def count_pending(self) -> int:
        now = self._clock()
        async with self._state.lock:
            return sum(1 for a in self._approvals.values() if a.is_live(now))

    async def list_approvals(self, status: Optional[ApprovalStatus] = None) -> List[PendingApproval]:
        """All approvals, oldest first. Overdue pending approvals are swept to EXPIRED first."""
        await self.sweep_expired()
        async with self._state.lock:
            approvals = list(self._approvals.values())
        if status is not None:
            approvals = [a for a in approvals if a.status == status]
        return sorted(approvals, key=lambda a: a.created_at)

    async def sweep_expired(self) -> int:
        now = self._clock()
        async with self._state.lock:
            expired = [
                self._expire(a, now)
                for a in list(self._approvals.values())
                if a.status == ApprovalStatus.PENDING and a.expires_at <= now
            ]
        for approval in expired:
            await self._persist(approval)
            await self._record_transition(approval)
        return len(expired)

    async def is_approved(self, approval_id: str) -> bool:
        async with self._state.lock:
            approval = self._approvals.get(approval_id)
            return approval is not None and approval.status == ApprovalStatus.APPROVED

    def _expire(self, approval: PendingApproval, now: datetime) -> PendingApproval:
        """Caller holds the lock."""
        updated = replace(approval, status=ApprovalStatus.EXPIRED, resolved_at=now)
        self._approvals[approval.id] = updated
        return updated

    async def _persist(self, approval: PendingApproval) -> None:
        try:
            await self._storage.put(APPROVALS_COLLECTION, approval.id, approval.to_dict())
        except Exception as e:
            # The in-memory table stays authoritative for this process.
            logger.error(
                "approval_persist_failed",
                extra={
                    "approval_id": approval.id,
                    "status": approval.status.value,
                    "error_type": type(e).__name__,
                },
            )

    async def _record_transition(self, approval: PendingApproval) -> None:
        result = _AUDIT_RESULTS[approval.status]
        if approval.status == ApprovalStatus.APPROVED:
            reason = f"Approved by {approval.resolved_by}"
        elif approval.status == ApprovalStatus.DENIED:
            reason = f"Denied by {approval.resolved_by}: {approval.resolution_reason or ''}".rstrip(": ")
        else:
            reason = "Approval expired before a decision"
        entry = AuditEntry.for_operation(
            entry_id=f"audit-{uuid.uuid4().hex[:12]}",
            timestamp=approval.resolved_at or self._clock(),
            result=result,
            operation=approval.operation,
            reason=reason,
            user_id=approval.resolved_by,
            approval_id=approval.id,
        )
        try:
            await self._audit.record(entry, _LEDGER_EVENTS[approval.status])
        except PersistenceDegradedError:
            # Already logged and counted by the audit logger; the transition stands.
            pass
        await self._state.record_resolution(result)
        logger.info(
            "approval_resolved",
            extra={
                "approval_id": approval.id,
                "status": approval.status.value,
                "resolved_by": approval.resolved_by,
            },
        )

    async def _release(self, approval: PendingApproval) -> None:
        if self._sink is None:
            return
        try:
            await self._sink.release(approval)
        except Exception as e:
            logger.error(
                "approved_operation_release_failed",
                extra={"approval_id": approval.id, "error_type": type(e).__name__},
            )
