"""
Timed permissions: short-lived grants that let an operation through without
a fresh approval. They expire on a deadline or after a usage cap and never
lift a hard policy block.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Tuple

from opsguard.core.clock import Clock, utc_now
from opsguard.domain.exceptions import ValidationError
from opsguard.domain.models.operation import CONTROL_PLANE_CATEGORY, AuditResult, Operation
from opsguard.governance.audit_logger import AuditLogger
from opsguard.governance.audit_models import AuditEntry, LedgerEvent
from opsguard.governance.exceptions import PersistenceDegradedError
from opsguard.infrastructure.storage.interface import StorageBackend

logger = logging.getLogger(__name__)

PERMISSIONS_COLLECTION = "timed-permissions"
MAX_DURATION = timedelta(days=7)
WILDCARD_SUFFIX = ":*"

REVOKED_MANUALLY = "Manually revoked"
REVOKED_EXPIRED = "Expired"
REVOKED_MAX_USES = "Max uses reached"


@dataclass(frozen=True)
class TimedPermission:
    id: str
    operation: str
    granted_at: datetime
    expires_at: datetime
    granted_by: str
    reason: str
    target: Optional[str] = None
    agent_id: Optional[str] = None
    revoked: bool = False
    revoked_at: Optional[datetime] = None
    revoked_reason: Optional[str] = None
    usage_count: int = 0
    max_uses: Optional[int] = None

    def is_active(self, now: datetime) -> bool:
        return (
            not self.revoked
            and self.expires_at > now
            and (self.max_uses is None or self.usage_count < self.max_uses)
        )

    def covers(self, operation_key: str, target: Optional[str], agent_id: Optional[str]) -> bool:
        """A "category:*" grant covers every action in the category. Unset target or agent matches anything."""
        if self.operation.endswith(WILDCARD_SUFFIX):
            matches = operation_key.startswith(self.operation[:-1])
        else:
            matches = self.operation == operation_key
        return (
            matches
            and (self.target is None or self.target == target)
            and (self.agent_id is None or self.agent_id == agent_id)
        )

    def remaining(self, now: datetime) -> timedelta:
        return max(self.expires_at - now, timedelta(0))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "operation": self.operation,
            "granted_at": self.granted_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "granted_by": self.granted_by,
            "reason": self.reason,
            "target": self.target,
            "agent_id": self.agent_id,
            "revoked": self.revoked,
            "revoked_at": self.revoked_at.isoformat() if self.revoked_at else None,
            "revoked_reason": self.revoked_reason,
            "usage_count": self.usage_count,
            "max_uses": self.max_uses,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TimedPermission":
        revoked_at = data.get("revoked_at")
        return cls(
            id=data["id"],
            operation=data["operation"],
            granted_at=datetime.fromisoformat(data["granted_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
            granted_by=data["granted_by"],
            reason=data["reason"],
            target=data.get("target"),
            agent_id=data.get("agent_id"),
            revoked=bool(data.get("revoked", False)),
            revoked_at=datetime.fromisoformat(revoked_at) if revoked_at else None,
            revoked_reason=data.get("revoked_reason"),
            usage_count=int(data.get("usage_count", 0)),
            max_uses=data.get("max_uses"),
        )


@dataclass(frozen=True)
class PermissionCheck:
    granted: bool
    permission: Optional[TimedPermission] = None
    reason: Optional[str] = None


class PermissionStore:
    """
    Persisted grants with an in-memory copy for the decision path. Grants and
    revocations, including expiry and the usage cap, are written to the audit
    trail as control-plane entries.
    """

    def __init__(
        self,
        storage: StorageBackend,
        audit_logger: AuditLogger,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._storage = storage
        self._audit = audit_logger
        self._clock = clock
        self._permissions: Dict[str, TimedPermission] = {}
        self._lock = asyncio.Lock()

    async def restore(self) -> int:
        records = await self._storage.list(PERMISSIONS_COLLECTION)
        async with self._lock:
            self._permissions = {r["id"]: TimedPermission.from_dict(r) for r in records}
            return len(self._permissions)

    async def grant(
        self,
        *,
        operation: str,
        duration: timedelta,
        granted_by: str,
        reason: str,
        target: Optional[str] = None,
        agent_id: Optional[str] = None,
        max_uses: Optional[int] = None,
    ) -> TimedPermission:
        if ":" not in operation or operation.startswith(":") or operation.endswith(":"):
            raise ValidationError("Permission operation must look like 'category:action' or 'category:*'")
        if duration <= timedelta(0) or duration > MAX_DURATION:
            raise ValidationError(f"Permission duration must be positive and at most {MAX_DURATION.days} days")
        if max_uses is not None and max_uses < 1:
            raise ValidationError("max_uses must be at least 1")
        if not reason.strip():
            raise ValidationError("A reason is required to grant a permission")

        now = self._clock()
        permission = TimedPermission(
            id=f"perm-{uuid.uuid4().hex[:12]}",
            operation=operation,
            granted_at=now,
            expires_at=now + duration,
            granted_by=granted_by,
            reason=reason,
            target=target,
            agent_id=agent_id,
            max_uses=max_uses,
        )
        async with self._lock:
            self._permissions[permission.id] = permission
        await self._persist(permission)
        await self._record(
            permission,
            action="grant",
            actor=granted_by,
            result=AuditResult.ALLOWED,
            reason=f"Granted {operation} until {permission.expires_at.isoformat()}: {reason}",
            event=LedgerEvent.PERMISSION_GRANTED,
        )
        logger.info(
            "timed_permission_granted",
            extra={
                "permission_id": permission.id,
                "operation": operation,
                "granted_by": granted_by,
                "expires_at": permission.expires_at.isoformat(),
                "max_uses": max_uses,
            },
        )
        return permission

    async def revoke(self, permission_id: str, revoked_by: str, reason: Optional[str] = None) -> bool:
        """False if unknown or already revoked."""
        async with self._lock:
            permission = self._permissions.get(permission_id)
            if permission is None or permission.revoked:
                return False
            revoked = self._revoked(permission, reason or REVOKED_MANUALLY)
        await self._finish_revocation(revoked, revoked_by, AuditResult.DENIED)
        return True

    def check(
        self,
        operation_key: str,
        target: Optional[str] = None,
        agent_id: Optional[str] = None,
    ) -> PermissionCheck:
        """Earliest-expiring active grant covering the operation, if any."""
        permission = self._match(operation_key, target, agent_id)
        if permission is None:
            on_target = f" on {target}" if target else ""
            return PermissionCheck(
                granted=False,
                reason=f"No valid timed permission for {operation_key}{on_target}",
            )
        return PermissionCheck(granted=True, permission=permission)

    async def consume(
        self,
        operation_key: str,
        target: Optional[str] = None,
        agent_id: Optional[str] = None,
    ) -> Optional[TimedPermission]:
        """Check and count one use in a single step, so concurrent callers never exceed max_uses."""
        async with self._lock:
            permission = self._match(operation_key, target, agent_id)
            if permission is None:
                return None
            used, exhausted = self._use(permission)
        await self._after_use(used, exhausted)
        return used

    async def record_usage(self, permission_id: str) -> Optional[TimedPermission]:
        """Count one use; the grant revokes itself when the cap is reached."""
        async with self._lock:
            permission = self._permissions.get(permission_id)
            if permission is None:
                return None
            used, exhausted = self._use(permission)
        await self._after_use(used, exhausted)
        return used

    def _match(
        self,
        operation_key: str,
        target: Optional[str],
        agent_id: Optional[str],
    ) -> Optional[TimedPermission]:
        now = self._clock()
        matching = [
            p
            for p in self._permissions.values()
            if p.is_active(now) and p.covers(operation_key, target, agent_id)
        ]
        return min(matching, key=lambda p: p.expires_at) if matching else None

    def _use(self, permission: TimedPermission) -> Tuple[TimedPermission, bool]:
        """Caller holds the lock."""
        used = replace(permission, usage_count=permission.usage_count + 1)
        self._permissions[used.id] = used
        exhausted = not used.revoked and used.max_uses is not None and used.usage_count >= used.max_uses
        if exhausted:
            used = self._revoked(used, REVOKED_MAX_USES)
        return used, exhausted

    async def _after_use(self, permission: TimedPermission, exhausted: bool) -> None:
        if exhausted:
            await self._finish_revocation(permission, "system", AuditResult.EXPIRED)
        else:
            await self._persist(permission)

    async def sweep_expired(self) -> int:
        """Revoke grants past their deadline. Returns how many were newly revoked."""
        now = self._clock()
        async with self._lock:
            expired = [
                self._revoked(p, REVOKED_EXPIRED)
                for p in list(self._permissions.values())
                if not p.revoked and p.expires_at <= now
            ]
        for permission in expired:
            await self._finish_revocation(permission, "system", AuditResult.EXPIRED)
        if expired:
            logger.info("timed_permissions_swept", extra={"count": len(expired)})
        return len(expired)

    def list_active(self, agent_id: Optional[str] = None) -> List[TimedPermission]:
        now = self._clock()
        return [p for p in self.list_all(agent_id) if p.is_active(now)]

    def list_all(self, agent_id: Optional[str] = None) -> List[TimedPermission]:
        permissions = sorted(self._permissions.values(), key=lambda p: p.granted_at)
        if agent_id is None:
            return permissions
        return [p for p in permissions if p.agent_id is None or p.agent_id == agent_id]

    def get(self, permission_id: str) -> Optional[TimedPermission]:
        return self._permissions.get(permission_id)

    def _revoked(self, permission: TimedPermission, reason: str) -> TimedPermission:
        """Caller holds the lock."""
        revoked = replace(permission, revoked=True, revoked_at=self._clock(), revoked_reason=reason)
        self._permissions[revoked.id] = revoked
        return revoked

    async def _finish_revocation(self, permission: TimedPermission, actor: str, result: AuditResult) -> None:
        await self._persist(permission)
        await self._record(
            permission,
            action="revoke",
            actor=actor,
            result=result,
            reason=f"Revoked {permission.operation}: {permission.revoked_reason}",
            event=LedgerEvent.PERMISSION_REVOKED,
        )
        logger.info(
            "timed_permission_revoked",
            extra={
                "permission_id": permission.id,
                "operation": permission.operation,
                "revoked_by": actor,
                "revoked_reason": permission.revoked_reason,
                "usage_count": permission.usage_count,
            },
        )

    async def _persist(self, permission: TimedPermission) -> None:
        await self._storage.put(PERMISSIONS_COLLECTION, permission.id, permission.to_dict())

    async def _record(
        self,
        permission: TimedPermission,
        *,
        action: str,
        actor: str,
        result: AuditResult,
        reason: str,
        event: LedgerEvent,
    ) -> None:
        operation = Operation(
            category=CONTROL_PLANE_CATEGORY,
            action=action,
            source=actor,
            target=permission.operation,
            user_id=actor,
        )
        entry = AuditEntry.for_operation(
            entry_id=f"audit-{uuid.uuid4().hex[:12]}",
            timestamp=self._clock(),
            result=result,
            operation=operation,
            reason=f"{reason} [{permission.id}]",
        )
        try:
            await self._audit.record(entry, event)
        except PersistenceDegradedError:
            # Already logged and counted by the audit logger; the grant state stands.
            pass
