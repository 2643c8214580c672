"""Per-operation overrides: allow, block, or ask for a specific operation, optionally scoped to a target or agent."""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from opsguard.core.clock import Clock, utc_now
from opsguard.domain.exceptions import ValidationError
from opsguard.infrastructure.storage.interface import StorageBackend

logger = logging.getLogger(__name__)

OVERRIDES_COLLECTION = "operation-overrides"


class OverrideAction(str, Enum):
    ALLOW = "allow"
    BLOCK = "block"
    ASK = "ask"


@dataclass(frozen=True)
class OperationOverride:
    id: str
    operation: str
    action: OverrideAction
    target: Optional[str] = None
    agent_id: Optional[str] = None
    source: Optional[str] = None
    expires_at: Optional[datetime] = None
    reason: Optional[str] = None
    operator_id: Optional[str] = None

    def is_active(self, now: datetime) -> bool:
        return self.expires_at is None or self.expires_at > now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "operation": self.operation,
            "action": self.action.value,
            "target": self.target,
            "agent_id": self.agent_id,
            "source": self.source,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "reason": self.reason,
            "operator_id": self.operator_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "OperationOverride":
        expires_at = data.get("expires_at")
        return cls(
            id=data["id"],
            operation=data["operation"],
            action=OverrideAction(data["action"]),
            target=data.get("target"),
            agent_id=data.get("agent_id"),
            source=data.get("source"),
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
            reason=data.get("reason"),
            operator_id=data.get("operator_id"),
        )


class OverrideStore:
    """Persisted override list with an in-memory copy for the decision path."""

    def __init__(self, storage: StorageBackend, clock: Clock = utc_now) -> None:
        self._storage = storage
        self._clock = clock
        self._overrides: Dict[str, OperationOverride] = {}

    async def restore(self) -> int:
        records = await self._storage.list(OVERRIDES_COLLECTION)
        self._overrides = {r["id"]: OperationOverride.from_dict(r) for r in records}
        return len(self._overrides)

    async def add(
        self,
        *,
        operation: str,
        action: OverrideAction,
        target: Optional[str] = None,
        agent_id: Optional[str] = None,
        source: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        reason: Optional[str] = None,
        operator_id: Optional[str] = None,
    ) -> OperationOverride:
        if ":" not in operation or operation.startswith(":") or operation.endswith(":"):
            raise ValidationError("Override operation must look like 'category:action'")
        override = OperationOverride(
            id=f"override-{uuid.uuid4().hex[:12]}",
            operation=operation,
            action=action,
            target=target,
            agent_id=agent_id,
            source=source,
            expires_at=expires_at,
            reason=reason,
            operator_id=operator_id,
        )
        await self._storage.put(OVERRIDES_COLLECTION, override.id, override.to_dict())
        self._overrides[override.id] = override
        logger.info(
            "operation_override_added",
            extra={"override_id": override.id, "operation": operation, "action": action.value},
        )
        return override

    async def remove(self, override_id: str) -> bool:
        removed = await self._storage.delete(OVERRIDES_COLLECTION, override_id)
        self._overrides.pop(override_id, None)
        return removed

    def list(self) -> List[OperationOverride]:
        return list(self._overrides.values())

    def resolve(
        self,
        operation_key: str,
        target: Optional[str],
        agent_id: Optional[str],
        source: Optional[str] = None,
    ) -> Optional[OperationOverride]:
        """
        Most specific active match wins, target before agent before source.
        An unset scope field matches anything.
        """
        now = self._clock()
        candidates = [
            o
            for o in self._overrides.values()
            if o.operation == operation_key
            and o.is_active(now)
            and (o.target is None or o.target == target)
            and (o.agent_id is None or o.agent_id == agent_id)
            and (o.source is None or o.source == source)
        ]
        if not candidates:
            return None
        return max(
            candidates,
            key=lambda o: (o.target is not None, o.agent_id is not None, o.source is not None),
        )
