"""Audit record models: query-side AuditEntry and hash-chained ImmutableAuditEntry. Domain-level immutability."""

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from opsguard.domain.models.operation import (
    CONTROL_PLANE_ACTIONS,
    CONTROL_PLANE_CATEGORY,
    PAUSED_REASON,
    AuditResult,
    Operation,
)

GENESIS_HASH = "0" * 64


class LedgerEvent(str, Enum):
    OPERATION_CHECK = "operation_check"
    APPROVAL_REQUESTED = "approval_requested"
    APPROVAL_GRANTED = "approval_granted"
    APPROVAL_DENIED = "approval_denied"
    APPROVAL_EXPIRED = "approval_expired"
    AGENT_PAUSED = "agent_paused"
    AGENT_RESUMED = "agent_resumed"
    PERMISSION_GRANTED = "permission_granted"
    PERMISSION_REVOKED = "permission_revoked"


@dataclass(frozen=True)
class AuditEntry:
    """
    Immutable query-side audit record: who, what, when (UTC), outcome, why.
    """

    id: str
    timestamp: datetime
    result: AuditResult
    category: str
    action: str
    source: str
    target: Optional[str] = None
    user_id: Optional[str] = None
    agent_id: Optional[str] = None
    reason: Optional[str] = None
    approval_id: Optional[str] = None

    @property
    def operation(self) -> str:
        return f"{self.category}:{self.action}"

    @property
    def awaiting_approval(self) -> bool:
        """Decision-time entry of an operation that went to a human, not a hard block."""
        return self.result == AuditResult.BLOCKED and self.approval_id is not None

    @property
    def blocked_by_pause(self) -> bool:
        """Blocked only because the system was paused; says nothing about the operation."""
        return self.result == AuditResult.BLOCKED and self.reason == PAUSED_REASON

    @property
    def is_control_plane(self) -> bool:
        return self.category == CONTROL_PLANE_CATEGORY and self.action in CONTROL_PLANE_ACTIONS

    @classmethod
    def for_operation(
        cls,
        *,
        entry_id: str,
        timestamp: datetime,
        result: AuditResult,
        operation: Operation,
        reason: Optional[str],
        user_id: Optional[str] = None,
        approval_id: Optional[str] = None,
    ) -> "AuditEntry":
        return cls(
            id=entry_id,
            timestamp=timestamp,
            result=result,
            category=operation.category,
            action=operation.action,
            source=operation.source,
            target=operation.target,
            user_id=user_id if user_id is not None else operation.user_id,
            agent_id=operation.agent_id,
            reason=reason,
            approval_id=approval_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Structured representation for JSON logging and the ledger payload."""
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "result": self.result.value,
            "operation": self.operation,
            "category": self.category,
            "action": self.action,
            "source": self.source,
            "target": self.target,
            "user_id": self.user_id,
            "agent_id": self.agent_id,
            "reason": self.reason,
            "approval_id": self.approval_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AuditEntry":
        return cls(
            id=data["id"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            result=AuditResult(data["result"]),
            category=data["category"],
            action=data["action"],
            source=data["source"],
            target=data.get("target"),
            user_id=data.get("user_id"),
            agent_id=data.get("agent_id"),
            reason=data.get("reason"),
            approval_id=data.get("approval_id"),
        )


def compute_entry_hash(
    sequence: int,
    timestamp: str,
    payload: Mapping[str, Any],
    prev_hash: str,
) -> str:
    """SHA-256 over the canonical JSON of sequence, timestamp, payload and prev_hash."""
    canonical = json.dumps(
        {
            "sequence": sequence,
            "timestamp": timestamp,
            "payload": payload,
            "prev_hash": prev_hash,
        },
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class ImmutableAuditEntry:
    """One link of the tamper-evident ledger. Never edited or deleted."""

    sequence: int
    timestamp: str
    payload: Dict[str, Any]
    prev_hash: str
    hash: str

    @classmethod
    def create(
        cls,
        sequence: int,
        timestamp: str,
        payload: Dict[str, Any],
        prev_hash: str,
    ) -> "ImmutableAuditEntry":
        return cls(
            sequence=sequence,
            timestamp=timestamp,
            payload=payload,
            prev_hash=prev_hash,
            hash=compute_entry_hash(sequence, timestamp, payload, prev_hash),
        )

    @property
    def event(self) -> Optional[str]:
        return self.payload.get("event")

    @property
    def result(self) -> Optional[str]:
        return self.payload.get("result")

    def recompute_hash(self) -> str:
        return compute_entry_hash(self.sequence, self.timestamp, self.payload, self.prev_hash)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence": self.sequence,
            "timestamp": self.timestamp,
            "payload": self.payload,
            "prev_hash": self.prev_hash,
            "hash": self.hash,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ImmutableAuditEntry":
        return cls(
            sequence=int(data["sequence"]),
            timestamp=str(data["timestamp"]),
            payload=dict(data["payload"]),
            prev_hash=str(data["prev_hash"]),
            hash=str(data["hash"]),
        )


@dataclass(frozen=True)
class ChainVerification:
    valid: bool
    entries: int
    broken_at_sequence: Optional[int] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "entries": self.entries,
            "broken_at_sequence": self.broken_at_sequence,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class LedgerStats:
    count: int
    first_timestamp: Optional[str]
    last_timestamp: Optional[str]
    chain_valid: bool
    last_24h: Dict[str, int]
