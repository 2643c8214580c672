"""Domain model for governed operations and decisions. Pure business semantics. No ORM or infrastructure."""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

CONTROL_PLANE_CATEGORY = "governance"
CONTROL_PLANE_ACTIONS = frozenset({"pause", "resume", "approve", "deny", "grant", "revoke"})
PAUSED_REASON = "system paused"


class DecisionResult(str, Enum):
    ALLOWED = "allowed"
    BLOCKED = "blocked"
    PENDING_APPROVAL = "pending_approval"


class AuditResult(str, Enum):
    """Outcome recorded in audit entries. EXPIRED is written when an approval lapses unresolved."""

    ALLOWED = "allowed"
    BLOCKED = "blocked"
    APPROVED = "approved"
    DENIED = "denied"
    EXPIRED = "expired"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK: Dict[Severity, int] = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


@dataclass(frozen=True)
class Operation:
    """
    A requested agent action submitted for a governance decision.
    Immutable: created by the caller at decision time, never mutated.
    """

    category: str
    action: str
    source: str
    target: Optional[str] = None
    user_id: Optional[str] = None
    agent_id: Optional[str] = None
    context: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "context", MappingProxyType(dict(self.context)))

    @property
    def key(self) -> str:
        return f"{self.category}:{self.action}"

    @property
    def is_control_plane(self) -> bool:
        """Pause/resume/approve/deny must never be blocked by the pause switch."""
        return (
            self.category == CONTROL_PLANE_CATEGORY
            and self.action in CONTROL_PLANE_ACTIONS
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "action": self.action,
            "source": self.source,
            "target": self.target,
            "user_id": self.user_id,
            "agent_id": self.agent_id,
            "context": dict(self.context),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Operation":
        return cls(
            category=data["category"],
            action=data["action"],
            source=data["source"],
            target=data.get("target"),
            user_id=data.get("user_id"),
            agent_id=data.get("agent_id"),
            context=data.get("context") or {},
        )


@dataclass(frozen=True)
class Decision:
    """Governance verdict for one Operation. Folded into an audit entry, never stored alone."""

    result: DecisionResult
    reason: str
    approval_id: Optional[str] = None
    audit_degraded: bool = False
    # Operation content with injections neutralized and credentials redacted.
    sanitized_content: Optional[str] = None
    warnings: Tuple[str, ...] = ()

    @property
    def allowed(self) -> bool:
        return self.result == DecisionResult.ALLOWED

    @property
    def audit_result(self) -> AuditResult:
        """Pending approvals are recorded as blocked until a human resolves them."""
        if self.result == DecisionResult.ALLOWED:
            return AuditResult.ALLOWED
        return AuditResult.BLOCKED
