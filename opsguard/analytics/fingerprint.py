"""Governance fingerprint: how one operator governs, reduced to qualitative buckets over a window."""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List

from opsguard.analytics.guardrails import top_signatures
from opsguard.domain.models.operation import AuditResult
from opsguard.governance.audit_models import AuditEntry

PERMISSIVE_RATIO = 0.8
STRICT_RATIO = 0.4
MIN_DECISIONS_FOR_PATTERN = 4
BURST_SHARE = 0.5


@dataclass(frozen=True)
class GovernanceFingerprint:
    operator_id: str
    window_hours: int
    style: str
    focus: str
    pattern: str
    active_window: str
    approved_count: int
    denied_count: int
    blocked_count: int
    top_blocked_operations: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operator_id": self.operator_id,
            "window_hours": self.window_hours,
            "style": self.style,
            "focus": self.focus,
            "pattern": self.pattern,
            "active_window": self.active_window,
            "approved_count": self.approved_count,
            "denied_count": self.denied_count,
            "blocked_count": self.blocked_count,
            "top_blocked_operations": list(self.top_blocked_operations),
        }


def _style(approved: int, denied: int) -> str:
    decided = approved + denied
    if decided == 0:
        return "undetermined"
    ratio = approved / decided
    if ratio >= PERMISSIVE_RATIO:
        return "permissive"
    if ratio <= STRICT_RATIO:
        return "strict"
    return "balanced"


def _pattern(timestamps: List[datetime]) -> str:
    if len(timestamps) < MIN_DECISIONS_FOR_PATTERN:
        return "sparse"
    per_hour = Counter(t.replace(minute=0, second=0, microsecond=0) for t in timestamps)
    if max(per_hour.values()) / len(timestamps) >= BURST_SHARE:
        return "bursty"
    return "steady"


def _active_window(timestamps: List[datetime]) -> str:
    if not timestamps:
        return "none"
    hour = Counter(t.hour for t in timestamps).most_common(1)[0][0]
    if 6 <= hour < 12:
        return "morning"
    if 12 <= hour < 18:
        return "afternoon"
    if 18 <= hour < 24:
        return "evening"
    return "night"


def compute_fingerprint(
    entries: Iterable[AuditEntry],
    *,
    operator_id: str,
    now: datetime,
    hours: int = 720,
) -> GovernanceFingerprint:
    """
    Approvals and denials count when the operator resolved them. Hard blocks
    count when they are unattributed or attributed to the operator, since a
    deployment is governed by its operator.
    """
    since = now - timedelta(hours=hours)
    window = [
        e
        for e in entries
        if e.timestamp >= since
        and not e.is_control_plane
        and (e.user_id is None or e.user_id == operator_id)
    ]
    approved = [e for e in window if e.result == AuditResult.APPROVED and e.user_id == operator_id]
    denied = [e for e in window if e.result == AuditResult.DENIED and e.user_id == operator_id]
    blocked = [e for e in window if e.result == AuditResult.BLOCKED and not e.awaiting_approval]

    governed = approved + denied + blocked
    categories = Counter(e.category for e in governed)
    focus = categories.most_common(1)[0][0] if categories else "none"
    decision_times = sorted(e.timestamp for e in approved + denied)

    return GovernanceFingerprint(
        operator_id=operator_id,
        window_hours=hours,
        style=_style(len(approved), len(denied)),
        focus=focus,
        pattern=_pattern(decision_times),
        active_window=_active_window(decision_times),
        approved_count=len(approved),
        denied_count=len(denied),
        blocked_count=len(blocked),
        top_blocked_operations=[
            {"operation": op, "target": target, "count": count}
            for op, target, count in top_signatures(blocked + denied)
        ],
    )
