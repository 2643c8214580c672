"""Guardrail suggestions mined from repeated audit outcomes. Advisory only; applying one is an explicit operator act."""

import hashlib
import re
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from opsguard.domain.models.operation import AuditResult
from opsguard.governance.audit_models import AuditEntry

BAD_RESULTS = frozenset({AuditResult.BLOCKED, AuditResult.DENIED})


class SuggestionKind(str, Enum):
    ALWAYS_BLOCK = "always_block"
    TRUST = "trust"


@dataclass(frozen=True)
class GuardrailSuggestion:
    id: str
    based_on_window_hours: int
    pattern: str
    suggested_rule: str
    confidence: float
    created_at: datetime
    kind: SuggestionKind
    occurrences: int
    category: str
    action: str
    source: Optional[str] = None
    target: Optional[str] = None

    @property
    def operation(self) -> str:
        return f"{self.category}:{self.action}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "based_on_window_hours": self.based_on_window_hours,
            "pattern": self.pattern,
            "suggested_rule": self.suggested_rule,
            "confidence": self.confidence,
            "created_at": self.created_at.isoformat(),
            "kind": self.kind.value,
            "occurrences": self.occurrences,
            "operation": self.operation,
            "source": self.source,
            "target": self.target,
        }


def _slug(*parts: Optional[str]) -> str:
    return re.sub(r"[^a-zA-Z0-9_-]", "_", "_".join(p or "" for p in parts))


def suggestion_id(prefix: str, category: str, action: str, scope: Optional[str]) -> str:
    """Readable slug plus a digest of the raw signature; the slug alone can collide (agent.2 vs agent_2)."""
    raw = "\x1f".join((category, action, scope or ""))
    digest = hashlib.sha256(raw.encode("utf-8")).hexdigest()[:8]
    return f"{prefix}-{_slug(category, action, scope)}-{digest}"


def _confidence(count: int, threshold: int) -> float:
    return round(min(1.0, count / (threshold * 2)), 2)


def suggest_guardrails(
    entries: Iterable[AuditEntry],
    *,
    now: datetime,
    hours: int = 24,
    block_threshold: int = 3,
    approve_threshold: int = 5,
) -> List[GuardrailSuggestion]:
    """
    Repeated blocks/denials of one (category, action, source) suggest a
    standing block; repeated approvals of one (operation, target) suggest
    trusting that target. Sorted by occurrences, then id.
    """
    since = now - timedelta(hours=hours)
    blocked: Counter = Counter()
    approved: Counter = Counter()
    for entry in entries:
        if (
            entry.timestamp < since
            or entry.is_control_plane
            or entry.awaiting_approval
            or entry.blocked_by_pause
        ):
            continue
        if entry.result in BAD_RESULTS:
            blocked[(entry.category, entry.action, entry.source)] += 1
        elif entry.result == AuditResult.APPROVED and entry.target:
            approved[(entry.category, entry.action, entry.target)] += 1

    suggestions: List[GuardrailSuggestion] = []
    for (category, action, source), count in blocked.items():
        if count < block_threshold:
            continue
        suggestions.append(
            GuardrailSuggestion(
                id=suggestion_id("block", category, action, source),
                based_on_window_hours=hours,
                pattern=f"{category}:{action} from {source}",
                suggested_rule=f"always_block {category}:{action} for source {source}",
                confidence=_confidence(count, block_threshold),
                created_at=now,
                kind=SuggestionKind.ALWAYS_BLOCK,
                occurrences=count,
                category=category,
                action=action,
                source=source,
            )
        )
    for (category, action, target), count in approved.items():
        if count < approve_threshold:
            continue
        suggestions.append(
            GuardrailSuggestion(
                id=suggestion_id("trust", category, action, target),
                based_on_window_hours=hours,
                pattern=f"{category}:{action} on {target}",
                suggested_rule=f"always_allow {category}:{action} for target {target}",
                confidence=_confidence(count, approve_threshold),
                created_at=now,
                kind=SuggestionKind.TRUST,
                occurrences=count,
                category=category,
                action=action,
                target=target,
            )
        )
    return sorted(suggestions, key=lambda s: (-s.occurrences, s.id))


def find_suggestion(
    suggestions: Iterable[GuardrailSuggestion], suggestion_id: str
) -> Optional[GuardrailSuggestion]:
    return next((s for s in suggestions if s.id == suggestion_id), None)


def top_signatures(entries: Iterable[AuditEntry], limit: int = 10) -> List[Tuple[str, Optional[str], int]]:
    """(operation, target, count) of hard blocks and denials, most frequent first."""
    counts: Counter = Counter(
        (e.operation, e.target)
        for e in entries
        if e.result in BAD_RESULTS
        and not e.awaiting_approval
        and not e.is_control_plane
        and not e.blocked_by_pause
    )
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0][0], item[0][1] or ""))
    return [(op, target, count) for (op, target), count in ranked[:limit]]
