"""Risk report: decision outcomes, anomalies and suggested guardrails for one window."""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List

from opsguard.analytics.guardrails import GuardrailSuggestion
from opsguard.domain.models.operation import AuditResult
from opsguard.governance.audit_models import AuditEntry
from opsguard.security.anomaly_classifiers import AnomalyType
from opsguard.security.anomaly_detector import AnomalyEvent


@dataclass(frozen=True)
class RiskReport:
    period: str
    since: datetime
    until: datetime
    blocked_count: int
    approved_count: int
    denied_count: int
    anomaly_count: int
    rate_spike_count: int
    anomaly_types: Dict[str, int]
    suggested_rules: List[Dict[str, Any]] = field(default_factory=list)
    chain_valid: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "period": self.period,
            "since": self.since.isoformat(),
            "until": self.until.isoformat(),
            "blocked_count": self.blocked_count,
            "approved_count": self.approved_count,
            "denied_count": self.denied_count,
            "anomaly_count": self.anomaly_count,
            "rate_spike_count": self.rate_spike_count,
            "anomaly_types": dict(self.anomaly_types),
            "suggested_rules_count": len(self.suggested_rules),
            "suggested_rules": list(self.suggested_rules),
            "chain_valid": self.chain_valid,
        }


def period_label(hours: int) -> str:
    if hours == 24:
        return "24h"
    if hours == 168:
        return "7d"
    return f"{hours}h"


def build_risk_report(
    entries: Iterable[AuditEntry],
    anomalies: Iterable[AnomalyEvent],
    suggestions: Iterable[GuardrailSuggestion],
    *,
    now: datetime,
    hours: int = 24,
    chain_valid: bool = True,
) -> RiskReport:
    since = now - timedelta(hours=hours)
    results = Counter(
        e.result
        for e in entries
        if since <= e.timestamp <= now and not e.is_control_plane and not e.awaiting_approval
    )
    window_anomalies = [a for a in anomalies if since <= a.timestamp <= now]
    types = Counter(a.type.value for a in window_anomalies)
    return RiskReport(
        period=period_label(hours),
        since=since,
        until=now,
        blocked_count=results[AuditResult.BLOCKED],
        approved_count=results[AuditResult.APPROVED],
        denied_count=results[AuditResult.DENIED],
        anomaly_count=len(window_anomalies),
        rate_spike_count=types[AnomalyType.RATE_SPIKE.value],
        anomaly_types=dict(types.most_common()),
        suggested_rules=[
            {"id": s.id, "kind": s.kind.value, "suggested_rule": s.suggested_rule}
            for s in suggestions
        ],
        chain_valid=chain_valid,
    )
