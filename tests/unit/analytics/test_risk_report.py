"""Risk report over a window of audit entries, anomalies and suggestions."""

from datetime import timedelta

from opsguard.analytics.guardrails import suggest_guardrails
from opsguard.analytics.risk_report import build_risk_report, period_label
from opsguard.domain.models.operation import AuditResult, Operation, Severity
from opsguard.governance.audit_models import AuditEntry
from opsguard.security.anomaly_classifiers import AnomalyType
from opsguard.security.anomaly_detector import AnomalyEvent


def entry(now, result, age_hours=0, approval_id=None, n=0):
    return AuditEntry.for_operation(
        entry_id=f"audit-{n}",
        timestamp=now - timedelta(hours=age_hours),
        result=result,
        operation=Operation(category="exec", action="shell", source="agent-2"),
        reason=None,
        approval_id=approval_id,
    )


def anomaly(now, kind, age_hours=0, n=0):
    return AnomalyEvent(
        id=f"anomaly-{n}",
        timestamp=now - timedelta(hours=age_hours),
        type=kind,
        severity=Severity.MEDIUM,
        source="agent-2",
        description="test",
    )


def test_period_labels():
    assert period_label(24) == "24h"
    assert period_label(168) == "7d"
    assert period_label(6) == "6h"


def test_report_counts_window_only(clock):
    now = clock()
    entries = [entry(now, AuditResult.BLOCKED, n=i) for i in range(3)]
    entries += [
        entry(now, AuditResult.BLOCKED, approval_id="approval-1", n=10),
        entry(now, AuditResult.APPROVED, n=11),
        entry(now, AuditResult.DENIED, n=12),
        entry(now, AuditResult.BLOCKED, age_hours=48, n=13),
    ]
    anomalies = [
        anomaly(now, AnomalyType.RATE_SPIKE, n=1),
        anomaly(now, AnomalyType.RATE_SPIKE, n=2),
        anomaly(now, AnomalyType.UNUSUAL_ACCESS, n=3),
        anomaly(now, AnomalyType.UNUSUAL_ACCESS, age_hours=30, n=4),
    ]
    suggestions = suggest_guardrails(entries, now=now)

    report = build_risk_report(entries, anomalies, suggestions, now=now, hours=24, chain_valid=False)
    assert report.period == "24h"
    assert report.blocked_count == 3
    assert report.approved_count == 1
    assert report.denied_count == 1
    assert report.anomaly_count == 3
    assert report.rate_spike_count == 2
    assert report.anomaly_types == {"rate_spike": 2, "unusual_access": 1}
    data = report.to_dict()
    assert data["suggested_rules_count"] == 1
    assert data["suggested_rules"][0]["kind"] == "always_block"
    assert data["chain_valid"] is False
