"""Trust scores: deterministic, bounded, monotone in recent bad events, decayed over time."""

from datetime import timedelta

from opsguard.analytics.trust_scoring import (
    compute_trust_scores,
    decay,
    qualifies_for_auto_approval,
    score_from_weights,
)
from opsguard.domain.models.operation import PAUSED_REASON, AuditResult, Operation, Severity
from opsguard.governance.audit_models import AuditEntry
from opsguard.security.anomaly_classifiers import AnomalyType
from opsguard.security.anomaly_detector import AnomalyEvent


def entry(now, result, source="agent-1", agent_id=None, age_hours=0, approval_id=None, category="post", action="publish", reason=None):
    return AuditEntry.for_operation(
        entry_id=f"audit-{result.value}-{age_hours}",
        timestamp=now - timedelta(hours=age_hours),
        result=result,
        operation=Operation(category=category, action=action, source=source, agent_id=agent_id),
        reason=reason,
        approval_id=approval_id,
    )


def anomaly(now, severity, source="agent-1", age_hours=0):
    return AnomalyEvent(
        id=f"anomaly-{age_hours}",
        timestamp=now - timedelta(hours=age_hours),
        type=AnomalyType.POLICY_VIOLATION,
        severity=severity,
        source=source,
        description="test",
    )


def score_for(scores, subject):
    return next(s for s in scores if s.subject_id == subject)


def test_no_history_scores_neutral():
    assert score_from_weights(0, 0) == 0.5


def test_decay_halves_per_half_life():
    assert decay(timedelta(0), 72) == 1.0
    assert decay(timedelta(hours=72), 72) == 0.5
    assert decay(timedelta(hours=-5), 72) == 1.0


def test_scores_are_deterministic_and_bounded(clock):
    now = clock()
    entries = [entry(now, AuditResult.ALLOWED, age_hours=h) for h in range(10)]
    entries.append(entry(now, AuditResult.BLOCKED, age_hours=1))
    first = compute_trust_scores(entries, [], now=now)
    second = compute_trust_scores(list(entries), [], now=now)
    assert first == second
    assert 0.0 < first[0].score < 1.0


def test_more_recent_bad_events_lower_the_score(clock):
    now = clock()
    good = [entry(now, AuditResult.ALLOWED, age_hours=h) for h in range(5)]
    one_bad = compute_trust_scores(good + [entry(now, AuditResult.BLOCKED)], [], now=now)
    two_bad = compute_trust_scores(
        good + [entry(now, AuditResult.BLOCKED), entry(now, AuditResult.DENIED)], [], now=now
    )
    assert two_bad[0].score < one_bad[0].score


def test_recent_bad_event_weighs_more_than_old_one(clock):
    now = clock()
    good = [entry(now, AuditResult.ALLOWED, age_hours=h) for h in range(5)]
    recent = compute_trust_scores(good + [entry(now, AuditResult.BLOCKED, age_hours=1)], [], now=now)
    old = compute_trust_scores(good + [entry(now, AuditResult.BLOCKED, age_hours=100)], [], now=now)
    assert recent[0].score < old[0].score


def test_anomalies_lower_the_score_by_severity(clock):
    now = clock()
    good = [entry(now, AuditResult.ALLOWED)]
    low = compute_trust_scores(good, [anomaly(now, Severity.LOW)], now=now)
    critical = compute_trust_scores(good, [anomaly(now, Severity.CRITICAL)], now=now)
    assert critical[0].score < low[0].score
    assert critical[0].anomalies == 1
    assert critical[0].last_incident_at == now
    assert low[0].last_incident_at is None


def test_subject_prefers_agent_id_and_skips_markers(clock):
    now = clock()
    entries = [
        entry(now, AuditResult.ALLOWED, source="svc", agent_id="bot-1"),
        entry(now, AuditResult.ALLOWED, source="svc"),
        entry(now, AuditResult.BLOCKED, source="svc", agent_id="bot-1", approval_id="approval-1"),
        entry(now, AuditResult.ALLOWED, source="dashboard", category="governance", action="pause"),
        entry(now, AuditResult.ALLOWED, source="svc", age_hours=200),
    ]
    scores = compute_trust_scores(entries, [], now=now)
    assert [s.subject_id for s in scores] == ["bot-1", "svc"]
    assert score_for(scores, "bot-1").sample_size == 1
    assert score_for(scores, "bot-1").blocked == 0


def test_pause_blocks_do_not_lower_the_score(clock):
    now = clock()
    entries = [entry(now, AuditResult.ALLOWED)]
    paused = entries + [entry(now, AuditResult.BLOCKED, reason=PAUSED_REASON, age_hours=h) for h in range(1, 4)]
    assert compute_trust_scores(paused, [], now=now) == compute_trust_scores(entries, [], now=now)


def test_auto_approval_requires_history_threshold_and_no_recent_incident(clock):
    now = clock()
    clean = compute_trust_scores([entry(now, AuditResult.ALLOWED, age_hours=h) for h in range(10)], [], now=now)[0]
    assert qualifies_for_auto_approval(clean, 0.8, now) is True
    assert qualifies_for_auto_approval(clean, 0.99, now) is False
    assert qualifies_for_auto_approval(None, 0.1, now) is False

    incident = compute_trust_scores(
        [entry(now, AuditResult.ALLOWED, age_hours=h) for h in range(30)]
        + [entry(now, AuditResult.BLOCKED, age_hours=2)],
        [],
        now=now,
    )[0]
    assert qualifies_for_auto_approval(incident, 0.5, now) is False
    assert qualifies_for_auto_approval(incident, 0.5, now + timedelta(hours=21)) is False
    assert qualifies_for_auto_approval(incident, 0.5, now + timedelta(hours=22, minutes=1)) is True
