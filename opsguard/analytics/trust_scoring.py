"""Time-decayed trust scores per subject (agent id, else source) from audit and anomaly history."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from opsguard.domain.models.operation import AuditResult, Severity
from opsguard.governance.audit_models import AuditEntry
from opsguard.security.anomaly_detector import AnomalyEvent

# Bad-event weights relative to one good event.
FAILURE_WEIGHT_MULTIPLIER = 3.0
RESULT_PENALTY = {
    AuditResult.BLOCKED: 1.0,
    AuditResult.DENIED: 2.0,
}
SEVERITY_PENALTY = {
    Severity.LOW: 0.5,
    Severity.MEDIUM: 1.0,
    Severity.HIGH: 2.0,
    Severity.CRITICAL: 3.0,
}
GOOD_RESULTS = frozenset({AuditResult.ALLOWED, AuditResult.APPROVED})
RECENT_INCIDENT_WINDOW = timedelta(hours=24)


@dataclass(frozen=True)
class TrustScoreEntry:
    subject_id: str
    score: float
    sample_window: int
    updated_at: datetime
    sample_size: int
    allowed: int
    blocked: int
    anomalies: int
    last_incident_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subject_id": self.subject_id,
            "score": self.score,
            "sample_window": self.sample_window,
            "updated_at": self.updated_at.isoformat(),
            "sample_size": self.sample_size,
            "allowed": self.allowed,
            "blocked": self.blocked,
            "anomalies": self.anomalies,
            "last_incident_at": self.last_incident_at.isoformat() if self.last_incident_at else None,
        }


def decay(age: timedelta, half_life_hours: float) -> float:
    """1.0 now, 0.5 one half-life ago. Future timestamps count as now."""
    hours = max(age.total_seconds() / 3600.0, 0.0)
    return 0.5 ** (hours / half_life_hours)


def score_from_weights(good: float, bad: float) -> float:
    """Laplace-smoothed ratio in (0, 1); no history scores 0.5."""
    return (good + 1.0) / (good + 1.0 + FAILURE_WEIGHT_MULTIPLIER * bad + 1.0)


def subject_of(agent_id: Optional[str], source: str) -> str:
    return agent_id or source


class _Tally:
    def __init__(self) -> None:
        self.good = 0.0
        self.bad = 0.0
        self.allowed = 0
        self.blocked = 0
        self.anomalies = 0
        self.samples = 0
        self.last_incident_at: Optional[datetime] = None

    def incident(self, at: datetime) -> None:
        if self.last_incident_at is None or at > self.last_incident_at:
            self.last_incident_at = at


def compute_trust_scores(
    entries: Iterable[AuditEntry],
    anomalies: Iterable[AnomalyEvent],
    *,
    now: datetime,
    window_hours: int = 168,
    half_life_hours: float = 72.0,
) -> List[TrustScoreEntry]:
    """
    One entry per subject seen in the window, sorted by subject id.
    Pending-approval markers and control-plane entries carry no signal.
    """
    since = now - timedelta(hours=window_hours)
    tallies: Dict[str, _Tally] = {}

    for entry in entries:
        if (
            entry.timestamp < since
            or entry.is_control_plane
            or entry.awaiting_approval
            or entry.blocked_by_pause
        ):
            continue
        if entry.result == AuditResult.EXPIRED:
            continue
        tally = tallies.setdefault(subject_of(entry.agent_id, entry.source), _Tally())
        weight = decay(now - entry.timestamp, half_life_hours)
        tally.samples += 1
        if entry.result in GOOD_RESULTS:
            tally.good += weight
            tally.allowed += 1
        else:
            tally.bad += weight * RESULT_PENALTY.get(entry.result, 1.0)
            tally.blocked += 1
            tally.incident(entry.timestamp)

    for event in anomalies:
        if event.timestamp < since:
            continue
        tally = tallies.setdefault(subject_of(event.agent_id, event.source), _Tally())
        tally.samples += 1
        tally.anomalies += 1
        tally.bad += decay(now - event.timestamp, half_life_hours) * SEVERITY_PENALTY[event.severity]
        if event.severity.rank >= Severity.HIGH.rank:
            tally.incident(event.timestamp)

    return [
        TrustScoreEntry(
            subject_id=subject,
            score=round(score_from_weights(t.good, t.bad), 4),
            sample_window=window_hours,
            updated_at=now,
            sample_size=t.samples,
            allowed=t.allowed,
            blocked=t.blocked,
            anomalies=t.anomalies,
            last_incident_at=t.last_incident_at,
        )
        for subject, t in sorted(tallies.items())
    ]


def qualifies_for_auto_approval(
    score: Optional[TrustScoreEntry],
    threshold: float,
    now: datetime,
) -> bool:
    """Cold start never qualifies; neither does any incident in the last 24 hours."""
    if score is None or score.allowed == 0:
        return False
    if score.score < threshold:
        return False
    if score.last_incident_at is not None and now - score.last_incident_at < RECENT_INCIDENT_WINDOW:
        return False
    return True
