"""Anomaly event store with classification helpers. Events persist through the storage backend."""

import asyncio
import logging
import uuid
from collections import defaultdict, deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Deque, Dict, Iterable, List, Mapping, Optional, Tuple

from opsguard.core.clock import Clock, utc_now
from opsguard.domain.models.operation import Severity
from opsguard.infrastructure.storage.interface import StorageBackend
from opsguard.security.anomaly_classifiers import (
    DEFAULT_KNOWN_DOMAINS,
    DEFAULT_KNOWN_PATHS,
    AnomalyAction,
    AnomalyFinding,
    AnomalyType,
    classify_content,
    classify_file_access,
    classify_network_request,
)
from opsguard.security.content_sanitizer import SanitizationResult

logger = logging.getLogger(__name__)

ANOMALIES_COLLECTION = "anomalies"
ACTIVITY_WINDOW = timedelta(hours=24)
RATE_WINDOW = timedelta(hours=1)

# Expected activity per hour, by operation category.
DEFAULT_RATE_BASELINES: Dict[str, float] = {
    "post": 2,
    "comment": 5,
    "api": 600,
}
DEFAULT_RATE_BASELINE = 10.0


@dataclass(frozen=True)
class AnomalyEvent:
    id: str
    timestamp: datetime
    type: AnomalyType
    severity: Severity
    source: str
    description: str
    action_taken: Optional[AnomalyAction] = None
    requires_review: bool = True
    agent_id: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "type": self.type.value,
            "severity": self.severity.value,
            "source": self.source,
            "description": self.description,
            "action_taken": self.action_taken.value if self.action_taken else None,
            "requires_review": self.requires_review,
            "agent_id": self.agent_id,
            "context": dict(self.context),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AnomalyEvent":
        action = data.get("action_taken")
        return cls(
            id=data["id"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            type=AnomalyType(data["type"]),
            severity=Severity(data["severity"]),
            source=data["source"],
            description=data["description"],
            action_taken=AnomalyAction(action) if action else None,
            requires_review=bool(data.get("requires_review", True)),
            agent_id=data.get("agent_id"),
            context=dict(data.get("context") or {}),
        )


class AnomalyDetector:
    """
    Records classified anomalies and answers "how bad was the recent history
    for this source/agent". Severity is decided by the classifiers or the
    caller; the detector only enforces the review flag: once reviewed, an
    event never goes back to requiring review.
    """

    def __init__(
        self,
        storage: StorageBackend,
        *,
        clock: Clock = utc_now,
        rate_spike_tolerance: float = 3.0,
        rate_baselines: Optional[Mapping[str, float]] = None,
        known_domains: Iterable[str] = DEFAULT_KNOWN_DOMAINS,
        known_paths: Iterable[str] = DEFAULT_KNOWN_PATHS,
    ) -> None:
        self._storage = storage
        self._clock = clock
        self._tolerance = rate_spike_tolerance
        self._baselines = dict(DEFAULT_RATE_BASELINES if rate_baselines is None else rate_baselines)
        self._known_domains = set(known_domains)
        self._known_paths = tuple(known_paths)
        self._events: Dict[str, AnomalyEvent] = {}
        self._activity: Dict[Tuple[str, str], Deque[datetime]] = defaultdict(deque)
        self._lock = asyncio.Lock()

    async def restore(self) -> int:
        records = await self._storage.list(ANOMALIES_COLLECTION)
        async with self._lock:
            self._events = {r["id"]: AnomalyEvent.from_dict(r) for r in records}
            return len(self._events)

    async def record_event(
        self,
        *,
        type: AnomalyType,
        severity: Severity,
        source: str,
        description: str,
        action_taken: Optional[AnomalyAction] = None,
        requires_review: Optional[bool] = None,
        agent_id: Optional[str] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> AnomalyEvent:
        """Assign id and timestamp and persist. requires_review defaults to severity >= MEDIUM."""
        if requires_review is None:
            requires_review = severity.rank >= Severity.MEDIUM.rank
        event = AnomalyEvent(
            id=f"anomaly-{uuid.uuid4().hex[:12]}",
            timestamp=self._clock(),
            type=type,
            severity=severity,
            source=source,
            description=description,
            action_taken=action_taken,
            requires_review=requires_review,
            agent_id=agent_id,
            context=dict(context or {}),
        )
        async with self._lock:
            self._events[event.id] = event
        await self._persist(event)
        log = logger.warning if severity.rank >= Severity.HIGH.rank else logger.info
        log(
            "anomaly_recorded",
            extra={
                "anomaly_id": event.id,
                "anomaly_type": type.value,
                "severity": severity.value,
                "source": source,
            },
        )
        return event

    async def record_finding(
        self,
        finding: AnomalyFinding,
        source: str,
        agent_id: Optional[str] = None,
    ) -> AnomalyEvent:
        return await self.record_event(
            type=finding.type,
            severity=finding.severity,
            source=source,
            description=finding.description,
            action_taken=finding.action,
            agent_id=agent_id,
            context=finding.context,
        )

    async def get_events(self, since: Optional[datetime] = None) -> List[AnomalyEvent]:
        """Ascending by timestamp; with since, only events at or after it."""
        async with self._lock:
            events = list(self._events.values())
        if since is not None:
            events = [e for e in events if e.timestamp >= since]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_pending_reviews(self) -> List[AnomalyEvent]:
        return [e for e in await self.get_events() if e.requires_review]

    async def mark_reviewed(self, anomaly_id: str) -> bool:
        """False if unknown or already reviewed."""
        async with self._lock:
            event = self._events.get(anomaly_id)
            if event is None or not event.requires_review:
                return False
            reviewed = replace(event, requires_review=False)
            self._events[anomaly_id] = reviewed
        await self._persist(reviewed)
        logger.info("anomaly_reviewed", extra={"anomaly_id": anomaly_id})
        return True

    async def count(self) -> int:
        async with self._lock:
            return len(self._events)

    async def recent_max_severity(
        self,
        source: str,
        agent_id: Optional[str],
        window: timedelta,
    ) -> Optional[Severity]:
        """Highest severity recorded for this source or agent within the window, or None."""
        cutoff = self._clock() - window
        async with self._lock:
            matching = [
                e.severity
                for e in self._events.values()
                if e.timestamp >= cutoff
                and (e.source == source or (agent_id is not None and e.agent_id == agent_id))
            ]
        if not matching:
            return None
        return max(matching, key=lambda s: s.rank)

    async def check_content(
        self,
        content: str,
        source: str,
        agent_id: Optional[str] = None,
        sanitization: Optional[SanitizationResult] = None,
    ) -> List[AnomalyEvent]:
        return [
            await self.record_finding(f, source, agent_id)
            for f in classify_content(content, sanitization)
        ]

    async def check_file_access(
        self, file_path: str, source: str, agent_id: Optional[str] = None
    ) -> Optional[AnomalyEvent]:
        finding = classify_file_access(file_path, self._known_paths)
        if finding is None:
            return None
        return await self.record_finding(finding, source, agent_id)

    async def check_network_request(
        self,
        url: str,
        source: str,
        method: str = "GET",
        agent_id: Optional[str] = None,
    ) -> Optional[AnomalyEvent]:
        finding = classify_network_request(url, method, self._known_domains)
        if finding is None:
            return None
        return await self.record_finding(finding, source, agent_id)

    async def log_activity(
        self, activity_type: str, source: str, agent_id: Optional[str] = None
    ) -> Optional[AnomalyEvent]:
        """Count one unit of activity and record a rate spike once the hourly count exceeds baseline * tolerance."""
        now = self._clock()
        baseline = self._baselines.get(activity_type, DEFAULT_RATE_BASELINE)
        async with self._lock:
            timestamps = self._activity[(source, activity_type)]
            timestamps.append(now)
            while timestamps and now - timestamps[0] > ACTIVITY_WINDOW:
                timestamps.popleft()
            recent = sum(1 for t in timestamps if now - t < RATE_WINDOW)
            self._evict_idle_activity(now)
        if recent <= baseline * self._tolerance:
            return None
        return await self.record_event(
            type=AnomalyType.RATE_SPIKE,
            severity=Severity.MEDIUM,
            source=source,
            description=(
                f"Activity rate spike: {recent} {activity_type} operations in the last hour "
                f"(baseline {baseline:g})"
            ),
            action_taken=AnomalyAction.WARNED,
            agent_id=agent_id,
            context={"activity_type": activity_type, "count": recent, "baseline": baseline},
        )

    def _evict_idle_activity(self, now: datetime) -> None:
        """Drop windows with no activity inside ACTIVITY_WINDOW. Caller holds the lock."""
        idle = [
            key
            for key, timestamps in self._activity.items()
            if not timestamps or now - timestamps[-1] > ACTIVITY_WINDOW
        ]
        for key in idle:
            del self._activity[key]

    async def tracked_activity(self) -> int:
        """Number of (source, activity type) windows currently held."""
        async with self._lock:
            return len(self._activity)

    def add_known_domain(self, domain: str) -> None:
        self._known_domains.add(domain)

    async def _persist(self, event: AnomalyEvent) -> None:
        try:
            await self._storage.put(ANOMALIES_COLLECTION, event.id, event.to_dict())
        except Exception as e:
            logger.error(
                "anomaly_persist_failed",
                extra={"anomaly_id": event.id, "error_type": type(e).__name__},
            )
