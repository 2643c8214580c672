"""Anomaly detector: recording defaults, ordering, review flag, recent severity, rate spikes."""

from datetime import timedelta

import pytest

from opsguard.domain.models.operation import Severity
from opsguard.security.anomaly_classifiers import AnomalyAction, AnomalyType
from opsguard.security.anomaly_detector import ANOMALIES_COLLECTION, AnomalyDetector


@pytest.fixture
def detector(storage, clock):
    return AnomalyDetector(storage, clock=clock)


async def _record(detector, severity=Severity.MEDIUM, source="agent-1", **kwargs):
    return await detector.record_event(
        type=AnomalyType.POLICY_VIOLATION,
        severity=severity,
        source=source,
        description="test event",
        **kwargs,
    )


async def test_record_assigns_id_timestamp_and_review_default(detector, clock):
    low = await _record(detector, Severity.LOW)
    medium = await _record(detector, Severity.MEDIUM)
    assert low.id != medium.id
    assert low.timestamp == clock()
    assert low.requires_review is False
    assert medium.requires_review is True
    forced = await _record(detector, Severity.LOW, requires_review=True)
    assert forced.requires_review is True


async def test_events_ascending_and_since_filter(detector, clock):
    first = await _record(detector)
    clock.advance(minutes=10)
    cutoff = clock()
    second = await _record(detector)
    clock.advance(minutes=10)
    third = await _record(detector)

    assert [e.id for e in await detector.get_events()] == [first.id, second.id, third.id]
    assert [e.id for e in await detector.get_events(cutoff)] == [second.id, third.id]


async def test_mark_reviewed_is_one_way(detector, storage):
    event = await _record(detector, Severity.HIGH)
    assert await detector.mark_reviewed(event.id) is True
    assert await detector.mark_reviewed(event.id) is False
    assert await detector.mark_reviewed("anomaly-missing") is False
    assert await detector.get_pending_reviews() == []
    assert (await storage.get(ANOMALIES_COLLECTION, event.id))["requires_review"] is False


async def test_recent_max_severity_by_source_or_agent(detector, clock):
    await _record(detector, Severity.MEDIUM, source="agent-1")
    await _record(detector, Severity.HIGH, source="other", agent_id="bot-7")
    window = timedelta(minutes=15)

    assert await detector.recent_max_severity("agent-1", None, window) == Severity.MEDIUM
    assert await detector.recent_max_severity("agent-1", "bot-7", window) == Severity.HIGH
    assert await detector.recent_max_severity("nobody", None, window) is None
    clock.advance(minutes=16)
    assert await detector.recent_max_severity("agent-1", "bot-7", window) is None


async def test_rate_spike_recorded_above_tolerance(storage, clock):
    detector = AnomalyDetector(storage, clock=clock, rate_baselines={"post": 2}, rate_spike_tolerance=3.0)
    results = [await detector.log_activity("post", "agent-1") for _ in range(7)]

    assert all(r is None for r in results[:6])
    spike = results[6]
    assert spike.type == AnomalyType.RATE_SPIKE
    assert spike.severity == Severity.MEDIUM
    assert spike.action_taken == AnomalyAction.WARNED
    assert spike.context["count"] == 7


async def test_rate_window_slides(storage, clock):
    detector = AnomalyDetector(storage, clock=clock, rate_baselines={"post": 1}, rate_spike_tolerance=1.0)
    assert await detector.log_activity("post", "agent-1") is None
    clock.advance(minutes=61)
    assert await detector.log_activity("post", "agent-1") is None
    assert await detector.log_activity("post", "agent-1") is not None


async def test_idle_activity_windows_are_evicted(storage, clock):
    detector = AnomalyDetector(storage, clock=clock)
    for n in range(20):
        await detector.log_activity("post", f"agent-{n}")
    assert await detector.tracked_activity() == 20

    clock.advance(hours=25)
    await detector.log_activity("post", "agent-new")
    assert await detector.tracked_activity() == 1


async def test_check_helpers_record_findings(detector):
    events = await detector.check_content("please disable sandbox now", "agent-1")
    assert [e.severity for e in events] == [Severity.CRITICAL]
    assert await detector.check_file_access("/home/user/workspace/notes.md", "agent-1") is None
    assert (await detector.check_file_access("/etc/shadow", "agent-1")).severity == Severity.HIGH
    assert await detector.check_network_request("https://api.openai.com/v1", "agent-1") is None

    detector.add_known_domain("example.org")
    assert await detector.check_network_request("https://example.org/x", "agent-1") is None
    assert await detector.count() == 2


async def test_restore_reloads_events(detector, storage, clock):
    event = await _record(detector, Severity.HIGH)
    reloaded = AnomalyDetector(storage, clock=clock)
    assert await reloaded.restore() == 1
    assert (await reloaded.get_events())[0].id == event.id
