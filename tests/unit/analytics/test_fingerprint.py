"""Governance fingerprint buckets for one operator."""

from datetime import timedelta

from opsguard.analytics.fingerprint import compute_fingerprint
from opsguard.domain.models.operation import AuditResult, Operation
from opsguard.governance.audit_models import AuditEntry


def resolution(ts, result, operator="alice", category="write", action="dm", n=0):
    return AuditEntry.for_operation(
        entry_id=f"audit-{n}",
        timestamp=ts,
        result=result,
        operation=Operation(category=category, action=action, source="agent-1"),
        reason=None,
        user_id=operator,
        approval_id=f"approval-{n}",
    )


def hard_block(ts, category="execute", action="shell", n=0):
    return AuditEntry.for_operation(
        entry_id=f"block-{n}",
        timestamp=ts,
        result=AuditResult.BLOCKED,
        operation=Operation(category=category, action=action, source="agent-1"),
        reason=None,
    )


def test_no_activity_is_undetermined(clock):
    fp = compute_fingerprint([], operator_id="alice", now=clock())
    assert fp.style == "undetermined"
    assert fp.focus == "none"
    assert fp.pattern == "sparse"
    assert fp.active_window == "none"


def test_permissive_bursty_morning_operator(clock):
    now = clock()  # 10:00 UTC
    entries = [resolution(now - timedelta(minutes=i), AuditResult.APPROVED, n=i) for i in range(5)]
    fp = compute_fingerprint(entries, operator_id="alice", now=now)
    assert fp.style == "permissive"
    assert fp.pattern == "bursty"
    assert fp.active_window == "morning"
    assert fp.focus == "write"
    assert fp.approved_count == 5


def test_strict_operator_with_blocks(clock):
    now = clock()
    entries = [resolution(now - timedelta(hours=i * 3), AuditResult.DENIED, n=i) for i in range(4)]
    entries += [hard_block(now - timedelta(hours=1), n=i) for i in range(6)]
    fp = compute_fingerprint(entries, operator_id="alice", now=now)
    assert fp.style == "strict"
    assert fp.pattern == "steady"
    assert fp.blocked_count == 6
    assert fp.focus == "execute"
    assert fp.top_blocked_operations[0] == {"operation": "execute:shell", "target": None, "count": 6}


def test_other_operators_are_excluded(clock):
    now = clock()
    entries = [resolution(now, AuditResult.APPROVED, operator="bob", n=i) for i in range(3)]
    entries.append(resolution(now, AuditResult.DENIED, operator="alice", n=9))
    fp = compute_fingerprint(entries, operator_id="alice", now=now)
    assert fp.approved_count == 0
    assert fp.denied_count == 1
    assert fp.style == "strict"
