"""Shared mutable governance state behind one asyncio.Lock: pause switch, decision counters, degraded-write log."""

import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, List

from opsguard.domain.models.operation import AuditResult, DecisionResult

MAX_RECORDED_FAILURES = 100


@dataclass
class GovernanceCounters:
    total_operations: int = 0
    allowed: int = 0
    blocked: int = 0
    approval_requests: int = 0
    approved: int = 0
    denied: int = 0
    expired: int = 0
    audit_failures: int = 0


@dataclass(frozen=True)
class PersistenceFailure:
    timestamp: datetime
    code: str
    message: str


@dataclass(frozen=True)
class StateSnapshot:
    is_paused: bool
    counters: GovernanceCounters
    recent_failures: List[PersistenceFailure] = field(default_factory=list)


class GovernanceState:
    """
    Owns the pause flag and counters. Every read and write goes through the
    lock, so callers never touch the fields directly. Reads return copies.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._paused = False
        self._counters = GovernanceCounters()
        self._failures: Deque[PersistenceFailure] = deque(maxlen=MAX_RECORDED_FAILURES)

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    async def is_paused(self) -> bool:
        async with self._lock:
            return self._paused

    async def set_paused(self, paused: bool) -> bool:
        """Set the switch. Returns True only when the value actually changed."""
        async with self._lock:
            if self._paused == paused:
                return False
            self._paused = paused
            return True

    async def record_decision(self, result: DecisionResult) -> None:
        async with self._lock:
            self._counters.total_operations += 1
            if result == DecisionResult.ALLOWED:
                self._counters.allowed += 1
            elif result == DecisionResult.BLOCKED:
                self._counters.blocked += 1
            else:
                self._counters.approval_requests += 1

    async def record_resolution(self, result: AuditResult) -> None:
        async with self._lock:
            if result == AuditResult.APPROVED:
                self._counters.approved += 1
            elif result == AuditResult.DENIED:
                self._counters.denied += 1
            elif result == AuditResult.EXPIRED:
                self._counters.expired += 1

    async def record_persistence_failure(self, failure: PersistenceFailure) -> None:
        async with self._lock:
            self._counters.audit_failures += 1
            self._failures.append(failure)

    async def snapshot(self) -> StateSnapshot:
        async with self._lock:
            return StateSnapshot(
                is_paused=self._paused,
                counters=GovernanceCounters(**vars(self._counters)),
                recent_failures=list(self._failures),
            )
