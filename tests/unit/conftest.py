"""Shared fixtures: controllable clock, in-memory storage, recording release sink, wired service."""

from datetime import datetime, timedelta, timezone

import pytest

from opsguard.application.governance_service import GovernanceService, Storages
from opsguard.config.settings import GovernanceSettings
from opsguard.governance.audit_log import AuditLog
from opsguard.governance.audit_logger import AuditLogger
from opsguard.governance.immutable_audit import ImmutableAuditLog
from opsguard.governance.state import GovernanceState
from opsguard.infrastructure.storage.memory import InMemoryStorage

START = datetime(2026, 1, 15, 10, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingSink:
    def __init__(self):
        self.released = []

    async def release(self, approval) -> None:
        self.released.append(approval)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def ledger_storage():
    return InMemoryStorage()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def state():
    return GovernanceState()


@pytest.fixture
def audit_logger(storage, ledger_storage, clock, state):
    return AuditLogger(
        AuditLog(storage),
        ImmutableAuditLog(ledger_storage, clock=clock),
        timeout_seconds=1.0,
        state=state,
    )


@pytest.fixture
def settings():
    return GovernanceSettings(
        _env_file=None,
        storage_backend="memory",
        vault_kdf_iterations=1000,
    )


@pytest.fixture
async def service(settings, storage, ledger_storage, clock, sink):
    svc = GovernanceService.build(
        settings, Storages(data=storage, ledger=ledger_storage), clock=clock, sink=sink
    )
    await svc.restore()
    return svc
