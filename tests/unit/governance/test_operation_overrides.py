"""Override store: validation, most-specific match, expiry, persistence."""

from datetime import timedelta

import pytest

from opsguard.domain.exceptions import ValidationError
from opsguard.governance.operation_overrides import (
    OVERRIDES_COLLECTION,
    OverrideAction,
    OverrideStore,
)


@pytest.fixture
def store(storage, clock):
    return OverrideStore(storage, clock=clock)


async def test_operation_must_be_category_action(store):
    with pytest.raises(ValidationError):
        await store.add(operation="publish", action=OverrideAction.ALLOW)
    with pytest.raises(ValidationError):
        await store.add(operation="post:", action=OverrideAction.ALLOW)


async def test_most_specific_override_wins(store):
    broad = await store.add(operation="write:dm", action=OverrideAction.ASK)
    by_source = await store.add(operation="write:dm", action=OverrideAction.BLOCK, source="agent-2")
    by_target = await store.add(operation="write:dm", action=OverrideAction.ALLOW, target="user-9")

    assert store.resolve("write:dm", "user-9", None, "agent-2").id == by_target.id
    assert store.resolve("write:dm", "user-1", None, "agent-2").id == by_source.id
    assert store.resolve("write:dm", "user-1", None, "agent-3").id == broad.id
    assert store.resolve("post:publish", None, None, "agent-3") is None


async def test_expired_override_is_ignored(store, clock):
    await store.add(
        operation="write:dm",
        action=OverrideAction.ALLOW,
        expires_at=clock() + timedelta(hours=1),
    )
    assert store.resolve("write:dm", None, None) is not None
    clock.advance(hours=2)
    assert store.resolve("write:dm", None, None) is None


async def test_overrides_persist_and_remove(store, storage, clock):
    override = await store.add(operation="write:dm", action=OverrideAction.BLOCK, reason="spam")
    assert (await storage.get(OVERRIDES_COLLECTION, override.id))["reason"] == "spam"

    reloaded = OverrideStore(storage, clock=clock)
    assert await reloaded.restore() == 1
    assert reloaded.list()[0].action == OverrideAction.BLOCK

    assert await reloaded.remove(override.id) is True
    assert await reloaded.remove(override.id) is False
    assert reloaded.list() == []
