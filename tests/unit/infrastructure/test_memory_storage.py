"""InMemoryStorage: streams keep order, collections are keyed, records are copied in and out."""

from opsguard.infrastructure.storage.memory import InMemoryStorage


async def test_stream_append_preserves_order():
    s = InMemoryStorage()
    await s.append("audit-chain", {"n": 1})
    await s.append("audit-chain", {"n": 2})
    assert [r["n"] for r in await s.read_all("audit-chain")] == [1, 2]
    assert await s.read_all("other") == []


async def test_collection_put_get_delete_list():
    s = InMemoryStorage()
    await s.put("approvals", "a1", {"id": "a1", "status": "pending"})
    await s.put("approvals", "a1", {"id": "a1", "status": "approved"})
    assert (await s.get("approvals", "a1"))["status"] == "approved"
    assert len(await s.list("approvals")) == 1
    assert await s.delete("approvals", "a1") is True
    assert await s.delete("approvals", "a1") is False
    assert await s.get("approvals", "a1") is None


async def test_records_are_isolated_from_caller_mutation():
    s = InMemoryStorage()
    record = {"payload": {"x": 1}}
    await s.append("stream", record)
    record["payload"]["x"] = 99
    read = await s.read_all("stream")
    read[0]["payload"]["x"] = 42
    assert (await s.read_all("stream"))[0]["payload"]["x"] == 1
