"""FileStorage: durable JSONL streams, atomic collection files, torn trailing lines ignored."""

import pytest

from opsguard.infrastructure.storage.file_store import FileStorage
from opsguard.infrastructure.storage.interface import CorruptRecordError, StorageError


async def test_stream_survives_new_instance(tmp_path):
    await FileStorage(tmp_path).append("audit-chain", {"sequence": 0})
    await FileStorage(tmp_path).append("audit-chain", {"sequence": 1})
    records = await FileStorage(tmp_path).read_all("audit-chain")
    assert [r["sequence"] for r in records] == [0, 1]


async def test_torn_trailing_line_is_not_read(tmp_path):
    s = FileStorage(tmp_path)
    await s.append("audit-chain", {"sequence": 0})
    with open(tmp_path / "audit-chain.jsonl", "a", encoding="utf-8") as handle:
        handle.write('{"sequence": 1, "payl')
    records = await s.read_all("audit-chain")
    assert records == [{"sequence": 0}]


async def test_corrupt_complete_line_raises_with_position(tmp_path):
    s = FileStorage(tmp_path)
    await s.append("audit-chain", {"sequence": 0})
    with open(tmp_path / "audit-chain.jsonl", "a", encoding="utf-8") as handle:
        handle.write("not json\n")
    with pytest.raises(CorruptRecordError) as exc_info:
        await s.read_all("audit-chain")
    assert exc_info.value.position == 1


async def test_collection_roundtrip_and_delete(tmp_path):
    s = FileStorage(tmp_path)
    await s.put("credentials", "c1", {"id": "c1", "label": "api"})
    await s.put("credentials", "c2", {"id": "c2", "label": "db"})
    assert (await FileStorage(tmp_path).get("credentials", "c1"))["label"] == "api"
    assert await s.delete("credentials", "c1") is True
    assert await s.delete("credentials", "c1") is False
    assert [r["id"] for r in await s.list("credentials")] == ["c2"]
    # No temp files left behind by atomic replacement.
    assert sorted(p.name for p in tmp_path.iterdir()) == ["credentials.json"]


async def test_unreadable_collection_raises_storage_error(tmp_path):
    (tmp_path / "approvals.json").write_text("{broken", encoding="utf-8")
    with pytest.raises(StorageError):
        await FileStorage(tmp_path).list("approvals")


async def test_append_after_torn_tail_truncates_partial_line(tmp_path):
    s = FileStorage(tmp_path)
    await s.append("audit-chain", {"sequence": 0})
    with open(tmp_path / "audit-chain.jsonl", "a", encoding="utf-8") as handle:
        handle.write('{"sequence": 1, "payl')

    await FileStorage(tmp_path).append("audit-chain", {"sequence": 1})

    assert await s.read_all("audit-chain") == [{"sequence": 0}, {"sequence": 1}]
    assert (tmp_path / "audit-chain.jsonl").read_text(encoding="utf-8").endswith("\n")


async def test_append_after_torn_first_line_starts_clean(tmp_path):
    (tmp_path / "audit-chain.jsonl").write_text('{"seq', encoding="utf-8")
    await FileStorage(tmp_path).append("audit-chain", {"sequence": 0})
    assert await FileStorage(tmp_path).read_all("audit-chain") == [{"sequence": 0}]
