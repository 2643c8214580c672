"""File-backed StorageBackend.

Streams are JSONL files appended with flush + fsync, so an append that returns
has reached the disk. Collections are single JSON documents replaced
atomically (temp file, fsync, os.replace). Blocking I/O runs in a worker thread.
"""

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional

from opsguard.infrastructure.storage.interface import (
    CorruptRecordError,
    Record,
    StorageError,
)

logger = logging.getLogger(__name__)

TAIL_CHUNK = 4096


class FileStorage:
    """Durable storage rooted at a directory. One file per stream or collection."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock(self, name: str) -> asyncio.Lock:
        if name not in self._locks:
            self._locks[name] = asyncio.Lock()
        return self._locks[name]

    def _stream_path(self, stream: str) -> Path:
        return self._root / f"{stream}.jsonl"

    def _collection_path(self, collection: str) -> Path:
        return self._root / f"{collection}.json"

    # --- streams ---

    async def append(self, stream: str, record: Record) -> None:
        line = json.dumps(record, sort_keys=True, separators=(",", ":"))
        async with self._lock(f"stream:{stream}"):
            await asyncio.to_thread(self._append_line, self._stream_path(stream), line)

    def _append_line(self, path: Path, line: str) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "a+b") as handle:
                self._drop_torn_tail(handle, path)
                handle.write((line + "\n").encode("utf-8"))
                handle.flush()
                os.fsync(handle.fileno())
        except OSError as e:
            raise StorageError(f"Append to {path.name} failed: {e.strerror}") from e

    @staticmethod
    def _drop_torn_tail(handle: BinaryIO, path: Path) -> None:
        """Truncate bytes after the last newline, left by an append that never completed."""
        size = handle.seek(0, os.SEEK_END)
        end = size
        while end > 0:
            start = max(0, end - TAIL_CHUNK)
            handle.seek(start)
            chunk = handle.read(end - start)
            newline = chunk.rfind(b"\n")
            if newline != -1:
                end = start + newline + 1
                break
            end = start
        if end == size:
            return
        handle.truncate(end)
        logger.warning(
            "torn_stream_tail_dropped",
            extra={"stream_file": path.name, "dropped_bytes": size - end},
        )

    async def read_all(self, stream: str) -> List[Record]:
        return await asyncio.to_thread(self._read_lines, self._stream_path(stream))

    def _read_lines(self, path: Path) -> List[Record]:
        if not path.exists():
            return []
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise StorageError(f"Read of {path.name} failed: {e.strerror}") from e
        lines = text.split("\n")
        # Anything after the last newline is an append still in flight.
        complete = lines[:-1]
        records: List[Record] = []
        for position, line in enumerate(c for c in complete if c.strip()):
            try:
                records.append(json.loads(line))
            except json.JSONDecodeError as e:
                raise CorruptRecordError(
                    f"Undecodable record in {path.name}", position=position
                ) from e
        return records

    # --- collections ---

    async def get(self, collection: str, record_id: str) -> Optional[Record]:
        data = await asyncio.to_thread(self._load, self._collection_path(collection))
        return data.get(record_id)

    async def put(self, collection: str, record_id: str, record: Record) -> None:
        path = self._collection_path(collection)
        async with self._lock(f"collection:{collection}"):
            data = await asyncio.to_thread(self._load, path)
            data[record_id] = record
            await asyncio.to_thread(self._replace, path, data)

    async def delete(self, collection: str, record_id: str) -> bool:
        path = self._collection_path(collection)
        async with self._lock(f"collection:{collection}"):
            data = await asyncio.to_thread(self._load, path)
            if record_id not in data:
                return False
            del data[record_id]
            await asyncio.to_thread(self._replace, path, data)
            return True

    async def list(self, collection: str) -> List[Record]:
        data = await asyncio.to_thread(self._load, self._collection_path(collection))
        return list(data.values())

    def _load(self, path: Path) -> Dict[str, Record]:
        if not path.exists():
            return {}
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except OSError as e:
            raise StorageError(f"Read of {path.name} failed: {e.strerror}") from e
        except json.JSONDecodeError as e:
            raise StorageError(f"Collection file {path.name} is not valid JSON") from e

    def _replace(self, path: Path, data: Dict[str, Record]) -> None:
        tmp_path: Optional[Path] = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=path.parent,
                prefix=f".{path.name}.",
                delete=False,
            ) as handle:
                tmp_path = Path(handle.name)
                json.dump(data, handle, sort_keys=True)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, path)
        except OSError as e:
            if tmp_path is not None and tmp_path.exists():
                tmp_path.unlink()
            raise StorageError(f"Write of {path.name} failed: {e.strerror}") from e
