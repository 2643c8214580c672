"""In-memory StorageBackend. Process-local; used in tests and the `memory` backend."""

import copy
from typing import Dict, List, Optional

from opsguard.infrastructure.storage.interface import Record


class InMemoryStorage:
    """Dict-backed streams and collections. Records are deep-copied in and out."""

    def __init__(self) -> None:
        self._streams: Dict[str, List[Record]] = {}
        self._collections: Dict[str, Dict[str, Record]] = {}

    async def append(self, stream: str, record: Record) -> None:
        self._streams.setdefault(stream, []).append(copy.deepcopy(record))

    async def read_all(self, stream: str) -> List[Record]:
        return [copy.deepcopy(r) for r in self._streams.get(stream, [])]

    async def get(self, collection: str, record_id: str) -> Optional[Record]:
        record = self._collections.get(collection, {}).get(record_id)
        return copy.deepcopy(record) if record is not None else None

    async def put(self, collection: str, record_id: str, record: Record) -> None:
        self._collections.setdefault(collection, {})[record_id] = copy.deepcopy(record)

    async def delete(self, collection: str, record_id: str) -> bool:
        return self._collections.get(collection, {}).pop(record_id, None) is not None

    async def list(self, collection: str) -> List[Record]:
        return [copy.deepcopy(r) for r in self._collections.get(collection, {}).values()]
