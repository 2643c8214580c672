"""Storage protocol. Governance components depend on this; infrastructure implements it.

Two capabilities are enough for the governance core:
- append-only streams (read-all / append), used by the ledger
- keyed collections (get / put / delete / list), used by approvals, anomalies, credentials
"""

from typing import Any, Dict, List, Optional, Protocol

Record = Dict[str, Any]


class StorageError(Exception):
    """Raised when the underlying medium cannot complete a read or write."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class CorruptRecordError(StorageError):
    """Raised when a stored stream record cannot be decoded. position is its 0-based index."""

    def __init__(self, message: str, position: int) -> None:
        self.position = position
        super().__init__(message)


class StorageBackend(Protocol):
    """Durable get/put/append capability. A successful write must be durable on return."""

    async def append(self, stream: str, record: Record) -> None:
        ...

    async def read_all(self, stream: str) -> List[Record]:
        ...

    async def get(self, collection: str, record_id: str) -> Optional[Record]:
        ...

    async def put(self, collection: str, record_id: str, record: Record) -> None:
        ...

    async def delete(self, collection: str, record_id: str) -> bool:
        ...

    async def list(self, collection: str) -> List[Record]:
        ...
