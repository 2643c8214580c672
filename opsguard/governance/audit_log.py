"""Query-side audit log: fast, append-only, filterable by time range and result."""

import logging
from collections import deque
from datetime import datetime
from typing import Deque, List, Optional

from opsguard.domain.models.operation import AuditResult
from opsguard.governance.audit_models import AuditEntry
from opsguard.infrastructure.storage.interface import StorageBackend

logger = logging.getLogger(__name__)

AUDIT_ENTRIES_STREAM = "audit-entries"


class AuditLog:
    """
    Bounded in-memory view of recent AuditEntries, optionally written through
    to a storage stream so history survives restarts. Independent from the
    hash-chained ledger; entries are appended in the order they were decided.
    """

    def __init__(
        self,
        storage: Optional[StorageBackend] = None,
        max_entries: int = 10000,
    ) -> None:
        self._storage = storage
        self._entries: Deque[AuditEntry] = deque(maxlen=max_entries)

    async def restore(self) -> int:
        """Load the most recent persisted entries. Returns how many were loaded."""
        if self._storage is None:
            return 0
        records = await self._storage.read_all(AUDIT_ENTRIES_STREAM)
        self._entries.clear()
        for record in records[-(self._entries.maxlen or len(records)):]:
            self._entries.append(AuditEntry.from_dict(record))
        return len(self._entries)

    async def append(self, entry: AuditEntry) -> None:
        """In-memory append never fails; the write-through may raise StorageError."""
        self._entries.append(entry)
        if self._storage is not None:
            await self._storage.append(AUDIT_ENTRIES_STREAM, entry.to_dict())

    def query(
        self,
        *,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        result: Optional[AuditResult] = None,
        user_id: Optional[str] = None,
        agent_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[AuditEntry]:
        """Entries in append order. limit keeps the most recent matches."""
        entries = [
            e
            for e in self._entries
            if (since is None or e.timestamp >= since)
            and (until is None or e.timestamp <= until)
            and (result is None or e.result == result)
            and (user_id is None or e.user_id == user_id)
            and (agent_id is None or e.agent_id == agent_id)
        ]
        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        return entries

    def __len__(self) -> int:
        return len(self._entries)
