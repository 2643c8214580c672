"""
Immutable audit ledger: hash-chained, append-only, tamper-detectable.

Appends are serialized by a lock dedicated to the append path, so sequence
numbers are gap-free and no two writers ever chain onto the same head.
Readers work on a snapshot bounded by the last committed sequence and never
see an entry that is still being written.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from opsguard.core.clock import Clock, utc_now
from opsguard.governance.audit_models import (
    GENESIS_HASH,
    ChainVerification,
    ImmutableAuditEntry,
    LedgerStats,
)
from opsguard.governance.exceptions import ChainIntegrityError
from opsguard.infrastructure.storage.interface import CorruptRecordError, StorageBackend

logger = logging.getLogger(__name__)

LEDGER_STREAM = "audit-chain"


class ImmutableAuditLog:
    """Single-writer hash chain over a StorageBackend stream. The only write is append."""

    def __init__(
        self,
        storage: StorageBackend,
        clock: Clock = utc_now,
        stream: str = LEDGER_STREAM,
    ) -> None:
        self._storage = storage
        self._clock = clock
        self._stream = stream
        self._append_lock = asyncio.Lock()
        self._head: Optional[ImmutableAuditEntry] = None
        self._head_loaded = False

    async def _load_head(self) -> Optional[ImmutableAuditEntry]:
        if not self._head_loaded:
            records = await self._storage.read_all(self._stream)
            self._head = ImmutableAuditEntry.from_dict(records[-1]) if records else None
            self._head_loaded = True
        return self._head

    def _committed_count(self) -> Optional[int]:
        """Number of entries this process has confirmed, or None before the head is known."""
        if not self._head_loaded:
            return None
        return 0 if self._head is None else self._head.sequence + 1

    async def append(self, event: str, payload: Dict[str, Any]) -> ImmutableAuditEntry:
        """Append one entry chained to the current head. Durable before return."""
        async with self._append_lock:
            try:
                head = await self._load_head()
                entry = ImmutableAuditEntry.create(
                    sequence=0 if head is None else head.sequence + 1,
                    timestamp=self._clock().isoformat(),
                    payload={"event": event, **payload},
                    prev_hash=GENESIS_HASH if head is None else head.hash,
                )
                await self._storage.append(self._stream, entry.to_dict())
            except Exception:
                # The medium may hold a partial write; re-read the head before chaining again.
                self._head_loaded = False
                raise
            self._head = entry
            return entry

    async def _snapshot(self) -> List[Dict[str, Any]]:
        committed = self._committed_count()
        records = await self._storage.read_all(self._stream)
        if committed is not None and len(records) > committed:
            records = records[:committed]
        return records

    async def verify_chain(self) -> ChainVerification:
        """Recompute every hash from genesis. The first mismatch is reported as broken_at_sequence."""
        committed = self._committed_count()
        try:
            records = await self._snapshot()
        except CorruptRecordError as e:
            return self._broken(committed or e.position + 1, e.position, "entry undecodable")

        prev_hash = GENESIS_HASH
        for index, record in enumerate(records):
            try:
                entry = ImmutableAuditEntry.from_dict(record)
            except (KeyError, TypeError, ValueError):
                return self._broken(len(records), index, "entry malformed")
            if entry.sequence != index:
                return self._broken(
                    len(records), index, f"expected sequence {index}, got {entry.sequence}"
                )
            if entry.prev_hash != prev_hash:
                return self._broken(len(records), index, "prev_hash mismatch")
            if entry.recompute_hash() != entry.hash:
                return self._broken(len(records), index, "hash mismatch: entry tampered")
            prev_hash = entry.hash

        if committed is not None and len(records) < committed:
            return self._broken(committed, len(records), "committed entries missing")
        return ChainVerification(valid=True, entries=len(records))

    def _broken(self, entries: int, sequence: int, reason: str) -> ChainVerification:
        logger.critical(
            "audit_chain_broken",
            extra={"broken_at_sequence": sequence, "reason": reason},
        )
        return ChainVerification(
            valid=False,
            entries=entries,
            broken_at_sequence=sequence,
            reason=reason,
        )

    async def ensure_intact(self) -> ChainVerification:
        """Verify and raise ChainIntegrityError when the chain is broken."""
        verification = await self.verify_chain()
        if not verification.valid:
            raise ChainIntegrityError(
                f"Audit chain broken at sequence {verification.broken_at_sequence}: "
                f"{verification.reason}",
                broken_at_sequence=verification.broken_at_sequence,
            )
        return verification

    async def read_recent(self, limit: int = 50) -> List[ImmutableAuditEntry]:
        """Most recent entries first."""
        if limit <= 0:
            return []
        records = await self._snapshot()
        return [ImmutableAuditEntry.from_dict(r) for r in reversed(records[-limit:])]

    async def get_stats(self) -> LedgerStats:
        verification = await self.verify_chain()
        try:
            records = await self._snapshot()
        except CorruptRecordError:
            records = []
        cutoff = self._clock() - timedelta(hours=24)
        last_24h = {"allowed": 0, "blocked": 0, "approved": 0, "denied": 0, "expired": 0}
        for record in records:
            try:
                ts = datetime.fromisoformat(record["timestamp"])
                result = record["payload"].get("result")
            except (KeyError, TypeError, ValueError, AttributeError):
                continue
            if ts >= cutoff and result in last_24h:
                last_24h[result] += 1
        return LedgerStats(
            count=len(records),
            first_timestamp=records[0].get("timestamp") if records else None,
            last_timestamp=records[-1].get("timestamp") if records else None,
            chain_valid=verification.valid,
            last_24h=last_24h,
        )
