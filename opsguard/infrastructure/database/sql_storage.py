"""SQLAlchemy-backed StorageBackend. Each write commits before returning."""

import asyncio
from typing import Dict, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from opsguard.infrastructure.database.models import KvRecord, LedgerRecord
from opsguard.infrastructure.storage.interface import Record, StorageError


class SqlStorage:
    """
    Implements StorageBackend over the ledger_records and kv_records tables.
    Positions are computed per stream, so appends to one stream are serialized
    in-process; a single writer process owns the database.
    """

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
        self._sessionmaker = sessionmaker
        self._stream_locks: Dict[str, asyncio.Lock] = {}

    def _stream_lock(self, stream: str) -> asyncio.Lock:
        if stream not in self._stream_locks:
            self._stream_locks[stream] = asyncio.Lock()
        return self._stream_locks[stream]

    async def append(self, stream: str, record: Record) -> None:
        try:
            async with self._stream_lock(stream), self._sessionmaker() as session:
                stmt = select(func.coalesce(func.max(LedgerRecord.position), -1)).where(
                    LedgerRecord.stream == stream
                )
                last = (await session.execute(stmt)).scalar_one()
                session.add(LedgerRecord(stream=stream, position=last + 1, body=record))
                await session.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"Append to stream {stream} failed") from e

    async def read_all(self, stream: str) -> List[Record]:
        try:
            async with self._sessionmaker() as session:
                stmt = (
                    select(LedgerRecord.body)
                    .where(LedgerRecord.stream == stream)
                    .order_by(LedgerRecord.position)
                )
                result = await session.execute(stmt)
                return [dict(body) for body in result.scalars().all()]
        except SQLAlchemyError as e:
            raise StorageError(f"Read of stream {stream} failed") from e

    async def get(self, collection: str, record_id: str) -> Optional[Record]:
        try:
            async with self._sessionmaker() as session:
                orm = await session.get(KvRecord, (collection, record_id))
                return dict(orm.body) if orm is not None else None
        except SQLAlchemyError as e:
            raise StorageError(f"Read from {collection} failed") from e

    async def put(self, collection: str, record_id: str, record: Record) -> None:
        try:
            async with self._sessionmaker() as session:
                await session.merge(
                    KvRecord(collection=collection, record_id=record_id, body=record)
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"Write to {collection} failed") from e

    async def delete(self, collection: str, record_id: str) -> bool:
        try:
            async with self._sessionmaker() as session:
                stmt = delete(KvRecord).where(
                    KvRecord.collection == collection,
                    KvRecord.record_id == record_id,
                )
                result = await session.execute(stmt)
                await session.commit()
                return result.rowcount > 0
        except SQLAlchemyError as e:
            raise StorageError(f"Delete from {collection} failed") from e

    async def list(self, collection: str) -> List[Record]:
        try:
            async with self._sessionmaker() as session:
                stmt = (
                    select(KvRecord.body)
                    .where(KvRecord.collection == collection)
                    .order_by(KvRecord.record_id)
                )
                result = await session.execute(stmt)
                return [dict(body) for body in result.scalars().all()]
        except SQLAlchemyError as e:
            raise StorageError(f"Read of {collection} failed") from e
