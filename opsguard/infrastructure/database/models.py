# opsguard/infrastructure/database/models.py

from sqlalchemy import JSON, Column, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.sql import func

from opsguard.infrastructure.database.session import Base


class LedgerRecord(Base):
    """Append-only stream row. (stream, position) is unique; rows are never updated."""

    __tablename__ = "ledger_records"
    __table_args__ = (UniqueConstraint("stream", "position", name="uq_ledger_stream_position"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    stream = Column(String, nullable=False, index=True)
    position = Column(Integer, nullable=False)
    body = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class KvRecord(Base):
    """Keyed collection row (approvals, anomalies, credentials)."""

    __tablename__ = "kv_records"

    collection = Column(String, primary_key=True)
    record_id = Column(String, primary_key=True)
    body = Column(JSON, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
