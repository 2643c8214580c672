"""Dual audit writer: query-side AuditEntry first, then the hash-chained ledger. No FastAPI."""

import asyncio
import logging
from typing import Optional

from opsguard.governance.audit_log import AuditLog
from opsguard.governance.audit_models import AuditEntry, ImmutableAuditEntry, LedgerEvent
from opsguard.governance.exceptions import PersistenceDegradedError
from opsguard.governance.immutable_audit import ImmutableAuditLog
from opsguard.governance.state import GovernanceState, PersistenceFailure

logger = logging.getLogger(__name__)


class AuditLogger:
    """
    Writes every governance outcome to both audit views, in that order.
    Each write is bounded by a timeout. A ledger append that times out keeps
    running in the background (shielded) so the chain is never left with a
    half-taken append lock; the caller gets PersistenceDegradedError instead.
    """

    def __init__(
        self,
        audit_log: AuditLog,
        ledger: ImmutableAuditLog,
        timeout_seconds: float = 2.0,
        state: Optional[GovernanceState] = None,
    ) -> None:
        self._audit_log = audit_log
        self._ledger = ledger
        self._timeout = timeout_seconds
        self._state = state

    @property
    def audit_log(self) -> AuditLog:
        return self._audit_log

    @property
    def ledger(self) -> ImmutableAuditLog:
        return self._ledger

    async def record(
        self,
        entry: AuditEntry,
        event: LedgerEvent,
    ) -> ImmutableAuditEntry:
        """Write entry to the query log and the ledger. Raises PersistenceDegradedError on any failure."""
        failures = []
        try:
            await asyncio.wait_for(self._audit_log.append(entry), timeout=self._timeout)
        except asyncio.TimeoutError:
            failures.append("audit log write timed out")
        except Exception as e:
            failures.append(f"audit log write failed ({type(e).__name__})")

        ledger_entry: Optional[ImmutableAuditEntry] = None
        append = asyncio.ensure_future(self._ledger.append(event.value, entry.to_dict()))
        try:
            ledger_entry = await asyncio.wait_for(asyncio.shield(append), timeout=self._timeout)
        except asyncio.TimeoutError:
            append.add_done_callback(_log_late_append)
            failures.append("ledger append timed out")
        except Exception as e:
            failures.append(f"ledger append failed ({type(e).__name__})")

        if failures:
            logger.error(
                "audit_write_degraded",
                extra={
                    "audit_id": entry.id,
                    "operation": entry.operation,
                    "result": entry.result.value,
                    "failures": failures,
                },
            )
            error = PersistenceDegradedError("; ".join(failures))
            if self._state is not None:
                await self._state.record_persistence_failure(
                    PersistenceFailure(
                        timestamp=entry.timestamp,
                        code=error.code,
                        message=error.message,
                    )
                )
            raise error
        return ledger_entry


def _log_late_append(task: "asyncio.Future[ImmutableAuditEntry]") -> None:
    if task.cancelled():
        logger.error("ledger_append_cancelled")
        return
    error = task.exception()
    if error is not None:
        logger.error("ledger_append_failed_late", extra={"error_type": type(error).__name__})
    else:
        logger.warning("ledger_append_completed_late", extra={"sequence": task.result().sequence})
