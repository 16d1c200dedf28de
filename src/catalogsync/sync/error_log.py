"""
Sync error classification and the append-only error log.

classify_error() turns any exception into a SyncError. Typed catalog errors
classify exactly; anything else falls back to exception type and then to
message heuristics. Timeouts and transport failures are retryable;
permission, parse and database failures are not.

SyncErrorLog rows are written once and never updated except for the
resolved/retry_count diagnostics fields.
"""
import asyncio
import logging
import traceback
from typing import List, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from catalogsync.catalog.errors import (
    CatalogFetchError,
    CatalogParseError,
    CatalogPermissionError,
    CatalogTimeoutError,
)
from catalogsync.models.sync import SyncErrorLog
from catalogsync.sync.types import ErrorType, SyncError, SyncPhase

logger = logging.getLogger(__name__)

RETRYABLE_TYPES = {ErrorType.TIMEOUT, ErrorType.FETCH}


def _error_type(exc: BaseException) -> ErrorType:
    if isinstance(exc, CatalogTimeoutError):
        return ErrorType.TIMEOUT
    if isinstance(exc, CatalogPermissionError):
        return ErrorType.PERMISSION
    if isinstance(exc, CatalogParseError):
        return ErrorType.PARSE
    if isinstance(exc, CatalogFetchError):
        return ErrorType.FETCH
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return ErrorType.TIMEOUT
    if isinstance(exc, httpx.TransportError):
        return ErrorType.FETCH
    if isinstance(exc, SQLAlchemyError):
        # str() includes the SQL statement; keep it away from the heuristics
        return ErrorType.UNKNOWN
    if isinstance(exc, (ValueError, KeyError, TypeError)):
        return ErrorType.PARSE

    message = str(exc).lower()
    if "timeout" in message or "timed out" in message:
        return ErrorType.TIMEOUT
    if "permission" in message or "403" in message:
        return ErrorType.PERMISSION
    if "network" in message:
        return ErrorType.FETCH
    return ErrorType.UNKNOWN


def classify_error(
    exc: BaseException,
    phase: SyncPhase,
    item_id: Optional[str] = None,
    item_type: Optional[str] = None,
) -> SyncError:
    """Build a SyncError for an exception raised while syncing."""
    error_type = _error_type(exc)
    return SyncError(
        type=error_type,
        message=str(exc) or exc.__class__.__name__,
        phase=phase,
        item_id=item_id,
        item_type=item_type,
        retryable=error_type in RETRYABLE_TYPES,
    )


class ErrorLog:
    """Persists SyncErrors for one tenant and answers diagnostics queries."""

    def __init__(self, engine, tenant_id: str):
        self.engine = engine
        self.tenant_id = tenant_id

    def record(
        self,
        error: SyncError,
        session_id: Optional[str] = None,
        exc: Optional[BaseException] = None,
    ) -> None:
        """
        Append one error. A failure to write is logged, never raised: the
        pass that produced the error must keep going.
        """
        stack = None
        if exc is not None:
            stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        try:
            with Session(self.engine) as s:
                s.add(SyncErrorLog(
                    tenant_id=self.tenant_id,
                    session_id=session_id,
                    error_type=error.type.value,
                    error_message=error.message,
                    error_stack=stack,
                    phase=error.phase.value,
                    item_id=error.item_id,
                    item_type=error.item_type,
                    retryable=error.retryable,
                    created_at=error.timestamp,
                ))
                s.commit()
        except Exception:
            logger.exception("Failed to log sync error for tenant %s", self.tenant_id)

    def recent(self, limit: int = 10) -> List[SyncErrorLog]:
        """Most recent errors first."""
        with Session(self.engine) as s:
            return list(s.exec(
                select(SyncErrorLog)
                .where(SyncErrorLog.tenant_id == self.tenant_id)
                .order_by(SyncErrorLog.created_at.desc(), SyncErrorLog.id.desc())
                .limit(limit)
            ).all())

    def for_session(self, session_id: str) -> List[SyncErrorLog]:
        """All errors of one pass, in the order they were recorded."""
        with Session(self.engine) as s:
            return list(s.exec(
                select(SyncErrorLog)
                .where(
                    SyncErrorLog.tenant_id == self.tenant_id,
                    SyncErrorLog.session_id == session_id,
                )
                .order_by(SyncErrorLog.id)
            ).all())

    def unresolved_retryable(self, limit: int = 100) -> List[SyncErrorLog]:
        """Retryable errors not yet marked resolved, oldest first."""
        with Session(self.engine) as s:
            return list(s.exec(
                select(SyncErrorLog)
                .where(
                    SyncErrorLog.tenant_id == self.tenant_id,
                    SyncErrorLog.retryable == True,  # noqa: E712
                    SyncErrorLog.resolved == False,  # noqa: E712
                )
                .order_by(SyncErrorLog.id)
                .limit(limit)
            ).all())

    def mark_resolved(self, item_ids: List[str]) -> int:
        """
        Mark unresolved errors for the given items as resolved, e.g. after a
        later pass processed them successfully. Returns the rows touched.
        """
        if not item_ids:
            return 0
        with Session(self.engine) as s:
            rows = s.exec(
                select(SyncErrorLog).where(
                    SyncErrorLog.tenant_id == self.tenant_id,
                    SyncErrorLog.resolved == False,  # noqa: E712
                    SyncErrorLog.item_id.in_(item_ids),
                )
            ).all()
            for row in rows:
                row.resolved = True
                row.retry_count += 1
                s.add(row)
            s.commit()
            return len(rows)
