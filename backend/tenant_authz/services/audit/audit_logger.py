"""
Audit Logger

Receives one entry per authorization decision and hands it to a sink. Writes
go through a single background writer so a slow sink never delays a decision;
the pending count is bounded and entries beyond it are dropped and logged.
``record`` never raises: a failing sink is logged and the decision stands.

Reporting (query, export, summary) is always scoped to one tenant.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Optional

from ...models.authorization_models import AuditLogEntry, AuditLogFilter, AuditLogPage, AuditSummary
from ...utils.logging_security import sanitize_error_message_for_log, sanitize_id_for_log
from ..authorization.exceptions import AuditSinkFailure
from .export import export_csv, summarize
from .sinks import AuditSink

logger = logging.getLogger(__name__)


class AuditLogger:
    """
    Append-only audit trail writer.

    Args:
        sink: Storage backend (InMemoryAuditSink, SqlAuditSink)
        async_writes: Hand writes to a background thread (default) or write inline
        max_pending: Pending background writes before new entries are dropped
        flush_timeout: Seconds flush() and close() wait for pending writes
        default_page_size: Page size used by query() when none is given
        max_page_size: Upper bound on the page size accepted by query()
    """

    def __init__(
        self,
        sink: AuditSink,
        async_writes: bool = True,
        max_pending: int = 10000,
        flush_timeout: float = 5.0,
        default_page_size: int = 50,
        max_page_size: int = 500,
    ):
        self.sink = sink
        self.async_writes = async_writes
        self.max_pending = max_pending
        self.flush_timeout = flush_timeout
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size

        self._lock = threading.Lock()
        self._pending = 0
        self._dropped = 0
        self._failed = 0
        self._closed = False
        self._executor = (
            ThreadPoolExecutor(max_workers=1, thread_name_prefix="audit-writer") if async_writes else None
        )

    # Writing

    def record(self, entry: AuditLogEntry) -> bool:
        """
        Accept an entry for storage.

        Returns:
            bool: False when the entry was dropped because the writer is saturated
        """
        try:
            if self._executor is None or self._closed:
                self._write(entry)
                return True

            with self._lock:
                if self._pending >= self.max_pending:
                    self._dropped += 1
                    logger.error(
                        f"Audit writer saturated ({self._pending} pending), dropped entry {entry.id} "
                        f"for tenant {sanitize_id_for_log(entry.tenant_id)}"
                    )
                    return False
                self._pending += 1

            try:
                self._executor.submit(self._write_pending, entry)
            except RuntimeError:
                # Executor shut down between the closed check and submit
                with self._lock:
                    self._pending -= 1
                self._write(entry)
            return True

        except Exception as e:
            logger.error(f"Failed to record audit entry: {sanitize_error_message_for_log(e)}")
            return False

    def _write_pending(self, entry: AuditLogEntry) -> None:
        try:
            self._write(entry)
        finally:
            with self._lock:
                self._pending -= 1

    def _write(self, entry: AuditLogEntry) -> None:
        try:
            self.sink.write(entry)
        except AuditSinkFailure as e:
            self._count_failure()
            logger.error(f"Audit sink rejected entry {e.entry_id or entry.id}: {sanitize_error_message_for_log(e)}")
        except Exception as e:
            self._count_failure()
            logger.error(
                f"Audit sink error for entry {entry.id}: {type(e).__name__}: {sanitize_error_message_for_log(e)}"
            )

    def _count_failure(self) -> None:
        with self._lock:
            self._failed += 1

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait for every entry accepted so far to reach the sink"""
        if self._executor is None or self._closed:
            return True
        try:
            # Single worker: the marker runs after everything queued before it
            self._executor.submit(lambda: None).result(timeout=timeout or self.flush_timeout)
            return True
        except FutureTimeoutError:
            logger.warning(f"Audit flush timed out with {self._pending} pending writes")
            return False
        except RuntimeError:
            return True

    def close(self) -> None:
        """Flush pending writes and stop the background writer"""
        if self._closed:
            return
        self.flush()
        self._closed = True
        if self._executor is not None:
            self._executor.shutdown(wait=True)
        logger.info(f"Audit logger closed ({self._dropped} dropped, {self._failed} failed writes)")

    @property
    def pending(self) -> int:
        return self._pending

    @property
    def dropped(self) -> int:
        return self._dropped

    @property
    def failed(self) -> int:
        return self._failed

    # Reporting

    def query(
        self,
        tenant_id: str,
        filters: Optional[AuditLogFilter] = None,
        page: int = 1,
        per_page: Optional[int] = None,
    ) -> AuditLogPage:
        """Page through a tenant's audit trail, newest first"""
        self.flush()
        filters = filters or AuditLogFilter()
        page = max(1, int(page or 1))
        per_page = min(max(1, int(per_page or self.default_page_size)), self.max_page_size)

        entries, total = self.sink.query(tenant_id, filters, (page - 1) * per_page, per_page)
        return AuditLogPage(entries=entries, total=total, page=page, per_page=per_page)

    def get(self, tenant_id: str, entry_id: str) -> Optional[AuditLogEntry]:
        self.flush()
        return self.sink.get(tenant_id, entry_id)

    def export_csv(self, tenant_id: str, filters: Optional[AuditLogFilter] = None) -> str:
        self.flush()
        return export_csv(self.sink.entries(tenant_id, filters or AuditLogFilter()))

    def summary(self, tenant_id: str, filters: Optional[AuditLogFilter] = None) -> AuditSummary:
        self.flush()
        return summarize(self.sink.entries(tenant_id, filters or AuditLogFilter()))
