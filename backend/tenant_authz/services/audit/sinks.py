"""
Audit Sinks

Storage backends for the authorization audit trail. Sinks only ever append;
no sink exposes update or delete. Every read is scoped to a single tenant.
"""

import logging
import threading
from typing import Callable, List, Optional, Protocol, Tuple

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...database import AuditLogRecord
from ...models.authorization_models import AuditLogEntry, AuditLogFilter, DecisionOutcome
from ...utils.logging_security import sanitize_error_message_for_log
from ..authorization.exceptions import AuditSinkFailure

logger = logging.getLogger(__name__)


class AuditSink(Protocol):
    def write(self, entry: AuditLogEntry) -> None:
        ...

    def query(
        self, tenant_id: str, filters: AuditLogFilter, offset: int, limit: int
    ) -> Tuple[List[AuditLogEntry], int]:
        ...

    def entries(self, tenant_id: str, filters: AuditLogFilter) -> List[AuditLogEntry]:
        ...

    def get(self, tenant_id: str, entry_id: str) -> Optional[AuditLogEntry]:
        ...


def _newest_first(entry: AuditLogEntry):
    return (entry.timestamp, entry.id)


def _detached(entry: AuditLogEntry) -> AuditLogEntry:
    return entry.model_copy(deep=True)


class InMemoryAuditSink:
    """
    Append-only list of entries, used by tests and single-process embedders.

    Entries are deep-copied on the way in and on the way out, so neither the
    writer nor a reader can reach the stored context or condition results.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: List[AuditLogEntry] = []

    def write(self, entry: AuditLogEntry) -> None:
        stored = _detached(entry)
        with self._lock:
            self._entries.append(stored)

    def entries(self, tenant_id: str, filters: Optional[AuditLogFilter] = None) -> List[AuditLogEntry]:
        filters = filters or AuditLogFilter()
        with self._lock:
            selected = [e for e in self._entries if e.tenant_id == tenant_id and filters.matches(e)]
        return [_detached(e) for e in sorted(selected, key=_newest_first, reverse=True)]

    def query(
        self, tenant_id: str, filters: AuditLogFilter, offset: int, limit: int
    ) -> Tuple[List[AuditLogEntry], int]:
        selected = self.entries(tenant_id, filters)
        return selected[offset : offset + limit], len(selected)

    def get(self, tenant_id: str, entry_id: str) -> Optional[AuditLogEntry]:
        with self._lock:
            for entry in self._entries:
                if entry.id == entry_id and entry.tenant_id == tenant_id:
                    return _detached(entry)
        return None

    def all_entries(self) -> List[AuditLogEntry]:
        """Every stored entry across tenants, in write order"""
        with self._lock:
            return [_detached(e) for e in self._entries]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class SqlAuditSink:
    """Audit trail stored in the permission_audit_logs table"""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def write(self, entry: AuditLogEntry) -> None:
        with self.session_factory() as db:
            try:
                db.add(
                    AuditLogRecord(
                        id=entry.id,
                        tenant_id=entry.tenant_id,
                        actor_id=entry.actor_id,
                        resource_type=entry.resource_type,
                        resource_id=entry.resource_id,
                        action=entry.action,
                        permitted=entry.permitted,
                        outcome=entry.outcome.value,
                        reason=entry.reason,
                        conditions_checked=entry.conditions_checked,
                        context=entry.context,
                        role_key=entry.role_key,
                        ip_address=entry.ip_address,
                        user_agent=entry.user_agent,
                        timestamp=entry.timestamp,
                    )
                )
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise AuditSinkFailure(
                    f"Failed to store audit entry: {sanitize_error_message_for_log(e)}", entry_id=entry.id
                ) from e

    def _filtered(self, db: Session, tenant_id: str, filters: AuditLogFilter):
        query = db.query(AuditLogRecord).filter(AuditLogRecord.tenant_id == tenant_id)
        if filters.actor_id is not None:
            query = query.filter(AuditLogRecord.actor_id == filters.actor_id)
        if filters.action is not None:
            query = query.filter(AuditLogRecord.action == filters.action)
        if filters.resource_type is not None:
            query = query.filter(AuditLogRecord.resource_type == filters.resource_type)
        if filters.permitted is not None:
            query = query.filter(AuditLogRecord.permitted == filters.permitted)
        if filters.date_from is not None:
            query = query.filter(AuditLogRecord.timestamp >= filters.date_from)
        if filters.date_to is not None:
            query = query.filter(AuditLogRecord.timestamp <= filters.date_to)
        return query

    def query(
        self, tenant_id: str, filters: AuditLogFilter, offset: int, limit: int
    ) -> Tuple[List[AuditLogEntry], int]:
        with self.session_factory() as db:
            base = self._filtered(db, tenant_id, filters)
            total = base.with_entities(func.count(AuditLogRecord.id)).scalar() or 0
            records = (
                base.order_by(AuditLogRecord.timestamp.desc(), AuditLogRecord.id.desc())
                .offset(offset)
                .limit(limit)
                .all()
            )
            return [self._to_entry(record) for record in records], total

    def entries(self, tenant_id: str, filters: Optional[AuditLogFilter] = None) -> List[AuditLogEntry]:
        with self.session_factory() as db:
            records = (
                self._filtered(db, tenant_id, filters or AuditLogFilter())
                .order_by(AuditLogRecord.timestamp.desc(), AuditLogRecord.id.desc())
                .all()
            )
            return [self._to_entry(record) for record in records]

    def get(self, tenant_id: str, entry_id: str) -> Optional[AuditLogEntry]:
        with self.session_factory() as db:
            record = (
                db.query(AuditLogRecord)
                .filter(AuditLogRecord.tenant_id == tenant_id, AuditLogRecord.id == entry_id)
                .first()
            )
            return self._to_entry(record) if record else None

    @staticmethod
    def _to_entry(record: AuditLogRecord) -> AuditLogEntry:
        return AuditLogEntry(
            id=record.id,
            actor_id=record.actor_id,
            tenant_id=record.tenant_id,
            resource_type=record.resource_type,
            resource_id=record.resource_id,
            action=record.action,
            permitted=bool(record.permitted),
            outcome=DecisionOutcome(record.outcome),
            reason=record.reason,
            conditions_checked=record.conditions_checked or [],
            context=record.context or {},
            role_key=record.role_key,
            ip_address=record.ip_address,
            user_agent=record.user_agent,
            timestamp=record.timestamp,
        )
