"""
Unit Tests for AuditLogger

Test Categories:
- Background writes, flush and close
- Bounded pending writes (drop instead of block)
- Sink failures never reach the caller
- Tenant-scoped reporting: pagination, filters, single entry lookup
"""

import threading
from datetime import datetime, timedelta

import pytest

from tenant_authz.models.authorization_models import AuditLogEntry, AuditLogFilter, DecisionOutcome
from tenant_authz.services.audit import AuditLogger, InMemoryAuditSink
from tenant_authz.services.authorization import AuditSinkFailure

BASE_TIME = datetime(2026, 3, 1, 12, 0, 0)


def make_entry(
    tenant_id: str = "acme",
    actor_id: str = "u-1",
    action: str = "read",
    resource_type: str = "task",
    permitted: bool = True,
    minutes: int = 0,
) -> AuditLogEntry:
    return AuditLogEntry(
        actor_id=actor_id,
        tenant_id=tenant_id,
        resource_type=resource_type,
        resource_id="r-1",
        action=action,
        permitted=permitted,
        outcome=DecisionOutcome.PERMITTED if permitted else DecisionOutcome.DENIED,
        reason="granted by task:read" if permitted else "no grant for task:read",
        timestamp=BASE_TIME + timedelta(minutes=minutes),
    )


class BlockingSink(InMemoryAuditSink):
    """Sink whose writes wait until released"""

    def __init__(self):
        super().__init__()
        self.release = threading.Event()

    def write(self, entry):
        self.release.wait(timeout=5)
        super().write(entry)


class FailingSink(InMemoryAuditSink):
    def __init__(self, error: Exception):
        super().__init__()
        self.error = error

    def write(self, entry):
        raise self.error


# =============================================================================
# Writing
# =============================================================================


@pytest.mark.unit
class TestWriting:
    def test_sync_write_is_immediate(self) -> None:
        sink = InMemoryAuditSink()
        audit_logger = AuditLogger(sink, async_writes=False)

        assert audit_logger.record(make_entry()) is True
        assert len(sink) == 1

    def test_async_write_visible_after_flush(self) -> None:
        sink = InMemoryAuditSink()
        audit_logger = AuditLogger(sink)
        try:
            for minute in range(20):
                audit_logger.record(make_entry(minutes=minute))

            assert audit_logger.flush() is True
            assert len(sink) == 20
            assert audit_logger.pending == 0
        finally:
            audit_logger.close()

    def test_saturated_writer_drops(self) -> None:
        sink = BlockingSink()
        audit_logger = AuditLogger(sink, max_pending=2)
        try:
            results = [audit_logger.record(make_entry(minutes=i)) for i in range(4)]

            assert results == [True, True, False, False]
            assert audit_logger.dropped == 2
        finally:
            sink.release.set()
            audit_logger.close()

        assert len(sink) == 2

    def test_close_flushes_and_falls_back_to_inline_writes(self) -> None:
        sink = InMemoryAuditSink()
        audit_logger = AuditLogger(sink)

        audit_logger.record(make_entry())
        audit_logger.close()
        assert len(sink) == 1

        audit_logger.record(make_entry(minutes=1))
        assert len(sink) == 2
        audit_logger.close()

    @pytest.mark.parametrize(
        "error",
        [AuditSinkFailure("disk full", entry_id="e-1"), RuntimeError("password=hunter2 rejected")],
    )
    def test_sink_failure_is_swallowed(self, error, caplog) -> None:
        audit_logger = AuditLogger(FailingSink(error), async_writes=False)

        assert audit_logger.record(make_entry()) is True
        assert audit_logger.failed == 1
        assert "hunter2" not in caplog.text


# =============================================================================
# Reporting
# =============================================================================


@pytest.fixture
def populated() -> AuditLogger:
    sink = InMemoryAuditSink()
    audit_logger = AuditLogger(sink, async_writes=False, default_page_size=3, max_page_size=4)
    for minute in range(7):
        audit_logger.record(make_entry(actor_id=f"u-{minute % 2}", permitted=minute % 3 != 0, minutes=minute))
    audit_logger.record(make_entry(tenant_id="globex", minutes=30))
    return audit_logger


@pytest.mark.unit
class TestReporting:
    def test_query_newest_first_and_paginated(self, populated: AuditLogger) -> None:
        first = populated.query("acme")
        last = populated.query("acme", page=3)

        assert first.total == 7
        assert first.per_page == 3
        assert first.total_pages == 3
        assert [e.timestamp for e in first.entries] == sorted((e.timestamp for e in first.entries), reverse=True)
        assert first.entries[0].timestamp == BASE_TIME + timedelta(minutes=6)
        assert len(last.entries) == 1

    def test_page_size_is_clamped(self, populated: AuditLogger) -> None:
        assert populated.query("acme", per_page=100).per_page == 4
        assert populated.query("acme", per_page=0).per_page == 3
        assert populated.query("acme", page=0).page == 1

    def test_query_is_tenant_scoped(self, populated: AuditLogger) -> None:
        assert populated.query("globex").total == 1
        assert populated.query("initech").total == 0
        assert populated.query("initech").total_pages == 0

    def test_filters(self, populated: AuditLogger) -> None:
        denied = populated.query("acme", AuditLogFilter(permitted=False))
        by_actor = populated.query("acme", AuditLogFilter(actor_id="u-1"))
        window = populated.query(
            "acme",
            AuditLogFilter(date_from=BASE_TIME + timedelta(minutes=2), date_to=BASE_TIME + timedelta(minutes=4)),
        )

        assert denied.total == 3
        assert by_actor.total == 3
        assert window.total == 3

    def test_filter_accepts_aliases(self, populated: AuditLogger) -> None:
        assert populated.query("acme", AuditLogFilter(action="show", resource_type="Task")).total == 7

    def test_get_is_tenant_scoped(self, populated: AuditLogger) -> None:
        entry = populated.query("globex").entries[0]

        assert populated.get("globex", entry.id) == entry
        assert populated.get("acme", entry.id) is None

    def test_summary_and_export(self, populated: AuditLogger) -> None:
        summary = populated.summary("acme")
        csv_text = populated.export_csv("acme", AuditLogFilter(permitted=True))

        assert summary.total == 7
        assert summary.denied == 3
        assert summary.unique_actors == 2
        assert len(csv_text.strip().splitlines()) == 1 + 4


@pytest.mark.unit
def test_entries_are_immutable() -> None:
    entry = make_entry()

    with pytest.raises(Exception):
        entry.permitted = False  # type: ignore[misc]


@pytest.mark.unit
def test_stored_entries_cannot_be_edited_through_reads() -> None:
    """Nested context and condition results are detached from the stored trail."""
    sink = InMemoryAuditSink()
    written = AuditLogEntry(
        actor_id="u-1",
        tenant_id="acme",
        resource_type="membership",
        action="change_role",
        permitted=True,
        outcome=DecisionOutcome.PERMITTED,
        reason="granted by membership:manage",
        conditions_checked=[{"grant": "membership:update(own_only)", "condition": "own_only", "passed": True}],
        context={"target_role_key": "admin"},
    )
    audit_logger = AuditLogger(sink, async_writes=False)
    audit_logger.record(written)

    written.context["target_role_key"] = "owner"
    read = audit_logger.query("acme").entries[0]
    read.context["target_role_key"] = "tampered"
    read.conditions_checked.append({"forged": True})
    audit_logger.get("acme", written.id).context["extra"] = 1
    sink.all_entries()[0].conditions_checked.clear()

    stored = sink.get("acme", written.id)
    assert stored.context == {"target_role_key": "admin"}
    assert stored.conditions_checked == [
        {"grant": "membership:update(own_only)", "condition": "own_only", "passed": True}
    ]
    audit_logger.close()
