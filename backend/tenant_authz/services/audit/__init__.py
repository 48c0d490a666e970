"""
Audit Module - Authorization Audit Trail

Every authorization decision produces exactly one immutable AuditLogEntry,
handed to the AuditLogger at the exit of AuthorizationService.evaluate.

    1. Logger (audit_logger.py)
       - Background writer (single worker, bounded pending count)
       - Tenant-scoped query, CSV export and summary statistics

    2. Sinks (sinks.py)
       - InMemoryAuditSink for tests and embedders
       - SqlAuditSink writing the permission_audit_logs table

    3. Export (export.py)
       - CSV rendering and summary aggregation

Quick Start:
    from tenant_authz.services.audit import AuditLogger, SqlAuditSink
    from tenant_authz.database import SessionLocal

    audit_logger = AuditLogger(SqlAuditSink(SessionLocal))
    page = audit_logger.query("tenant-1", page=1, per_page=50)
    csv_text = audit_logger.export_csv("tenant-1")
"""

from .audit_logger import AuditLogger
from .export import CSV_HEADER, export_csv, summarize
from .sinks import AuditSink, InMemoryAuditSink, SqlAuditSink

__all__ = [
    "AuditLogger",
    "AuditSink",
    "InMemoryAuditSink",
    "SqlAuditSink",
    "CSV_HEADER",
    "export_csv",
    "summarize",
]
