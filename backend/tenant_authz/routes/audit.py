"""
Audit Log API Routes
Tenant-scoped browsing, export and statistics of the authorization audit trail
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import Response
from pydantic import BaseModel

from ..middleware.authorization_middleware import get_request_tenant_id, require_permission
from ..models.authorization_models import AuditLogEntry, AuditLogFilter, AuditSummary
from ..utils.logging_security import sanitize_id_for_log

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/audit-logs", tags=["Audit"])

read_audit_log = require_permission("audit_log", "read")


class AuditLogResponse(BaseModel):
    id: str
    actor_id: str
    resource_type: str
    resource_id: Optional[str]
    action: str
    permitted: bool
    outcome: str
    reason: str
    conditions_checked: List[Dict[str, Any]]
    context: Dict[str, Any]
    role_key: Optional[str]
    ip_address: Optional[str]
    user_agent: Optional[str]
    timestamp: str


class AuditLogsResponse(BaseModel):
    entries: List[AuditLogResponse]
    total: int
    page: int
    per_page: int
    total_pages: int


def _to_response(entry: AuditLogEntry) -> AuditLogResponse:
    return AuditLogResponse(
        id=entry.id,
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
        timestamp=entry.timestamp.isoformat(),
    )


def get_audit_filters(
    actor_id: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    resource_type: Optional[str] = Query(None),
    permitted: Optional[bool] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
) -> AuditLogFilter:
    return AuditLogFilter(
        actor_id=actor_id,
        action=action,
        resource_type=resource_type,
        permitted=permitted,
        date_from=date_from,
        date_to=date_to,
    )


def get_audit_logger(request: Request):
    audit_logger = getattr(request.app.state, "audit_logger", None)
    if audit_logger is None:
        raise HTTPException(status_code=503, detail="Audit trail unavailable")
    return audit_logger


@router.get("/", response_model=AuditLogsResponse, dependencies=[Depends(read_audit_log)])  # type: ignore[misc]
def get_audit_logs(
    page: int = Query(1, ge=1),
    per_page: Optional[int] = Query(None, ge=1),
    filters: AuditLogFilter = Depends(get_audit_filters),
    tenant_id: str = Depends(get_request_tenant_id),
    audit_logger=Depends(get_audit_logger),
) -> AuditLogsResponse:
    """
    Get audit log entries with filtering and pagination, newest first
    """
    try:
        result = audit_logger.query(tenant_id, filters, page=page, per_page=per_page)
        return AuditLogsResponse(
            entries=[_to_response(entry) for entry in result.entries],
            total=result.total,
            page=result.page,
            per_page=result.per_page,
            total_pages=result.total_pages,
        )
    except Exception as e:
        logger.error(f"Error retrieving audit logs for tenant {sanitize_id_for_log(tenant_id)}: {type(e).__name__}")
        raise HTTPException(status_code=500, detail="Failed to retrieve audit logs")


@router.get("/export", dependencies=[Depends(read_audit_log)])  # type: ignore[misc]
def export_audit_logs(
    filters: AuditLogFilter = Depends(get_audit_filters),
    tenant_id: str = Depends(get_request_tenant_id),
    audit_logger=Depends(get_audit_logger),
) -> Response:
    """
    Download the filtered audit trail as CSV
    """
    try:
        content = audit_logger.export_csv(tenant_id, filters)
    except Exception as e:
        logger.error(f"Error exporting audit logs for tenant {sanitize_id_for_log(tenant_id)}: {type(e).__name__}")
        raise HTTPException(status_code=500, detail="Failed to export audit logs")

    filename = f"audit_logs_{datetime.utcnow().date().isoformat()}.csv"
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/summary", response_model=AuditSummary, dependencies=[Depends(read_audit_log)])  # type: ignore[misc]
def get_audit_summary(
    filters: AuditLogFilter = Depends(get_audit_filters),
    tenant_id: str = Depends(get_request_tenant_id),
    audit_logger=Depends(get_audit_logger),
) -> AuditSummary:
    """
    Get audit statistics for the dashboard
    """
    try:
        return audit_logger.summary(tenant_id, filters)
    except Exception as e:
        logger.error(f"Error summarizing audit logs for tenant {sanitize_id_for_log(tenant_id)}: {type(e).__name__}")
        raise HTTPException(status_code=500, detail="Failed to retrieve audit statistics")


@router.get("/{entry_id}", response_model=AuditLogResponse, dependencies=[Depends(read_audit_log)])  # type: ignore[misc]
def get_audit_log(
    entry_id: str,
    tenant_id: str = Depends(get_request_tenant_id),
    audit_logger=Depends(get_audit_logger),
) -> AuditLogResponse:
    """
    Get a single audit log entry of the current tenant
    """
    entry = audit_logger.get(tenant_id, entry_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Audit log entry not found")
    return _to_response(entry)
