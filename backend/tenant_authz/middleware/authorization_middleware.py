"""
Authorization dependencies for FastAPI endpoints

The tenant and actor of a request are resolved upstream (subdomain routing and
authentication). They arrive here either on ``request.state`` or as trusted
headers, and every protected endpoint declares the permission it needs with
``require_permission``.
"""

import logging
from typing import Callable

from fastapi import Depends, HTTPException, Request, status

from ..config import get_settings
from ..models.authorization_models import AuthorizationContext, Decision
from ..services.authorization import AuthorizationService
from ..utils.logging_security import sanitize_for_log

logger = logging.getLogger(__name__)


def get_request_authorization_service(request: Request) -> AuthorizationService:
    """Authorization service stored on app.state by the application factory"""
    service = getattr(request.app.state, "authorization_service", None)
    if service is None:
        logger.error("Authorization service not found in app.state")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Authorization unavailable")
    return service


def get_request_tenant_id(request: Request) -> str:
    tenant_id = getattr(request.state, "tenant_id", None) or request.headers.get(get_settings().tenant_header)
    if not tenant_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Tenant context required")
    return tenant_id


def get_request_actor_id(request: Request) -> str:
    actor_id = getattr(request.state, "actor_id", None) or request.headers.get(get_settings().actor_header)
    if not actor_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return actor_id


def get_client_ip(request: Request) -> str:
    """
    Get client IP address from request
    """
    # Check for forwarded headers first (behind proxy)
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip

    # Fallback to client IP
    if request.client:
        return request.client.host

    return "unknown"


def get_request_context(request: Request) -> AuthorizationContext:
    """Request metadata carried into the audit trail"""
    return AuthorizationContext(
        team_ids=getattr(request.state, "team_ids", None) or (),
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
        session_id=getattr(request.state, "session_id", None),
        attributes={"path": sanitize_for_log(request.url.path, max_length=200, allow_special=True)},
    )


def require_permission(resource_type, action) -> Callable[..., Decision]:
    """
    Dependency factory enforcing a collection-level permission.

    Example:
        @router.get("/", dependencies=[Depends(require_permission("audit_log", "read"))])

    Denials raise NoMembership / PermissionDenied, which the application maps to 403.
    """

    def _require_permission(
        actor_id: str = Depends(get_request_actor_id),
        tenant_id: str = Depends(get_request_tenant_id),
        context: AuthorizationContext = Depends(get_request_context),
        service: AuthorizationService = Depends(get_request_authorization_service),
    ) -> Decision:
        return service.authorize(actor_id, tenant_id, resource_type, action, context=context)

    return _require_permission
