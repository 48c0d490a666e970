"""
Tenant Authorization Engine - FastAPI application
Exposes the audit reporting surface and maps authorization errors to HTTP responses
"""

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .config import Settings, get_settings
from .database import check_database_health, create_tables
from .routes import audit
from .services.authorization import (
    AuthorizationService,
    CrossTenantNotFound,
    NoMembership,
    PermissionDenied,
    get_authorization_service,
)

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    if settings.log_file:
        handler = logging.FileHandler(settings.log_file)
        handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
        logging.getLogger("tenant_authz").addHandler(handler)


def _authorization_error_response(status_code: int, message: str, error_type: str, request: Request) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": message,
            "path": request.url.path,
            "timestamp": datetime.utcnow().isoformat(),
            "type": error_type,
        },
    )


def create_app(
    settings: Optional[Settings] = None,
    authorization_service: Optional[AuthorizationService] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Application settings (defaults to get_settings())
        authorization_service: Pre-built service; when omitted the SQLAlchemy-backed
            service is created and the tables are created on startup
    """
    settings = settings or get_settings()
    configure_logging(settings)
    owns_database = authorization_service is None
    service = authorization_service or get_authorization_service()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan management."""
        logger.info(f"Starting {settings.app_name} {settings.app_version}...")
        if owns_database:
            create_tables()
        yield
        logger.info(f"Shutting down {settings.app_name}...")
        if service.audit_logger is not None:
            service.audit_logger.close()

    app = FastAPI(
        title="Tenant Authorization Engine",
        description="Tenant-scoped authorization decisions and audit trail",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.authorization_service = service
    app.state.audit_logger = service.audit_logger

    @app.exception_handler(NoMembership)
    async def no_membership_handler(request: Request, exc: NoMembership) -> JSONResponse:
        return _authorization_error_response(403, exc.message, "no_membership", request)

    @app.exception_handler(PermissionDenied)
    async def permission_denied_handler(request: Request, exc: PermissionDenied) -> JSONResponse:
        return _authorization_error_response(403, "Insufficient permissions", "authorization_denied", request)

    @app.exception_handler(CrossTenantNotFound)
    async def not_found_handler(request: Request, exc: CrossTenantNotFound) -> JSONResponse:
        return _authorization_error_response(404, exc.message, "not_found", request)

    @app.get("/health")
    def health_check() -> JSONResponse:
        """Health check endpoint for container orchestration."""
        database_ok = check_database_health() if owns_database else True
        audit_logger = service.audit_logger
        health_status = {
            "status": "healthy" if database_ok else "degraded",
            "timestamp": time.time(),
            "version": settings.app_version,
            "database": "healthy" if database_ok else "unhealthy",
            "audit_pending": audit_logger.pending if audit_logger else 0,
            "audit_dropped": audit_logger.dropped if audit_logger else 0,
        }
        return JSONResponse(status_code=200 if database_ok else 503, content=health_status)

    app.include_router(audit.router, prefix="/api", tags=["Audit"])

    return app
