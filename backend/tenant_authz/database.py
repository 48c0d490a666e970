"""
Database configuration and ORM models for the tenant authorization engine
Tenants, actors and memberships are owned by collaborators and only read here;
custom roles and the audit trail are written by the engine.
"""

import logging
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    text,
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker

from .config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

DATABASE_URL = settings.database_url


def build_engine(database_url: str = DATABASE_URL, **overrides):
    """Create an engine; SQLite gets cross-thread access for the background audit writer"""
    if database_url.startswith("sqlite"):
        options = {"connect_args": {"check_same_thread": False}}
    else:
        options = {
            "pool_size": settings.database_pool_size,
            "max_overflow": settings.database_max_overflow,
            "pool_pre_ping": True,
            "pool_recycle": 3600,  # Recycle connections every hour
        }
    options.update(overrides)
    return create_engine(database_url, **options)


engine = build_engine()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


# Database Models
class TenantRecord(Base):  # type: ignore[valid-type, misc]
    """Organization (tenant)"""

    __tablename__ = "tenants"

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False)
    active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class ActorRecord(Base):  # type: ignore[valid-type, misc]
    """Global user identity"""

    __tablename__ = "actors"

    id = Column(String(36), primary_key=True)
    email = Column(String(255), unique=True, nullable=False)
    is_system_admin = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class MembershipRecord(Base):  # type: ignore[valid-type, misc]
    """Actor membership in a tenant"""

    __tablename__ = "tenant_memberships"

    id = Column(String(36), primary_key=True)
    actor_id = Column(String(36), ForeignKey("actors.id"), nullable=False, index=True)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False, index=True)
    role_key = Column(String(50), nullable=False)  # owner, admin, member, viewer or a custom key
    active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("actor_id", "tenant_id", name="uq_membership_actor_tenant"),)


class RoleRecord(Base):  # type: ignore[valid-type, misc]
    """Custom role defined by a tenant (system roles are not stored)"""

    __tablename__ = "tenant_roles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False, index=True)
    key = Column(String(50), nullable=False)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    priority = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    grants = relationship("RoleGrantRecord", cascade="all, delete-orphan", back_populates="role")

    __table_args__ = (
        UniqueConstraint("tenant_id", "key", name="uq_role_tenant_key"),
        UniqueConstraint("tenant_id", "priority", name="uq_role_tenant_priority"),
    )


class RoleGrantRecord(Base):  # type: ignore[valid-type, misc]
    """Grant attached to a custom role"""

    __tablename__ = "tenant_role_grants"

    id = Column(Integer, primary_key=True, autoincrement=True)
    role_id = Column(Integer, ForeignKey("tenant_roles.id", ondelete="CASCADE"), nullable=False, index=True)
    resource_type = Column(String(50), nullable=False)
    action = Column(String(50), nullable=False)
    condition = Column(String(50), default="none", nullable=False)

    role = relationship("RoleRecord", back_populates="grants")

    __table_args__ = (
        UniqueConstraint("role_id", "resource_type", "action", "condition", name="uq_role_grant"),
    )


class AuditLogRecord(Base):  # type: ignore[valid-type, misc]
    """Append-only authorization audit trail"""

    __tablename__ = "permission_audit_logs"

    id = Column(String(36), primary_key=True)
    tenant_id = Column(String(36), nullable=False, index=True)
    actor_id = Column(String(36), nullable=False, index=True)
    resource_type = Column(String(50), nullable=False, index=True)
    resource_id = Column(String(100), nullable=True)
    action = Column(String(50), nullable=False, index=True)
    permitted = Column(Boolean, nullable=False, index=True)
    outcome = Column(String(20), nullable=False)
    reason = Column(Text, nullable=False)
    conditions_checked = Column(JSON, nullable=False, default=list)
    context = Column(JSON, nullable=False, default=dict)
    role_key = Column(String(50), nullable=True)
    ip_address = Column(String(45), nullable=True)  # IPv4 or IPv6
    user_agent = Column(String(500), nullable=True)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)


def create_tables(bind=None) -> None:
    """Create database tables if they don't exist."""
    try:
        Base.metadata.create_all(bind=bind or engine)
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error(f"Failed to create database tables: {e}")
        raise


def check_database_health(session_factory=SessionLocal) -> bool:
    """Check database connectivity for health checks"""
    try:
        db = session_factory()
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False
