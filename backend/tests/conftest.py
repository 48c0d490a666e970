"""
Pytest configuration and fixtures for the tenant authorization engine tests.

Two tenants are set up for every test:

    acme    owner, admin, member, second member, viewer
    globex  owner (also checks cross-tenant isolation)

plus an actor with no membership anywhere ("outsider").
"""

from dataclasses import dataclass
from typing import Iterator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from tenant_authz.config import Settings
from tenant_authz.database import create_tables
from tenant_authz.models.authorization_models import Actor, Membership, ResourceSnapshot, Tenant
from tenant_authz.services.audit import AuditLogger, InMemoryAuditSink
from tenant_authz.services.authorization import (
    AuthorizationService,
    InMemoryMembershipDirectory,
    MembershipResolver,
    PermissionCatalog,
)


@dataclass(frozen=True)
class World:
    """Identifiers of the seeded tenants, actors and memberships"""

    tenant: str = "acme"
    other_tenant: str = "globex"
    owner: str = "u-owner"
    admin: str = "u-admin"
    member: str = "u-member"
    member_2: str = "u-member-2"
    viewer: str = "u-viewer"
    outsider: str = "u-outsider"
    other_owner: str = "u-globex-owner"

    def membership_id(self, actor_id: str) -> str:
        return "m-" + actor_id[2:]

    def membership_of(self, actor_id: str, role_key: str, tenant_id: str = "acme") -> ResourceSnapshot:
        """Snapshot of an actor's membership, as the product would supply it"""
        return ResourceSnapshot(
            resource_id=self.membership_id(actor_id),
            tenant_id=tenant_id,
            assignee_id=actor_id,
            role_key=role_key,
        )

    def task(self, resource_id: str = "task-1", tenant_id: str = "acme", **kwargs) -> ResourceSnapshot:
        return ResourceSnapshot(resource_id=resource_id, tenant_id=tenant_id, **kwargs)


ROLES = {
    "u-owner": "owner",
    "u-admin": "admin",
    "u-member": "member",
    "u-member-2": "member",
    "u-viewer": "viewer",
}


@pytest.fixture
def world() -> World:
    return World()


@pytest.fixture
def directory(world: World) -> InMemoryMembershipDirectory:
    """
    In-memory directory seeded with both tenants.

    Returns:
        InMemoryMembershipDirectory the tests may mutate freely
    """
    directory = InMemoryMembershipDirectory()
    directory.add_tenant(Tenant(id=world.tenant, name="Acme"))
    directory.add_tenant(Tenant(id=world.other_tenant, name="Globex"))

    for actor_id, role_key in ROLES.items():
        directory.add_actor(Actor(id=actor_id, email=f"{actor_id[2:]}@acme.test"))
        directory.add_membership(
            Membership(
                id=world.membership_id(actor_id),
                actor_id=actor_id,
                tenant_id=world.tenant,
                role_key=role_key,
            )
        )

    directory.add_actor(Actor(id=world.outsider, email="outsider@example.test"))
    directory.add_actor(Actor(id=world.other_owner, email="owner@globex.test"))
    directory.add_membership(
        Membership(
            id=world.membership_id(world.other_owner),
            actor_id=world.other_owner,
            tenant_id=world.other_tenant,
            role_key="owner",
        )
    )
    return directory


@pytest.fixture
def catalog(directory: InMemoryMembershipDirectory) -> PermissionCatalog:
    return PermissionCatalog(role_usage=directory)


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def audit_logger(audit_sink: InMemoryAuditSink) -> Iterator[AuditLogger]:
    """Synchronous audit logger so entries are visible immediately"""
    audit_logger = AuditLogger(audit_sink, async_writes=False)
    yield audit_logger
    audit_logger.close()


@pytest.fixture
def service(
    directory: InMemoryMembershipDirectory, catalog: PermissionCatalog, audit_logger: AuditLogger
) -> AuthorizationService:
    return AuthorizationService(MembershipResolver(directory), catalog, audit_logger)


@pytest.fixture
def sqlite_engine():
    """In-memory SQLite engine shared across threads (background audit writer)"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_tables(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=sqlite_engine)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(database_url="sqlite://", audit_async=False, log_level="WARNING")


@pytest.fixture
def client(test_settings: Settings, service: AuthorizationService) -> Iterator[TestClient]:
    """Provide FastAPI test client wired to the in-memory service"""
    from tenant_authz.main import create_app

    app = create_app(settings=test_settings, authorization_service=service)
    with TestClient(app) as test_client:
        yield test_client
