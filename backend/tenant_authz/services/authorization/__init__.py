"""
Authorization Module - Tenant-Scoped Role-Based Access Control

This module decides, for an (actor, tenant, resource, action) tuple, whether
the operation is permitted, which records an actor may list, and which fields
of a membership an actor may change.

Architecture Overview:
    1. Membership Resolver (membership.py)
       - Active membership of an actor in a tenant, or nothing
       - In-memory and SQLAlchemy-backed directories

    2. Catalog (catalog.py)
       - Fixed system roles (owner, admin, member, viewer) and custom roles
       - Copy-on-write snapshots per tenant, per-tenant mutation lock

    3. Condition Evaluator (conditions.py)
       - own_only (creator or assignee, the member only on memberships) and team_only predicates

    4. Hierarchy (hierarchy.py)
       - Priority rules for memberships and roles (no escalation, no self-demotion)

    5. Scope Resolver (scope.py)
       - Declarative listing filters

    6. Service Layer (service.py)
       - AuthorizationService: evaluate, can, authorize, scope_for, permitted_fields
       - RoleAdministrationService: audited catalog mutations

Design Philosophy:
    - Fail-Closed: Access denied on any error or unknown input
    - Tenant Isolation: Cross-tenant targets are reported as not found
    - Comprehensive Audit: Every evaluate call produces one audit entry

Quick Start:
    from tenant_authz.services.authorization import (
        AuthorizationService,
        InMemoryMembershipDirectory,
        MembershipResolver,
        PermissionCatalog,
    )
    from tenant_authz.models.authorization_models import ResourceSnapshot

    service = AuthorizationService(MembershipResolver(directory), PermissionCatalog(), audit_logger)

    task = ResourceSnapshot(resource_id="t-1", tenant_id="acme", creator_id="u-1")
    if service.can("u-1", "acme", "task", "update", task):
        ...

    listing_filter = service.scope_for("u-1", "acme", "task")
"""

from .catalog import SYSTEM_ROLES, CatalogStore, PermissionCatalog, SqlCatalogStore, build_grant
from .conditions import ConditionEvaluator
from .exceptions import (
    AuditSinkFailure,
    AuthorizationError,
    CatalogError,
    CrossTenantNotFound,
    NoMembership,
    PermissionDenied,
)
from .hierarchy import HierarchyGuard
from .membership import (
    InMemoryMembershipDirectory,
    MembershipDirectory,
    MembershipResolver,
    SqlMembershipDirectory,
)
from .scope import ScopeResolver
from .service import (
    PROFILE_FIELDS,
    AuthorizationService,
    RoleAdministrationService,
    get_authorization_service,
)

__all__ = [
    # Service
    "AuthorizationService",
    "RoleAdministrationService",
    "get_authorization_service",
    "PROFILE_FIELDS",
    # Components
    "ConditionEvaluator",
    "HierarchyGuard",
    "ScopeResolver",
    "MembershipResolver",
    "MembershipDirectory",
    "InMemoryMembershipDirectory",
    "SqlMembershipDirectory",
    "PermissionCatalog",
    "CatalogStore",
    "SqlCatalogStore",
    "SYSTEM_ROLES",
    "build_grant",
    # Exceptions
    "AuthorizationError",
    "NoMembership",
    "PermissionDenied",
    "CrossTenantNotFound",
    "CatalogError",
    "AuditSinkFailure",
]
