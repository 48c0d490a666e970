"""
Tenant Authorization Models Package
Value objects shared by the authorization services, the audit trail and the API
"""

from .authorization_models import (  # noqa: F401
    Actor,
    AuditLogEntry,
    AuditLogFilter,
    AuditLogPage,
    AuditSummary,
    AuthorizationConfiguration,
    AuthorizationContext,
    ConditionCheck,
    Decision,
    DecisionOutcome,
    Filter,
    FilterClause,
    Membership,
    ResourceSnapshot,
    Role,
    ScopeField,
    ScopeKind,
    Tenant,
)
