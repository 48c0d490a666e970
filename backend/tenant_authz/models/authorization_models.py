"""
Tenant Authorization Models
Defines the data structures exchanged between the membership resolver, the
policy evaluator, the scope resolver and the audit logger.

Records read from collaborators (tenants, actors, memberships, domain resource
snapshots) are frozen dataclasses so a decision can never alter its inputs.
Audit entries are frozen pydantic models so they serialize cleanly for the
reporting surface and cannot be edited once produced.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..rbac import PermissionGrant, normalize_action, normalize_resource_type


@dataclass(frozen=True)
class Tenant:
    """An organization; inactive tenants behave as if absent"""

    id: str
    name: str = ""
    active: bool = True


@dataclass(frozen=True)
class Actor:
    """A global identity (user account)"""

    id: str
    email: str = ""
    is_system_admin: bool = False  # Audit context only, grants nothing inside a tenant


@dataclass(frozen=True)
class Membership:
    """Link between an actor and a tenant carrying a role key"""

    id: str
    actor_id: str
    tenant_id: str
    role_key: str
    active: bool = True


@dataclass(frozen=True)
class Role:
    """
    A named role with a priority and a set of grants.

    System roles (owner, admin, member, viewer) have tenant_id None and are
    shared by every tenant. Custom roles belong to exactly one tenant.
    """

    key: str
    priority: int
    grants: FrozenSet[PermissionGrant] = frozenset()
    system: bool = False
    name: str = ""
    description: str = ""
    tenant_id: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or self.key.replace("_", " ").title()


@dataclass(frozen=True)
class ResourceSnapshot:
    """
    Read-only view of a target resource supplied by the caller.

    Attributes:
        resource_id: Identifier of the target record
        tenant_id: Tenant the record belongs to
        creator_id: Actor who created the record
        assignee_id: Actor the record is assigned to (for memberships: the member)
        team_id: Team the record belongs to
        role_key: For membership targets, the member's role; for role targets, the role itself
        role_priority: Priority of role_key when already known by the caller
    """

    resource_id: Optional[str]
    tenant_id: Optional[str]
    creator_id: Optional[str] = None
    assignee_id: Optional[str] = None
    team_id: Optional[str] = None
    role_key: Optional[str] = None
    role_priority: Optional[int] = None

    @classmethod
    def for_membership(cls, membership: Membership, role_priority: Optional[int] = None) -> "ResourceSnapshot":
        """Snapshot of a membership record; the member counts as its assignee"""
        return cls(
            resource_id=membership.id,
            tenant_id=membership.tenant_id,
            assignee_id=membership.actor_id,
            role_key=membership.role_key,
            role_priority=role_priority,
        )

    @classmethod
    def for_role(cls, role: Role, tenant_id: str) -> "ResourceSnapshot":
        return cls(
            resource_id=role.key,
            tenant_id=tenant_id,
            role_key=role.key,
            role_priority=role.priority,
        )


@dataclass
class AuthorizationContext:
    """Caller-supplied context for a single authorization check"""

    team_ids: FrozenSet[str] = frozenset()
    target_role_key: Optional[str] = None  # Role being assigned by a change_role request
    target_role_priority: Optional[int] = None
    changed_fields: Tuple[str, ...] = ()
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    session_id: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Normalize collection fields so callers may pass lists or sets."""
        self.team_ids = frozenset(str(t) for t in (self.team_ids or ()))
        self.changed_fields = tuple(self.changed_fields or ())

    @property
    def requests_role_change(self) -> bool:
        return (
            self.target_role_key is not None
            or self.target_role_priority is not None
            or "role" in self.changed_fields
        )

    @property
    def requests_deactivation(self) -> bool:
        """An update touching the active flag counts as a toggle_active"""
        return "active" in self.changed_fields

    def to_audit_context(self) -> Dict[str, Any]:
        """Context recorded in the audit trail (no secrets, JSON-safe)"""
        audit_context: Dict[str, Any] = {}
        if self.team_ids:
            audit_context["team_ids"] = sorted(self.team_ids)
        if self.target_role_key is not None:
            audit_context["target_role_key"] = self.target_role_key
        if self.target_role_priority is not None:
            audit_context["target_role_priority"] = self.target_role_priority
        if self.changed_fields:
            audit_context["changed_fields"] = list(self.changed_fields)
        if self.session_id:
            audit_context["session_id"] = self.session_id
        audit_context.update(self.attributes)
        return audit_context


@dataclass(frozen=True)
class ConditionCheck:
    """Outcome of evaluating one conditional grant against a resource"""

    grant: str
    condition: str
    passed: bool

    def as_dict(self) -> Dict[str, Any]:
        return {"grant": self.grant, "condition": self.condition, "passed": self.passed}


class DecisionOutcome(str, Enum):
    """Final outcome of an authorization check"""

    PERMITTED = "permitted"
    NO_MEMBERSHIP = "no_membership"
    DENIED = "denied"
    NOT_FOUND = "not_found"  # Cross-tenant target, never disclosed as forbidden
    ERROR = "error"  # Evaluation failed, fail closed


@dataclass(frozen=True)
class Decision:
    """Result of AuthorizationService.evaluate"""

    permitted: bool
    outcome: DecisionOutcome
    reason: str
    actor_id: str
    tenant_id: str
    resource_type: str
    action: str
    resource_id: Optional[str] = None
    role_key: Optional[str] = None
    conditions_checked: Tuple[ConditionCheck, ...] = ()
    audit_entry_id: Optional[str] = None
    system_admin: bool = False  # Recorded in the audit context only

    def __bool__(self) -> bool:
        return self.permitted


class ScopeKind(str, Enum):
    ALL = "all"
    NONE = "none"
    ANY_OF = "any_of"


class ScopeField(str, Enum):
    """Relation between the listing actor and a domain record"""

    CREATED_BY = "created_by"
    ASSIGNED_TO = "assigned_to"
    TEAM_OF = "team_of"


@dataclass(frozen=True)
class FilterClause:
    field: ScopeField
    actor_id: str
    team_ids: FrozenSet[str] = frozenset()

    def matches(self, snapshot: ResourceSnapshot) -> bool:
        if self.field == ScopeField.CREATED_BY:
            return snapshot.creator_id is not None and snapshot.creator_id == self.actor_id
        if self.field == ScopeField.ASSIGNED_TO:
            return snapshot.assignee_id is not None and snapshot.assignee_id == self.actor_id
        return snapshot.team_id is not None and snapshot.team_id in self.team_ids

    def describe(self) -> str:
        return f"{self.field.value}({self.actor_id})"


@dataclass(frozen=True)
class Filter:
    """
    Declarative listing filter produced by the scope resolver.

    The filter never touches storage: the domain storage layer translates it
    into its own query. ``matches`` evaluates it against a single snapshot,
    which is what the storage translation must agree with.
    """

    kind: ScopeKind
    tenant_id: Optional[str] = None
    resource_type: Optional[str] = None
    clauses: Tuple[FilterClause, ...] = ()

    @classmethod
    def all(cls, tenant_id: str, resource_type: Optional[str] = None) -> "Filter":
        return cls(kind=ScopeKind.ALL, tenant_id=tenant_id, resource_type=resource_type)

    @classmethod
    def none(cls, tenant_id: Optional[str] = None, resource_type: Optional[str] = None) -> "Filter":
        return cls(kind=ScopeKind.NONE, tenant_id=tenant_id, resource_type=resource_type)

    @classmethod
    def any_of(cls, tenant_id: str, resource_type: Optional[str], clauses) -> "Filter":
        unique: List[FilterClause] = []
        for clause in clauses:
            if clause not in unique:
                unique.append(clause)
        if not unique:
            return cls.none(tenant_id, resource_type)
        return cls(kind=ScopeKind.ANY_OF, tenant_id=tenant_id, resource_type=resource_type, clauses=tuple(unique))

    @property
    def is_all(self) -> bool:
        return self.kind == ScopeKind.ALL

    @property
    def is_none(self) -> bool:
        return self.kind == ScopeKind.NONE

    @property
    def fields(self) -> FrozenSet[ScopeField]:
        return frozenset(clause.field for clause in self.clauses)

    def matches(self, snapshot: ResourceSnapshot) -> bool:
        """Check whether a record would be included by this filter"""
        if self.kind == ScopeKind.NONE:
            return False
        if self.tenant_id is not None and snapshot.tenant_id != self.tenant_id:
            return False
        if self.kind == ScopeKind.ALL:
            return True
        return any(clause.matches(snapshot) for clause in self.clauses)

    def describe(self) -> str:
        if self.kind != ScopeKind.ANY_OF:
            return self.kind.value
        return " OR ".join(clause.describe() for clause in self.clauses)


class AuditLogEntry(BaseModel):
    """Immutable audit record of one authorization decision"""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    actor_id: str
    tenant_id: str
    resource_type: str
    resource_id: Optional[str] = None
    action: str
    permitted: bool
    outcome: DecisionOutcome
    reason: str
    conditions_checked: List[Dict[str, Any]] = Field(default_factory=list)
    context: Dict[str, Any] = Field(default_factory=dict)
    role_key: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    model_config = ConfigDict(frozen=True)


class AuditLogFilter(BaseModel):
    """Filters accepted by the audit reporting queries"""

    actor_id: Optional[str] = None
    action: Optional[str] = None
    resource_type: Optional[str] = None
    permitted: Optional[bool] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None

    @field_validator("action")
    @classmethod
    def normalize_action_alias(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        action = normalize_action(v)
        return action.value if action else v

    @field_validator("resource_type")
    @classmethod
    def normalize_resource_type_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        resource_type = normalize_resource_type(v)
        return resource_type.value if resource_type else v

    def matches(self, entry: AuditLogEntry) -> bool:
        if self.actor_id is not None and entry.actor_id != self.actor_id:
            return False
        if self.action is not None and entry.action != self.action:
            return False
        if self.resource_type is not None and entry.resource_type != self.resource_type:
            return False
        if self.permitted is not None and entry.permitted != self.permitted:
            return False
        if self.date_from is not None and entry.timestamp < self.date_from:
            return False
        if self.date_to is not None and entry.timestamp > self.date_to:
            return False
        return True


class AuditLogPage(BaseModel):
    """One page of audit entries, newest first"""

    entries: List[AuditLogEntry]
    total: int
    page: int
    per_page: int

    @property
    def total_pages(self) -> int:
        if self.total == 0:
            return 0
        return (self.total + self.per_page - 1) // self.per_page


class AuditSummary(BaseModel):
    """Aggregate statistics over a tenant's audit trail"""

    total: int = 0
    permitted: int = 0
    denied: int = 0
    unique_actors: int = 0
    today_count: int = 0
    by_action: Dict[str, int] = Field(default_factory=dict)
    by_resource_type: Dict[str, int] = Field(default_factory=dict)
    denial_rate: float = 0.0  # Percentage, rounded to 2 places


class AuthorizationConfiguration(BaseModel):
    """Authorization engine configuration"""

    enable_audit_logging: bool = True
    slow_evaluation_ms: int = 50  # Evaluations slower than this are logged at WARNING
