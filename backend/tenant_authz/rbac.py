"""
Role-Based Access Control (RBAC) definitions for the tenant authorization engine
Defines resource types, actions, grant conditions and the fixed system roles
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Optional, Union

logger = logging.getLogger(__name__)


class ResourceType(str, Enum):
    """Resource types a grant can target"""
    # Tenant administration
    ORGANIZATION = "organization"
    MEMBERSHIP = "membership"
    ROLE = "role"
    AUDIT_LOG = "audit_log"

    # Domain records (listing targets)
    SERVICE = "service"
    TASK = "task"
    SPRINT = "sprint"
    MILESTONE = "milestone"
    TEAM = "team"
    POMODORO_SESSION = "pomodoro_session"


class Action(str, Enum):
    """Actions that can be granted on a resource type"""
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    MANAGE = "manage"  # Implies every action on the resource type
    CHANGE_ROLE = "change_role"  # Membership only
    TOGGLE_ACTIVE = "toggle_active"  # Membership only


class Condition(str, Enum):
    """Runtime predicate narrowing a grant to specific resource instances"""
    NONE = "none"
    OWN_ONLY = "own_only"
    TEAM_ONLY = "team_only"


class SystemRole(str, Enum):
    """Fixed system roles, highest priority first"""
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"
    VIEWER = "viewer"


SYSTEM_ROLE_PRIORITIES: Dict[SystemRole, int] = {
    SystemRole.OWNER: 100,
    SystemRole.ADMIN: 80,
    SystemRole.MEMBER: 50,
    SystemRole.VIEWER: 10,
}

TOP_PRIORITY = SYSTEM_ROLE_PRIORITIES[SystemRole.OWNER]

DOMAIN_RESOURCE_TYPES = (
    ResourceType.SERVICE,
    ResourceType.TASK,
    ResourceType.SPRINT,
    ResourceType.MILESTONE,
    ResourceType.TEAM,
    ResourceType.POMODORO_SESSION,
)

# Controller-style action names accepted at every entry point
ACTION_ALIASES: Dict[str, Action] = {
    "show": Action.READ,
    "index": Action.READ,
    "list": Action.READ,
    "view": Action.READ,
    "new": Action.CREATE,
    "edit": Action.UPDATE,
    "destroy": Action.DELETE,
    "remove": Action.DELETE,
    "deactivate": Action.TOGGLE_ACTIVE,
    "reactivate": Action.TOGGLE_ACTIVE,
}

READ_CLASS_ACTIONS = frozenset({Action.READ, Action.MANAGE})


@dataclass(frozen=True)
class PermissionGrant:
    """A (resource type, action, condition) capability attached to a role"""
    resource_type: ResourceType
    action: Action
    condition: Condition = Condition.NONE

    @property
    def full_key(self) -> str:
        return f"{self.resource_type.value}:{self.action.value}"

    @property
    def conditional(self) -> bool:
        return self.condition != Condition.NONE

    def covers(self, resource_type: ResourceType, action: Action) -> bool:
        """Check if this grant applies to a resource type and action"""
        if self.resource_type != resource_type:
            return False
        return self.action == action or self.action == Action.MANAGE

    def __str__(self) -> str:
        if self.conditional:
            return f"{self.full_key}({self.condition.value})"
        return self.full_key


def normalize_action(action: Union[str, Action, None]) -> Optional[Action]:
    """Resolve an action name or alias, or None when unknown"""
    if isinstance(action, Action):
        return action
    if not action:
        return None
    key = str(action).strip().lower()
    if key in ACTION_ALIASES:
        return ACTION_ALIASES[key]
    try:
        return Action(key)
    except ValueError:
        return None


def normalize_resource_type(resource_type: Union[str, ResourceType, None]) -> Optional[ResourceType]:
    """Resolve a resource type name (case-insensitive, CamelCase tolerated), or None when unknown"""
    if isinstance(resource_type, ResourceType):
        return resource_type
    if not resource_type:
        return None
    raw = str(resource_type).strip()
    # "PomodoroSession" -> "pomodoro_session", "OrganizationMembership" -> "organization_membership"
    snake = "".join(f"_{c.lower()}" if c.isupper() else c for c in raw).lstrip("_").lower()
    if snake == "organization_membership":
        snake = ResourceType.MEMBERSHIP.value
    if snake == "permission_audit_log":
        snake = ResourceType.AUDIT_LOG.value
    try:
        return ResourceType(snake)
    except ValueError:
        return None


def normalize_condition(condition: Union[str, Condition, None]) -> Optional[Condition]:
    """Resolve a condition key; None and empty mean unconditional, unknown keys return None"""
    if isinstance(condition, Condition):
        return condition
    if condition is None or condition == "":
        return Condition.NONE
    try:
        return Condition(str(condition).strip().lower())
    except ValueError:
        return None


def _grants(resource_types: Iterable[ResourceType], *actions: Action, condition: Condition = Condition.NONE):
    return {PermissionGrant(rt, action, condition) for rt in resource_types for action in actions}


def _build_system_role_grants() -> Dict[SystemRole, FrozenSet[PermissionGrant]]:
    owner = _grants(ResourceType, Action.MANAGE)

    admin = set()
    admin |= _grants(DOMAIN_RESOURCE_TYPES, Action.READ, Action.CREATE, Action.UPDATE, Action.DELETE)
    admin |= _grants([ResourceType.ORGANIZATION], Action.READ, Action.UPDATE)
    admin |= _grants([ResourceType.MEMBERSHIP], Action.MANAGE)
    admin |= _grants([ResourceType.ROLE], Action.READ, Action.CREATE, Action.UPDATE, Action.DELETE)
    admin |= _grants([ResourceType.AUDIT_LOG], Action.READ)

    member = set()
    member |= _grants(DOMAIN_RESOURCE_TYPES, Action.READ, condition=Condition.OWN_ONLY)
    member |= _grants(DOMAIN_RESOURCE_TYPES, Action.READ, condition=Condition.TEAM_ONLY)
    member |= _grants(DOMAIN_RESOURCE_TYPES, Action.CREATE)
    member |= _grants(DOMAIN_RESOURCE_TYPES, Action.UPDATE, condition=Condition.OWN_ONLY)
    member |= _grants([ResourceType.ORGANIZATION], Action.READ)
    # Members see the whole member list but edit or leave only through their own membership
    member |= _grants([ResourceType.MEMBERSHIP], Action.READ)
    member |= _grants([ResourceType.MEMBERSHIP], Action.UPDATE, Action.DELETE, condition=Condition.OWN_ONLY)

    viewer = set()
    viewer |= _grants(DOMAIN_RESOURCE_TYPES, Action.READ, condition=Condition.OWN_ONLY)
    viewer |= _grants([ResourceType.ORGANIZATION], Action.READ)
    viewer |= _grants([ResourceType.MEMBERSHIP], Action.READ, Action.UPDATE, condition=Condition.OWN_ONLY)

    return {
        SystemRole.OWNER: frozenset(owner),
        SystemRole.ADMIN: frozenset(admin),
        SystemRole.MEMBER: frozenset(member),
        SystemRole.VIEWER: frozenset(viewer),
    }


# Role permission mappings
SYSTEM_ROLE_GRANTS: Dict[SystemRole, FrozenSet[PermissionGrant]] = _build_system_role_grants()


def is_system_role(role_key: str) -> bool:
    return role_key in {role.value for role in SystemRole}
