"""
Role Hierarchy Overrides

Applied after a grant has permitted an action on a membership or role
resource. Grants say what a role may do in general; these rules stop an actor
from acting on memberships and roles ranked at or above their own, from
escalating anyone (including themselves) to such a role, and from locking
themselves out of or taking over the tenant through their own membership.
"""

import logging
from typing import Optional

from ...models.authorization_models import AuthorizationContext, Membership, ResourceSnapshot
from ...rbac import TOP_PRIORITY, Action, ResourceType
from .catalog import PermissionCatalog

logger = logging.getLogger(__name__)

MEMBERSHIP_MUTATIONS = frozenset(
    {Action.UPDATE, Action.DELETE, Action.CHANGE_ROLE, Action.TOGGLE_ACTIVE, Action.MANAGE}
)
ROLE_MUTATIONS = frozenset({Action.UPDATE, Action.DELETE, Action.MANAGE})

_UNRESOLVED = object()


class HierarchyGuard:
    """Priority-based overrides for membership and role resources"""

    def __init__(self, catalog: PermissionCatalog):
        self.catalog = catalog

    def check(
        self,
        membership: Membership,
        actor_priority: int,
        resource_type: ResourceType,
        action: Action,
        resource: Optional[ResourceSnapshot],
        context: AuthorizationContext,
    ) -> Optional[str]:
        """Return a denial reason, or None when the hierarchy allows the action"""
        if resource_type == ResourceType.MEMBERSHIP:
            return self._check_membership(membership, actor_priority, action, resource, context)
        if resource_type == ResourceType.ROLE:
            return self._check_role(membership.tenant_id, actor_priority, action, resource, context)
        return None

    def requested_priority(self, tenant_id: str, context: AuthorizationContext):
        """Priority of the role a request wants to assign, None if none requested, _UNRESOLVED if unknown"""
        if context.target_role_key is not None:
            priority = self.catalog.role_priority(tenant_id, context.target_role_key)
            return _UNRESOLVED if priority is None else priority
        if context.target_role_priority is not None:
            return context.target_role_priority
        if "role" in context.changed_fields:
            return _UNRESOLVED
        return None

    def target_priority(self, tenant_id: str, resource: ResourceSnapshot):
        if resource.role_key is not None:
            priority = self.catalog.role_priority(tenant_id, resource.role_key)
            if priority is not None:
                return priority
        if resource.role_priority is not None:
            return resource.role_priority
        return _UNRESOLVED

    def _check_membership(
        self,
        membership: Membership,
        actor_priority: int,
        action: Action,
        resource: Optional[ResourceSnapshot],
        context: AuthorizationContext,
    ) -> Optional[str]:
        changes_role = action in (Action.CHANGE_ROLE, Action.MANAGE) or context.requests_role_change
        deactivates = action == Action.TOGGLE_ACTIVE or (
            action in MEMBERSHIP_MUTATIONS and context.requests_deactivation
        )

        if resource is not None and self._is_own(membership, resource):
            if changes_role:
                return "cannot change own role"
            if deactivates:
                return "cannot deactivate own membership"
            if action == Action.DELETE and actor_priority >= TOP_PRIORITY:
                return "owner cannot leave the organization"
            return None

        if resource is not None and action in MEMBERSHIP_MUTATIONS:
            target = self.target_priority(membership.tenant_id, resource)
            if target is _UNRESOLVED:
                return "target membership role is unknown"
            if target > actor_priority:
                return "target membership outranks actor"
            if target >= TOP_PRIORITY:
                return "owner membership cannot be modified"
            # Peers may edit each other's profile fields only
            if target == actor_priority and (action != Action.UPDATE or changes_role or deactivates):
                return "target membership is not below actor priority"

        if changes_role or action == Action.CREATE:
            requested = self.requested_priority(membership.tenant_id, context)
            if requested is _UNRESOLVED:
                return "requested role is unknown"
            if requested is not None and requested >= actor_priority:
                return "cannot assign a role at or above own priority"

        return None

    def _check_role(
        self,
        tenant_id: str,
        actor_priority: int,
        action: Action,
        resource: Optional[ResourceSnapshot],
        context: AuthorizationContext,
    ) -> Optional[str]:
        if action == Action.READ:
            return None

        if resource is not None and action in ROLE_MUTATIONS:
            target = self.target_priority(tenant_id, resource)
            if target is _UNRESOLVED:
                return "target role is unknown"
            if target >= actor_priority:
                return "target role is not below actor priority"

        requested = self.requested_priority(tenant_id, context)
        if requested is _UNRESOLVED:
            return "requested role is unknown"
        if requested is not None and requested >= actor_priority:
            return "requested priority is not below actor priority"

        return None

    @staticmethod
    def _is_own(membership: Membership, resource: ResourceSnapshot) -> bool:
        if resource.resource_id is not None and resource.resource_id == membership.id:
            return True
        return resource.assignee_id is not None and resource.assignee_id == membership.actor_id
