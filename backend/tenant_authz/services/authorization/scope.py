"""
Scope Resolver

Turns an actor's read grants on a resource type into a declarative listing
``Filter``. The resolver never touches domain storage and never writes to the
audit trail; the domain storage layer applies the filter to its own query.
"""

import logging
from typing import List, Optional

from ...models.authorization_models import AuthorizationContext, Filter, FilterClause, ScopeField
from ...rbac import Action, Condition, ResourceType, normalize_resource_type
from ...utils.logging_security import sanitize_for_log, sanitize_id_for_log
from .catalog import PermissionCatalog, covering_grants
from .membership import MembershipResolver

logger = logging.getLogger(__name__)


class ScopeResolver:
    """Builds listing filters from read-class grants"""

    def __init__(self, membership_resolver: MembershipResolver, catalog: PermissionCatalog):
        self.membership_resolver = membership_resolver
        self.catalog = catalog

    def scope(
        self,
        actor_id: str,
        tenant_id: str,
        resource_type,
        context: Optional[AuthorizationContext] = None,
    ) -> Filter:
        """
        Resolve the listing filter for actor_id on resource_type in tenant_id.

        Returns:
            Filter.none() for non-members and for roles without a read grant,
            Filter.all() when an unconditional read or manage grant applies,
            otherwise the union of the conditional grants' clauses.
        """
        type_name = str(getattr(resource_type, "value", resource_type))
        try:
            membership = self.membership_resolver.resolve(actor_id, tenant_id)
            if membership is None:
                return Filter.none(tenant_id, type_name)

            normalized_type = normalize_resource_type(resource_type)
            if normalized_type is None:
                return Filter.none(tenant_id, type_name)
            type_name = normalized_type.value

            role = self.catalog.get_role(tenant_id, membership.role_key)
            if role is None:
                logger.warning(
                    f"Membership of {sanitize_id_for_log(actor_id)} references unknown role "
                    f"{sanitize_for_log(membership.role_key)}"
                )
                return Filter.none(tenant_id, type_name)

            grants = covering_grants(role, normalized_type, Action.READ)
            if not grants:
                return Filter.none(tenant_id, type_name)
            if any(not grant.conditional for grant in grants):
                return Filter.all(tenant_id, type_name)

            team_ids = context.team_ids if context else frozenset()
            clauses: List[FilterClause] = []
            for grant in sorted(grants, key=str):
                if grant.condition == Condition.OWN_ONLY:
                    # A membership is only "own" to its member
                    if normalized_type != ResourceType.MEMBERSHIP:
                        clauses.append(FilterClause(ScopeField.CREATED_BY, actor_id))
                    clauses.append(FilterClause(ScopeField.ASSIGNED_TO, actor_id))
                elif grant.condition == Condition.TEAM_ONLY:
                    clauses.append(FilterClause(ScopeField.TEAM_OF, actor_id, frozenset(team_ids)))

            return Filter.any_of(tenant_id, type_name, clauses)

        except Exception as e:
            logger.error(
                f"Scope resolution failed for {sanitize_id_for_log(actor_id)}@{sanitize_id_for_log(tenant_id)} "
                f"on {sanitize_for_log(type_name)}: {type(e).__name__}"
            )
            return Filter.none(tenant_id, type_name)
