"""
Tenant Authorization Service
Core policy evaluator deciding whether an actor may perform an action on a
resource inside one tenant.

FAIL-CLOSED EVALUATION:
- No active membership in the tenant means no access, whatever the role
- A resource from another tenant is reported as not found, never as forbidden
- Unknown roles, resource types and actions evaluate to deny
- Any error during evaluation denies

Every call to ``evaluate`` hands exactly one AuditLogEntry to the audit
logger, whatever the outcome. ``scope_for`` and ``permitted_fields`` are
queries that shape listings and forms and do not write to the audit trail.
"""

import logging
import time
from dataclasses import replace
from typing import Callable, FrozenSet, List, Optional

from sqlalchemy.orm import Session

from ...models.authorization_models import (
    AuditLogEntry,
    AuthorizationConfiguration,
    AuthorizationContext,
    ConditionCheck,
    Decision,
    DecisionOutcome,
    Filter,
    Membership,
    ResourceSnapshot,
    Role,
)
from ...rbac import Action, ResourceType, normalize_action, normalize_resource_type
from ...utils.logging_security import describe_check_for_log, sanitize_for_log, sanitize_id_for_log
from .catalog import PermissionCatalog, covering_grants
from .conditions import ConditionEvaluator
from .exceptions import CrossTenantNotFound, NoMembership, PermissionDenied
from .hierarchy import HierarchyGuard
from .membership import MembershipResolver
from .scope import ScopeResolver

logger = logging.getLogger(__name__)

# Membership fields any actor allowed to update the membership may change
PROFILE_FIELDS = frozenset({"display_name", "title", "timezone", "avatar_url", "notification_preferences"})

# Conditional grants permit these without a resource; the listing is narrowed by scope_for
COLLECTION_LEVEL_ACTIONS = frozenset({Action.READ, Action.CREATE})


def _name(value) -> str:
    if value is None:
        return ""
    return str(getattr(value, "value", value))


class AuthorizationService:
    """
    Tenant-scoped policy evaluator

    Combines the membership resolver, the role catalog, the condition
    evaluator and the role hierarchy into a single decision, and records every
    decision in the audit trail.
    """

    def __init__(
        self,
        membership_resolver: MembershipResolver,
        catalog: PermissionCatalog,
        audit_logger=None,
        config: Optional[AuthorizationConfiguration] = None,
        condition_evaluator: Optional[ConditionEvaluator] = None,
    ):
        self.membership_resolver = membership_resolver
        self.catalog = catalog
        self.audit_logger = audit_logger
        self.config = config or AuthorizationConfiguration()
        self.conditions = condition_evaluator or ConditionEvaluator()
        self.hierarchy = HierarchyGuard(catalog)
        self.scope_resolver = ScopeResolver(membership_resolver, catalog)

        logger.info(f"Authorization service initialized with config: {self.config}")

    def evaluate(
        self,
        actor_id: str,
        tenant_id: str,
        resource_type,
        action,
        resource: Optional[ResourceSnapshot] = None,
        context: Optional[AuthorizationContext] = None,
    ) -> Decision:
        """
        Decide whether actor_id may perform action on resource_type in tenant_id.

        Args:
            actor_id: Authenticated actor (trusted, supplied by the caller)
            tenant_id: Tenant the request is routed to (trusted)
            resource_type: ResourceType or its name
            action: Action, its name or an alias such as "show" or "destroy"
            resource: Target snapshot; None for collection-level checks
            context: Team ids, requested role and request metadata

        Returns:
            Decision: Never raises for an authorization outcome
        """
        start_time = time.time()
        context = context or AuthorizationContext()

        try:
            decision = self._decide(actor_id, tenant_id, resource_type, action, resource, context)
        except Exception as e:
            logger.error(
                f"Authorization evaluation failed for "
                f"{describe_check_for_log(actor_id, tenant_id, _name(resource_type), _name(action))}: "
                f"{type(e).__name__}"
            )
            # Fail securely - deny access on error
            decision = self._decision(
                DecisionOutcome.ERROR,
                "authorization evaluation error",
                actor_id,
                tenant_id,
                resource_type,
                action,
                resource,
            )

        decision = self._audit_authorization_decision(decision, context)

        evaluation_ms = int((time.time() - start_time) * 1000)
        description = describe_check_for_log(
            actor_id, tenant_id, decision.resource_type, decision.action, decision.resource_id
        )
        if evaluation_ms > self.config.slow_evaluation_ms:
            logger.warning(f"Slow authorization evaluation ({evaluation_ms}ms): {description}")

        if decision.permitted:
            logger.debug(f"ACCESS GRANTED: {description}")
        else:
            logger.warning(
                f"ACCESS DENIED ({decision.outcome.value}): {description} - {sanitize_for_log(decision.reason)}"
            )

        return decision

    def can(
        self,
        actor_id: str,
        tenant_id: str,
        resource_type,
        action,
        resource: Optional[ResourceSnapshot] = None,
        context: Optional[AuthorizationContext] = None,
    ) -> bool:
        return self.evaluate(actor_id, tenant_id, resource_type, action, resource, context).permitted

    def authorize(
        self,
        actor_id: str,
        tenant_id: str,
        resource_type,
        action,
        resource: Optional[ResourceSnapshot] = None,
        context: Optional[AuthorizationContext] = None,
    ) -> Decision:
        """
        Evaluate and raise on denial.

        Raises:
            NoMembership: Actor has no active membership in the tenant
            CrossTenantNotFound: Resource belongs to a different tenant
            PermissionDenied: Any other denial, including evaluation errors
        """
        decision = self.evaluate(actor_id, tenant_id, resource_type, action, resource, context)
        if decision.permitted:
            return decision
        if decision.outcome == DecisionOutcome.NO_MEMBERSHIP:
            raise NoMembership(decision=decision)
        if decision.outcome == DecisionOutcome.NOT_FOUND:
            raise CrossTenantNotFound(decision.resource_type, decision.resource_id, decision=decision)
        raise PermissionDenied(reason=decision.reason, decision=decision)

    def scope_for(
        self,
        actor_id: str,
        tenant_id: str,
        resource_type,
        context: Optional[AuthorizationContext] = None,
    ) -> Filter:
        """Listing filter for resource_type; Filter.none() for non-members"""
        return self.scope_resolver.scope(actor_id, tenant_id, resource_type, context)

    def permitted_fields(
        self,
        actor_id: str,
        tenant_id: str,
        target: ResourceSnapshot,
        context: Optional[AuthorizationContext] = None,
    ) -> FrozenSet[str]:
        """
        Membership fields actor_id may change on the target membership.

        Profile fields need update (or self-service on one's own membership).
        ``role`` needs change_role and ``active`` needs toggle_active; the
        hierarchy already refuses both on one's own membership and on a
        higher-priority one.
        """
        context = context or AuthorizationContext()
        fields = set()
        if self._decide_quietly(actor_id, tenant_id, ResourceType.MEMBERSHIP, Action.UPDATE, target, context):
            fields |= PROFILE_FIELDS
        if self._decide_quietly(actor_id, tenant_id, ResourceType.MEMBERSHIP, Action.CHANGE_ROLE, target, context):
            fields.add("role")
        if self._decide_quietly(actor_id, tenant_id, ResourceType.MEMBERSHIP, Action.TOGGLE_ACTIVE, target, context):
            fields.add("active")
        return frozenset(fields)

    def actor_role(self, actor_id: str, tenant_id: str) -> Optional[Role]:
        """Role of the actor's active membership, or None"""
        membership = self.membership_resolver.resolve(actor_id, tenant_id)
        if membership is None:
            return None
        return self.catalog.get_role(tenant_id, membership.role_key)

    def _decide_quietly(self, actor_id, tenant_id, resource_type, action, resource, context) -> bool:
        try:
            return self._decide(actor_id, tenant_id, resource_type, action, resource, context).permitted
        except Exception as e:
            logger.error(f"Field permission check failed: {type(e).__name__}")
            return False

    def _decide(
        self,
        actor_id: str,
        tenant_id: str,
        resource_type,
        action,
        resource: Optional[ResourceSnapshot],
        context: AuthorizationContext,
    ) -> Decision:
        actor, membership = self.membership_resolver.lookup(actor_id, tenant_id)
        system_admin = actor is not None and actor.is_system_admin

        def outcome(result: DecisionOutcome, reason: str, membership: Optional[Membership] = None, checks=()):
            return self._decision(
                result, reason, actor_id, tenant_id, resource_type, action, resource, membership, checks, system_admin
            )

        if membership is None:
            return outcome(DecisionOutcome.NO_MEMBERSHIP, "no membership")

        if resource is not None and resource.tenant_id != tenant_id:
            return outcome(DecisionOutcome.NOT_FOUND, "resource not found", membership)

        role = self.catalog.get_role(tenant_id, membership.role_key)
        if role is None:
            return outcome(DecisionOutcome.DENIED, f"role {membership.role_key} not found", membership)

        normalized_type = normalize_resource_type(resource_type)
        if normalized_type is None:
            return outcome(DecisionOutcome.DENIED, "unknown resource type", membership)
        normalized_action = normalize_action(action)
        if normalized_action is None:
            return outcome(DecisionOutcome.DENIED, "unknown action", membership)

        grants = covering_grants(role, normalized_type, normalized_action)
        if not grants:
            return outcome(
                DecisionOutcome.DENIED,
                f"no grant for {normalized_type.value}:{normalized_action.value}",
                membership,
            )

        checks: List[ConditionCheck] = []
        unconditional = [grant for grant in grants if not grant.conditional]
        if unconditional:
            granted_by = str(unconditional[0])
        elif resource is None:
            if normalized_action not in COLLECTION_LEVEL_ACTIONS:
                return outcome(DecisionOutcome.DENIED, "conditional grant requires a resource", membership)
            granted_by = "conditional grant (collection)"
        else:
            granted_by = ""
            for grant in sorted(grants, key=str):
                passed = self.conditions.check(
                    grant.condition, actor_id, resource, context, normalized_type, membership.id
                )
                checks.append(ConditionCheck(str(grant), grant.condition.value, passed))
                if passed and not granted_by:
                    granted_by = str(grant)
            if not granted_by:
                return outcome(DecisionOutcome.DENIED, "conditions not met", membership, checks)

        denial = self.hierarchy.check(membership, role.priority, normalized_type, normalized_action, resource, context)
        if denial:
            return outcome(DecisionOutcome.DENIED, denial, membership, checks)

        return outcome(DecisionOutcome.PERMITTED, f"granted by {granted_by}", membership, checks)

    @staticmethod
    def _decision(
        result: DecisionOutcome,
        reason: str,
        actor_id: str,
        tenant_id: str,
        resource_type,
        action,
        resource: Optional[ResourceSnapshot],
        membership: Optional[Membership] = None,
        checks=(),
        system_admin: bool = False,
    ) -> Decision:
        normalized_type = normalize_resource_type(resource_type)
        normalized_action = normalize_action(action)
        return Decision(
            permitted=result == DecisionOutcome.PERMITTED,
            outcome=result,
            reason=reason,
            actor_id=_name(actor_id),
            tenant_id=_name(tenant_id),
            resource_type=normalized_type.value if normalized_type else _name(resource_type),
            action=normalized_action.value if normalized_action else _name(action),
            resource_id=resource.resource_id if resource else None,
            role_key=membership.role_key if membership else None,
            conditions_checked=tuple(checks),
            system_admin=system_admin,
        )

    def _audit_authorization_decision(self, decision: Decision, context: AuthorizationContext) -> Decision:
        """
        Hand the decision to the audit trail (exactly once per evaluate)
        """
        if not self.config.enable_audit_logging or self.audit_logger is None:
            return decision

        try:
            audit_context = context.to_audit_context()
            if decision.system_admin:
                audit_context["system_admin"] = True

            entry = AuditLogEntry(
                actor_id=decision.actor_id,
                tenant_id=decision.tenant_id,
                resource_type=decision.resource_type,
                resource_id=decision.resource_id,
                action=decision.action,
                permitted=decision.permitted,
                outcome=decision.outcome,
                reason=decision.reason,
                conditions_checked=[check.as_dict() for check in decision.conditions_checked],
                context=audit_context,
                role_key=decision.role_key,
                ip_address=context.ip_address,
                user_agent=context.user_agent,
            )
            self.audit_logger.record(entry)
            return replace(decision, audit_entry_id=entry.id)

        except Exception as e:
            logger.error(
                f"Failed to audit authorization decision for {sanitize_id_for_log(decision.actor_id)}: "
                f"{type(e).__name__}"
            )
            return decision


class RoleAdministrationService:
    """
    Catalog mutations performed on behalf of an actor.

    The actor's priority is re-resolved inside the tenant's catalog lock, and
    the mutation is evaluated (and audited) as an action on the role resource
    before the catalog is changed, so two concurrent requests cannot both act
    on a stale view of the actor's role.
    """

    def __init__(self, authorization_service: AuthorizationService):
        self.authorization = authorization_service
        self.catalog = authorization_service.catalog

    def _actor_priority(self, actor_id: str, tenant_id: str, action: Action, resource, context) -> int:
        self.authorization.authorize(actor_id, tenant_id, ResourceType.ROLE, action, resource, context)
        role = self.authorization.actor_role(actor_id, tenant_id)
        if role is None:
            raise PermissionDenied(reason="role not found")
        return role.priority

    def create_role(
        self,
        actor_id: str,
        tenant_id: str,
        key: str,
        priority: int,
        grants=(),
        name: str = "",
        description: str = "",
    ) -> Role:
        with self.catalog.tenant_lock(tenant_id):
            context = AuthorizationContext(target_role_priority=priority)
            actor_priority = self._actor_priority(actor_id, tenant_id, Action.CREATE, None, context)
            return self.catalog.create_role(
                tenant_id, key, priority, actor_priority, grants=grants, name=name, description=description
            )

    def duplicate_role(
        self,
        actor_id: str,
        tenant_id: str,
        source_key: str,
        new_key: str,
        new_priority: int,
        name: str = "",
    ) -> Role:
        with self.catalog.tenant_lock(tenant_id):
            context = AuthorizationContext(target_role_priority=new_priority)
            actor_priority = self._actor_priority(actor_id, tenant_id, Action.CREATE, None, context)
            return self.catalog.duplicate_role(tenant_id, source_key, new_key, new_priority, actor_priority, name)

    def delete_role(self, actor_id: str, tenant_id: str, key: str) -> None:
        with self.catalog.tenant_lock(tenant_id):
            actor_priority = self._actor_priority(
                actor_id, tenant_id, Action.DELETE, self._role_snapshot(tenant_id, key), None
            )
            self.catalog.delete_role(tenant_id, key, actor_priority)

    def attach_grant(self, actor_id: str, tenant_id: str, key: str, resource_type, action, condition=None) -> Role:
        with self.catalog.tenant_lock(tenant_id):
            actor_priority = self._actor_priority(
                actor_id, tenant_id, Action.UPDATE, self._role_snapshot(tenant_id, key), None
            )
            return self.catalog.attach_grant(
                tenant_id, key, resource_type, action, actor_priority, condition=condition
            )

    def detach_grant(self, actor_id: str, tenant_id: str, key: str, resource_type, action, condition=None) -> Role:
        with self.catalog.tenant_lock(tenant_id):
            actor_priority = self._actor_priority(
                actor_id, tenant_id, Action.UPDATE, self._role_snapshot(tenant_id, key), None
            )
            return self.catalog.detach_grant(
                tenant_id, key, resource_type, action, actor_priority, condition=condition
            )

    def _role_snapshot(self, tenant_id: str, key: str) -> ResourceSnapshot:
        role = self.catalog.get_role(tenant_id, key)
        if role is None:
            return ResourceSnapshot(resource_id=key, tenant_id=tenant_id, role_key=key)
        return ResourceSnapshot.for_role(role, tenant_id)


# Factory function
def get_authorization_service(
    session_factory: Optional[Callable[[], Session]] = None,
    config: Optional[AuthorizationConfiguration] = None,
) -> AuthorizationService:
    """Factory function wiring the SQLAlchemy-backed directory, catalog store and audit sink"""
    from ...config import get_settings
    from ...database import SessionLocal
    from ..audit import AuditLogger, SqlAuditSink
    from .catalog import SqlCatalogStore
    from .membership import SqlMembershipDirectory

    settings = get_settings()
    session_factory = session_factory or SessionLocal
    config = config or AuthorizationConfiguration(slow_evaluation_ms=settings.slow_evaluation_ms)

    directory = SqlMembershipDirectory(session_factory)
    catalog = PermissionCatalog(store=SqlCatalogStore(session_factory), role_usage=directory)
    audit_logger = AuditLogger(
        SqlAuditSink(session_factory),
        async_writes=settings.audit_async,
        max_pending=settings.audit_max_pending,
        flush_timeout=settings.audit_flush_timeout_seconds,
        default_page_size=settings.default_page_size,
        max_page_size=settings.max_page_size,
    )
    return AuthorizationService(MembershipResolver(directory), catalog, audit_logger, config)
