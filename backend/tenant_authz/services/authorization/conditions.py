"""
Condition Evaluator

Evaluates the runtime predicate attached to a conditional grant against a
resource snapshot. Unknown condition keys and missing resources evaluate to
False so a malformed grant can only ever deny.

On membership resources ``own_only`` means the actor's own membership: the
member is compared, never whoever created (invited) it.
"""

import logging
from typing import Optional

from ...models.authorization_models import AuthorizationContext, ResourceSnapshot
from ...rbac import Condition, ResourceType, normalize_condition
from ...utils.logging_security import sanitize_for_log

logger = logging.getLogger(__name__)


class ConditionEvaluator:
    """Stateless evaluator for own_only / team_only conditions"""

    def check(
        self,
        condition,
        actor_id: str,
        resource: Optional[ResourceSnapshot],
        context: Optional[AuthorizationContext] = None,
        resource_type: Optional[ResourceType] = None,
        membership_id: Optional[str] = None,
    ) -> bool:
        """
        Args:
            condition: Condition or its key; None means unconditional
            actor_id: Acting actor
            resource: Target snapshot
            context: Supplies team_ids for team_only
            resource_type: Normalized type of the target
            membership_id: The actor's membership id, matched against membership targets
        """
        key = normalize_condition(condition)
        if key is None:
            logger.warning(f"Unknown grant condition evaluated as false: {sanitize_for_log(condition)}")
            return False

        if key == Condition.NONE:
            return True

        if resource is None:
            return False

        if key == Condition.OWN_ONLY:
            if resource_type == ResourceType.MEMBERSHIP:
                return self.is_own_membership(actor_id, resource, membership_id)
            return self.is_own(actor_id, resource)

        if key == Condition.TEAM_ONLY:
            team_ids = context.team_ids if context else frozenset()
            return resource.team_id is not None and str(resource.team_id) in team_ids

        return False

    @staticmethod
    def is_own(actor_id: str, resource: ResourceSnapshot) -> bool:
        """Creator or assignee of the resource"""
        if not actor_id:
            return False
        return resource.creator_id == actor_id or resource.assignee_id == actor_id

    @staticmethod
    def is_own_membership(actor_id: str, resource: ResourceSnapshot, membership_id: Optional[str] = None) -> bool:
        if membership_id and resource.resource_id == membership_id:
            return True
        return bool(actor_id) and resource.assignee_id == actor_id
