"""
Unit tests for ConditionEvaluator.
"""

import pytest

from tenant_authz.models.authorization_models import AuthorizationContext, ResourceSnapshot
from tenant_authz.rbac import Condition, ResourceType
from tenant_authz.services.authorization import ConditionEvaluator


@pytest.fixture
def evaluator() -> ConditionEvaluator:
    return ConditionEvaluator()


@pytest.mark.unit
class TestConditionEvaluator:
    def test_none_condition_always_passes(self, evaluator: ConditionEvaluator) -> None:
        assert evaluator.check(Condition.NONE, "u-1", None) is True
        assert evaluator.check(None, "u-1", None) is True

    def test_conditional_without_resource_fails(self, evaluator: ConditionEvaluator) -> None:
        assert evaluator.check(Condition.OWN_ONLY, "u-1", None) is False
        assert evaluator.check(Condition.TEAM_ONLY, "u-1", None, AuthorizationContext(team_ids={"t"})) is False

    def test_own_only_matches_creator_or_assignee(self, evaluator: ConditionEvaluator) -> None:
        created = ResourceSnapshot("r-1", "acme", creator_id="u-1")
        assigned = ResourceSnapshot("r-2", "acme", assignee_id="u-1")
        foreign = ResourceSnapshot("r-3", "acme", creator_id="u-2", assignee_id="u-3")

        assert evaluator.check("own_only", "u-1", created) is True
        assert evaluator.check("own_only", "u-1", assigned) is True
        assert evaluator.check("own_only", "u-1", foreign) is False

    def test_own_only_on_membership_matches_the_member_only(self, evaluator: ConditionEvaluator) -> None:
        """Inviting someone does not make their membership yours."""
        invited = ResourceSnapshot("m-2", "acme", creator_id="u-1", assignee_id="u-2")
        own = ResourceSnapshot("m-1", "acme", assignee_id="u-1")
        own_by_id = ResourceSnapshot("m-1", "acme")

        assert evaluator.check("own_only", "u-1", invited, resource_type=ResourceType.MEMBERSHIP) is False
        assert evaluator.check("own_only", "u-1", own, resource_type=ResourceType.MEMBERSHIP) is True
        assert (
            evaluator.check("own_only", "u-1", own_by_id, resource_type=ResourceType.MEMBERSHIP, membership_id="m-1")
            is True
        )
        assert evaluator.check("own_only", "u-1", invited, resource_type=ResourceType.TASK) is True

    def test_own_only_ignores_missing_identifiers(self, evaluator: ConditionEvaluator) -> None:
        orphan = ResourceSnapshot("r-1", "acme")

        assert evaluator.check(Condition.OWN_ONLY, "", orphan) is False
        assert evaluator.check(Condition.OWN_ONLY, "u-1", orphan) is False

    def test_team_only_uses_context_team_ids(self, evaluator: ConditionEvaluator) -> None:
        resource = ResourceSnapshot("r-1", "acme", team_id="team-1")

        assert evaluator.check(Condition.TEAM_ONLY, "u-1", resource) is False
        assert evaluator.check(Condition.TEAM_ONLY, "u-1", resource, AuthorizationContext(team_ids=["team-1"])) is True
        assert evaluator.check(Condition.TEAM_ONLY, "u-1", resource, AuthorizationContext(team_ids=["team-2"])) is False

    def test_team_only_without_team_on_resource(self, evaluator: ConditionEvaluator) -> None:
        resource = ResourceSnapshot("r-1", "acme")

        assert evaluator.check(Condition.TEAM_ONLY, "u-1", resource, AuthorizationContext(team_ids={"team-1"})) is False

    def test_unknown_condition_fails_closed(self, evaluator: ConditionEvaluator, caplog) -> None:
        resource = ResourceSnapshot("r-1", "acme", creator_id="u-1")

        assert evaluator.check("department_only\nINJECTED", "u-1", resource) is False
        assert "\nINJECTED" not in caplog.text
