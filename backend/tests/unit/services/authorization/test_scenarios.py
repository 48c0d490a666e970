"""
End-to-end authorization scenarios and engine-wide properties.

Each scenario runs against the seeded "acme" tenant (owner, admin, two
members, viewer) with the in-memory directory, catalog and a synchronous
audit logger, so every audit entry is visible immediately after evaluate.

Test Categories:
- Membership administration by owners, admins and members
- Conditional grants on domain records (viewer, custom roles)
- Tenant isolation
- Audit trail completeness
"""

import pytest

from tenant_authz.models.authorization_models import (
    AuthorizationContext,
    DecisionOutcome,
    ResourceSnapshot,
    ScopeField,
)
from tenant_authz.rbac import DOMAIN_RESOURCE_TYPES, Action, ResourceType, SystemRole

MEMBERSHIP_MUTATIONS = (Action.TOGGLE_ACTIVE, Action.DELETE, Action.CHANGE_ROLE)


# =============================================================================
# Membership Administration
# =============================================================================


@pytest.mark.unit
class TestMembershipAdministration:
    """Role changes and deactivation across the role hierarchy"""

    def test_owner_promotes_member_to_admin(self, service, world, audit_sink) -> None:
        """Owner may assign admin to a member; exactly one entry is written."""
        decision = service.evaluate(
            world.owner,
            world.tenant,
            "membership",
            "change_role",
            world.membership_of(world.member, "member"),
            AuthorizationContext(target_role_key="admin"),
        )

        assert decision.permitted is True
        assert decision.outcome == DecisionOutcome.PERMITTED
        assert len(audit_sink) == 1
        entry = audit_sink.all_entries()[0]
        assert entry.id == decision.audit_entry_id
        assert entry.permitted is True
        assert entry.context["target_role_key"] == "admin"

    def test_member_cannot_change_roles(self, service, world, audit_sink) -> None:
        """A member holds no change_role grant on memberships."""
        decision = service.evaluate(
            world.member,
            world.tenant,
            "membership",
            "change_role",
            world.membership_of(world.member_2, "member"),
            AuthorizationContext(target_role_key="viewer"),
        )

        assert decision.permitted is False
        assert decision.outcome == DecisionOutcome.DENIED
        assert "no grant" in decision.reason
        assert len(audit_sink) == 1
        assert audit_sink.all_entries()[0].permitted is False

    def test_owner_cannot_deactivate_or_remove_self(self, service, world) -> None:
        """The owner cannot lock themselves out of the tenant."""
        own = world.membership_of(world.owner, "owner")

        deactivate = service.evaluate(world.owner, world.tenant, "membership", "toggle_active", own)
        remove = service.evaluate(world.owner, world.tenant, "membership", "delete", own)

        assert deactivate.permitted is False
        assert deactivate.reason == "cannot deactivate own membership"
        assert remove.permitted is False
        assert remove.reason == "owner cannot leave the organization"

    def test_owner_cannot_deactivate_self_through_update(self, service, world) -> None:
        own = world.membership_of(world.owner, "owner")

        decision = service.evaluate(
            world.owner, world.tenant, "membership", "update", own, AuthorizationContext(changed_fields=["active"])
        )

        assert decision.permitted is False
        assert decision.reason == "cannot deactivate own membership"

    def test_member_cannot_remove_someone_they_invited(self, service, world) -> None:
        """Having created a membership does not let a member delete or edit it."""
        invited = ResourceSnapshot(
            resource_id=world.membership_id(world.viewer),
            tenant_id=world.tenant,
            creator_id=world.member,
            assignee_id=world.viewer,
            role_key="viewer",
        )

        remove = service.evaluate(world.member, world.tenant, "membership", "delete", invited)
        update = service.evaluate(world.member, world.tenant, "membership", "update", invited)

        assert remove.permitted is False
        assert remove.reason == "conditions not met"
        assert update.permitted is False

    def test_member_may_leave_and_list_members(self, service, world) -> None:
        own = world.membership_of(world.member, "member")

        assert service.can(world.member, world.tenant, "membership", "delete", own) is True
        assert service.can(world.member, world.tenant, "membership", "index") is True
        assert service.can(world.member, world.tenant, "membership", "show", world.membership_of(world.owner, "owner"))

    def test_admin_may_view_but_not_update_owner(self, service, world) -> None:
        """Reading a higher-priority membership is allowed, mutating it is not."""
        owner_membership = world.membership_of(world.owner, "owner")

        view = service.evaluate(world.admin, world.tenant, "membership", "show", owner_membership)
        update = service.evaluate(world.admin, world.tenant, "membership", "update", owner_membership)

        assert view.permitted is True
        assert update.permitted is False
        assert update.reason == "target membership outranks actor"

    def test_admin_cannot_grant_admin(self, service, world) -> None:
        """Assigning a role at or above one's own priority is refused."""
        decision = service.evaluate(
            world.admin,
            world.tenant,
            "membership",
            "change_role",
            world.membership_of(world.member, "member"),
            AuthorizationContext(target_role_key="admin"),
        )

        assert decision.permitted is False
        assert decision.reason == "cannot assign a role at or above own priority"

    def test_admin_demotes_member_to_viewer(self, service, world) -> None:
        decision = service.evaluate(
            world.admin,
            world.tenant,
            "membership",
            "change_role",
            world.membership_of(world.member, "member"),
            AuthorizationContext(target_role_key="viewer"),
        )

        assert decision.permitted is True


# =============================================================================
# Conditional Grants on Domain Records
# =============================================================================


@pytest.mark.unit
class TestConditionalGrants:
    """own_only and team_only grants evaluated against resource snapshots"""

    def test_viewer_reads_assigned_task_but_cannot_update(self, service, world) -> None:
        task = world.task(creator_id=world.member, assignee_id=world.viewer)

        show = service.evaluate(world.viewer, world.tenant, "task", "show", task)
        update = service.evaluate(world.viewer, world.tenant, "task", "update", task)

        assert show.permitted is True
        assert [check.passed for check in show.conditions_checked] == [True]
        assert update.permitted is False
        assert update.reason == "no grant for task:update"

    def test_custom_role_updates_only_own_tasks(self, service, catalog, directory, world) -> None:
        """Custom role with task read/create and update(own_only)."""
        from tenant_authz.models.authorization_models import Actor, Membership

        catalog.create_role(
            world.tenant,
            "contributor",
            30,
            actor_priority=100,
            grants=[("task", "read"), ("task", "create"), ("task", "update", "own_only")],
        )
        directory.add_actor(Actor(id="u-contributor"))
        directory.add_membership(
            Membership(id="m-contributor", actor_id="u-contributor", tenant_id=world.tenant, role_key="contributor")
        )

        own_task = world.task("task-own", creator_id="u-contributor")
        other_task = world.task("task-other", creator_id=world.member)

        assert service.can("u-contributor", world.tenant, "task", "update", own_task) is True
        assert service.can("u-contributor", world.tenant, "task", "update", other_task) is False
        assert service.can("u-contributor", world.tenant, "task", "delete", own_task) is False
        assert service.can("u-contributor", world.tenant, "task", "read", other_task) is True

    def test_member_reads_team_task_with_team_context(self, service, world) -> None:
        task = world.task(creator_id=world.admin, team_id="team-7")

        without_team = service.evaluate(world.member, world.tenant, "task", "read", task)
        with_team = service.evaluate(
            world.member, world.tenant, "task", "read", task, AuthorizationContext(team_ids={"team-7"})
        )

        assert without_team.permitted is False
        assert without_team.reason == "conditions not met"
        assert with_team.permitted is True


# =============================================================================
# Engine-wide Properties
# =============================================================================


@pytest.mark.unit
class TestEngineProperties:
    """Properties that hold for every actor, tenant and action"""

    def test_non_member_is_denied_everything(self, service, world) -> None:
        """No membership means no permission and an empty listing."""
        for resource_type in ResourceType:
            for action in Action:
                assert service.can(world.outsider, world.tenant, resource_type, action) is False
            assert service.scope_for(world.outsider, world.tenant, resource_type).is_none

    def test_membership_in_other_tenant_grants_nothing_here(self, service, world) -> None:
        """The globex owner is an outsider in acme."""
        decision = service.evaluate(world.other_owner, world.tenant, "task", "read")

        assert decision.outcome == DecisionOutcome.NO_MEMBERSHIP
        assert service.scope_for(world.other_owner, world.tenant, "task").is_none

    def test_cross_tenant_resource_is_not_found_for_every_role(self, service, world) -> None:
        foreign_task = world.task("task-g", tenant_id=world.other_tenant, creator_id=world.owner)

        for actor_id in (world.owner, world.admin, world.member, world.viewer):
            for action in (Action.READ, Action.UPDATE, Action.DELETE):
                decision = service.evaluate(actor_id, world.tenant, "task", action, foreign_task)
                assert decision.permitted is False
                assert decision.outcome == DecisionOutcome.NOT_FOUND

    def test_nobody_changes_own_role(self, service, world) -> None:
        for actor_id, role_key in (
            (world.owner, "owner"),
            (world.admin, "admin"),
            (world.member, "member"),
            (world.viewer, "viewer"),
        ):
            own = world.membership_of(actor_id, role_key)
            for target in ("owner", "admin", "member", "viewer"):
                decision = service.evaluate(
                    actor_id,
                    world.tenant,
                    "membership",
                    "change_role",
                    own,
                    AuthorizationContext(target_role_key=target),
                )
                assert decision.permitted is False

    def test_members_at_or_below_target_priority_cannot_mutate_it(self, service, world) -> None:
        """Deactivate, delete and change_role need a strictly higher priority."""
        actors = {
            world.owner: ("owner", 100),
            world.admin: ("admin", 80),
            world.member: ("member", 50),
            world.viewer: ("viewer", 10),
        }
        targets = {
            "m-target-owner": ("owner", 100),
            "m-target-admin": ("admin", 80),
            "m-target-member": ("member", 50),
            "m-target-viewer": ("viewer", 10),
        }

        for actor_id, (_, actor_priority) in actors.items():
            for membership_id, (role_key, target_priority) in targets.items():
                target = ResourceSnapshot(
                    resource_id=membership_id,
                    tenant_id=world.tenant,
                    assignee_id="u-someone-else",
                    role_key=role_key,
                )
                if actor_priority > target_priority:
                    continue
                for action in MEMBERSHIP_MUTATIONS:
                    assert service.can(actor_id, world.tenant, "membership", action, target) is False

    def test_every_evaluation_writes_one_audit_entry(self, service, world, audit_sink) -> None:
        calls = [
            (world.owner, "task", "read", None),
            (world.outsider, "task", "read", None),
            (world.viewer, "task", "delete", world.task()),
            (world.member, "task", "read", world.task(tenant_id=world.other_tenant)),
            (world.member, "bogus_type", "read", None),
            (world.member, "task", "bogus_action", None),
        ]

        for index, (actor_id, resource_type, action, resource) in enumerate(calls, start=1):
            decision = service.evaluate(actor_id, world.tenant, resource_type, action, resource)
            assert len(audit_sink) == index
            assert audit_sink.all_entries()[-1].id == decision.audit_entry_id

    def test_member_scope_covers_created_assigned_and_team(self, service, world) -> None:
        context = AuthorizationContext(team_ids={"team-1"})

        for resource_type in DOMAIN_RESOURCE_TYPES:
            scope = service.scope_for(world.member, world.tenant, resource_type, context)
            assert scope.fields == {ScopeField.CREATED_BY, ScopeField.ASSIGNED_TO, ScopeField.TEAM_OF}

        scope = service.scope_for(world.member, world.tenant, "task", context)
        assert scope.matches(world.task(creator_id=world.member))
        assert scope.matches(world.task(assignee_id=world.member))
        assert scope.matches(world.task(team_id="team-1"))
        assert not scope.matches(world.task(creator_id=world.admin, team_id="team-2"))

    def test_scope_agrees_with_read_decisions(self, service, world) -> None:
        """A record is listed exactly when reading it individually is permitted."""
        context = AuthorizationContext(team_ids={"team-1"})
        snapshots = [
            world.task("t1", creator_id=world.member),
            world.task("t2", assignee_id=world.member),
            world.task("t3", team_id="team-1"),
            world.task("t4", creator_id=world.admin, team_id="team-9"),
            world.task("t5"),
        ]

        for actor_id in (world.owner, world.admin, world.member, world.viewer):
            scope = service.scope_for(actor_id, world.tenant, "task", context)
            for snapshot in snapshots:
                assert scope.matches(snapshot) == service.can(
                    actor_id, world.tenant, "task", "read", snapshot, context
                )

    def test_system_admin_flag_grants_nothing(self, service, directory, world, audit_sink) -> None:
        from tenant_authz.models.authorization_models import Actor

        directory.add_actor(Actor(id="u-root", is_system_admin=True))

        decision = service.evaluate("u-root", world.tenant, "task", "read")

        assert decision.outcome == DecisionOutcome.NO_MEMBERSHIP
        assert audit_sink.all_entries()[-1].context["system_admin"] is True

    def test_system_roles_are_ordered(self, service, world) -> None:
        actors = (world.owner, world.admin, world.member, world.viewer)
        priorities = [service.actor_role(actor_id, world.tenant).priority for actor_id in actors]

        assert priorities == sorted(priorities, reverse=True)
        assert service.actor_role(world.owner, world.tenant).key == SystemRole.OWNER.value
