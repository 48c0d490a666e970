"""
Role and Permission Catalog

Maps role keys to priorities and grants. System roles are fixed and shared by
every tenant; custom roles live per tenant.

Each tenant's custom roles are held in an immutable snapshot that is replaced
atomically on every mutation (copy on write), so evaluation reads the latest
snapshot without taking a lock. Mutations are serialized per tenant with a
re-entrant lock that callers can also hold across a check-then-mutate sequence
(see ``tenant_lock``).
"""

import logging
import re
import threading
from contextlib import contextmanager
from dataclasses import replace
from types import MappingProxyType
from typing import Callable, Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional, Protocol

from sqlalchemy.orm import Session

from ...database import RoleGrantRecord, RoleRecord
from ...models.authorization_models import Role
from ...rbac import (
    SYSTEM_ROLE_GRANTS,
    SYSTEM_ROLE_PRIORITIES,
    Action,
    PermissionGrant,
    SystemRole,
    normalize_action,
    normalize_condition,
    normalize_resource_type,
)
from ...utils.logging_security import sanitize_for_log, sanitize_id_for_log
from .exceptions import CatalogError, PermissionDenied

logger = logging.getLogger(__name__)

ROLE_KEY_PATTERN = re.compile(r"^[a-z0-9_]+$")

SYSTEM_ROLES: Mapping[str, Role] = MappingProxyType(
    {
        role.value: Role(
            key=role.value,
            priority=SYSTEM_ROLE_PRIORITIES[role],
            grants=SYSTEM_ROLE_GRANTS[role],
            system=True,
            name=role.value.title(),
        )
        for role in SystemRole
    }
)


class CatalogStore(Protocol):
    """Persistence for a tenant's custom roles"""

    def load_roles(self, tenant_id: str) -> List[Role]:
        ...

    def save_role(self, tenant_id: str, role: Role) -> None:
        ...

    def delete_role(self, tenant_id: str, role_key: str) -> None:
        ...


class RoleUsageLookup(Protocol):
    def has_active_members_with_role(self, tenant_id: str, role_key: str) -> bool:
        ...


class SqlCatalogStore:
    """Custom roles stored in tenant_roles / tenant_role_grants"""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def load_roles(self, tenant_id: str) -> List[Role]:
        with self.session_factory() as db:
            records = db.query(RoleRecord).filter(RoleRecord.tenant_id == tenant_id).all()
            return [self._to_role(record) for record in records]

    def save_role(self, tenant_id: str, role: Role) -> None:
        with self.session_factory() as db:
            try:
                record = (
                    db.query(RoleRecord)
                    .filter(RoleRecord.tenant_id == tenant_id, RoleRecord.key == role.key)
                    .first()
                )
                if record is None:
                    record = RoleRecord(tenant_id=tenant_id, key=role.key)
                    db.add(record)
                record.name = role.display_name
                record.description = role.description
                record.priority = role.priority
                wanted = {(g.resource_type.value, g.action.value, g.condition.value) for g in role.grants}
                for grant_record in list(record.grants):
                    triple = (grant_record.resource_type, grant_record.action, grant_record.condition)
                    if triple in wanted:
                        wanted.discard(triple)
                    else:
                        record.grants.remove(grant_record)
                for resource_type, action, condition in sorted(wanted):
                    record.grants.append(
                        RoleGrantRecord(resource_type=resource_type, action=action, condition=condition)
                    )
                db.commit()
            except Exception:
                db.rollback()
                raise

    def delete_role(self, tenant_id: str, role_key: str) -> None:
        with self.session_factory() as db:
            try:
                record = (
                    db.query(RoleRecord)
                    .filter(RoleRecord.tenant_id == tenant_id, RoleRecord.key == role_key)
                    .first()
                )
                if record is not None:
                    db.delete(record)
                    db.commit()
            except Exception:
                db.rollback()
                raise

    @staticmethod
    def _to_role(record: RoleRecord) -> Role:
        grants = frozenset(
            build_grant(grant.resource_type, grant.action, grant.condition) for grant in record.grants
        )
        return Role(
            key=record.key,
            priority=record.priority,
            grants=grants,
            system=False,
            name=record.name or "",
            description=record.description or "",
            tenant_id=record.tenant_id,
        )


def build_grant(resource_type, action, condition=None) -> PermissionGrant:
    """Validate and build a grant, raising CatalogError for unknown parts"""
    normalized_type = normalize_resource_type(resource_type)
    if normalized_type is None:
        raise CatalogError(f"Unknown resource type: {sanitize_for_log(resource_type)}")
    normalized_action = normalize_action(action)
    if normalized_action is None:
        raise CatalogError(f"Unknown action: {sanitize_for_log(action)}")
    normalized_condition = normalize_condition(condition)
    if normalized_condition is None:
        raise CatalogError(f"Unknown condition: {sanitize_for_log(condition)}")
    return PermissionGrant(normalized_type, normalized_action, normalized_condition)


class PermissionCatalog:
    """
    Role catalog with per-tenant copy-on-write snapshots.

    Reading (``get_role``, ``grants``, ``priority``, ``roles``) is always
    allowed and lock-free. Mutations take ``actor_priority``, the priority of
    the administrator's own role, and are refused with PermissionDenied unless
    it is strictly greater than the priority of every role they touch.
    """

    def __init__(
        self,
        store: Optional[CatalogStore] = None,
        role_usage: Optional[RoleUsageLookup] = None,
    ):
        self.store = store
        self.role_usage = role_usage
        self._snapshots: Dict[str, Mapping[str, Role]] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    # Locking

    def _lock_for(self, tenant_id: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(tenant_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[tenant_id] = lock
            return lock

    @contextmanager
    def tenant_lock(self, tenant_id: str) -> Iterator[None]:
        """Serialize catalog mutations for one tenant (re-entrant)"""
        lock = self._lock_for(tenant_id)
        with lock:
            yield

    # Reading

    def snapshot(self, tenant_id: str) -> Mapping[str, Role]:
        """Current immutable mapping of custom role key to Role for a tenant"""
        current = self._snapshots.get(tenant_id)
        if current is not None:
            return current
        with self.tenant_lock(tenant_id):
            current = self._snapshots.get(tenant_id)
            if current is None:
                roles = self.store.load_roles(tenant_id) if self.store else []
                current = MappingProxyType({role.key: role for role in roles})
                self._snapshots[tenant_id] = current
                if roles:
                    logger.info(
                        f"Loaded {len(roles)} custom roles for tenant {sanitize_id_for_log(tenant_id)}"
                    )
            return current

    def get_role(self, tenant_id: str, role_key: str) -> Optional[Role]:
        if role_key in SYSTEM_ROLES:
            return SYSTEM_ROLES[role_key]
        return self.snapshot(tenant_id).get(role_key)

    def roles(self, tenant_id: str) -> List[Role]:
        """System and custom roles of a tenant, highest priority first"""
        all_roles = list(SYSTEM_ROLES.values()) + list(self.snapshot(tenant_id).values())
        return sorted(all_roles, key=lambda role: role.priority, reverse=True)

    def grants(self, role: Role) -> FrozenSet[PermissionGrant]:
        return role.grants

    def priority(self, role: Role) -> int:
        return role.priority

    def role_priority(self, tenant_id: str, role_key: Optional[str]) -> Optional[int]:
        if role_key is None:
            return None
        role = self.get_role(tenant_id, role_key)
        return role.priority if role else None

    def role_with_priority(self, tenant_id: str, priority: int) -> Optional[Role]:
        for role in self.roles(tenant_id):
            if role.priority == priority:
                return role
        return None

    # Mutations

    def create_role(
        self,
        tenant_id: str,
        key: str,
        priority: int,
        actor_priority: int,
        grants: Iterable = (),
        name: str = "",
        description: str = "",
    ) -> Role:
        """
        Create a custom role.

        Args:
            tenant_id: Owning tenant
            key: Role key matching [a-z0-9_]+
            priority: Non-negative priority not used by any other role of the tenant
            actor_priority: Priority of the administrator; must exceed ``priority``
            grants: PermissionGrant objects or (resource_type, action[, condition]) tuples

        Raises:
            CatalogError: Invalid key, priority or grant
            PermissionDenied: actor_priority is not above the new role's priority
        """
        built_grants = frozenset(self._coerce_grant(grant) for grant in grants)

        with self.tenant_lock(tenant_id):
            self._validate_key(tenant_id, key)
            self._validate_priority(tenant_id, priority)
            self._require_above(actor_priority, priority, f"create role {key}")

            role = Role(
                key=key,
                priority=priority,
                grants=built_grants,
                system=False,
                name=name,
                description=description,
                tenant_id=tenant_id,
            )
            self._commit(tenant_id, role)

        logger.info(
            f"Created role {sanitize_for_log(key)} (priority {priority}, {len(built_grants)} grants) "
            f"in tenant {sanitize_id_for_log(tenant_id)}"
        )
        return role

    def duplicate_role(
        self,
        tenant_id: str,
        source_key: str,
        new_key: str,
        new_priority: int,
        actor_priority: int,
        name: str = "",
    ) -> Role:
        """Copy a role's grants into a new custom role"""
        with self.tenant_lock(tenant_id):
            source = self.get_role(tenant_id, source_key)
            if source is None:
                raise CatalogError(f"Unknown role: {sanitize_for_log(source_key)}")
            return self.create_role(
                tenant_id,
                new_key,
                new_priority,
                actor_priority,
                grants=source.grants,
                name=name or f"Copy of {source.display_name}",
                description=source.description,
            )

    def delete_role(self, tenant_id: str, key: str, actor_priority: int) -> None:
        with self.tenant_lock(tenant_id):
            role = self._custom_role(tenant_id, key)
            self._require_above(actor_priority, role.priority, f"delete role {key}")
            if self.role_usage is not None and self.role_usage.has_active_members_with_role(tenant_id, key):
                raise CatalogError(f"Role {sanitize_for_log(key)} is assigned to active members")

            if self.store is not None:
                self.store.delete_role(tenant_id, key)
            remaining = {k: r for k, r in self.snapshot(tenant_id).items() if k != key}
            self._snapshots[tenant_id] = MappingProxyType(remaining)

        logger.info(f"Deleted role {sanitize_for_log(key)} in tenant {sanitize_id_for_log(tenant_id)}")

    def attach_grant(
        self,
        tenant_id: str,
        key: str,
        resource_type,
        action,
        actor_priority: int,
        condition=None,
    ) -> Role:
        grant = build_grant(resource_type, action, condition)
        with self.tenant_lock(tenant_id):
            role = self._custom_role(tenant_id, key)
            self._require_above(actor_priority, role.priority, f"change role {key}")
            if grant in role.grants:
                return role
            updated = replace(role, grants=role.grants | {grant})
            self._commit(tenant_id, updated)

        logger.info(f"Attached {grant} to role {sanitize_for_log(key)} in tenant {sanitize_id_for_log(tenant_id)}")
        return updated

    def detach_grant(
        self,
        tenant_id: str,
        key: str,
        resource_type,
        action,
        actor_priority: int,
        condition=None,
    ) -> Role:
        grant = build_grant(resource_type, action, condition)
        with self.tenant_lock(tenant_id):
            role = self._custom_role(tenant_id, key)
            self._require_above(actor_priority, role.priority, f"change role {key}")
            if grant not in role.grants:
                raise CatalogError(f"Role {sanitize_for_log(key)} does not hold {grant}")
            updated = replace(role, grants=role.grants - {grant})
            self._commit(tenant_id, updated)

        logger.info(f"Detached {grant} from role {sanitize_for_log(key)} in tenant {sanitize_id_for_log(tenant_id)}")
        return updated

    def invalidate(self, tenant_id: Optional[str] = None) -> None:
        """Drop cached snapshots so the next read reloads from the store"""
        if tenant_id is None:
            self._snapshots.clear()
        else:
            self._snapshots.pop(tenant_id, None)

    # Helpers

    def _commit(self, tenant_id: str, role: Role) -> None:
        if self.store is not None:
            self.store.save_role(tenant_id, role)
        updated = dict(self.snapshot(tenant_id))
        updated[role.key] = role
        self._snapshots[tenant_id] = MappingProxyType(updated)

    def _custom_role(self, tenant_id: str, key: str) -> Role:
        if key in SYSTEM_ROLES:
            raise CatalogError(f"System role {key} cannot be modified")
        role = self.snapshot(tenant_id).get(key)
        if role is None:
            raise CatalogError(f"Unknown role: {sanitize_for_log(key)}")
        return role

    def _validate_key(self, tenant_id: str, key: str) -> None:
        if not isinstance(key, str) or not ROLE_KEY_PATTERN.match(key):
            raise CatalogError(f"Invalid role key: {sanitize_for_log(key)}")
        if key in SYSTEM_ROLES or key in self.snapshot(tenant_id):
            raise CatalogError(f"Role key already exists: {key}")

    def _validate_priority(self, tenant_id: str, priority: int) -> None:
        if isinstance(priority, bool) or not isinstance(priority, int) or priority < 0:
            raise CatalogError(f"Role priority must be a non-negative integer: {sanitize_for_log(priority)}")
        clash = self.role_with_priority(tenant_id, priority)
        if clash is not None:
            raise CatalogError(f"Priority {priority} is already used by role {clash.key}")

    @staticmethod
    def _require_above(actor_priority: int, priority: int, operation: str) -> None:
        if actor_priority is None or actor_priority <= priority:
            raise PermissionDenied(reason=f"Insufficient role priority to {operation}")

    @staticmethod
    def _coerce_grant(grant) -> PermissionGrant:
        if isinstance(grant, PermissionGrant):
            return grant
        if isinstance(grant, (tuple, list)) and len(grant) in (2, 3):
            return build_grant(*grant)
        raise CatalogError(f"Malformed grant: {sanitize_for_log(grant)}")


def covering_grants(role: Role, resource_type, action: Action) -> List[PermissionGrant]:
    """Grants of a role that apply to (resource_type, action)"""
    return [grant for grant in role.grants if grant.covers(resource_type, action)]
