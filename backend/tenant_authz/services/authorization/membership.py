"""
Tenant Membership Resolution

Resolves the active membership of an actor in a tenant. The resolver is the
only component that decides whether an actor "belongs" to a tenant, and it
collapses every reason for not belonging (unknown tenant, inactive tenant,
unknown actor, no membership, inactive membership) into a single ``None`` so
callers cannot probe which one applied.

Directories are read-only from the engine's point of view: membership records
are created and changed by the surrounding product.
"""

import logging
import threading
from typing import Callable, Dict, Optional, Protocol, Tuple

from sqlalchemy.orm import Session

from ...database import ActorRecord, MembershipRecord, TenantRecord
from ...models.authorization_models import Actor, Membership, Tenant
from ...utils.logging_security import sanitize_id_for_log

logger = logging.getLogger(__name__)


class MembershipDirectory(Protocol):
    """Read access to tenants, actors and memberships"""

    def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        ...

    def get_actor(self, actor_id: str) -> Optional[Actor]:
        ...

    def find_membership(self, actor_id: str, tenant_id: str) -> Optional[Membership]:
        ...

    def get_membership(self, membership_id: str) -> Optional[Membership]:
        ...

    def has_active_members_with_role(self, tenant_id: str, role_key: str) -> bool:
        ...


class InMemoryMembershipDirectory:
    """
    Thread-safe in-memory directory.

    Used by tests and by embedders that keep memberships in their own store
    and push updates into the engine.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._tenants: Dict[str, Tenant] = {}
        self._actors: Dict[str, Actor] = {}
        self._memberships: Dict[str, Membership] = {}
        self._by_actor_tenant: Dict[Tuple[str, str], str] = {}

    def add_tenant(self, tenant: Tenant) -> Tenant:
        with self._lock:
            self._tenants[tenant.id] = tenant
        return tenant

    def add_actor(self, actor: Actor) -> Actor:
        with self._lock:
            self._actors[actor.id] = actor
        return actor

    def add_membership(self, membership: Membership) -> Membership:
        """Store a membership; at most one per (actor, tenant)"""
        key = (membership.actor_id, membership.tenant_id)
        with self._lock:
            existing_id = self._by_actor_tenant.get(key)
            if existing_id is not None and existing_id != membership.id:
                raise ValueError(
                    f"Actor {membership.actor_id} already has a membership in tenant {membership.tenant_id}"
                )
            self._memberships[membership.id] = membership
            self._by_actor_tenant[key] = membership.id
        return membership

    def replace_membership(self, membership: Membership) -> Membership:
        """Swap in an updated membership record (role change, deactivation)"""
        with self._lock:
            if membership.id not in self._memberships:
                raise KeyError(membership.id)
            return self.add_membership(membership)

    def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        return self._tenants.get(tenant_id)

    def get_actor(self, actor_id: str) -> Optional[Actor]:
        return self._actors.get(actor_id)

    def find_membership(self, actor_id: str, tenant_id: str) -> Optional[Membership]:
        with self._lock:
            membership_id = self._by_actor_tenant.get((actor_id, tenant_id))
            if membership_id is None:
                return None
            return self._memberships.get(membership_id)

    def get_membership(self, membership_id: str) -> Optional[Membership]:
        return self._memberships.get(membership_id)

    def has_active_members_with_role(self, tenant_id: str, role_key: str) -> bool:
        with self._lock:
            return any(
                m.active and m.tenant_id == tenant_id and m.role_key == role_key
                for m in self._memberships.values()
            )


class SqlMembershipDirectory:
    """Directory backed by the tenants, actors and tenant_memberships tables"""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        with self.session_factory() as db:
            record = db.get(TenantRecord, tenant_id)
            if record is None:
                return None
            return Tenant(id=record.id, name=record.name, active=bool(record.active))

    def get_actor(self, actor_id: str) -> Optional[Actor]:
        with self.session_factory() as db:
            record = db.get(ActorRecord, actor_id)
            if record is None:
                return None
            return Actor(id=record.id, email=record.email, is_system_admin=bool(record.is_system_admin))

    def find_membership(self, actor_id: str, tenant_id: str) -> Optional[Membership]:
        with self.session_factory() as db:
            record = (
                db.query(MembershipRecord)
                .filter(MembershipRecord.actor_id == actor_id, MembershipRecord.tenant_id == tenant_id)
                .first()
            )
            return self._to_membership(record)

    def get_membership(self, membership_id: str) -> Optional[Membership]:
        with self.session_factory() as db:
            return self._to_membership(db.get(MembershipRecord, membership_id))

    def has_active_members_with_role(self, tenant_id: str, role_key: str) -> bool:
        with self.session_factory() as db:
            return (
                db.query(MembershipRecord.id)
                .filter(
                    MembershipRecord.tenant_id == tenant_id,
                    MembershipRecord.role_key == role_key,
                    MembershipRecord.active.is_(True),
                )
                .first()
                is not None
            )

    @staticmethod
    def _to_membership(record) -> Optional[Membership]:
        if record is None:
            return None
        return Membership(
            id=record.id,
            actor_id=record.actor_id,
            tenant_id=record.tenant_id,
            role_key=record.role_key,
            active=bool(record.active),
        )


class MembershipResolver:
    """Resolves (actor, tenant) to an active membership or None"""

    def __init__(self, directory: MembershipDirectory):
        self.directory = directory

    def resolve(self, actor_id: str, tenant_id: str) -> Optional[Membership]:
        """
        Return the active membership of actor_id in tenant_id.

        Returns None when the tenant is unknown or inactive, the actor is
        unknown, there is no membership, or the membership is inactive.
        """
        return self.lookup(actor_id, tenant_id)[1]

    def lookup(self, actor_id: str, tenant_id: str) -> Tuple[Optional[Actor], Optional[Membership]]:
        """
        Resolve the actor and its active membership in one pass.

        The actor is returned even when it holds no usable membership, so
        callers can record who was refused without a second directory read.
        """
        if not actor_id or not tenant_id:
            return None, None

        actor = self.directory.get_actor(actor_id)
        if actor is None:
            return None, None

        tenant = self.directory.get_tenant(tenant_id)
        if tenant is None or not tenant.active:
            return actor, None

        membership = self.directory.find_membership(actor_id, tenant_id)
        if membership is None or not membership.active or membership.tenant_id != tenant_id:
            logger.debug(
                f"No active membership for actor {sanitize_id_for_log(actor_id)} "
                f"in tenant {sanitize_id_for_log(tenant_id)}"
            )
            return actor, None

        return actor, membership
