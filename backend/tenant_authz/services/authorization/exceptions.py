"""
Authorization Exceptions

Error taxonomy for the tenant authorization engine.

Decisions themselves are returned as values (``Decision``); these exceptions
exist for callers that prefer exception-style control flow
(``AuthorizationService.authorize``), for catalog mutations, and for audit
sinks.
"""

from typing import Optional


class AuthorizationError(Exception):
    """Base class for every error raised by the authorization engine."""

    def __init__(self, message: Optional[str] = None, decision=None):
        self.message = message or self.__class__.__name__
        self.decision = decision
        super().__init__(self.message)


class NoMembership(AuthorizationError):
    """Raised when the actor has no active membership in the tenant.

    The message is identical whether the tenant does not exist, the actor was
    never a member, or the membership was deactivated, so callers cannot use
    it to probe for membership existence.
    """

    def __init__(self, decision=None):
        super().__init__("No active membership in this tenant", decision)


class PermissionDenied(AuthorizationError):
    """Raised when a membership exists but a grant, condition or hierarchy check failed.

    Attributes:
        reason: Why the decision was denied (also recorded in the audit trail)

    Example:
        if not decision.permitted:
            raise PermissionDenied(reason=decision.reason, decision=decision)
    """

    def __init__(self, reason: Optional[str] = None, decision=None):
        self.reason = reason or "Permission denied"
        super().__init__(self.reason, decision)


class CrossTenantNotFound(AuthorizationError):
    """Raised when the target resource belongs to a different tenant.

    Surfaced as "not found" rather than "forbidden" so that the existence of
    another tenant's record is never disclosed.
    """

    def __init__(self, resource_type: Optional[str] = None, resource_id: Optional[str] = None, decision=None):
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__("Resource not found", decision)


class CatalogError(AuthorizationError):
    """Raised when a role or permission definition is malformed.

    Rejected at mutation time so that a bad definition never reaches the
    evaluation path. Examples: unknown condition key, role priority collision,
    deleting a role that active memberships still reference.
    """


class AuditSinkFailure(AuthorizationError):
    """Raised by an audit sink when an entry cannot be stored.

    Internal only: the audit logger logs and swallows it.
    """

    def __init__(self, message: Optional[str] = None, entry_id: Optional[str] = None):
        self.entry_id = entry_id
        super().__init__(message or f"Failed to store audit entry {entry_id}")
