"""Propagate caller identity (user + organization) through the call stack using contextvars."""

from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True)
class RequestIdentity:
    """Who is making the current request and on behalf of which organization."""

    user_id: UUID
    organization_id: UUID


_current_identity: ContextVar[RequestIdentity | None] = ContextVar("current_identity", default=None)


def get_current_identity() -> RequestIdentity | None:
    """Current identity, or None outside of an authenticated request (e.g. webhooks)."""
    return _current_identity.get()


def get_current_user_id() -> UUID:
    """
    Get current user ID from context.

    Raises RuntimeError if no identity is set.
    This is fail-fast behavior - if you're in a code path that
    requires user context and it's not set, that's a bug.
    """
    identity = _current_identity.get()
    if identity is None:
        raise RuntimeError(
            "No user context set. This usually means you're calling "
            "user-scoped code outside of an authenticated request."
        )
    return identity.user_id


def get_current_organization_id() -> UUID:
    """Get current organization ID from context. Raises RuntimeError if unset."""
    identity = _current_identity.get()
    if identity is None:
        raise RuntimeError("No organization context set.")
    return identity.organization_id


def set_current_identity(user_id: UUID, organization_id: UUID) -> None:
    """
    Set current identity in context.

    Called by auth middleware after validating session.
    """
    _current_identity.set(RequestIdentity(user_id=user_id, organization_id=organization_id))


def clear_current_identity() -> None:
    """
    Clear identity context.

    Called by auth middleware after request completes.
    Must be called in finally block to prevent context leakage.
    """
    _current_identity.set(None)


@contextmanager
def identity_context(user_id: UUID, organization_id: UUID):
    """
    Context manager for temporarily setting the caller identity.

    Useful for tests and for admin operations on behalf of a user.

    Example:
        with identity_context(user_id, organization_id):
            invoices = invoice_service.list_invoices(organization_id)
    """
    previous = _current_identity.get()
    set_current_identity(user_id, organization_id)
    try:
        yield
    finally:
        _current_identity.set(previous)
