"""Typed exceptions for auth failures."""


class AuthError(Exception):
    """Base class for authentication/authorization errors."""


class SessionExpiredError(AuthError):
    """Session has expired (or never existed) and user must re-authenticate."""
