"""Expiring token storage in Valkey.

Tokens are namespaced by purpose ("session", ...) so different kinds of
token can never be confused with one another. Entries expire through the
Valkey TTL; nothing is kept in process memory.
"""

from typing import Any

from clients.valkey_client import ValkeyClient


class TokenStore:
    """Persisted, expiring token -> JSON payload map keyed by (purpose, token)."""

    KEY_PREFIX = "token:"

    def __init__(self, valkey: ValkeyClient):
        self._valkey = valkey

    def _key(self, purpose: str, token: str) -> str:
        if not purpose or ":" in purpose:
            raise ValueError(f"Invalid token purpose: {purpose!r}")
        return f"{self.KEY_PREFIX}{purpose}:{token}"

    def put(self, purpose: str, token: str, payload: dict[str, Any], ttl_seconds: int) -> None:
        """Store a payload under a token for ``ttl_seconds`` (must be positive)."""
        self._valkey.put_json(self._key(purpose, token), payload, ttl_seconds)

    def get(self, purpose: str, token: str) -> dict[str, Any] | None:
        """Payload for a token, or None if unknown or expired."""
        return self._valkey.get_json(self._key(purpose, token))

    def remaining_seconds(self, purpose: str, token: str) -> int | None:
        """Seconds until the token expires, or None if it does not exist."""
        return self._valkey.remaining_seconds(self._key(purpose, token))

    def revoke(self, purpose: str, token: str) -> None:
        """Remove a token. Safe to call with an unknown token."""
        self._valkey.delete(self._key(purpose, token))
