"""
Valkey (Redis-compatible) store for expiring JSON records.

Every record is written with a TTL and read back as a JSON object; session
tokens are the only tenant today. Keys are prefixed with a namespace so the
billing service can share a Valkey instance. Connection URL from Vault.
Fail-fast: raises on connection failure, never returns fallback values.
"""

import json
import logging
from typing import Any

import redis

logger = logging.getLogger(__name__)


class ValkeyClient:
    """
    Expiring JSON records in Valkey.

    Usage:
        store = ValkeyClient("redis://localhost:6379/0")
        store.put_json("token:session:abc", {"user_id": "..."}, ttl_seconds=3600)
        record = store.get_json("token:session:abc")  # None once expired
    """

    def __init__(self, url: str, namespace: str = "billing"):
        """
        Connect and verify the server answers.

        Args:
            url: Redis-compatible connection URL (e.g., redis://localhost:6379/0)
            namespace: Prefix for every key this client touches

        Raises:
            redis.ConnectionError: If connection fails
        """
        if not namespace or ":" in namespace:
            raise ValueError(f"Invalid namespace: {namespace!r}")
        self.namespace = namespace
        self._client = redis.from_url(url, decode_responses=True)
        self._client.ping()
        logger.info(f"ValkeyClient connected (namespace={namespace})")

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def ping(self) -> bool:
        """Health check. Raises redis.ConnectionError if unreachable."""
        self._client.ping()
        return True

    def put_json(self, key: str, value: dict[str, Any], ttl_seconds: int) -> None:
        """
        Store a JSON object that expires after ``ttl_seconds``.

        Raises:
            ValueError: ttl_seconds is not positive
        """
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._client.set(self._key(key), json.dumps(value), ex=ttl_seconds)

    def get_json(self, key: str) -> dict[str, Any] | None:
        """
        Read a JSON object.

        Returns None if the key is missing or expired.
        Raises ValueError if the stored value is not a JSON object.
        """
        raw = self._client.get(self._key(key))
        if raw is None:
            return None
        try:
            value = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in key '{key}': {e}")
        if not isinstance(value, dict):
            raise ValueError(f"Key '{key}' does not hold a JSON object")
        return value

    def remaining_seconds(self, key: str) -> int | None:
        """Seconds until ``key`` expires; None if it is missing or has no expiry."""
        ttl = self._client.ttl(self._key(key))
        if ttl < 0:
            return None
        return ttl

    def delete(self, key: str) -> bool:
        """Delete a record. Returns whether it existed."""
        return self._client.delete(self._key(key)) > 0

    def close(self) -> None:
        self._client.close()
        logger.info("ValkeyClient closed")
