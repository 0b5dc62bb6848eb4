"""Session token lifecycle management.

Sessions live in the TokenStore under the "session" purpose with a TTL
matching session expiry. Token format is cryptographically random
(secrets.token_urlsafe).
"""

import secrets
from datetime import timedelta
from uuid import UUID

from auth.config import AuthConfig
from auth.exceptions import SessionExpiredError
from auth.token_store import TokenStore
from auth.types import Session
from utils.timezone import now_utc, parse_iso


class SessionManager:
    """Session token lifecycle management.

    Supports automatic session extension on activity.
    """

    PURPOSE = "session"

    def __init__(self, tokens: TokenStore, config: AuthConfig):
        self._tokens = tokens
        self._config = config

    def _store(self, session: Session) -> None:
        self._tokens.put(
            self.PURPOSE,
            session.token,
            {
                "user_id": str(session.user_id),
                "organization_id": str(session.organization_id),
                "created_at": session.created_at.isoformat(),
                "expires_at": session.expires_at.isoformat(),
                "last_activity_at": session.last_activity_at.isoformat(),
            },
            ttl_seconds=self._config.session_expiry_hours * 3600,
        )

    def create_session(self, user_id: UUID, organization_id: UUID) -> Session:
        """Create new session for a user acting within an organization."""
        now = now_utc()
        session = Session(
            token=secrets.token_urlsafe(32),
            user_id=user_id,
            organization_id=organization_id,
            created_at=now,
            expires_at=now + timedelta(hours=self._config.session_expiry_hours),
            last_activity_at=now,
        )
        self._store(session)
        return session

    def validate_session(self, token: str) -> Session:
        """Validate session token and return session.

        Raises SessionExpiredError if token invalid or expired.
        Extends session when less than the threshold remains (if configured).
        """
        data = self._tokens.get(self.PURPOSE, token)

        if data is None:
            raise SessionExpiredError("Session not found or expired")

        session = Session(
            token=token,
            user_id=UUID(data["user_id"]),
            organization_id=UUID(data["organization_id"]),
            created_at=parse_iso(data["created_at"]),
            expires_at=parse_iso(data["expires_at"]),
            last_activity_at=parse_iso(data["last_activity_at"]),
        )

        now = now_utc()

        # Valkey TTL normally removes expired sessions first
        if now > session.expires_at:
            self._tokens.revoke(self.PURPOSE, token)
            raise SessionExpiredError("Session expired")

        threshold = timedelta(hours=self._config.session_extend_threshold_hours)
        if self._config.session_extend_on_activity and session.expires_at - now < threshold:
            session = self._extend_session(session)

        return session

    def _extend_session(self, session: Session) -> Session:
        """Extend session expiry and update last_activity_at."""
        now = now_utc()
        updated = session.model_copy(update={
            "expires_at": now + timedelta(hours=self._config.session_expiry_hours),
            "last_activity_at": now,
        })
        self._store(updated)
        return updated

    def revoke_session(self, token: str) -> None:
        """Revoke session (logout).

        Safe to call with nonexistent token.
        """
        self._tokens.revoke(self.PURPOSE, token)
