"""Tests for SessionManager - session token lifecycle."""

from datetime import timedelta
from unittest.mock import Mock

import pytest

from auth.config import AuthConfig
from auth.exceptions import SessionExpiredError
from auth.session import SessionManager
from auth.token_store import TokenStore
from clients.valkey_client import ValkeyClient
from utils.timezone import now_utc


class DictValkey:
    """Just enough of ValkeyClient for TokenStore: JSON values and TTLs in a dict."""

    def __init__(self):
        self.values = {}
        self.ttls = {}

    def put_json(self, key, value, ttl_seconds):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.values[key] = value
        self.ttls[key] = ttl_seconds

    def get_json(self, key):
        return self.values.get(key)

    def remaining_seconds(self, key):
        return self.ttls.get(key)

    def delete(self, key):
        self.ttls.pop(key, None)
        return self.values.pop(key, None) is not None


@pytest.fixture
def config():
    """Short sessions so the extension threshold is easy to cross."""
    return AuthConfig(session_expiry_hours=48, session_extend_threshold_hours=24)


@pytest.fixture
def valkey():
    return DictValkey()


@pytest.fixture
def tokens(valkey):
    return TokenStore(valkey)


@pytest.fixture
def session_manager(tokens, config):
    return SessionManager(tokens, config)


def _age_session(valkey, token, remaining: timedelta):
    """Rewrite a stored session so it expires ``remaining`` from now."""
    key = f"token:session:{token}"
    valkey.values[key]["expires_at"] = (now_utc() + remaining).isoformat()


class TestCreateSession:

    def test_returns_session_with_token(self, session_manager, user_id, org_id):
        session = session_manager.create_session(user_id, org_id)

        assert session.token
        assert len(session.token) > 20

    def test_session_carries_identity(self, session_manager, user_id, org_id):
        session = session_manager.create_session(user_id, org_id)

        assert session.user_id == user_id
        assert session.organization_id == org_id

    def test_different_sessions_get_different_tokens(self, session_manager, user_id, user_b_id, org_id, org_b_id):
        session_a = session_manager.create_session(user_id, org_id)
        session_b = session_manager.create_session(user_b_id, org_b_id)

        assert session_a.token != session_b.token

    def test_stored_with_session_ttl(self, session_manager, valkey, user_id, org_id):
        session = session_manager.create_session(user_id, org_id)

        assert valkey.ttls[f"token:session:{session.token}"] == 48 * 3600

    def test_expiry_matches_config(self, session_manager, user_id, org_id):
        session = session_manager.create_session(user_id, org_id)

        assert session.expires_at - session.created_at == timedelta(hours=48)


class TestValidateSession:

    def test_valid_token_returns_session(self, session_manager, user_id, org_id):
        created = session_manager.create_session(user_id, org_id)

        session = session_manager.validate_session(created.token)

        assert session.user_id == user_id
        assert session.organization_id == org_id
        assert session.token == created.token

    def test_unknown_token_raises(self, session_manager):
        with pytest.raises(SessionExpiredError, match="not found"):
            session_manager.validate_session("no-such-token")

    def test_expired_session_is_revoked(self, session_manager, valkey, user_id, org_id):
        created = session_manager.create_session(user_id, org_id)
        _age_session(valkey, created.token, timedelta(seconds=-1))

        with pytest.raises(SessionExpiredError, match="expired"):
            session_manager.validate_session(created.token)

        assert f"token:session:{created.token}" not in valkey.values

    def test_session_far_from_expiry_is_not_extended(self, session_manager, user_id, org_id):
        created = session_manager.create_session(user_id, org_id)

        session = session_manager.validate_session(created.token)

        assert session.expires_at == created.expires_at

    def test_session_near_expiry_is_extended(self, session_manager, valkey, user_id, org_id):
        created = session_manager.create_session(user_id, org_id)
        _age_session(valkey, created.token, timedelta(hours=1))

        session = session_manager.validate_session(created.token)

        assert session.expires_at - now_utc() > timedelta(hours=47)
        stored = valkey.values[f"token:session:{created.token}"]
        assert stored["expires_at"] == session.expires_at.isoformat()

    def test_extension_disabled(self, tokens, valkey, user_id, org_id):
        manager = SessionManager(
            tokens, AuthConfig(session_expiry_hours=48, session_extend_on_activity=False)
        )
        created = manager.create_session(user_id, org_id)
        _age_session(valkey, created.token, timedelta(hours=1))

        session = manager.validate_session(created.token)

        assert session.expires_at - now_utc() < timedelta(hours=2)


class TestRevokeSession:

    def test_revoked_session_no_longer_validates(self, session_manager, user_id, org_id):
        created = session_manager.create_session(user_id, org_id)

        session_manager.revoke_session(created.token)

        with pytest.raises(SessionExpiredError):
            session_manager.validate_session(created.token)

    def test_revoke_unknown_token_is_safe(self, session_manager):
        session_manager.revoke_session("no-such-token")


class TestTokenStoreWiring:

    def test_uses_session_purpose(self, config, user_id, org_id):
        valkey = Mock(spec=ValkeyClient)
        manager = SessionManager(TokenStore(valkey), config)

        session = manager.create_session(user_id, org_id)

        assert valkey.put_json.call_args.args[0] == f"token:session:{session.token}"
