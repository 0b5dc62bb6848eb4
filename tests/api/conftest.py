"""API test fixtures: the real app over in-memory repositories, with a mocked session."""

from datetime import timedelta
from unittest.mock import Mock

import pytest
from starlette.testclient import TestClient

from api.app import create_app
from auth.session import SessionManager
from auth.types import Session
from utils.timezone import now_utc


# =============================================================================
# SERVICES DICT
# =============================================================================


@pytest.fixture
def services(invoice_service, webhook_payment_service, event_bus):
    return {
        "invoice": invoice_service,
        "payment": webhook_payment_service,
        "event_bus": event_bus,
    }


# =============================================================================
# AUTH FIXTURES
# =============================================================================


@pytest.fixture
def mock_session_manager(user_id, org_id):
    now = now_utc()
    mock = Mock(spec=SessionManager)
    mock.validate_session.return_value = Session(
        token="test-token",
        user_id=user_id,
        organization_id=org_id,
        created_at=now,
        expires_at=now + timedelta(hours=24),
        last_activity_at=now,
    )
    return mock


# =============================================================================
# APP & CLIENT FIXTURES
# =============================================================================


@pytest.fixture
def app(services, mock_session_manager):
    return create_app(services, mock_session_manager)


@pytest.fixture
def client(app):
    """Authenticated test client."""
    c = TestClient(app, raise_server_exceptions=False)
    c.cookies.set("session_token", "test-token")
    return c


@pytest.fixture
def unauthed_client(app):
    """Unauthenticated test client (no session cookie)."""
    return TestClient(app, raise_server_exceptions=False)
