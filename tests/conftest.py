"""Shared test fixtures for the billing test suite."""

import pytest
from pathlib import Path
from unittest.mock import Mock
from uuid import UUID

from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might use env vars
# override=True ensures .env takes precedence over shell env vars
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

# Reset vault client singleton to pick up env vars
import clients.vault_client as vault_module
vault_module._vault_client_instance = None
vault_module._secret_cache.clear()

from clients.email_client import EmailGatewayClient
from clients.stripe_client import CheckoutSession, StripeClient
from core.audit import AuditLogger
from core.config import BillingConfig
from core.event_bus import EventBus
from core.services.inventory_service import InventoryService
from core.services.invoice_service import InvoiceService
from core.services.notification_service import NotificationService
from core.services.payment_service import PaymentService
from fakes import (
    WEBHOOK_SECRET,
    InMemoryDirectoryRepository,
    InMemoryInventoryRepository,
    InMemoryInvoiceRepository,
)
from utils.user_context import clear_current_identity, identity_context


# =============================================================================
# TEST IDENTITY CONSTANTS
# =============================================================================

# Primary organization and user - use for single-tenant tests
ORG_ID = UUID("00000000-0000-0000-0000-00000000000a")
TEST_USER_ID = UUID("00000000-0000-0000-0000-000000000001")

# Second organization - use for tenant isolation tests
ORG_B_ID = UUID("00000000-0000-0000-0000-00000000000b")
TEST_USER_B_ID = UUID("00000000-0000-0000-0000-000000000002")


# =============================================================================
# IDENTITY FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def reset_identity():
    """Ensure clean identity context before and after each test."""
    clear_current_identity()
    yield
    clear_current_identity()


@pytest.fixture
def org_id() -> UUID:
    return ORG_ID


@pytest.fixture
def org_b_id() -> UUID:
    return ORG_B_ID


@pytest.fixture
def user_id() -> UUID:
    return TEST_USER_ID


@pytest.fixture
def user_b_id() -> UUID:
    return TEST_USER_B_ID


@pytest.fixture
def as_test_user(user_id, org_id):
    """Identity context for the primary test user."""
    with identity_context(user_id, org_id):
        yield user_id


# =============================================================================
# REPOSITORY FAKES
# =============================================================================


@pytest.fixture
def invoice_repo():
    return InMemoryInvoiceRepository()


@pytest.fixture
def inventory_repo():
    return InMemoryInventoryRepository()


@pytest.fixture
def directory(org_id):
    directory = InMemoryDirectoryRepository()
    directory.enable_email(org_id)
    return directory


@pytest.fixture
def client_id(directory, org_id):
    """A client of the primary organization with an email address."""
    return directory.add_client(org_id)


# =============================================================================
# COLLABORATORS
# =============================================================================


@pytest.fixture
def billing_config():
    return BillingConfig(app_base_url="https://app.example.com")


@pytest.fixture
def audit():
    return Mock(spec=AuditLogger)


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def published(event_bus):
    """Every event published during the test, in order."""
    events = []
    event_bus.subscribe("BillingEvent", events.append)
    return events


@pytest.fixture
def email_client():
    return Mock(spec=EmailGatewayClient)


@pytest.fixture
def stripe_client():
    client = Mock(spec=StripeClient)
    client.create_checkout_session.return_value = CheckoutSession(
        session_id="cs_test_123",
        url="https://checkout.stripe.com/c/pay/cs_test_123",
        payment_intent_id=None,
    )
    return client


@pytest.fixture
def webhook_stripe_client():
    """A real StripeClient for webhook verification (no network involved)."""
    return StripeClient(secret_key="sk_test_123", webhook_secret=WEBHOOK_SECRET)


# =============================================================================
# SERVICES
# =============================================================================


@pytest.fixture
def notification_service(email_client, stripe_client, billing_config):
    return NotificationService(email_client, stripe_client, billing_config)


@pytest.fixture
def inventory_service(inventory_repo):
    return InventoryService(inventory_repo)


@pytest.fixture
def invoice_service(
    invoice_repo, directory, inventory_service, notification_service, audit, event_bus, billing_config
):
    return InvoiceService(
        invoice_repo, directory, inventory_service, notification_service, audit, event_bus, billing_config
    )


@pytest.fixture
def payment_service(
    invoice_repo, inventory_service, notification_service, audit, event_bus, billing_config
):
    return PaymentService(
        invoice_repo, inventory_service, notification_service, audit, event_bus, billing_config
    )


@pytest.fixture
def webhook_payment_service(
    invoice_repo, inventory_service, email_client, webhook_stripe_client, audit, event_bus, billing_config
):
    """PaymentService whose webhooks are verified with WEBHOOK_SECRET."""
    notifications = NotificationService(email_client, webhook_stripe_client, billing_config)
    return PaymentService(
        invoice_repo, inventory_service, notifications, audit, event_bus, billing_config
    )
