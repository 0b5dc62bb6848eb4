"""
Application factory.

Wires clients, repositories and services together and mounts the routers.
Secrets come from Vault; tunables from environment variables.
"""

import logging
import os

from fastapi import FastAPI

from api.base import success_response
from api.errors import register_error_handlers
from api.invoices import create_invoices_router
from api.middleware import RequestIDMiddleware
from auth.config import AuthConfig
from auth.security_middleware import AuthMiddleware
from auth.session import SessionManager
from auth.token_store import TokenStore
from clients.email_client import EmailGatewayClient
from clients.postgres_client import PostgresClient
from clients.stripe_client import StripeClient
from clients.valkey_client import ValkeyClient
from clients.vault_client import (
    get_database_url,
    get_email_config,
    get_stripe_config,
    get_valkey_url,
)
from core.audit import AuditLogger
from core.config import BillingConfig
from core.event_bus import EventBus
from core.handlers.invoice_payment_handler import handle_invoice_paid
from core.repositories import DirectoryRepository, InventoryRepository, InvoiceRepository
from core.services.inventory_service import InventoryService
from core.services.invoice_service import InvoiceService
from core.services.notification_service import NotificationService
from core.services.payment_service import PaymentService

logger = logging.getLogger(__name__)


def load_billing_config() -> BillingConfig:
    """BillingConfig from BILLING_* environment variables, defaults otherwise."""
    overrides = {
        field: os.environ[f"BILLING_{field.upper()}"]
        for field in BillingConfig.model_fields
        if f"BILLING_{field.upper()}" in os.environ
    }
    return BillingConfig(**overrides)


def load_auth_config() -> AuthConfig:
    """AuthConfig from AUTH_* environment variables, defaults otherwise."""
    overrides = {
        field: os.environ[f"AUTH_{field.upper()}"]
        for field in AuthConfig.model_fields
        if f"AUTH_{field.upper()}" in os.environ
    }
    return AuthConfig(**overrides)


def build_services(
    postgres: PostgresClient,
    config: BillingConfig,
    email: EmailGatewayClient | None,
    stripe: StripeClient | None,
) -> dict:
    """Construct the billing services and subscribe event handlers."""
    invoices = InvoiceRepository(postgres)
    directory = DirectoryRepository(postgres)
    audit = AuditLogger(postgres)
    event_bus = EventBus()

    inventory = InventoryService(InventoryRepository(postgres))
    notifications = NotificationService(email, stripe, config)

    event_bus.subscribe("InvoicePaid", handle_invoice_paid(notifications, directory))

    return {
        "invoice": InvoiceService(
            invoices, directory, inventory, notifications, audit, event_bus, config
        ),
        "payment": PaymentService(
            invoices, inventory, notifications, audit, event_bus, config
        ),
        "event_bus": event_bus,
    }


def create_app(services: dict, session_manager: SessionManager, auth_config: AuthConfig | None = None) -> FastAPI:
    """FastAPI app with auth middleware, error handlers and the invoice routes."""
    auth_config = auth_config or AuthConfig()

    app = FastAPI(title="Billing")
    # Added last runs first: request IDs are assigned before auth
    app.add_middleware(
        AuthMiddleware,
        session_manager=session_manager,
        cookie_name=auth_config.session_cookie_name,
    )
    app.add_middleware(RequestIDMiddleware)
    register_error_handlers(app)

    app.include_router(create_invoices_router(services), prefix="/api")

    @app.get("/health")
    async def health():
        return success_response({"status": "ok"}).model_dump(mode="json")

    return app


def _optional_email_client() -> EmailGatewayClient | None:
    try:
        return EmailGatewayClient(**get_email_config())
    except (PermissionError, KeyError, ValueError) as e:
        logger.warning(f"Email gateway not configured, invoice emails disabled: {e}")
        return None


def _optional_stripe_client() -> StripeClient | None:
    try:
        client = StripeClient(**get_stripe_config())
    except (PermissionError, KeyError, ValueError) as e:
        logger.warning(f"Stripe not configured, payment links and webhooks disabled: {e}")
        return None
    if not client.verifies_signatures:
        logger.warning("Stripe webhook secret not configured, webhook signatures are NOT verified")
    return client


def create_default_app() -> FastAPI:
    """Production app: credentials from Vault, tunables from the environment."""
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    auth_config = load_auth_config()
    postgres = PostgresClient(get_database_url())
    session_manager = SessionManager(TokenStore(ValkeyClient(get_valkey_url())), auth_config)

    services = build_services(
        postgres,
        load_billing_config(),
        _optional_email_client(),
        _optional_stripe_client(),
    )

    logger.info("Billing service initialized")
    return create_app(services, session_manager, auth_config)
