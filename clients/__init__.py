# Infrastructure clients
from clients.vault_client import (
    VaultClient,
    get_database_url,
    get_valkey_url,
    get_email_config,
    get_stripe_config,
)
from clients.postgres_client import PostgresClient, PersistenceError
from clients.valkey_client import ValkeyClient
from clients.email_client import EmailGatewayClient, EmailGatewayError
from clients.stripe_client import (
    StripeClient,
    StripeGatewayError,
    WebhookSignatureError,
    CheckoutSession,
)
