"""Tests for VaultClient - HashiCorp Vault secrets management.

hvac.Client is replaced with a mock; these run without a Vault server.
"""

from unittest.mock import MagicMock

import hvac
import pytest
from hvac.exceptions import Forbidden, InvalidPath

import clients.vault_client as vault_module
from clients.vault_client import (
    VaultClient,
    get_database_url,
    get_email_config,
    get_stripe_config,
)

SECRETS = {
    "billing/database": {"url": "postgresql://billing@localhost/billing"},
    "billing/valkey": {"url": "redis://localhost:6379/0"},
    "billing/email": {"gateway_url": "https://mail.example.com/send", "api_key": "k", "hmac_secret": "h"},
    "billing/stripe": {"secret_key": "sk_test_123"},
}


@pytest.fixture
def hvac_client(monkeypatch):
    """Mocked hvac.Client serving SECRETS, and a clean module cache."""
    client = MagicMock()
    client.is_authenticated.return_value = True
    client.auth.approle.login.return_value = {"auth": {"client_token": "s.token"}}

    def read_secret_version(path, raise_on_deleted_version):
        if path not in SECRETS:
            raise InvalidPath()
        return {"data": {"data": SECRETS[path]}}

    client.secrets.kv.v2.read_secret_version.side_effect = read_secret_version

    monkeypatch.setattr(hvac, "Client", MagicMock(return_value=client))
    monkeypatch.setenv("VAULT_ADDR", "https://vault.example.com")
    monkeypatch.setenv("VAULT_ROLE_ID", "role")
    monkeypatch.setenv("VAULT_SECRET_ID", "secret")
    monkeypatch.delenv("VAULT_NAMESPACE", raising=False)
    monkeypatch.setattr(vault_module, "_vault_client_instance", None)
    monkeypatch.setattr(vault_module, "_secret_cache", {})
    return client


class TestVaultClientInit:
    """Initialization and authentication."""

    def test_missing_vault_addr_raises(self, hvac_client, monkeypatch):
        monkeypatch.delenv("VAULT_ADDR")
        with pytest.raises(ValueError, match="VAULT_ADDR"):
            VaultClient()

    def test_missing_approle_credentials_raises(self, hvac_client, monkeypatch):
        monkeypatch.delenv("VAULT_SECRET_ID")
        with pytest.raises(ValueError, match="VAULT_ROLE_ID"):
            VaultClient()

    def test_login_failure_raises_permission_error(self, hvac_client):
        hvac_client.auth.approle.login.side_effect = Forbidden("invalid role")
        with pytest.raises(PermissionError, match="authentication"):
            VaultClient()

    def test_unauthenticated_token_raises_permission_error(self, hvac_client):
        hvac_client.is_authenticated.return_value = False
        with pytest.raises(PermissionError, match="authentication"):
            VaultClient()

    def test_valid_approle_sets_token(self, hvac_client):
        client = VaultClient()
        assert client.client.token == "s.token"


class TestGetSecret:
    """Secret retrieval - paths automatically scoped to billing/."""

    def test_returns_field_value(self, hvac_client):
        assert VaultClient().get_secret("database", "url").startswith("postgresql://")
        kwargs = hvac_client.secrets.kv.v2.read_secret_version.call_args.kwargs
        assert kwargs["path"] == "billing/database"

    def test_missing_path_raises_permission_error(self, hvac_client):
        with pytest.raises(PermissionError, match="not found"):
            VaultClient().get_secret("nonexistent", "field")

    def test_missing_field_raises_keyerror(self, hvac_client):
        with pytest.raises(KeyError, match="not found"):
            VaultClient().get_secret("database", "nonexistent_field")

    def test_access_denied_raises_permission_error(self, hvac_client):
        hvac_client.secrets.kv.v2.read_secret_version.side_effect = Forbidden("denied")
        with pytest.raises(PermissionError, match="Access denied"):
            VaultClient().get_secret("database", "url")


class TestConvenienceFunctions:
    """Module-level convenience functions."""

    def test_database_url_is_cached(self, hvac_client):
        assert get_database_url() == get_database_url()
        assert hvac_client.secrets.kv.v2.read_secret_version.call_count == 1

    def test_email_config(self, hvac_client):
        assert get_email_config() == SECRETS["billing/email"]

    def test_stripe_config_without_webhook_secret(self, hvac_client):
        assert get_stripe_config() == {"secret_key": "sk_test_123", "webhook_secret": None}
