"""Billing configuration."""

from pydantic import BaseModel, Field


class BillingConfig(BaseModel):
    """
    Billing engine configuration.

    Secrets (database, email gateway, Stripe keys) come from Vault; this
    model only holds tunables.
    """

    app_base_url: str = Field(
        default="http://localhost:8000",
        description="Base URL used to build checkout success/cancel redirects",
    )
    currency: str = Field(
        default="usd",
        description="ISO currency code for hosted checkout sessions",
        min_length=3,
        max_length=3,
    )
    invoice_number_prefix: str = Field(
        default="INV-",
        description="Prefix of generated invoice numbers",
    )
    invoice_number_width: int = Field(
        default=5,
        description="Zero-padded width of the sequence part (INV-00001)",
        ge=1,
        le=12,
    )
    gateway_payment_method: str = Field(
        default="gateway",
        description="payment_method recorded for webhook-originated payments",
    )
    checkout_description_max_length: int = Field(
        default=500,
        description="Max characters of item descriptions sent to the checkout page",
        ge=1,
    )

    def format_invoice_number(self, sequence: int) -> str:
        return f"{self.invoice_number_prefix}{sequence:0{self.invoice_number_width}d}"
