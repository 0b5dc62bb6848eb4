"""
Stripe client for hosted checkout sessions and webhook verification.

Thin wrapper over the official stripe SDK. The secret key is passed per
request rather than set on the global ``stripe.api_key``, so several clients
can coexist in one process (tests, multiple accounts).
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict

import stripe

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE_SECONDS = 300


class StripeGatewayError(Exception):
    """Raised when a Stripe API request fails."""


class WebhookSignatureError(Exception):
    """Raised when a webhook payload cannot be verified or parsed."""


@dataclass(frozen=True)
class CheckoutSession:
    """The parts of a Stripe Checkout Session the billing engine keeps."""

    session_id: str
    url: str
    payment_intent_id: str | None = None


class StripeClient:
    """Checkout sessions and webhook events through the stripe SDK."""

    def __init__(
        self,
        secret_key: str,
        webhook_secret: str | None = None,
        tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
    ):
        """
        Initialize with Stripe credentials.

        Args:
            secret_key: Stripe secret API key
            webhook_secret: Endpoint signing secret; None disables verification
            tolerance_seconds: Maximum accepted age of a signed webhook

        Raises:
            ValueError: If secret_key is empty
        """
        if not secret_key:
            raise ValueError("secret_key is required")

        self.secret_key = secret_key
        self.webhook_secret = webhook_secret or None
        self.tolerance_seconds = tolerance_seconds

    @property
    def verifies_signatures(self) -> bool:
        return self.webhook_secret is not None

    def create_checkout_session(
        self,
        amount_cents: int,
        currency: str,
        name: str,
        description: str,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str] | None = None,
    ) -> CheckoutSession:
        """
        Create a one-off payment Checkout Session.

        Args:
            amount_cents: Amount to collect in minor units
            currency: ISO currency code (lowercase)
            name: Product name shown on the hosted page
            description: Product description shown on the hosted page
            success_url: Redirect after successful payment
            cancel_url: Redirect after the payer cancels
            metadata: String key/values echoed back in webhook events

        Returns:
            CheckoutSession with id and hosted URL

        Raises:
            StripeGatewayError: On any failure
        """
        product_data = {"name": name}
        if description:
            product_data["description"] = description

        try:
            session = stripe.checkout.Session.create(
                api_key=self.secret_key,
                mode="payment",
                line_items=[{
                    "quantity": 1,
                    "price_data": {
                        "currency": currency,
                        "unit_amount": amount_cents,
                        "product_data": product_data,
                    },
                }],
                success_url=success_url,
                cancel_url=cancel_url,
                metadata={key: str(value) for key, value in (metadata or {}).items()},
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe checkout session failed: {e}")
            raise StripeGatewayError(f"Stripe error: {e.user_message or e}") from e

        session_id = session.get("id")
        url = session.get("url")
        if not session_id or not url:
            raise StripeGatewayError("Checkout session response missing id or url")

        logger.info(f"Stripe checkout session created: {session_id}")
        return CheckoutSession(
            session_id=session_id,
            url=url,
            payment_intent_id=session.get("payment_intent"),
        )

    def construct_event(self, payload: bytes, signature_header: str | None) -> Dict[str, Any]:
        """
        Parse a webhook payload, verifying its signature when a secret is configured.

        Verification is the SDK's ``WebhookSignature.verify_header``, the same
        check ``stripe.Webhook.construct_event`` runs before parsing.

        Args:
            payload: Raw request body exactly as received
            signature_header: Value of the Stripe-Signature header

        Returns:
            Event as a plain dict

        Raises:
            WebhookSignatureError: Missing/invalid signature, stale timestamp or bad JSON
        """
        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise WebhookSignatureError(f"Invalid webhook payload: {e}")

        if self.webhook_secret is not None:
            if not signature_header:
                raise WebhookSignatureError("Missing Stripe-Signature header")
            try:
                stripe.WebhookSignature.verify_header(
                    body, signature_header, self.webhook_secret, tolerance=self.tolerance_seconds
                )
            except stripe.SignatureVerificationError as e:
                raise WebhookSignatureError(str(e.user_message or e)) from e

        try:
            event = json.loads(body)
        except json.JSONDecodeError as e:
            raise WebhookSignatureError(f"Invalid webhook payload: {e}")

        if not isinstance(event, dict):
            raise WebhookSignatureError("Invalid webhook payload: expected an object")
        return event
