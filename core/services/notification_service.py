"""
Outbound notifications and payment gateway access for invoices.

Wraps the email gateway and Stripe clients. Email delivery problems are
reported as a False return so callers can turn them into warnings; payment
gateway failures raise ExternalServiceError.
"""

import logging
from html import escape
from typing import Any

from clients.email_client import EmailGatewayClient, EmailGatewayError
from clients.stripe_client import (
    CheckoutSession,
    StripeClient,
    StripeGatewayError,
    WebhookSignatureError,
)
from core.config import BillingConfig
from core.exceptions import ExternalServiceError
from core.models import EmailSender, Invoice, InvoiceItem

logger = logging.getLogger(__name__)


def format_cents(cents: int) -> str:
    """Format an amount in cents for display ($1,234.56)."""
    sign = "-" if cents < 0 else ""
    return f"{sign}${abs(cents) / 100:,.2f}"


class NotificationService:
    """Invoice email rendering/delivery, hosted checkout and webhook parsing."""

    def __init__(
        self,
        email: EmailGatewayClient | None,
        stripe: StripeClient | None,
        config: BillingConfig,
    ):
        self.email = email
        self.stripe = stripe
        self.config = config

    # -------------------------------------------------------------------------
    # Email
    # -------------------------------------------------------------------------

    def render_invoice_email(
        self,
        invoice: Invoice,
        items: list[InvoiceItem],
        client_name: str,
    ) -> tuple[str, str]:
        """
        Render the invoice email.

        Returns:
            (subject, html_body)
        """
        subject = f"Invoice {invoice.invoice_number}"

        rows = "".join(
            "<tr>"
            f"<td>{escape(item.description)}</td>"
            f"<td style=\"text-align:right\">{escape(item.quantity)}</td>"
            f"<td style=\"text-align:right\">{format_cents(item.unit_price_cents)}</td>"
            f"<td style=\"text-align:right\">{format_cents(item.amount_cents)}</td>"
            "</tr>"
            for item in items
        )

        summary = [("Subtotal", invoice.subtotal_cents)]
        if invoice.discount_amount_cents:
            summary.append(("Discount", -invoice.discount_amount_cents))
        if invoice.tax_amount_cents:
            summary.append(("Tax", invoice.tax_amount_cents))
        summary.append(("Total", invoice.total_cents))
        if invoice.amount_paid_cents:
            summary.append(("Paid", invoice.amount_paid_cents))
        summary.append(("Amount due", invoice.amount_due_cents))
        summary_rows = "".join(
            f"<tr><td colspan=\"3\" style=\"text-align:right\">{label}</td>"
            f"<td style=\"text-align:right\">{format_cents(amount)}</td></tr>"
            for label, amount in summary
        )

        parts = [
            f"<p>Hello {escape(client_name)},</p>",
            f"<p>Please find invoice <strong>{escape(invoice.invoice_number)}</strong> below. "
            f"Payment is due by {invoice.due_date.isoformat()}.</p>",
            "<table cellpadding=\"6\" style=\"border-collapse:collapse\">",
            "<tr><th>Description</th><th>Qty</th><th>Unit price</th><th>Amount</th></tr>",
            rows,
            summary_rows,
            "</table>",
        ]
        if invoice.gateway_payment_url:
            parts.append(
                f"<p><a href=\"{escape(invoice.gateway_payment_url, quote=True)}\">Pay online</a></p>"
            )
        if invoice.terms:
            parts.append(f"<p>{escape(invoice.terms)}</p>")
        if invoice.notes:
            parts.append(f"<p>{escape(invoice.notes)}</p>")

        return subject, "\n".join(parts)

    def send_invoice_email(
        self,
        recipient: str,
        subject: str,
        html_body: str,
        sender: EmailSender,
    ) -> bool:
        """
        Deliver an invoice email.

        Returns:
            True if the gateway accepted the message, False otherwise
        """
        if self.email is None:
            logger.warning("Email gateway not configured; invoice email not sent")
            return False

        try:
            self.email.send_html_email(
                to=recipient,
                subject=subject,
                html_body=html_body,
                from_name=sender.from_name,
                reply_to=sender.reply_to,
            )
        except EmailGatewayError as e:
            logger.warning(f"Invoice email to {recipient} failed: {e}")
            return False
        return True

    def send_payment_receipt(
        self,
        invoice: Invoice,
        recipient: str,
        sender: EmailSender,
    ) -> bool:
        """Email a thank-you receipt for a paid invoice."""
        subject = f"Payment received for invoice {invoice.invoice_number}"
        html_body = (
            f"<p>Thank you! We received your payment of "
            f"{format_cents(invoice.amount_paid_cents)} for invoice "
            f"<strong>{escape(invoice.invoice_number)}</strong>.</p>"
            f"<p>Invoice total: {format_cents(invoice.total_cents)}. "
            f"Balance remaining: {format_cents(invoice.amount_due_cents)}.</p>"
        )
        return self.send_invoice_email(recipient, subject, html_body, sender)

    # -------------------------------------------------------------------------
    # Payment gateway
    # -------------------------------------------------------------------------

    def create_payment_checkout_session(
        self,
        amount_cents: int,
        name: str,
        description: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
    ) -> CheckoutSession:
        """
        Create a hosted checkout session for an invoice balance.

        Raises:
            ExternalServiceError: Gateway not configured or request failed
        """
        if self.stripe is None:
            raise ExternalServiceError("Payment gateway is not configured")

        try:
            return self.stripe.create_checkout_session(
                amount_cents=amount_cents,
                currency=self.config.currency,
                name=name,
                description=description[:self.config.checkout_description_max_length],
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
            )
        except StripeGatewayError as e:
            raise ExternalServiceError(f"Payment gateway error: {e}") from e

    def construct_event(self, payload: bytes, signature_header: str | None) -> dict[str, Any]:
        """
        Verify and parse a payment gateway webhook.

        Raises:
            WebhookSignatureError: Verification or parsing failed
        """
        if self.stripe is None:
            raise WebhookSignatureError("Payment gateway is not configured")
        return self.stripe.construct_event(payload, signature_header)
