"""
Handler for InvoicePaid events.

On invoice payment, emails a receipt to the client when the client has an
email address and the organization has email sending configured.
"""

import logging
from typing import Callable

from core.events import InvoicePaid

logger = logging.getLogger(__name__)


def handle_invoice_paid(notification_service, directory) -> Callable:
    """
    Factory that returns an InvoicePaid handler.

    Args:
        notification_service: NotificationService instance
        directory: DirectoryRepository for the client's email and org sender

    Returns:
        Handler callable that sends a payment receipt
    """

    def handler(event: InvoicePaid):
        invoice = event.invoice

        contact = directory.get_client_contact(invoice.client_id)
        if contact is None or not contact.email:
            logger.info(f"No receipt for invoice {invoice.invoice_number}: client has no email")
            return

        sender = directory.get_email_sender(invoice.organization_id)
        if sender is None:
            logger.info(f"No receipt for invoice {invoice.invoice_number}: email not configured")
            return

        notification_service.send_payment_receipt(invoice, contact.email, sender)

    return handler
