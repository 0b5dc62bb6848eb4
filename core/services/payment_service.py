"""
Payment reconciliation: manual payments, payment removal and gateway webhooks.

Every path goes through the same projection (core.totals.settle) so amount
paid, amount due, status and paid date stay consistent with the sum of the
invoice's payments.
"""

import logging
from dataclasses import dataclass
from uuid import UUID

from core.audit import AuditLogger, AuditAction, compute_changes
from core.config import BillingConfig
from core.event_bus import EventBus
from core.events import InvoicePaid, PaymentRecorded, PaymentRemoved
from core.exceptions import BadRequestError, NotFoundError
from core.models import Invoice, InvoicePayment, InvoicePaymentCreate, InvoiceStatus
from core.repositories import InvoiceRepository
from core.services.inventory_service import InventoryService, needs_inventory_deduction
from core.services.invoice_service import require_invoice
from core.services.notification_service import NotificationService
from core.totals import settle
from utils.timezone import now_utc, today_utc

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"


@dataclass(frozen=True)
class WebhookResult:
    """What a webhook delivery did. Always acknowledged once verified."""

    action: str  # "applied", "duplicate" or "ignored"
    event_type: str | None = None
    invoice_id: UUID | None = None
    payment_id: UUID | None = None
    reason: str | None = None

    @property
    def received(self) -> bool:
        return True


def _as_object(value) -> dict:
    """A JSON object from an untrusted event field; anything else reads as empty."""
    return value if isinstance(value, dict) else {}


class PaymentService:
    """Applies and removes payments and keeps invoice balances in step."""

    def __init__(
        self,
        invoices: InvoiceRepository,
        inventory: InventoryService,
        notifications: NotificationService,
        audit: AuditLogger,
        event_bus: EventBus,
        config: BillingConfig,
    ):
        self.invoices = invoices
        self.inventory = inventory
        self.notifications = notifications
        self.audit = audit
        self.event_bus = event_bus
        self.config = config

    def _record(
        self,
        current: Invoice,
        data: InvoicePaymentCreate,
        recorded_by: UUID | None,
    ) -> tuple[InvoicePayment, Invoice]:
        """Insert a payment and re-project the invoice. Caller owns the transaction."""
        today = today_utc()

        payment = self.invoices.create_invoice_payment({
            "invoice_id": current.id,
            "organization_id": current.organization_id,
            "amount_cents": data.amount_cents,
            "payment_method": data.payment_method,
            "payment_date": data.payment_date or today,
            "gateway_payment_id": data.gateway_payment_id,
            "gateway_charge_id": data.gateway_charge_id,
            "notes": data.notes,
            "recorded_by": recorded_by,
        })

        settlement = settle(
            total_cents=current.total_cents,
            amount_paid_cents=current.amount_paid_cents + payment.amount_cents,
            ever_sent=current.ever_sent,
            previous_paid_date=current.paid_date,
            today=today,
        )
        values = {
            "amount_paid_cents": settlement.amount_paid_cents,
            "amount_due_cents": settlement.amount_due_cents,
            "status": settlement.status,
            "paid_date": settlement.paid_date,
        }
        if needs_inventory_deduction(current, settlement.status):
            items = self.invoices.get_invoice_items(current.id)
            self.inventory.deduct_for_invoice(current, items, recorded_by)
            values["inventory_deducted_at"] = now_utc()

        updated = self.invoices.update_invoice(current.id, values)

        self.audit.log_change(
            entity_type="invoice_payment",
            entity_id=payment.id,
            organization_id=current.organization_id,
            action=AuditAction.CREATE,
            changes={"created": payment.model_dump(mode="json")},
            user_id=recorded_by
        )
        self.audit.log_change(
            entity_type="invoice",
            entity_id=current.id,
            organization_id=current.organization_id,
            action=AuditAction.UPDATE,
            changes=compute_changes(current.model_dump(mode="json"), updated.model_dump(mode="json")),
            user_id=recorded_by
        )

        return payment, updated

    def _publish_recorded(self, current: Invoice, updated: Invoice, payment: InvoicePayment) -> None:
        self.event_bus.publish(PaymentRecorded.create(invoice=updated, payment=payment))
        if updated.status == InvoiceStatus.PAID and current.status != InvoiceStatus.PAID:
            self.event_bus.publish(InvoicePaid.create(invoice=updated))

    def apply_payment(
        self,
        invoice_id: UUID,
        organization_id: UUID,
        data: InvoicePaymentCreate,
        recorded_by: UUID | None,
    ) -> InvoicePayment:
        """
        Record a payment against an invoice.

        Args:
            invoice_id: Invoice UUID
            organization_id: Caller's organization
            data: Payment details
            recorded_by: Acting user

        Returns:
            The stored payment

        Raises:
            NotFoundError: Invoice does not exist
            ForbiddenError: Invoice belongs to another organization
            BadRequestError: Invoice is void
        """
        with self.invoices.transaction():
            current = require_invoice(self.invoices, invoice_id, organization_id)
            if current.is_void:
                raise BadRequestError("Payments cannot be recorded on a void invoice")
            payment, updated = self._record(current, data, recorded_by)

        logger.info(
            f"Payment of {payment.amount_cents} cents recorded on invoice "
            f"{updated.invoice_number} ({updated.status.value})"
        )
        self._publish_recorded(current, updated, payment)
        return payment

    def remove_payment(
        self,
        invoice_id: UUID,
        payment_id: UUID,
        organization_id: UUID,
        acting_user_id: UUID,
    ) -> Invoice:
        """
        Delete a payment and re-project the invoice.

        Returns:
            The updated invoice

        Raises:
            NotFoundError: Invoice missing, or payment not on this invoice
            ForbiddenError: Invoice belongs to another organization
        """
        with self.invoices.transaction():
            current = require_invoice(self.invoices, invoice_id, organization_id)

            payments = self.invoices.get_invoice_payments(current.id)
            payment = next((p for p in payments if p.id == payment_id), None)
            if payment is None:
                raise NotFoundError(f"Payment {payment_id} not found on invoice {invoice_id}")

            self.invoices.delete_invoice_payment(payment.id)

            settlement = settle(
                total_cents=current.total_cents,
                amount_paid_cents=current.amount_paid_cents - payment.amount_cents,
                ever_sent=current.ever_sent,
                previous_paid_date=current.paid_date,
                today=today_utc(),
                voided=current.is_void,
            )
            updated = self.invoices.update_invoice(current.id, {
                "amount_paid_cents": settlement.amount_paid_cents,
                "amount_due_cents": settlement.amount_due_cents,
                "status": settlement.status,
                "paid_date": settlement.paid_date,
            })

            self.audit.log_change(
                entity_type="invoice_payment",
                entity_id=payment.id,
                organization_id=organization_id,
                action=AuditAction.DELETE,
                changes={"deleted": payment.model_dump(mode="json")},
                user_id=acting_user_id
            )
            self.audit.log_change(
                entity_type="invoice",
                entity_id=current.id,
                organization_id=organization_id,
                action=AuditAction.UPDATE,
                changes=compute_changes(current.model_dump(mode="json"), updated.model_dump(mode="json")),
                user_id=acting_user_id
            )

        logger.info(
            f"Payment {payment.id} removed from invoice {updated.invoice_number} "
            f"({updated.status.value})"
        )
        self.event_bus.publish(PaymentRemoved.create(invoice=updated, payment=payment))
        return updated

    def reconcile_webhook(self, payload: bytes, signature_header: str | None) -> WebhookResult:
        """
        Apply a payment gateway webhook.

        Only completed checkout sessions carrying our invoice metadata are
        applied, each at most once. Anything else is acknowledged and left
        alone so the gateway stops retrying.

        Raises:
            WebhookSignatureError: Signature or payload invalid; nothing is changed
        """
        event = self.notifications.construct_event(payload, signature_header)
        event_type = event.get("type")

        if event_type != CHECKOUT_COMPLETED:
            logger.debug(f"Ignoring webhook event {event_type}")
            return WebhookResult(action="ignored", event_type=event_type, reason="unhandled event type")

        session = _as_object(_as_object(event.get("data")).get("object"))
        metadata = _as_object(session.get("metadata"))

        try:
            invoice_id = UUID(str(metadata.get("invoice_id")))
        except ValueError:
            logger.info("Checkout session without a valid invoice_id in metadata")
            return WebhookResult(action="ignored", event_type=event_type, reason="no invoice reference")

        session_id = session.get("id")
        if not session_id or not isinstance(session_id, str):
            return WebhookResult(
                action="ignored", event_type=event_type, invoice_id=invoice_id, reason="no session id"
            )

        with self.invoices.transaction():
            current = self.invoices.get_invoice(invoice_id)
            if current is None:
                logger.error(f"Webhook for unknown invoice {invoice_id}")
                return WebhookResult(
                    action="ignored", event_type=event_type, invoice_id=invoice_id, reason="invoice not found"
                )

            if metadata.get("organization_id") != str(current.organization_id):
                logger.warning(f"Webhook organization does not match invoice {invoice_id}")
                return WebhookResult(
                    action="ignored", event_type=event_type, invoice_id=invoice_id,
                    reason="organization mismatch"
                )

            if current.is_void:
                logger.warning(f"Webhook payment for void invoice {current.invoice_number} not applied")
                return WebhookResult(
                    action="ignored", event_type=event_type, invoice_id=invoice_id, reason="invoice is void"
                )

            existing = self.invoices.find_payment_by_gateway_charge(session_id)
            if existing is not None:
                logger.info(f"Checkout session {session_id} already recorded")
                return WebhookResult(
                    action="duplicate", event_type=event_type, invoice_id=invoice_id, payment_id=existing.id
                )

            amount_cents = session.get("amount_total")
            if amount_cents is None:
                amount_cents = current.amount_due_cents
            if not isinstance(amount_cents, int) or isinstance(amount_cents, bool) or amount_cents <= 0:
                return WebhookResult(
                    action="ignored", event_type=event_type, invoice_id=invoice_id, reason="no amount"
                )

            payment, updated = self._record(
                current,
                InvoicePaymentCreate(
                    amount_cents=amount_cents,
                    payment_method=self.config.gateway_payment_method,
                    gateway_payment_id=session.get("payment_intent") or session_id,
                    gateway_charge_id=session_id,
                    notes="Paid online via hosted checkout",
                ),
                recorded_by=None,
            )

        logger.info(
            f"Invoice {updated.invoice_number} payment of {payment.amount_cents} cents "
            f"recorded via webhook"
        )
        self._publish_recorded(current, updated, payment)
        return WebhookResult(
            action="applied", event_type=event_type, invoice_id=updated.id, payment_id=payment.id
        )
