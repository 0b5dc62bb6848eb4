"""
Invoice lifecycle: create, edit, send, void, payment links and deletion.

Totals always come from core.totals.compute_totals and status always comes
from core.totals.settle; nothing here sets either by hand except the explicit
void action. Multi-step mutations run in one repository transaction, and
events are published only after it commits.
"""

import logging
from typing import Any
from uuid import UUID

from core.audit import AuditLogger, AuditAction, compute_changes
from core.config import BillingConfig
from core.event_bus import EventBus
from core.events import InvoiceCreated, InvoicePaid, InvoiceSent, InvoiceVoided
from core.exceptions import BadRequestError, ForbiddenError, NotFoundError, ValidationError
from core.models import (
    Invoice,
    InvoiceCreate,
    InvoiceDetail,
    InvoiceItem,
    InvoiceItemCreate,
    InvoiceStatus,
    InvoiceUpdate,
    SendResult,
)
from core.repositories import DirectoryRepository, InvoiceRepository
from core.services.inventory_service import InventoryService, needs_inventory_deduction
from core.services.notification_service import NotificationService
from core.totals import compute_totals, line_amount, settle
from utils.timezone import now_utc, today_utc

logger = logging.getLogger(__name__)

_RATE_FIELDS = ("tax_rate", "discount_percent", "discount_amount_cents")


def require_invoice(invoices: InvoiceRepository, invoice_id: UUID, organization_id: UUID) -> Invoice:
    """
    Load an invoice owned by the caller's organization.

    Raises:
        NotFoundError: Invoice does not exist
        ForbiddenError: Invoice belongs to another organization
    """
    invoice = invoices.get_invoice(invoice_id)
    if invoice is None:
        raise NotFoundError(f"Invoice {invoice_id} not found")
    if invoice.organization_id != organization_id:
        raise ForbiddenError("Access denied")
    return invoice


def item_values(item: InvoiceItemCreate, sort_order: int) -> dict[str, Any]:
    """Column values for a new line item, including its computed amount."""
    return {
        "description": item.description,
        "quantity": item.quantity,
        "unit_price_cents": item.unit_price_cents,
        "amount_cents": line_amount(item.quantity, item.unit_price_cents),
        "sort_order": sort_order,
        "inventory_item_id": item.inventory_item_id,
    }


def check_flat_discount(discount_amount_cents: int, subtotal_cents: int) -> None:
    """
    Reject a flat discount larger than the subtotal it applies to.

    Raises:
        ValidationError: discount_amount_cents exceeds subtotal_cents
    """
    if discount_amount_cents > subtotal_cents:
        raise ValidationError(
            f"discount_amount_cents ({discount_amount_cents}) cannot exceed the subtotal ({subtotal_cents})"
        )


class InvoiceService:
    """Service for invoice lifecycle operations."""

    def __init__(
        self,
        invoices: InvoiceRepository,
        directory: DirectoryRepository,
        inventory: InventoryService,
        notifications: NotificationService,
        audit: AuditLogger,
        event_bus: EventBus,
        config: BillingConfig,
    ):
        self.invoices = invoices
        self.directory = directory
        self.inventory = inventory
        self.notifications = notifications
        self.audit = audit
        self.event_bus = event_bus
        self.config = config

    # -------------------------------------------------------------------------
    # Numbering
    # -------------------------------------------------------------------------

    def _assign_invoice_number(self, organization_id: UUID, supplied: str | None) -> str:
        if supplied:
            if self.invoices.invoice_number_exists(organization_id, supplied):
                raise ValidationError(f"Invoice number {supplied} already exists")
            return supplied

        # Skip sequence values already taken by explicitly numbered invoices
        while True:
            number = self.config.format_invoice_number(
                self.invoices.get_next_invoice_number(organization_id)
            )
            if not self.invoices.invoice_number_exists(organization_id, number):
                return number

    def peek_next_number(self, organization_id: UUID) -> str:
        """Preview the number the next create will allocate, without consuming it."""
        sequence = self.invoices.peek_next_invoice_number(organization_id)
        number = self.config.format_invoice_number(sequence)
        while self.invoices.invoice_number_exists(organization_id, number):
            sequence += 1
            number = self.config.format_invoice_number(sequence)
        return number

    # -------------------------------------------------------------------------
    # Read
    # -------------------------------------------------------------------------

    def get(self, invoice_id: UUID, organization_id: UUID) -> InvoiceDetail:
        """
        Get an invoice with its items and payments.

        Raises:
            NotFoundError: Invoice does not exist
            ForbiddenError: Invoice belongs to another organization
        """
        invoice = require_invoice(self.invoices, invoice_id, organization_id)
        return self._detail(invoice)

    def list_invoices(
        self,
        organization_id: UUID,
        status: InvoiceStatus | None = None,
        client_id: UUID | None = None,
    ) -> list[Invoice]:
        """List an organization's invoices, optionally by status and/or client."""
        if client_id is not None:
            invoices = self.invoices.get_invoices_by_client(client_id, organization_id)
            if status is not None:
                invoices = [invoice for invoice in invoices if invoice.status == status]
            return invoices
        if status is not None:
            return self.invoices.get_invoices_by_status(status, organization_id)
        return self.invoices.get_invoices_by_organization(organization_id)

    def _detail(self, invoice: Invoice) -> InvoiceDetail:
        return InvoiceDetail(
            **invoice.model_dump(),
            items=self.invoices.get_invoice_items(invoice.id),
            payments=self.invoices.get_invoice_payments(invoice.id),
        )

    # -------------------------------------------------------------------------
    # Create / update
    # -------------------------------------------------------------------------

    def _require_client(self, client_id: UUID | None, organization_id: UUID) -> None:
        if client_id is None or client_id.int == 0:
            raise ValidationError("client_id is required")
        contact = self.directory.get_client_contact(client_id)
        if contact is None:
            raise ValidationError(f"Client {client_id} not found")
        if contact.organization_id != organization_id:
            raise ForbiddenError("Client belongs to another organization")

    def create(self, data: InvoiceCreate, organization_id: UUID, acting_user_id: UUID) -> InvoiceDetail:
        """
        Create a DRAFT invoice with its line items.

        Args:
            data: Invoice fields and items
            organization_id: Caller's organization
            acting_user_id: Caller

        Returns:
            The invoice with its items and an empty payment list

        Raises:
            ValidationError: Missing client or dates, duplicate invoice number,
                or a flat discount above the subtotal
            ForbiddenError: Client belongs to another organization
        """
        self._require_client(data.client_id, organization_id)
        if data.issue_date is None:
            raise ValidationError("issue_date is required")
        if data.due_date is None:
            raise ValidationError("due_date is required")

        totals = compute_totals(
            data.items, data.tax_rate, data.discount_percent, data.discount_amount_cents
        )
        if data.discount_percent is None:
            check_flat_discount(data.discount_amount_cents, totals.subtotal_cents)
        settlement = settle(
            total_cents=totals.total_cents,
            amount_paid_cents=0,
            ever_sent=False,
            previous_paid_date=None,
            today=today_utc(),
        )

        with self.invoices.transaction():
            invoice = self.invoices.create_invoice({
                "organization_id": organization_id,
                "client_id": data.client_id,
                "created_by": acting_user_id,
                "invoice_number": self._assign_invoice_number(organization_id, data.invoice_number),
                "status": settlement.status,
                "issue_date": data.issue_date,
                "due_date": data.due_date,
                "tax_rate": data.tax_rate,
                "discount_percent": data.discount_percent,
                "subtotal_cents": totals.subtotal_cents,
                "discount_amount_cents": totals.discount_amount_cents,
                "tax_amount_cents": totals.tax_amount_cents,
                "total_cents": totals.total_cents,
                "amount_paid_cents": settlement.amount_paid_cents,
                "amount_due_cents": settlement.amount_due_cents,
                "notes": data.notes,
                "terms": data.terms,
            })
            items = [
                self.invoices.create_invoice_item(invoice.id, item_values(item, index))
                for index, item in enumerate(data.items)
            ]

            self.audit.log_change(
                entity_type="invoice",
                entity_id=invoice.id,
                organization_id=organization_id,
                action=AuditAction.CREATE,
                changes={"created": {
                    **invoice.model_dump(mode="json"),
                    "items": [item.model_dump(mode="json") for item in items],
                }},
                user_id=acting_user_id
            )

        logger.info(f"Invoice {invoice.invoice_number} created ({invoice.total_cents} cents)")
        self.event_bus.publish(InvoiceCreated.create(invoice=invoice))

        return InvoiceDetail(**invoice.model_dump(), items=items, payments=[])

    def _recalculate(
        self,
        current: Invoice,
        items: list[InvoiceItem],
        changes: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Totals, balance and status for ``current`` with ``changes`` applied.

        The stored discount rule is re-applied to the current subtotal. A flat
        discount given in ``changes`` must fit the subtotal; a stored one is
        clamped to it when items shrink.
        """
        tax_rate = changes.get("tax_rate", current.tax_rate)
        if "discount_percent" in changes:
            discount_percent = changes["discount_percent"]
        else:
            discount_percent = current.discount_percent
        discount_amount_cents = changes.get("discount_amount_cents", current.discount_amount_cents)

        totals = compute_totals(items, tax_rate, discount_percent, discount_amount_cents)
        if "discount_amount_cents" in changes and discount_percent is None:
            check_flat_discount(discount_amount_cents, totals.subtotal_cents)
        settlement = settle(
            total_cents=totals.total_cents,
            amount_paid_cents=current.amount_paid_cents,
            ever_sent=current.ever_sent,
            previous_paid_date=current.paid_date,
            today=today_utc(),
        )
        return {
            "subtotal_cents": totals.subtotal_cents,
            "discount_amount_cents": totals.discount_amount_cents,
            "tax_amount_cents": totals.tax_amount_cents,
            "total_cents": totals.total_cents,
            "amount_due_cents": settlement.amount_due_cents,
            "status": settlement.status,
            "paid_date": settlement.paid_date,
        }

    def _save_changes(
        self,
        current: Invoice,
        values: dict[str, Any],
        acting_user_id: UUID | None,
        items: list[InvoiceItem] | None = None,
    ) -> Invoice:
        """Persist an invoice patch, deducting inventory if it leaves draft, and audit it."""
        new_status = values.get("status", current.status)
        if needs_inventory_deduction(current, new_status):
            if items is None:
                items = self.invoices.get_invoice_items(current.id)
            self.inventory.deduct_for_invoice(current, items, acting_user_id)
            values["inventory_deducted_at"] = now_utc()

        updated = self.invoices.update_invoice(current.id, values)

        changes = compute_changes(current.model_dump(mode="json"), updated.model_dump(mode="json"))
        if changes:
            self.audit.log_change(
                entity_type="invoice",
                entity_id=current.id,
                organization_id=current.organization_id,
                action=AuditAction.UPDATE,
                changes=changes,
                user_id=acting_user_id
            )
        return updated

    def _publish_if_paid(self, current: Invoice, updated: Invoice) -> None:
        if updated.status == InvoiceStatus.PAID and current.status != InvoiceStatus.PAID:
            self.event_bus.publish(InvoicePaid.create(invoice=updated))

    def update(
        self,
        invoice_id: UUID,
        organization_id: UUID,
        patch: InvoiceUpdate,
        acting_user_id: UUID,
    ) -> InvoiceDetail:
        """
        Apply a partial update.

        ``items``, when present, replaces the whole item set. Item or rate
        changes recompute totals, balance and status; payments are kept.

        Raises:
            NotFoundError: Invoice does not exist
            ForbiddenError: Invoice belongs to another organization
            BadRequestError: Invoice is void
            ValidationError: A required field is cleared, or a flat discount
                exceeds the subtotal
        """
        provided = patch.model_fields_set
        changes = {
            field: getattr(patch, field)
            for field in provided
            if field != "items"
        }

        for field in ("client_id", "issue_date", "due_date", "tax_rate"):
            if field in changes and changes[field] is None:
                raise ValidationError(f"{field} cannot be empty")
        if "discount_amount_cents" in changes and changes["discount_amount_cents"] is None:
            changes["discount_amount_cents"] = 0

        with self.invoices.transaction():
            current = require_invoice(self.invoices, invoice_id, organization_id)
            if current.is_void:
                raise BadRequestError("Void invoices cannot be edited")
            if "client_id" in changes:
                self._require_client(changes["client_id"], organization_id)

            items = None
            if "items" in provided:
                self._delete_items(current, acting_user_id)
                items = [
                    self.invoices.create_invoice_item(current.id, item_values(item, index))
                    for index, item in enumerate(patch.items or [])
                ]

            values = dict(changes)
            if items is not None or any(field in changes for field in _RATE_FIELDS):
                if items is None:
                    items = self.invoices.get_invoice_items(current.id)
                values.update(self._recalculate(current, items, changes))

            updated = self._save_changes(current, values, acting_user_id, items)
            detail = self._detail(updated)

        logger.info(f"Invoice {updated.invoice_number} updated")
        self._publish_if_paid(current, updated)
        return detail

    def _delete_items(self, current: Invoice, acting_user_id: UUID) -> None:
        removed = self.invoices.delete_invoice_items_by_invoice(current.id)
        if removed:
            self.audit.log_change(
                entity_type="invoice",
                entity_id=current.id,
                organization_id=current.organization_id,
                action=AuditAction.UPDATE,
                changes={"items_removed": removed},
                user_id=acting_user_id
            )

    def add_item(
        self,
        invoice_id: UUID,
        organization_id: UUID,
        item: InvoiceItemCreate,
        acting_user_id: UUID,
    ) -> InvoiceDetail:
        """Append a line item and recompute totals."""
        with self.invoices.transaction():
            current = require_invoice(self.invoices, invoice_id, organization_id)
            if current.is_void:
                raise BadRequestError("Void invoices cannot be edited")

            existing = self.invoices.get_invoice_items(current.id)
            created = self.invoices.create_invoice_item(current.id, item_values(item, len(existing)))
            items = [*existing, created]

            self.audit.log_change(
                entity_type="invoice_item",
                entity_id=created.id,
                organization_id=organization_id,
                action=AuditAction.CREATE,
                changes={"created": created.model_dump(mode="json")},
                user_id=acting_user_id
            )

            updated = self._save_changes(
                current, self._recalculate(current, items, {}), acting_user_id, items
            )
            detail = self._detail(updated)

        self._publish_if_paid(current, updated)
        return detail

    def remove_item(
        self,
        invoice_id: UUID,
        item_id: UUID,
        organization_id: UUID,
        acting_user_id: UUID,
    ) -> InvoiceDetail:
        """
        Delete one line item and recompute totals.

        Raises:
            NotFoundError: Invoice missing, or item not on this invoice
        """
        with self.invoices.transaction():
            current = require_invoice(self.invoices, invoice_id, organization_id)
            if current.is_void:
                raise BadRequestError("Void invoices cannot be edited")

            existing = self.invoices.get_invoice_items(current.id)
            removed = next((item for item in existing if item.id == item_id), None)
            if removed is None:
                raise NotFoundError(f"Item {item_id} not found on invoice {invoice_id}")

            self.invoices.delete_invoice_item(current.id, item_id)
            items = [item for item in existing if item.id != item_id]

            self.audit.log_change(
                entity_type="invoice_item",
                entity_id=item_id,
                organization_id=organization_id,
                action=AuditAction.DELETE,
                changes={"deleted": removed.model_dump(mode="json")},
                user_id=acting_user_id
            )

            updated = self._save_changes(
                current, self._recalculate(current, items, {}), acting_user_id, items
            )
            detail = self._detail(updated)

        self._publish_if_paid(current, updated)
        return detail

    # -------------------------------------------------------------------------
    # Send / void / payment link
    # -------------------------------------------------------------------------

    def send(self, invoice_id: UUID, organization_id: UUID, acting_user_id: UUID) -> SendResult:
        """
        Email the invoice to the client and mark it sent.

        Missing client email, missing email settings and delivery failures
        produce a warning; the invoice is marked sent either way.

        Raises:
            NotFoundError: Invoice does not exist
            ForbiddenError: Invoice belongs to another organization
            BadRequestError: Invoice is void
        """
        current = require_invoice(self.invoices, invoice_id, organization_id)
        if current.is_void:
            raise BadRequestError("Void invoices cannot be sent")

        items = self.invoices.get_invoice_items(current.id)
        email_sent, warning = self._deliver(current, items)

        today = today_utc()
        with self.invoices.transaction():
            # Payments or a void may have landed while the email was going out
            current = require_invoice(self.invoices, invoice_id, organization_id)
            if current.is_void:
                raise BadRequestError("Void invoices cannot be sent")
            settlement = settle(
                total_cents=current.total_cents,
                amount_paid_cents=current.amount_paid_cents,
                ever_sent=True,
                previous_paid_date=current.paid_date,
                today=today,
            )
            updated = self._save_changes(
                current,
                {"sent_date": today, "status": settlement.status},
                acting_user_id,
                items,
            )

        logger.info(f"Invoice {updated.invoice_number} sent (email_sent={email_sent})")
        self.event_bus.publish(InvoiceSent.create(invoice=updated, email_sent=email_sent))

        return SendResult(invoice=updated, email_sent=email_sent, warning=warning)

    def _deliver(self, invoice: Invoice, items: list[InvoiceItem]) -> tuple[bool, str | None]:
        contact = self.directory.get_client_contact(invoice.client_id)
        if contact is None or not contact.email:
            return False, "Client has no email address; invoice was not emailed"

        sender = self.directory.get_email_sender(invoice.organization_id)
        if sender is None:
            return False, "Email sending is not configured for this organization"

        subject, html_body = self.notifications.render_invoice_email(
            invoice, items, contact.display_name
        )
        if not self.notifications.send_invoice_email(contact.email, subject, html_body, sender):
            return False, "Invoice email could not be delivered"
        return True, None

    def void(self, invoice_id: UUID, organization_id: UUID, acting_user_id: UUID) -> Invoice:
        """
        Void an invoice. Void is terminal.

        Raises:
            BadRequestError: Already void, or payments have been recorded
        """
        with self.invoices.transaction():
            current = require_invoice(self.invoices, invoice_id, organization_id)
            if current.is_void:
                raise BadRequestError(f"Invoice {current.invoice_number} is already void")
            if current.amount_paid_cents > 0 or self.invoices.get_invoice_payments(current.id):
                raise BadRequestError(
                    f"Invoice {current.invoice_number} has payments and cannot be voided"
                )

            updated = self._save_changes(
                current,
                {"status": InvoiceStatus.VOID, "voided_at": now_utc()},
                acting_user_id,
            )

        logger.info(f"Invoice {updated.invoice_number} voided")
        self.event_bus.publish(InvoiceVoided.create(invoice=updated))
        return updated

    def create_payment_link(
        self,
        invoice_id: UUID,
        organization_id: UUID,
        acting_user_id: UUID | None = None,
    ) -> str:
        """
        Create a hosted checkout page for the invoice balance.

        Returns:
            Checkout URL, also stored on the invoice

        Raises:
            BadRequestError: Invoice is void or has no balance due
            ExternalServiceError: Payment gateway failed
        """
        current = require_invoice(self.invoices, invoice_id, organization_id)
        if current.is_void:
            raise BadRequestError("Void invoices cannot be paid")
        if current.amount_due_cents <= 0:
            raise BadRequestError("Invoice has no balance due")

        items = self.invoices.get_invoice_items(current.id)
        invoice_url = f"{self.config.app_base_url.rstrip('/')}/invoices/{current.id}"

        session = self.notifications.create_payment_checkout_session(
            amount_cents=current.amount_due_cents,
            name=f"Invoice {current.invoice_number}",
            description=", ".join(item.description for item in items),
            success_url=f"{invoice_url}?payment=success",
            cancel_url=f"{invoice_url}?payment=cancelled",
            metadata={
                "invoice_id": str(current.id),
                "organization_id": str(current.organization_id),
                "invoice_number": current.invoice_number,
            },
        )

        with self.invoices.transaction():
            self._save_changes(
                current,
                {
                    "gateway_checkout_session_id": session.session_id,
                    "gateway_payment_url": session.url,
                },
                acting_user_id,
            )

        logger.info(f"Payment link created for invoice {current.invoice_number}")
        return session.url

    # -------------------------------------------------------------------------
    # Delete
    # -------------------------------------------------------------------------

    def delete(self, invoice_id: UUID, organization_id: UUID, acting_user_id: UUID) -> None:
        """
        Delete an invoice with its items and payments.

        Raises:
            NotFoundError: Invoice does not exist
            ForbiddenError: Invoice belongs to another organization
        """
        with self.invoices.transaction():
            current = require_invoice(self.invoices, invoice_id, organization_id)
            payments = self.invoices.get_invoice_payments(current.id)

            self.invoices.delete_invoice_items_by_invoice(current.id)
            for payment in payments:
                self.invoices.delete_invoice_payment(payment.id)
            self.invoices.delete_invoice(current.id)

            self.audit.log_change(
                entity_type="invoice",
                entity_id=current.id,
                organization_id=organization_id,
                action=AuditAction.DELETE,
                changes={"deleted": {
                    **current.model_dump(mode="json"),
                    "payment_count": len(payments),
                }},
                user_id=acting_user_id
            )

        logger.info(f"Invoice {current.invoice_number} deleted")
