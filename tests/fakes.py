"""In-memory stand-ins for the repositories, with real transaction rollback."""

import copy
import hashlib
import hmac
from contextlib import contextmanager
from decimal import Decimal
from uuid import UUID, uuid4

from core.models import (
    ClientContact,
    EmailSender,
    InventoryAdjustment,
    InventoryAdjustmentCreate,
    InventoryItem,
    Invoice,
    InvoiceItem,
    InvoicePayment,
)
from core.repositories.invoice_repository import build_update_assignments
from utils.timezone import now_utc

WEBHOOK_SECRET = "whsec_test_secret"

_INVOICE_DEFAULTS = {
    "created_by": None,
    "sent_date": None,
    "paid_date": None,
    "discount_percent": None,
    "notes": None,
    "terms": None,
    "gateway_checkout_session_id": None,
    "gateway_payment_url": None,
    "inventory_deducted_at": None,
    "voided_at": None,
}


class InMemoryInvoiceRepository:
    """Dict-backed InvoiceRepository. A failed transaction() restores all state."""

    def __init__(self):
        self.invoices: dict[UUID, dict] = {}
        self.items: dict[UUID, dict] = {}
        self.payments: dict[UUID, dict] = {}
        self.sequences: dict[UUID, int] = {}
        self.commits = 0
        self.rollbacks = 0

    @contextmanager
    def transaction(self):
        snapshot = copy.deepcopy((self.invoices, self.items, self.payments, self.sequences))
        try:
            yield
        except BaseException:
            self.invoices, self.items, self.payments, self.sequences = snapshot
            self.rollbacks += 1
            raise
        self.commits += 1

    # Invoices

    def get_invoice(self, invoice_id):
        row = self.invoices.get(invoice_id)
        return Invoice.model_validate(row) if row else None

    def get_invoices_by_organization(self, organization_id):
        rows = [r for r in self.invoices.values() if r["organization_id"] == organization_id]
        rows.sort(key=lambda r: r["created_at"], reverse=True)
        return [Invoice.model_validate(r) for r in rows]

    def get_invoices_by_status(self, status, organization_id):
        return [i for i in self.get_invoices_by_organization(organization_id) if i.status == status]

    def get_invoices_by_client(self, client_id, organization_id):
        return [i for i in self.get_invoices_by_organization(organization_id) if i.client_id == client_id]

    def create_invoice(self, values):
        now = now_utc()
        row = {**_INVOICE_DEFAULTS, "id": uuid4(), "created_at": now, "updated_at": now, **values}
        self.invoices[row["id"]] = row
        return Invoice.model_validate(row)

    def update_invoice(self, invoice_id, patch):
        build_update_assignments(patch)
        row = self.invoices.get(invoice_id)
        if row is None:
            return None
        row.update(patch)
        row["updated_at"] = now_utc()
        return Invoice.model_validate(row)

    def delete_invoice(self, invoice_id):
        return self.invoices.pop(invoice_id, None) is not None

    def invoice_number_exists(self, organization_id, invoice_number):
        return any(
            r["organization_id"] == organization_id and r["invoice_number"] == invoice_number
            for r in self.invoices.values()
        )

    def get_next_invoice_number(self, organization_id):
        self.sequences[organization_id] = self.sequences.get(organization_id, 0) + 1
        return self.sequences[organization_id]

    def peek_next_invoice_number(self, organization_id):
        return self.sequences.get(organization_id, 0) + 1

    # Items

    def get_invoice_items(self, invoice_id):
        rows = [r for r in self.items.values() if r["invoice_id"] == invoice_id]
        rows.sort(key=lambda r: r["sort_order"])
        return [InvoiceItem.model_validate(r) for r in rows]

    def create_invoice_item(self, invoice_id, values):
        row = {"id": uuid4(), "invoice_id": invoice_id, "created_at": now_utc(),
               "inventory_item_id": None, **values}
        self.items[row["id"]] = row
        return InvoiceItem.model_validate(row)

    def delete_invoice_item(self, invoice_id, item_id):
        row = self.items.get(item_id)
        if row is None or row["invoice_id"] != invoice_id:
            return False
        del self.items[item_id]
        return True

    def delete_invoice_items_by_invoice(self, invoice_id):
        doomed = [k for k, r in self.items.items() if r["invoice_id"] == invoice_id]
        for key in doomed:
            del self.items[key]
        return len(doomed)

    # Payments

    def get_invoice_payments(self, invoice_id):
        rows = [r for r in self.payments.values() if r["invoice_id"] == invoice_id]
        rows.sort(key=lambda r: (r["payment_date"], r["created_at"]))
        return [InvoicePayment.model_validate(r) for r in rows]

    def create_invoice_payment(self, values):
        row = {"gateway_payment_id": None, "gateway_charge_id": None, "notes": None,
               "recorded_by": None, **values, "id": uuid4(), "created_at": now_utc()}
        self.payments[row["id"]] = row
        return InvoicePayment.model_validate(row)

    def delete_invoice_payment(self, payment_id):
        return self.payments.pop(payment_id, None) is not None

    def find_payment_by_gateway_charge(self, gateway_charge_id):
        for row in self.payments.values():
            if row["gateway_charge_id"] == gateway_charge_id:
                return InvoicePayment.model_validate(row)
        return None

    # Test helpers

    def payments_total(self, invoice_id) -> int:
        return sum(r["amount_cents"] for r in self.payments.values() if r["invoice_id"] == invoice_id)

    def force(self, invoice_id, **fields):
        """Overwrite stored fields directly, bypassing the allow-list."""
        self.invoices[invoice_id].update(fields)


class InMemoryInventoryRepository:

    def __init__(self):
        self.stock: dict[UUID, dict] = {}
        self.adjustments: list[InventoryAdjustment] = []

    def add(self, organization_id: UUID, name: str, quantity: str) -> UUID:
        item_id = uuid4()
        self.stock[item_id] = {
            "id": item_id,
            "organization_id": organization_id,
            "name": name,
            "quantity": Decimal(quantity),
            "updated_at": now_utc(),
        }
        return item_id

    def quantity(self, item_id: UUID) -> Decimal:
        return self.stock[item_id]["quantity"]

    def get_inventory_item(self, item_id):
        row = self.stock.get(item_id)
        return InventoryItem.model_validate(row) if row else None

    def update_inventory_item(self, item_id, quantity):
        row = self.stock.get(item_id)
        if row is None:
            return None
        row["quantity"] = quantity
        row["updated_at"] = now_utc()
        return InventoryItem.model_validate(row)

    def create_inventory_adjustment(self, record: InventoryAdjustmentCreate):
        adjustment = InventoryAdjustment(id=uuid4(), **record.model_dump())
        self.adjustments.append(adjustment)
        return adjustment


class InMemoryDirectoryRepository:

    def __init__(self):
        self.contacts: dict[UUID, ClientContact] = {}
        self.senders: dict[UUID, EmailSender] = {}

    def add_client(self, organization_id: UUID, email: str | None = "pat@example.com",
                   display_name: str = "Pat Rivera") -> UUID:
        client_id = uuid4()
        self.contacts[client_id] = ClientContact(
            id=client_id, organization_id=organization_id, display_name=display_name, email=email
        )
        return client_id

    def enable_email(self, organization_id: UUID, from_name: str = "Blue Lagoon Pools",
                     reply_to: str | None = "office@bluelagoon.example") -> None:
        self.senders[organization_id] = EmailSender(
            organization_id=organization_id, from_name=from_name, reply_to=reply_to
        )

    def get_client_contact(self, client_id):
        return self.contacts.get(client_id)

    def get_email_sender(self, organization_id):
        return self.senders.get(organization_id)


def make_invoice(**overrides) -> Invoice:
    """A stored DRAFT invoice for 10.00, for tests that need no repository."""
    now = now_utc()
    values = {
        **_INVOICE_DEFAULTS,
        "id": uuid4(),
        "organization_id": uuid4(),
        "client_id": uuid4(),
        "invoice_number": "INV-00001",
        "status": "draft",
        "issue_date": now.date(),
        "due_date": now.date(),
        "tax_rate": "0",
        "subtotal_cents": 1000,
        "discount_amount_cents": 0,
        "tax_amount_cents": 0,
        "total_cents": 1000,
        "amount_paid_cents": 0,
        "amount_due_cents": 1000,
        "created_at": now,
        "updated_at": now,
        **overrides,
    }
    return Invoice.model_validate(values)


def make_item(invoice_id: UUID, **overrides) -> InvoiceItem:
    values = {
        "id": uuid4(),
        "invoice_id": invoice_id,
        "description": "Pool filter cartridge",
        "quantity": "1",
        "unit_price_cents": 1000,
        "amount_cents": 1000,
        "sort_order": 0,
        "inventory_item_id": None,
        "created_at": now_utc(),
        **overrides,
    }
    return InvoiceItem.model_validate(values)


def stripe_signature(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Stripe-Signature header value, signed the way Stripe signs webhook deliveries."""
    if timestamp is None:
        timestamp = int(now_utc().timestamp())
    signed = f"{timestamp}.".encode("utf-8") + payload
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"
