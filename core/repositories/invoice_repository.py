"""
Invoice persistence: invoices, line items, payments and invoice numbering.

Plain SQL over PostgresClient. Reads are not organization-filtered: services
load by id and compare organization_id themselves so that cross-tenant
access can be reported as forbidden rather than missing.

Partial updates go through a fixed field -> column allow-list. Column names
in generated SQL only ever come from that mapping.
"""

import logging
from contextlib import AbstractContextManager
from typing import Any
from uuid import UUID, uuid4

from clients.postgres_client import PostgresClient
from core.models import Invoice, InvoiceItem, InvoicePayment, InvoiceStatus
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

# Patch field -> column. Anything else is rejected before SQL is built.
_UPDATABLE_COLUMNS: dict[str, str] = {
    "client_id": "client_id",
    "issue_date": "issue_date",
    "due_date": "due_date",
    "status": "status",
    "sent_date": "sent_date",
    "paid_date": "paid_date",
    "tax_rate": "tax_rate",
    "discount_percent": "discount_percent",
    "subtotal_cents": "subtotal_cents",
    "discount_amount_cents": "discount_amount_cents",
    "tax_amount_cents": "tax_amount_cents",
    "total_cents": "total_cents",
    "amount_paid_cents": "amount_paid_cents",
    "amount_due_cents": "amount_due_cents",
    "notes": "notes",
    "terms": "terms",
    "gateway_checkout_session_id": "gateway_checkout_session_id",
    "gateway_payment_url": "gateway_payment_url",
    "inventory_deducted_at": "inventory_deducted_at",
    "voided_at": "voided_at",
}

_INVOICE_INSERT_COLUMNS = (
    "id", "organization_id", "client_id", "created_by",
    "invoice_number", "status", "issue_date", "due_date",
    "tax_rate", "discount_percent",
    "subtotal_cents", "discount_amount_cents", "tax_amount_cents", "total_cents",
    "amount_paid_cents", "amount_due_cents",
    "notes", "terms", "created_at", "updated_at",
)


def build_update_assignments(patch: dict[str, Any]) -> tuple[str, list[Any]]:
    """
    Map a patch dict to a SET clause and its parameters.

    Raises:
        ValueError: If any field is not in the updatable allow-list
    """
    unknown = sorted(set(patch) - set(_UPDATABLE_COLUMNS))
    if unknown:
        raise ValueError(f"Fields not updatable on invoice: {', '.join(unknown)}")

    assignments = []
    params = []
    for field, value in patch.items():
        assignments.append(f"{_UPDATABLE_COLUMNS[field]} = %s")
        if isinstance(value, InvoiceStatus):
            value = value.value
        params.append(value)

    return ", ".join(assignments), params


class InvoiceRepository:
    """Persistence contract for invoices and their items and payments."""

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def transaction(self) -> AbstractContextManager:
        """Atomic unit for multi-step mutations."""
        return self.postgres.transaction()

    # -------------------------------------------------------------------------
    # Invoices
    # -------------------------------------------------------------------------

    def get_invoice(self, invoice_id: UUID) -> Invoice | None:
        row = self.postgres.execute_single(
            "SELECT * FROM invoices WHERE id = %s",
            (invoice_id,)
        )
        if row is None:
            return None
        return Invoice.model_validate(row)

    def get_invoices_by_organization(self, organization_id: UUID) -> list[Invoice]:
        rows = self.postgres.execute(
            """
            SELECT * FROM invoices
            WHERE organization_id = %s
            ORDER BY created_at DESC
            """,
            (organization_id,)
        )
        return [Invoice.model_validate(row) for row in rows]

    def get_invoices_by_status(self, status: InvoiceStatus, organization_id: UUID) -> list[Invoice]:
        rows = self.postgres.execute(
            """
            SELECT * FROM invoices
            WHERE organization_id = %s AND status = %s
            ORDER BY due_date ASC, created_at DESC
            """,
            (organization_id, status.value)
        )
        return [Invoice.model_validate(row) for row in rows]

    def get_invoices_by_client(self, client_id: UUID, organization_id: UUID) -> list[Invoice]:
        rows = self.postgres.execute(
            """
            SELECT * FROM invoices
            WHERE organization_id = %s AND client_id = %s
            ORDER BY created_at DESC
            """,
            (organization_id, client_id)
        )
        return [Invoice.model_validate(row) for row in rows]

    def create_invoice(self, values: dict[str, Any]) -> Invoice:
        """
        Insert an invoice.

        Args:
            values: Column values; id and timestamps are filled in when absent
        """
        now = now_utc()
        row_values = {"id": uuid4(), "created_at": now, "updated_at": now, **values}
        if isinstance(row_values.get("status"), InvoiceStatus):
            row_values["status"] = row_values["status"].value

        columns = ", ".join(_INVOICE_INSERT_COLUMNS)
        placeholders = ", ".join(["%s"] * len(_INVOICE_INSERT_COLUMNS))
        row = self.postgres.execute_returning(
            f"INSERT INTO invoices ({columns}) VALUES ({placeholders}) RETURNING *",
            tuple(row_values.get(column) for column in _INVOICE_INSERT_COLUMNS)
        )[0]
        return Invoice.model_validate(row)

    def update_invoice(self, invoice_id: UUID, patch: dict[str, Any]) -> Invoice | None:
        """
        Apply a partial update.

        Returns:
            Updated invoice, or None if it does not exist

        Raises:
            ValueError: If the patch names a non-updatable field
        """
        if not patch:
            return self.get_invoice(invoice_id)

        assignments, params = build_update_assignments(patch)
        rows = self.postgres.execute_returning(
            f"UPDATE invoices SET {assignments}, updated_at = %s WHERE id = %s RETURNING *",
            (*params, now_utc(), invoice_id)
        )
        if not rows:
            return None
        return Invoice.model_validate(rows[0])

    def delete_invoice(self, invoice_id: UUID) -> bool:
        rows = self.postgres.execute_returning(
            "DELETE FROM invoices WHERE id = %s RETURNING id",
            (invoice_id,)
        )
        return len(rows) > 0

    def invoice_number_exists(self, organization_id: UUID, invoice_number: str) -> bool:
        result = self.postgres.execute_scalar(
            "SELECT 1 FROM invoices WHERE organization_id = %s AND invoice_number = %s",
            (organization_id, invoice_number)
        )
        return result is not None

    def get_next_invoice_number(self, organization_id: UUID) -> int:
        """
        Allocate the next invoice sequence value for an organization.

        The counter only moves forward, so numbers are never reused even
        after invoices are deleted.
        """
        return self.postgres.execute_returning(
            """
            INSERT INTO invoice_number_sequences (organization_id, last_value)
            VALUES (%s, 1)
            ON CONFLICT (organization_id)
            DO UPDATE SET last_value = invoice_number_sequences.last_value + 1
            RETURNING last_value
            """,
            (organization_id,)
        )[0]["last_value"]

    def peek_next_invoice_number(self, organization_id: UUID) -> int:
        """The value get_next_invoice_number would allocate, without allocating it."""
        last_value = self.postgres.execute_scalar(
            "SELECT last_value FROM invoice_number_sequences WHERE organization_id = %s",
            (organization_id,)
        )
        return (last_value or 0) + 1

    # -------------------------------------------------------------------------
    # Items
    # -------------------------------------------------------------------------

    def get_invoice_items(self, invoice_id: UUID) -> list[InvoiceItem]:
        rows = self.postgres.execute(
            """
            SELECT * FROM invoice_items
            WHERE invoice_id = %s
            ORDER BY sort_order ASC, created_at ASC
            """,
            (invoice_id,)
        )
        return [InvoiceItem.model_validate(row) for row in rows]

    def create_invoice_item(self, invoice_id: UUID, values: dict[str, Any]) -> InvoiceItem:
        row = self.postgres.execute_returning(
            """
            INSERT INTO invoice_items (
                id, invoice_id, description, quantity, unit_price_cents,
                amount_cents, sort_order, inventory_item_id, created_at
            ) VALUES (
                %s, %s, %s, %s, %s,
                %s, %s, %s, %s
            )
            RETURNING *
            """,
            (
                uuid4(), invoice_id, values["description"], values["quantity"],
                values["unit_price_cents"], values["amount_cents"], values["sort_order"],
                values.get("inventory_item_id"), now_utc()
            )
        )[0]
        return InvoiceItem.model_validate(row)

    def delete_invoice_item(self, invoice_id: UUID, item_id: UUID) -> bool:
        rows = self.postgres.execute_returning(
            "DELETE FROM invoice_items WHERE id = %s AND invoice_id = %s RETURNING id",
            (item_id, invoice_id)
        )
        return len(rows) > 0

    def delete_invoice_items_by_invoice(self, invoice_id: UUID) -> int:
        rows = self.postgres.execute_returning(
            "DELETE FROM invoice_items WHERE invoice_id = %s RETURNING id",
            (invoice_id,)
        )
        return len(rows)

    # -------------------------------------------------------------------------
    # Payments
    # -------------------------------------------------------------------------

    def get_invoice_payments(self, invoice_id: UUID) -> list[InvoicePayment]:
        rows = self.postgres.execute(
            """
            SELECT * FROM invoice_payments
            WHERE invoice_id = %s
            ORDER BY payment_date ASC, created_at ASC
            """,
            (invoice_id,)
        )
        return [InvoicePayment.model_validate(row) for row in rows]

    def create_invoice_payment(self, values: dict[str, Any]) -> InvoicePayment:
        row = self.postgres.execute_returning(
            """
            INSERT INTO invoice_payments (
                id, invoice_id, organization_id, amount_cents, payment_method,
                payment_date, gateway_payment_id, gateway_charge_id, notes,
                recorded_by, created_at
            ) VALUES (
                %s, %s, %s, %s, %s,
                %s, %s, %s, %s,
                %s, %s
            )
            RETURNING *
            """,
            (
                uuid4(), values["invoice_id"], values["organization_id"],
                values["amount_cents"], values["payment_method"], values["payment_date"],
                values.get("gateway_payment_id"), values.get("gateway_charge_id"),
                values.get("notes"), values.get("recorded_by"), now_utc()
            )
        )[0]
        return InvoicePayment.model_validate(row)

    def delete_invoice_payment(self, payment_id: UUID) -> bool:
        rows = self.postgres.execute_returning(
            "DELETE FROM invoice_payments WHERE id = %s RETURNING id",
            (payment_id,)
        )
        return len(rows) > 0

    def find_payment_by_gateway_charge(self, gateway_charge_id: str) -> InvoicePayment | None:
        row = self.postgres.execute_single(
            "SELECT * FROM invoice_payments WHERE gateway_charge_id = %s LIMIT 1",
            (gateway_charge_id,)
        )
        if row is None:
            return None
        return InvoicePayment.model_validate(row)
