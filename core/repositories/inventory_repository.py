"""Inventory persistence used by the invoice inventory deduction."""

from decimal import Decimal
from uuid import UUID, uuid4

from clients.postgres_client import PostgresClient
from core.models import InventoryItem, InventoryAdjustment, InventoryAdjustmentCreate
from utils.timezone import now_utc


class InventoryRepository:
    """Inventory items and their adjustment history."""

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def get_inventory_item(self, item_id: UUID) -> InventoryItem | None:
        row = self.postgres.execute_single(
            "SELECT id, organization_id, name, quantity, updated_at FROM inventory_items WHERE id = %s",
            (item_id,)
        )
        if row is None:
            return None
        return InventoryItem.model_validate(row)

    def update_inventory_item(self, item_id: UUID, quantity: Decimal) -> InventoryItem | None:
        """Set an item's on-hand quantity. Quantity is the only field billing may change."""
        row = self.postgres.execute_single(
            """
            UPDATE inventory_items
            SET quantity = %s, updated_at = %s
            WHERE id = %s
            RETURNING id, organization_id, name, quantity, updated_at
            """,
            (quantity, now_utc(), item_id)
        )
        if row is None:
            return None
        return InventoryItem.model_validate(row)

    def create_inventory_adjustment(self, record: InventoryAdjustmentCreate) -> InventoryAdjustment:
        row = self.postgres.execute_returning(
            """
            INSERT INTO inventory_adjustments (
                id, inventory_item_id, invoice_id, previous_quantity, new_quantity,
                reason, performed_by, adjustment_date
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                uuid4(), record.inventory_item_id, record.invoice_id,
                record.previous_quantity, record.new_quantity,
                record.reason, record.performed_by, record.adjustment_date
            )
        )[0]
        return InventoryAdjustment.model_validate(row)
