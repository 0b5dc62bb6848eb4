"""
Inventory deduction for issued invoices.

When an invoice leaves draft (sent, or paid without ever being sent), every
line item linked to an inventory item draws that item's stock down by the
line quantity. The deduction happens at most once per invoice; the invoice's
inventory_deducted_at stamp is the guard.
"""

import logging
from decimal import Decimal
from uuid import UUID

from core.models import (
    Invoice,
    InvoiceItem,
    InvoiceStatus,
    InventoryAdjustment,
    InventoryAdjustmentCreate,
)
from core.repositories import InventoryRepository
from core.totals import parse_quantity
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


def needs_inventory_deduction(current: Invoice, new_status: InvoiceStatus) -> bool:
    """
    Whether moving ``current`` to ``new_status`` should deduct inventory.

    Only the first transition out of draft into an issued state counts.
    Voiding a draft never consumes stock.
    """
    if current.inventory_deducted_at is not None:
        return False
    if current.status != InvoiceStatus.DRAFT:
        return False
    return new_status not in (InvoiceStatus.DRAFT, InvoiceStatus.VOID)


class InventoryService:
    """Applies invoice line quantities to inventory stock."""

    def __init__(self, inventory: InventoryRepository):
        self.inventory = inventory

    def deduct_for_invoice(
        self,
        invoice: Invoice,
        items: list[InvoiceItem],
        performed_by: UUID | None,
    ) -> list[InventoryAdjustment]:
        """
        Deduct stock for each inventory-linked line item.

        Quantities never go below zero. Items pointing at inventory that is
        missing or owned by another organization are skipped.

        Args:
            invoice: Invoice being issued
            items: The invoice's line items
            performed_by: Acting user, None for gateway webhooks

        Returns:
            Adjustment records written, one per deducted item
        """
        adjustments = []

        for item in items:
            if item.inventory_item_id is None:
                continue

            stock = self.inventory.get_inventory_item(item.inventory_item_id)
            if stock is None:
                logger.warning(
                    f"Invoice {invoice.invoice_number}: inventory item "
                    f"{item.inventory_item_id} not found, skipping deduction"
                )
                continue
            if stock.organization_id != invoice.organization_id:
                logger.warning(
                    f"Invoice {invoice.invoice_number}: inventory item "
                    f"{item.inventory_item_id} belongs to another organization, skipping deduction"
                )
                continue

            new_quantity = max(Decimal("0"), stock.quantity - parse_quantity(item.quantity))
            self.inventory.update_inventory_item(stock.id, new_quantity)

            adjustments.append(self.inventory.create_inventory_adjustment(
                InventoryAdjustmentCreate(
                    inventory_item_id=stock.id,
                    invoice_id=invoice.id,
                    previous_quantity=stock.quantity,
                    new_quantity=new_quantity,
                    reason=f"Used on invoice {invoice.invoice_number}",
                    performed_by=performed_by,
                    adjustment_date=now_utc(),
                )
            ))

        if adjustments:
            logger.info(
                f"Invoice {invoice.invoice_number}: deducted {len(adjustments)} inventory item(s)"
            )
        return adjustments
