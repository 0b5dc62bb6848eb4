"""Inventory models used by the invoice inventory deduction."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field


class InventoryItem(BaseModel):
    """Stock item as stored. Quantity may be fractional (e.g. gallons)."""

    id: UUID
    organization_id: UUID
    name: str
    quantity: Decimal
    updated_at: datetime

    model_config = {"from_attributes": True}


class InventoryAdjustmentCreate(BaseModel):
    """Audit record of a stock change caused by an invoice."""

    inventory_item_id: UUID
    invoice_id: UUID
    previous_quantity: Decimal
    new_quantity: Decimal
    reason: str = Field(..., max_length=500)
    performed_by: UUID | None
    adjustment_date: datetime


class InventoryAdjustment(InventoryAdjustmentCreate):
    """Adjustment as stored."""

    id: UUID

    model_config = {"from_attributes": True}
