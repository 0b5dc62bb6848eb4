"""Invoice line item models.

Unit prices and amounts are stored in cents. Quantity is a decimal string
("1.5" hours, "3" filters); anything that is not a positive number bills as 1.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

# $1bn ceiling for any single amount
MAX_AMOUNT_CENTS = 100_000_000_000


class InvoiceItemCreate(BaseModel):
    """Data for one billable line on an invoice."""

    description: str = Field(..., min_length=1, max_length=500)
    quantity: str = "1"
    unit_price_cents: int = Field(..., ge=0, le=MAX_AMOUNT_CENTS)
    inventory_item_id: UUID | None = None

    model_config = {"extra": "forbid"}

    @field_validator("quantity", mode="before")
    @classmethod
    def quantity_as_text(cls, value):
        """Accept numbers as well as strings; parsing happens in core.totals."""
        if value is None:
            return "1"
        if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("quantity")
    @classmethod
    def quantity_within_limit(cls, value):
        from core.totals import MAX_QUANTITY, parse_quantity

        if parse_quantity(value) > MAX_QUANTITY:
            raise ValueError(f"Quantity must not exceed {MAX_QUANTITY}")
        return value


class InvoiceItem(BaseModel):
    """Full line item entity as stored."""

    id: UUID
    invoice_id: UUID
    description: str
    quantity: str
    unit_price_cents: int
    amount_cents: int
    sort_order: int
    inventory_item_id: UUID | None
    created_at: datetime

    model_config = {"from_attributes": True}
