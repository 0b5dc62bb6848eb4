"""Invoice payment models. Amounts in cents."""

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from core.models.invoice_item import MAX_AMOUNT_CENTS
from utils.timezone import parse_calendar_date


class InvoicePaymentCreate(BaseModel):
    """A payment received against an invoice."""

    amount_cents: int = Field(..., gt=0, le=MAX_AMOUNT_CENTS)
    payment_method: str = Field("manual", min_length=1, max_length=50)
    payment_date: date | None = None  # Defaults to today
    gateway_payment_id: str | None = Field(None, max_length=255)
    gateway_charge_id: str | None = Field(None, max_length=255)
    notes: str | None = Field(None, max_length=2000)

    model_config = {"extra": "forbid"}

    @field_validator("payment_date", mode="before")
    @classmethod
    def normalize_payment_date(cls, value):
        if value is None:
            return None
        return parse_calendar_date(value)


class InvoicePayment(BaseModel):
    """Full payment entity as stored."""

    id: UUID
    invoice_id: UUID
    organization_id: UUID
    amount_cents: int
    payment_method: str
    payment_date: date
    gateway_payment_id: str | None
    gateway_charge_id: str | None
    notes: str | None
    recorded_by: UUID | None  # None for gateway webhook payments
    created_at: datetime

    model_config = {"from_attributes": True}
