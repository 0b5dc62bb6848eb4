"""Invoice domain models.

All amounts are stored in cents (integer) to avoid floating point issues.
$10.00 = 1000 cents. Tax and discount rates are percentages kept as decimal
strings ("8.25" = 8.25%).
"""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from core.models.invoice_item import MAX_AMOUNT_CENTS, InvoiceItem, InvoiceItemCreate
from core.models.invoice_payment import InvoicePayment
from utils.timezone import parse_calendar_date


class InvoiceStatus(str, Enum):
    """Invoice lifecycle status. Derived from payments; never set directly."""

    DRAFT = "draft"
    SENT = "sent"
    PARTIAL = "partial"
    PAID = "paid"
    VOID = "void"


def _normalize_date(value):
    if value is None:
        return None
    return parse_calendar_date(value)


def _normalize_percent(value):
    if value is None:
        return None
    from core.totals import parse_percent

    return str(parse_percent(value))


class InvoiceCreate(BaseModel):
    """
    Data for a new invoice.

    client_id and the dates are optional here so the service can report
    them as missing with a billing ValidationError.
    """

    client_id: UUID | None = None
    issue_date: date | None = None
    due_date: date | None = None
    invoice_number: str | None = Field(None, min_length=1, max_length=50)
    tax_rate: str = "0"
    discount_percent: str | None = None
    discount_amount_cents: int = Field(0, ge=0, le=MAX_AMOUNT_CENTS)
    notes: str | None = Field(None, max_length=5000)
    terms: str | None = Field(None, max_length=5000)
    items: list[InvoiceItemCreate] = Field(default_factory=list)

    model_config = {"extra": "forbid"}

    @field_validator("issue_date", "due_date", mode="before")
    @classmethod
    def normalize_dates(cls, value):
        return _normalize_date(value)

    @field_validator("tax_rate", "discount_percent", mode="before")
    @classmethod
    def normalize_percentages(cls, value):
        return _normalize_percent(value)


class InvoiceUpdate(BaseModel):
    """
    Patch for an existing invoice. Only fields that are set are applied.

    ``items``, when present, replaces the whole item set. Status is not
    accepted: it follows from payments, send and void.
    """

    client_id: UUID | None = None
    issue_date: date | None = None
    due_date: date | None = None
    tax_rate: str | None = None
    discount_percent: str | None = None
    discount_amount_cents: int | None = Field(None, ge=0, le=MAX_AMOUNT_CENTS)
    notes: str | None = Field(None, max_length=5000)
    terms: str | None = Field(None, max_length=5000)
    items: list[InvoiceItemCreate] | None = None

    model_config = {"extra": "forbid"}

    @field_validator("issue_date", "due_date", mode="before")
    @classmethod
    def normalize_dates(cls, value):
        return _normalize_date(value)

    @field_validator("tax_rate", "discount_percent", mode="before")
    @classmethod
    def normalize_percentages(cls, value):
        return _normalize_percent(value)


class Invoice(BaseModel):
    """Full invoice entity as stored."""

    id: UUID
    organization_id: UUID
    client_id: UUID
    created_by: UUID | None
    invoice_number: str
    status: InvoiceStatus
    issue_date: date
    due_date: date
    sent_date: date | None
    paid_date: date | None
    tax_rate: str
    discount_percent: str | None
    subtotal_cents: int
    discount_amount_cents: int
    tax_amount_cents: int
    total_cents: int
    amount_paid_cents: int
    amount_due_cents: int
    notes: str | None
    terms: str | None
    gateway_checkout_session_id: str | None
    gateway_payment_url: str | None
    inventory_deducted_at: datetime | None
    voided_at: datetime | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def ever_sent(self) -> bool:
        """Whether the invoice has been sent to the client at least once."""
        return self.sent_date is not None

    @property
    def is_void(self) -> bool:
        return self.status == InvoiceStatus.VOID

    @property
    def total_dollars(self) -> float:
        """Total amount in dollars for display."""
        return self.total_cents / 100


class InvoiceDetail(Invoice):
    """Invoice with its line items and payments."""

    items: list[InvoiceItem] = Field(default_factory=list)
    payments: list[InvoicePayment] = Field(default_factory=list)


class SendResult(BaseModel):
    """Outcome of sending an invoice. Delivery problems are warnings, not errors."""

    invoice: Invoice
    email_sent: bool
    warning: str | None = None
