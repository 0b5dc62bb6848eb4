"""
Domain events for billing.

Immutable event objects that represent state changes of invoices and their
payments. A service publishes what happened; handlers react without the
publisher knowing who is listening.

Event Categories:
- InvoiceEvent: Invoice lifecycle (create, send, paid, void)
- PaymentEvent: Payments recorded against or removed from an invoice

Events carry the full domain objects as committed, so handlers never
re-fetch state. Services publish only after the transaction commits.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

from utils.timezone import now_utc


@dataclass(frozen=True, kw_only=True)
class BillingEvent:
    """Base class for all billing domain events."""
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=now_utc)


# =============================================================================
# INVOICE EVENTS
# =============================================================================


@dataclass(frozen=True)
class InvoiceEvent(BillingEvent):
    """Events related to invoice lifecycle."""
    pass


@dataclass(frozen=True)
class InvoiceCreated(InvoiceEvent):
    """A new invoice was created in DRAFT status."""
    invoice: Any = None  # Invoice; Any avoids importing models here

    @classmethod
    def create(cls, invoice: Any) -> "InvoiceCreated":
        return cls(invoice=invoice)


@dataclass(frozen=True)
class InvoiceSent(InvoiceEvent):
    """Invoice was sent to the client."""
    invoice: Any = None
    email_sent: bool = False

    @classmethod
    def create(cls, invoice: Any, email_sent: bool) -> "InvoiceSent":
        return cls(invoice=invoice, email_sent=email_sent)


@dataclass(frozen=True)
class InvoicePaid(InvoiceEvent):
    """Invoice balance reached zero."""
    invoice: Any = None

    @classmethod
    def create(cls, invoice: Any) -> "InvoicePaid":
        return cls(invoice=invoice)


@dataclass(frozen=True)
class InvoiceVoided(InvoiceEvent):
    """Invoice was voided."""
    invoice: Any = None

    @classmethod
    def create(cls, invoice: Any) -> "InvoiceVoided":
        return cls(invoice=invoice)


# =============================================================================
# PAYMENT EVENTS
# =============================================================================


@dataclass(frozen=True)
class PaymentEvent(BillingEvent):
    """Events related to payments on an invoice."""
    pass


@dataclass(frozen=True)
class PaymentRecorded(PaymentEvent):
    """A payment was applied, manually or from the payment gateway."""
    invoice: Any = None
    payment: Any = None

    @classmethod
    def create(cls, invoice: Any, payment: Any) -> "PaymentRecorded":
        return cls(invoice=invoice, payment=payment)


@dataclass(frozen=True)
class PaymentRemoved(PaymentEvent):
    """A payment was deleted from an invoice."""
    invoice: Any = None
    payment: Any = None

    @classmethod
    def create(cls, invoice: Any, payment: Any) -> "PaymentRemoved":
        return cls(invoice=invoice, payment=payment)
