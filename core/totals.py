"""
Invoice money math.

Pure functions only: totals from line items and rate inputs, and the status /
balance projection driven by payments. All amounts are integer cents; rates
are percentages given as decimal strings ("8.25" = 8.25%).

compute_totals is the single source of truth for invoice totals. Services call
it after every change to an invoice's items or rate inputs and never compute
totals inline.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, Protocol

from core.models.invoice import InvoiceStatus

_ONE = Decimal("1")
_HUNDRED = Decimal("100")

MAX_PERCENT = _HUNDRED
MAX_QUANTITY = Decimal("1000000")


class PricedLine(Protocol):
    quantity: str | None
    unit_price_cents: int


@dataclass(frozen=True)
class InvoiceTotals:
    subtotal_cents: int
    discount_amount_cents: int
    tax_amount_cents: int
    total_cents: int


@dataclass(frozen=True)
class Settlement:
    """Balance and status of an invoice for a given amount paid."""

    amount_paid_cents: int
    amount_due_cents: int
    status: InvoiceStatus
    paid_date: date | None


def round_half_up(value: Decimal) -> int:
    """Round to the nearest whole cent, halves away from zero."""
    return int(value.quantize(_ONE, rounding=ROUND_HALF_UP))


def parse_quantity(raw: str | int | float | Decimal | None) -> Decimal:
    """
    Parse a line item quantity.

    Anything that is not a finite, positive number counts as 1. Never raises.
    """
    if raw is None:
        return _ONE
    try:
        quantity = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        return _ONE
    if not quantity.is_finite() or quantity <= 0:
        return _ONE
    return quantity


def parse_percent(raw: str | int | float | Decimal) -> Decimal:
    """
    Parse a percentage rate.

    Raises ValueError unless the value is a finite number from 0 to 100.
    """
    try:
        percent = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        raise ValueError(f"Invalid percentage: {raw!r}")
    if not percent.is_finite() or percent < 0:
        raise ValueError(f"Invalid percentage: {raw!r}")
    if percent > MAX_PERCENT:
        raise ValueError(f"Percentage must not exceed {MAX_PERCENT}: {raw!r}")
    return percent


def line_amount(quantity: str | None, unit_price_cents: int) -> int:
    """Amount of one line item in cents: quantity x unit price, rounded once."""
    return round_half_up(parse_quantity(quantity) * unit_price_cents)


def compute_totals(
    items: Iterable[PricedLine],
    tax_rate: str | Decimal = "0",
    discount_percent: str | Decimal | None = None,
    discount_amount_cents: int = 0,
) -> InvoiceTotals:
    """
    Compute invoice totals from line items and rate inputs.

    - subtotal is the sum of line amounts
    - a discount_percent, when given, wins over the flat discount_amount_cents
    - the flat discount is clamped to the subtotal, so the total never goes negative
    - tax applies to the discounted amount
    - discount and tax are each rounded exactly once

    Args:
        items: Objects with ``quantity`` and ``unit_price_cents``
        tax_rate: Tax percentage
        discount_percent: Optional discount percentage
        discount_amount_cents: Flat discount used when no percentage is given

    Returns:
        InvoiceTotals with total == subtotal - discount + tax
    """
    subtotal = sum(line_amount(item.quantity, item.unit_price_cents) for item in items)

    if discount_percent is not None and str(discount_percent).strip() != "":
        discount = round_half_up(subtotal * parse_percent(discount_percent) / _HUNDRED)
    else:
        discount = min(max(discount_amount_cents or 0, 0), subtotal)

    after_discount = subtotal - discount
    tax = round_half_up(after_discount * parse_percent(tax_rate) / _HUNDRED)

    return InvoiceTotals(
        subtotal_cents=subtotal,
        discount_amount_cents=discount,
        tax_amount_cents=tax,
        total_cents=after_discount + tax,
    )


def derive_status(
    amount_paid_cents: int,
    total_cents: int,
    ever_sent: bool,
    voided: bool = False,
) -> InvoiceStatus:
    """Status is a projection of money received, whether it was sent, and void."""
    if voided:
        return InvoiceStatus.VOID
    if amount_paid_cents <= 0:
        return InvoiceStatus.SENT if ever_sent else InvoiceStatus.DRAFT
    if amount_paid_cents >= total_cents:
        return InvoiceStatus.PAID
    return InvoiceStatus.PARTIAL


def settle(
    total_cents: int,
    amount_paid_cents: int,
    ever_sent: bool,
    previous_paid_date: date | None,
    today: date,
    voided: bool = False,
) -> Settlement:
    """
    Project balance, status and paid date for an amount paid.

    amount_paid is floored at zero and amount_due never goes negative.
    paid_date is kept while the invoice stays paid, set to ``today`` when it
    becomes paid, and cleared when it stops being paid.
    """
    amount_paid = max(0, amount_paid_cents)
    status = derive_status(amount_paid, total_cents, ever_sent, voided)

    if status == InvoiceStatus.PAID:
        paid_date = previous_paid_date or today
    else:
        paid_date = None

    return Settlement(
        amount_paid_cents=amount_paid,
        amount_due_cents=max(0, total_cents - amount_paid),
        status=status,
        paid_date=paid_date,
    )
