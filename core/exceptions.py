"""Typed exceptions for billing failures.

The HTTP layer maps each type to a status code (see api/errors.py).
Persistence failures are raised by the PostgreSQL client as
clients.postgres_client.PersistenceError.
"""


class BillingError(Exception):
    """Base class for invoice and payment errors."""


class ValidationError(BillingError):
    """Missing or malformed input (client, dates, line items, amounts)."""


class BadRequestError(BillingError):
    """Well-formed request that the invoice's current state does not allow."""


class NotFoundError(BillingError):
    """Invoice, item or payment does not exist."""


class ForbiddenError(BillingError):
    """Resource belongs to a different organization."""


class ExternalServiceError(BillingError):
    """
    Email or payment gateway call failed.

    Only raised when the operation cannot complete without the gateway
    (creating a payment link). Elsewhere gateway failures become warnings.
    """
