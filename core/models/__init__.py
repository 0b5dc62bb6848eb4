"""Core domain models."""

from core.models.invoice_item import InvoiceItem, InvoiceItemCreate
from core.models.invoice_payment import InvoicePayment, InvoicePaymentCreate
from core.models.invoice import (
    Invoice, InvoiceCreate, InvoiceUpdate, InvoiceDetail, InvoiceStatus, SendResult,
)
from core.models.inventory import InventoryItem, InventoryAdjustment, InventoryAdjustmentCreate
from core.models.directory import ClientContact, EmailSender

__all__ = [
    # Invoice
    "Invoice", "InvoiceCreate", "InvoiceUpdate", "InvoiceDetail", "InvoiceStatus", "SendResult",
    # InvoiceItem
    "InvoiceItem", "InvoiceItemCreate",
    # InvoicePayment
    "InvoicePayment", "InvoicePaymentCreate",
    # Inventory
    "InventoryItem", "InventoryAdjustment", "InventoryAdjustmentCreate",
    # Directory
    "ClientContact", "EmailSender",
]
