"""Persistence layer for the billing domain."""

from core.repositories.invoice_repository import InvoiceRepository
from core.repositories.inventory_repository import InventoryRepository
from core.repositories.directory_repository import DirectoryRepository
