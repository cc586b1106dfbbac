"""Enumerations shared across Merch ERP modules.

Keeps the document kinds, their stock direction and numbering prefixes, and
the workbook sheet names in one place so the storage layer, the ledger and
the CLI agree on them.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

DEFAULT_VAT_RATE = Decimal("0.14")


class DocumentKind(str, Enum):
    """Enumerate the two stock-affecting document kinds."""

    SALE = "sale"
    PURCHASE = "purchase"

    @property
    def stock_sign(self) -> int:
        """Direction of the stock effect: sales remove, purchases add."""
        return -1 if self is DocumentKind.SALE else 1

    @property
    def number_prefix(self) -> str:
        """Prefix used for the human-facing document number."""
        return "SALE" if self is DocumentKind.SALE else "PO"

    @property
    def party_role(self) -> str:
        """Which party the document references."""
        return "customer" if self is DocumentKind.SALE else "supplier"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    PRODUCTS = "Products"
    SALES = "Sales"
    SALE_ITEMS = "SaleItems"
    PURCHASES = "Purchases"
    PURCHASE_ITEMS = "PurchaseItems"
    SETTINGS = "Settings"


DOCUMENT_SHEETS = {
    DocumentKind.SALE: (SheetName.SALES, SheetName.SALE_ITEMS),
    DocumentKind.PURCHASE: (SheetName.PURCHASES, SheetName.PURCHASE_ITEMS),
}


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_VAT_RATE",
    "DocumentKind",
    "SheetName",
    "DOCUMENT_SHEETS",
]
