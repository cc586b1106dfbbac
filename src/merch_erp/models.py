"""Domain records shared by the ledger, the repositories and the DAL.

All records are frozen dataclasses. Code that needs a changed value builds a
new instance with :func:`dataclasses.replace`; the ledger relies on this to
swap a whole catalog in one step.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Tuple

from .constants import DocumentKind


@dataclass(frozen=True)
class Product:
    """A sellable product and its on-hand quantity."""

    product_id: str
    name: str
    sku: str = ""
    barcode: str = ""
    category: str = ""
    purchase_price: Decimal = Decimal("0.00")
    sale_price: Decimal = Decimal("0.00")
    quantity: int = 0
    low_stock_threshold: int = 0

    @property
    def is_low_stock(self) -> bool:
        return self.quantity <= self.low_stock_threshold


@dataclass(frozen=True)
class LineItem:
    """One product/quantity/price entry embedded in a document.

    ``product_name`` is a snapshot taken when the line was built and is never
    re-validated against the catalog. ``total`` is cached; use
    :func:`merch_erp.valuation.recompute` or
    :func:`merch_erp.valuation.edit_line` rather than setting it directly.
    """

    product_id: str
    product_name: str = ""
    quantity: Optional[int] = 0
    unit_price: Optional[Decimal] = Decimal("0.00")
    total: Decimal = Decimal("0.00")


@dataclass(frozen=True)
class Document:
    """A sale invoice or purchase order.

    ``party_id``/``party_name`` hold the customer for sales and the supplier
    for purchases; :attr:`DocumentKind.party_role` names which one.
    """

    document_id: str
    document_number: str
    kind: DocumentKind
    party_id: str
    party_name: str
    date: str
    items: Tuple[LineItem, ...] = field(default_factory=tuple)
    subtotal: Decimal = Decimal("0.00")
    tax: Decimal = Decimal("0.00")
    total: Decimal = Decimal("0.00")

    def __post_init__(self) -> None:
        # Accept any iterable of lines but always store an immutable tuple.
        if not isinstance(self.items, tuple):
            object.__setattr__(self, "items", tuple(self.items))
        if not isinstance(self.kind, DocumentKind):
            object.__setattr__(self, "kind", DocumentKind(self.kind))


__all__ = ["Product", "LineItem", "Document"]
