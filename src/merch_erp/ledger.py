"""Stock ledger: the product catalog and document reconciliation.

The on-hand quantity of each product must always reflect the sale and
purchase documents currently stored. :func:`reconcile` moves the catalog from
reflecting one version of a document to reflecting another (or none) in a
single validated step:

1. Old lines are undone and new lines applied, netted per product.
2. Every product on a sale's new lines is checked against a snapshot; a
   resulting quantity below zero raises :class:`InsufficientStockError`
   before anything changes.
3. The updated products are swapped into the catalog in one call.

Quantities only ever change through this module.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from typing import Dict, Iterable, Iterator, List, Optional

from . import log
from .constants import DocumentKind
from .errors import InsufficientStockError
from .models import LineItem, Product


class ProductCatalog:
    """Mapping of product id to :class:`Product`, owned by the ledger.

    ``lock`` is held by :func:`reconcile` for the whole snapshot, validate
    and commit sequence, so reconciliations against one catalog are
    serialized.
    """

    def __init__(self, products: Iterable[Product] = ()) -> None:
        self._products: Dict[str, Product] = {product.product_id: product for product in products}
        self.lock = threading.RLock()

    def __contains__(self, product_id: object) -> bool:
        return product_id in self._products

    def __iter__(self) -> Iterator[Product]:
        return iter(list(self._products.values()))

    def __len__(self) -> int:
        return len(self._products)

    def get(self, product_id: str) -> Optional[Product]:
        return self._products.get(product_id)

    def products(self) -> List[Product]:
        return list(self._products.values())

    def snapshot(self) -> Dict[str, Product]:
        """Return a shallow copy of the id -> product mapping."""
        return dict(self._products)

    def quantities(self) -> Dict[str, int]:
        return {product_id: product.quantity for product_id, product in self._products.items()}

    def adjust_quantity(self, product_id: str, delta: int) -> Optional[Product]:
        """Shift one product's quantity by ``delta``; unknown ids are ignored."""

        with self.lock:
            product = self._products.get(product_id)
            if product is None:
                log.warning("Quantity adjustment skipped for unknown product '%s'", product_id)
                return None
            updated = replace(product, quantity=product.quantity + delta)
            self._products[product_id] = updated
            return updated

    def replace_all(self, products: Iterable[Product]) -> None:
        """Swap in a complete new set of products."""

        mapping = {product.product_id: product for product in products}
        with self.lock:
            self._products = mapping


def _line_quantity(item: LineItem) -> int:
    """Quantity a line contributes to stock; malformed values count as zero."""

    if item.quantity is None:
        return 0
    quantity = int(item.quantity)
    if quantity != item.quantity:
        log.warning(
            "Truncating fractional quantity %s for product '%s'",
            item.quantity,
            item.product_id,
        )
    if quantity < 0:
        log.warning(
            "Ignoring negative quantity %s for product '%s'",
            item.quantity,
            item.product_id,
        )
        return 0
    return quantity


def sum_quantities(items: Iterable[LineItem]) -> Dict[str, int]:
    """Total quantity per product across ``items``, in first-seen order."""

    totals: Dict[str, int] = {}
    for item in items:
        totals[item.product_id] = totals.get(item.product_id, 0) + _line_quantity(item)
    return totals


def compute_deltas(
    kind: DocumentKind,
    old_items: Iterable[LineItem],
    new_items: Iterable[LineItem],
) -> Dict[str, int]:
    """Net stock change per product for replacing ``old_items`` with ``new_items``.

    The old version's effect is undone and the new version's effect applied:
    for a sale, old quantities come back into stock and new quantities leave
    it; a purchase is the mirror image. Products whose net change is zero are
    omitted. The catalog is not consulted.
    """

    old_totals = sum_quantities(old_items)
    new_totals = sum_quantities(new_items)
    sign = kind.stock_sign
    deltas: Dict[str, int] = {}
    for product_id in dict.fromkeys([*old_totals, *new_totals]):
        delta = sign * (new_totals.get(product_id, 0) - old_totals.get(product_id, 0))
        if delta:
            deltas[product_id] = delta
    return deltas


def reconcile(
    kind: DocumentKind,
    old_items: Iterable[LineItem],
    new_items: Iterable[LineItem],
    catalog: ProductCatalog,
) -> Dict[str, int]:
    """Apply the stock effect of committing a document version.

    Pass ``old_items=()`` for a new document and ``new_items=()`` for a
    deletion. Lines referencing products missing from the catalog have no
    stock effect.

    Args:
        kind (DocumentKind): Kind of the document being committed.
        old_items (Iterable[LineItem]): Lines of the stored version, empty
            when the document is new.
        new_items (Iterable[LineItem]): Lines of the version being committed,
            empty when the document is deleted.
        catalog (ProductCatalog): Catalog to update.

    Returns:
        dict[str, int]: Quantity change applied to each affected product.

    Raises:
        InsufficientStockError: If ``kind`` is a sale and a product on its
            new lines would end below zero, including one that was already
            negative. The catalog is left untouched.
    """

    old_items = list(old_items)
    new_items = list(new_items)
    old_totals = sum_quantities(old_items)
    new_totals = sum_quantities(new_items)

    with catalog.lock:
        snapshot = catalog.snapshot()
        deltas: Dict[str, int] = {}
        for product_id, delta in compute_deltas(kind, old_items, new_items).items():
            if product_id not in snapshot:
                log.warning(
                    "Skipping stock effect for unknown product '%s' on %s document",
                    product_id,
                    kind.value,
                )
                continue
            deltas[product_id] = delta

        if kind is DocumentKind.SALE:
            for product_id in new_totals:
                product = snapshot.get(product_id)
                if product is None:
                    continue
                if product.quantity + deltas.get(product_id, 0) < 0:
                    available = product.quantity + old_totals.get(product_id, 0)
                    requested = new_totals.get(product_id, 0)
                    log.error(
                        "Insufficient stock for '%s': available=%s requested=%s",
                        product_id,
                        available,
                        requested,
                    )
                    raise InsufficientStockError(product_id, product.name, available, requested)

        for product_id, delta in deltas.items():
            product = snapshot[product_id]
            snapshot[product_id] = replace(product, quantity=product.quantity + delta)
        catalog.replace_all(snapshot.values())

    if deltas:
        log.info("Reconciled %s document stock: %s", kind.value, deltas)
    return deltas


__all__ = [
    "ProductCatalog",
    "sum_quantities",
    "compute_deltas",
    "reconcile",
]
