"""Line and document valuation.

Line totals and document totals are derived values. Every helper here returns
a new record with the derived fields recomputed, so callers cannot end up with
a ``total`` that disagrees with ``quantity`` and ``unit_price``.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional

from . import log
from .constants import DocumentKind
from .models import Document, LineItem, Product


ZERO = Decimal("0")
CENT = Decimal("0.01")


def _as_amount(value: object, label: str, *, whole: bool = False) -> Decimal:
    """Normalise a quantity, price or rate into a finite, nonnegative Decimal.

    ``None`` counts as zero. Anything negative, non-numeric or non-finite is
    rejected with :class:`ValueError`, as is a fractional value when ``whole``
    is set.
    """

    if value is None:
        return ZERO
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        log.error("Invalid %s: %r", label, value)
        raise ValueError(f"Invalid {label}: {value!r}") from exc
    if not amount.is_finite():
        log.error("Non-finite %s: %r", label, value)
        raise ValueError(f"{label.capitalize()} must be finite")
    if amount < ZERO:
        log.error("Negative %s: %r", label, value)
        raise ValueError(f"{label.capitalize()} must be zero or positive")
    if whole and amount != amount.to_integral_value():
        log.error("Fractional %s: %r", label, value)
        raise ValueError(f"{label.capitalize()} must be a whole number")
    return amount


def quantize_money(amount: Decimal) -> Decimal:
    """Round a monetary amount to cents using half-up rounding."""
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def recompute(item: LineItem) -> LineItem:
    """Return ``item`` with ``total = quantity * unit_price``.

    Args:
        item (LineItem): Line whose cached total may be stale.

    Returns:
        LineItem: Copy of ``item`` carrying the recomputed total. Missing
            quantity or price yields a total of zero.

    Raises:
        ValueError: If quantity or price is negative or not a finite number,
            or if quantity is not a whole number.
    """

    quantity = _as_amount(item.quantity, "quantity", whole=True)
    unit_price = _as_amount(item.unit_price, "unit price")
    return replace(item, total=quantity * unit_price)


def recompute_document(document: Document, tax_rate: Decimal) -> Document:
    """Return ``document`` with its lines and totals recomputed.

    Every line is recomputed first, then ``subtotal`` is the sum of line
    totals, ``tax = subtotal * tax_rate`` and ``total = subtotal + tax``.

    Args:
        document (Document): Document being authored or committed.
        tax_rate (Decimal): Fraction applied to the subtotal (``0.14`` for
            14%).

    Returns:
        Document: Copy of ``document`` with consistent derived fields.
    """

    rate = _as_amount(tax_rate, "tax rate")
    items = tuple(recompute(item) for item in document.items)
    subtotal = sum((item.total for item in items), ZERO)
    tax = subtotal * rate
    log.debug(
        "Valued document '%s': subtotal=%s tax=%s rate=%s",
        document.document_number,
        subtotal,
        tax,
        rate,
    )
    return replace(document, items=items, subtotal=subtotal, tax=tax, total=subtotal + tax)


def price_for(product: Product, kind: DocumentKind) -> Decimal:
    """Default unit price of ``product`` on a document of ``kind``."""
    return product.sale_price if kind is DocumentKind.SALE else product.purchase_price


def build_line_item(
    product: Product,
    quantity: int,
    kind: DocumentKind,
    unit_price: Optional[Decimal] = None,
) -> LineItem:
    """Snapshot ``product`` into a valued line for a document of ``kind``.

    Sale lines always take the product's sale price. Purchase lines default to
    the purchase price but accept a negotiated ``unit_price``.

    Raises:
        ValueError: If a unit price is supplied for a sale line, or if the
            quantity or price are invalid.
    """

    if unit_price is not None and kind is DocumentKind.SALE:
        raise ValueError("Sale lines are priced from the product's sale price")
    item = LineItem(
        product_id=product.product_id,
        product_name=product.name,
        quantity=quantity,
        unit_price=price_for(product, kind) if unit_price is None else unit_price,
    )
    return recompute(item)


def edit_line(
    item: LineItem,
    kind: DocumentKind,
    *,
    product: Optional[Product] = None,
    quantity: Optional[int] = None,
    unit_price: Optional[Decimal] = None,
) -> LineItem:
    """Apply an edit to a line and recompute its total.

    Switching ``product`` refreshes the name snapshot and resets the unit
    price to the product's price for ``kind``; an explicit ``unit_price`` on
    a purchase line then overrides it.

    Raises:
        ValueError: If a unit price is supplied for a sale line.
    """

    if unit_price is not None and kind is DocumentKind.SALE:
        raise ValueError("Sale lines are priced from the product's sale price")

    changes: dict[str, object] = {}
    if product is not None:
        changes["product_id"] = product.product_id
        changes["product_name"] = product.name
        changes["unit_price"] = price_for(product, kind)
    if quantity is not None:
        changes["quantity"] = quantity
    if unit_price is not None:
        changes["unit_price"] = unit_price
    return recompute(replace(item, **changes))


__all__ = [
    "quantize_money",
    "recompute",
    "recompute_document",
    "price_for",
    "build_line_item",
    "edit_line",
]
