"""Domain exceptions raised by the ledger, the repositories and the BLL."""

from __future__ import annotations


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced product or document is unknown."""


class DuplicateDocumentError(BusinessRuleViolation):
    """Raised when inserting a document whose id is already stored."""


class InsufficientStockError(BusinessRuleViolation):
    """Raised when a sale would drive a product's quantity below zero.

    The error is raised before the catalog is touched, so callers only have
    to report it; there is nothing to roll back.
    """

    def __init__(self, product_id: str, product_name: str, available: int, requested: int) -> None:
        self.product_id = product_id
        self.product_name = product_name
        self.available = available
        self.requested = requested
        super().__init__(
            f"Not enough stock for {product_name} ({product_id}): "
            f"{available} available, {requested} requested"
        )

    @property
    def shortfall(self) -> int:
        """Number of units missing to satisfy the request."""
        return self.requested - self.available


__all__ = [
    "BusinessRuleViolation",
    "MissingReferenceError",
    "DuplicateDocumentError",
    "InsufficientStockError",
]
