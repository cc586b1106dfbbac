"""Business logic layer for Merch ERP.

This module wires the ledger, the document repositories and the data access
layer together. Save and delete operations follow one rule: stock is
reconciled first, and the repository is only touched once reconciliation has
succeeded. A rejected operation therefore leaves every collection unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION, DocumentKind
from .documents import DocumentRepository, generate_document_id, next_document_number
from .errors import (
    BusinessRuleViolation,
    DuplicateDocumentError,
    InsufficientStockError,
    MissingReferenceError,
)
from .ledger import ProductCatalog, reconcile
from .models import Document, LineItem, Product
from .valuation import build_line_item, recompute_document


@dataclass
class RuntimeContext:
    """Configuration, workbook handle and the in-memory collections.

    Collections are loaded once from the workbook; mutations happen in memory
    and reach disk through :func:`persist_context`.
    """

    settings: data_manager.ConfigSettings
    workbook: Workbook
    app_settings: data_manager.AppSettings
    catalog: ProductCatalog
    sales: DocumentRepository
    purchases: DocumentRepository


def build_runtime_context(settings: data_manager.ConfigSettings, workbook: Workbook) -> RuntimeContext:
    """Load every collection from ``workbook`` into a :class:`RuntimeContext`."""

    app_settings = data_manager.load_app_settings(workbook, default_vat_rate=settings.default_vat_rate)
    catalog = ProductCatalog(data_manager.load_products(workbook))
    sales = DocumentRepository(DocumentKind.SALE, data_manager.load_documents(workbook, DocumentKind.SALE))
    purchases = DocumentRepository(
        DocumentKind.PURCHASE,
        data_manager.load_documents(workbook, DocumentKind.PURCHASE),
    )
    log.debug(
        "Loaded %d products, %d sales and %d purchases",
        len(catalog),
        len(sales),
        len(purchases),
    )
    return RuntimeContext(
        settings=settings,
        workbook=workbook,
        app_settings=app_settings,
        catalog=catalog,
        sales=sales,
        purchases=purchases,
    )


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration and the master workbook.

    Args:
        config_path (Path | None): Optional override path for the
            configuration file. When omitted the data layer searches upward
            from the current working directory.

    Returns:
        RuntimeContext: Fully populated context.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """

    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return build_runtime_context(settings, workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Refuse to work on a workbook declared with another schema version.

    Raises:
        RuntimeError: If the configured schema version does not match
            ``EXPECTED_SCHEMA_VERSION``.
    """

    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )


def persist_context(context: RuntimeContext) -> None:
    """Write every in-memory collection back to the workbook and save it."""

    workbook = context.workbook
    data_manager.write_products(workbook, context.catalog.products())
    data_manager.write_documents(workbook, DocumentKind.SALE, context.sales.documents())
    data_manager.write_documents(workbook, DocumentKind.PURCHASE, context.purchases.documents())
    data_manager.write_app_settings(workbook, context.app_settings)
    data_manager.save_workbook(workbook, destination=context.settings.data_file)
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook, discarding unsaved in-memory changes.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """

    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return build_runtime_context(context.settings, workbook)


def repository_for(context: RuntimeContext, kind: DocumentKind) -> DocumentRepository:
    return context.sales if kind is DocumentKind.SALE else context.purchases


def require_nonnegative_rate(rate: Decimal) -> None:
    """Validate that a tax rate is zero or positive.

    Raises:
        ValueError: If ``rate`` is negative.
    """

    if rate < Decimal("0"):
        log.error("Tax rate validation failed: %s", rate)
        raise ValueError("Tax rate must be zero or positive")


def set_vat_rate(context: RuntimeContext, rate: Decimal) -> data_manager.AppSettings:
    """Change the VAT rate used for documents saved from now on.

    Stored documents keep the totals they were saved with.
    """

    rate = Decimal(rate)
    require_nonnegative_rate(rate)
    context.app_settings = replace(context.app_settings, vat_rate=rate)
    log.info("VAT rate set to %s", rate)
    return context.app_settings


def list_products(context: RuntimeContext) -> List[Product]:
    return context.catalog.products()


def get_product(context: RuntimeContext, product_id: str) -> Product:
    """Resolve a product by id.

    Raises:
        MissingReferenceError: If ``product_id`` is not in the catalog.
    """

    product = context.catalog.get(product_id)
    if product is None:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise MissingReferenceError(f"Unknown product id: {product_id}")
    return product


def get_document(context: RuntimeContext, kind: DocumentKind, document_id: str) -> Document:
    """Resolve a stored document by id.

    Raises:
        MissingReferenceError: If no document of ``kind`` has that id.
    """

    document = repository_for(context, kind).get(document_id)
    if document is None:
        log.warning("%s lookup failed for id '%s'", kind.value.capitalize(), document_id)
        raise MissingReferenceError(f"Unknown {kind.value} document id: {document_id}")
    return document


def new_document(
    context: RuntimeContext,
    kind: DocumentKind,
    *,
    party_id: str,
    party_name: str,
    date: Optional[str] = None,
    when: Optional[datetime] = None,
) -> Document:
    """Start authoring a document with a fresh id and the next number.

    The document is not stored; pass it to :func:`save_document` once lines
    have been added.
    """

    repository = repository_for(context, kind)
    moment = when or datetime.now(UTC)
    document_id = generate_document_id(when=moment)
    while document_id in repository:
        moment += timedelta(microseconds=1)
        document_id = generate_document_id(when=moment)

    return Document(
        document_id=document_id,
        document_number=next_document_number(repository, kind.number_prefix),
        kind=kind,
        party_id=party_id,
        party_name=party_name,
        date=date or moment.date().isoformat(),
    )


def validate_document_structure(document: Document) -> None:
    """Reject documents that are not ready to be committed.

    Raises:
        BusinessRuleViolation: If the party is missing or there are no lines.
    """

    if not document.party_id:
        log.error("Document '%s' has no %s", document.document_number, document.kind.party_role)
        raise BusinessRuleViolation(f"Please select a {document.kind.party_role}")
    if not document.items:
        log.error("Document '%s' has no line items", document.document_number)
        raise BusinessRuleViolation("Add at least one item before saving")


def save_document(
    context: RuntimeContext,
    document: Document,
    prior_items: Optional[Sequence[LineItem]] = None,
) -> Document:
    """Commit a new or edited document and reconcile stock.

    Totals are recomputed with the current VAT rate, stock is reconciled
    against the catalog, and only then is the document inserted or replaced.

    Args:
        context (RuntimeContext): Runtime context holding the collections.
        document (Document): Document being committed.
        prior_items (Sequence[LineItem] | None): Lines of the version being
            edited. ``None`` means "use what is stored": the stored lines
            for an edit, nothing for a new document.

    Returns:
        Document: The committed document with recomputed totals.

    Raises:
        BusinessRuleViolation: If the document is structurally incomplete.
        InsufficientStockError: If a sale would leave a product on its lines
            with negative stock. Nothing is changed in that case.
    """

    validate_document_structure(document)
    repository = repository_for(context, document.kind)
    stored = repository.get(document.document_id)
    if prior_items is None:
        prior_items = stored.items if stored is not None else ()

    valued = recompute_document(document, context.app_settings.vat_rate)
    reconcile(valued.kind, prior_items, valued.items, context.catalog)

    if stored is None:
        repository.insert(valued)
        action = "Created"
    else:
        repository.replace(valued.document_id, valued)
        action = "Updated"
    log.info(
        "%s %s document '%s' (%d lines, total=%s)",
        action,
        valued.kind.value,
        valued.document_number,
        len(valued.items),
        valued.total,
    )
    return valued


def delete_document(context: RuntimeContext, kind: DocumentKind, document_id: str) -> Optional[Document]:
    """Delete a document and undo its stock effect.

    Deleting never fails: a sale gives its quantities back and a purchase
    takes its quantities away even if that leaves a product below zero.
    Unknown ids are logged and ignored.

    Returns:
        Document | None: The removed document, or ``None`` if it was unknown.
    """

    repository = repository_for(context, kind)
    document = repository.get(document_id)
    if document is None:
        log.warning("Delete requested for unknown %s document '%s'", kind.value, document_id)
        return None

    # Sale deletions only restore stock; purchase deletions are not checked.
    deltas = reconcile(kind, document.items, (), context.catalog)
    repository.remove(document_id)
    for product_id in deltas:
        product = context.catalog.get(product_id)
        if product is not None and product.quantity < 0:
            log.warning(
                "Deleting %s '%s' left product '%s' at quantity %s",
                kind.value,
                document.document_number,
                product_id,
                product.quantity,
            )
    log.info("Deleted %s document '%s'", kind.value, document.document_number)
    return document


@dataclass(frozen=True)
class LineRequest:
    """User intent for one document line, before pricing."""

    product_id: str
    quantity: int
    unit_price: Optional[Decimal] = None


def build_lines(context: RuntimeContext, kind: DocumentKind, requests: Sequence[LineRequest]) -> List[LineItem]:
    """Price each request from the catalog.

    Raises:
        MissingReferenceError: If a requested product is not in the catalog.
        ValueError: If a sale line carries a unit price or values are invalid.
    """

    return [
        build_line_item(get_product(context, request.product_id), request.quantity, kind, request.unit_price)
        for request in requests
    ]


def create_document(
    context: RuntimeContext,
    kind: DocumentKind,
    *,
    party_id: str,
    party_name: str,
    lines: Sequence[LineRequest],
    date: Optional[str] = None,
) -> Document:
    """Author and save a new document in one step."""

    draft = new_document(context, kind, party_id=party_id, party_name=party_name, date=date)
    draft = replace(draft, items=tuple(build_lines(context, kind, lines)))
    return save_document(context, draft, prior_items=())


def edit_document(
    context: RuntimeContext,
    kind: DocumentKind,
    document_id: str,
    *,
    lines: Optional[Sequence[LineRequest]] = None,
    party_id: Optional[str] = None,
    party_name: Optional[str] = None,
    date: Optional[str] = None,
) -> Document:
    """Edit a stored document and re-save it.

    Only the supplied fields change; ``lines`` replaces every line when given.

    Raises:
        MissingReferenceError: If the document or a requested product is
            unknown.
        InsufficientStockError: If the edited sale cannot be fulfilled.
    """

    stored = get_document(context, kind, document_id)
    changes: Dict[str, Any] = {}
    if lines is not None:
        changes["items"] = tuple(build_lines(context, kind, lines))
    if party_id is not None:
        changes["party_id"] = party_id
    if party_name is not None:
        changes["party_name"] = party_name
    if date is not None:
        changes["date"] = date
    return save_document(context, replace(stored, **changes), prior_items=stored.items)


def search_documents(context: RuntimeContext, kind: DocumentKind, term: str = "") -> List[Document]:
    return repository_for(context, kind).search(term)


def list_low_stock(context: RuntimeContext) -> List[Product]:
    """Products at or below their low-stock threshold."""

    return [product for product in context.catalog if product.is_low_stock]


def calculate_stock_value(context: RuntimeContext) -> Decimal:
    """Sale value of the stock on hand (sale price times quantity)."""

    return sum((product.sale_price * product.quantity for product in context.catalog), Decimal("0"))


def calculate_summary(context: RuntimeContext) -> Dict[str, Any]:
    """Headline figures: document totals, product count and low-stock count."""

    total_sales = sum((document.total for document in context.sales), Decimal("0"))
    total_purchases = sum((document.total for document in context.purchases), Decimal("0"))
    summary = {
        "total_sales": total_sales,
        "total_purchases": total_purchases,
        "product_count": len(context.catalog),
        "low_stock_count": len(list_low_stock(context)),
        "stock_value": calculate_stock_value(context),
    }
    log.debug("Calculated summary: %s", summary)
    return summary


def export_snapshot(context: RuntimeContext, destination: Path) -> Path:
    """Write every collection to a JSON snapshot at ``destination``."""

    path = data_manager.dump_json(
        destination,
        products=context.catalog.products(),
        sales=context.sales.documents(),
        purchases=context.purchases.documents(),
        settings=context.app_settings,
    )
    log.info("Exported snapshot to '%s'", path)
    return path


def import_snapshot(context: RuntimeContext, source: Path) -> Dict[str, int]:
    """Replace every collection with the contents of a JSON snapshot.

    The snapshot's quantities already reflect its documents, so products are
    swapped in as stored and nothing is reconciled. Collections are built
    before the context is touched; a malformed snapshot leaves it unchanged.

    Returns:
        dict[str, int]: Number of products, sales and purchases restored.

    Raises:
        FileNotFoundError: If ``source`` does not exist.
        BusinessRuleViolation: If a document sits in the wrong collection or
            an id repeats.
    """

    loaded = data_manager.load_json(source)
    sales = DocumentRepository(DocumentKind.SALE, loaded["invoices"])
    purchases = DocumentRepository(DocumentKind.PURCHASE, loaded["purchases"])

    context.catalog.replace_all(loaded["products"])
    context.sales = sales
    context.purchases = purchases
    context.app_settings = loaded["settings"]
    counts = {"products": len(context.catalog), "sales": len(sales), "purchases": len(purchases)}
    log.info("Restored snapshot '%s': %s", source, counts)
    return counts


__all__ = [
    "BusinessRuleViolation",
    "DuplicateDocumentError",
    "InsufficientStockError",
    "MissingReferenceError",
    "RuntimeContext",
    "build_runtime_context",
    "load_runtime_context",
    "ensure_schema_version",
    "persist_context",
    "refresh_context",
    "repository_for",
    "require_nonnegative_rate",
    "set_vat_rate",
    "list_products",
    "get_product",
    "get_document",
    "new_document",
    "validate_document_structure",
    "save_document",
    "delete_document",
    "LineRequest",
    "build_lines",
    "create_document",
    "edit_document",
    "search_documents",
    "list_low_stock",
    "calculate_stock_value",
    "calculate_summary",
    "export_snapshot",
    "import_snapshot",
]
