"""Data access layer for Merch ERP.

This module reads and writes the master workbook. Business rules belong in
:mod:`merch_erp.core_logic` and :mod:`merch_erp.ledger`.

The public API covers four concerns:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, saving and reloading the Excel file.
3. Sheet operations: loading typed records and rewriting whole collections.
4. JSON records: converting products, documents and settings to and from
   plain dicts keyed by the storage field names.
"""


from __future__ import annotations

import configparser
import json
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import openpyxl
from openpyxl.workbook import Workbook

from . import log
from .constants import DEFAULT_VAT_RATE, DOCUMENT_SHEETS, DocumentKind, SheetName
from .models import Document, LineItem, Product


CONFIG_FILE_NAME = "config.ini"

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.PRODUCTS.value: [
        "ProductID",
        "ProductName",
        "SKU",
        "Barcode",
        "Category",
        "PurchasePrice",
        "SalePrice",
        "Quantity",
        "LowStockThreshold",
    ],
    SheetName.SALES.value: [
        "DocumentID",
        "DocumentNumber",
        "PartyID",
        "PartyName",
        "Date",
        "Subtotal",
        "Tax",
        "Total",
    ],
    SheetName.SALE_ITEMS.value: [
        "DocumentID",
        "LineNo",
        "ProductID",
        "ProductName",
        "Quantity",
        "UnitPrice",
        "Total",
    ],
    SheetName.PURCHASES.value: [
        "DocumentID",
        "DocumentNumber",
        "PartyID",
        "PartyName",
        "Date",
        "Subtotal",
        "Tax",
        "Total",
    ],
    SheetName.PURCHASE_ITEMS.value: [
        "DocumentID",
        "LineNo",
        "ProductID",
        "ProductName",
        "Quantity",
        "UnitPrice",
        "Total",
    ],
    SheetName.SETTINGS.value: ["Key", "Value"],
}

@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    schema_version: str
    default_vat_rate: Decimal


@dataclass(frozen=True)
class AppSettings:
    """Company details and the VAT rate stored in the ``Settings`` sheet."""

    company_name: str = ""
    address: str = ""
    phone: str = ""
    vat_rate: Decimal = DEFAULT_VAT_RATE


def _to_decimal(raw: object, default: str = "0.00") -> Decimal:
    return Decimal(str(raw)) if raw is not None and raw != "" else Decimal(default)


def _to_int(raw: object, label: str = "count", owner: object = "") -> int:
    """Read a whole number from a cell; blank counts as 0.

    Non-numeric or fractional values are logged and read as 0 so one bad row
    does not stop the workbook from loading.
    """

    if raw is None or raw == "":
        return 0
    try:
        value = Decimal(str(raw))
    except InvalidOperation:
        value = Decimal("NaN")
    if value.is_finite() and value == value.to_integral_value():
        return int(value)
    log.warning("Treating malformed %s %r of '%s' as 0", label, raw, owner)
    return 0


def _to_text(raw: object) -> str:
    return str(raw) if raw is not None else ""


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    An explicit path is returned as-is. Otherwise the search walks up from the
    current working directory and returns the first ``CONFIG_FILE_NAME`` that
    exists.

    Args:
        explicit_path (Path | None): Optional path to use instead of searching.

    Returns:
        Path: The provided path or the discovered configuration file.

    Raises:
        FileNotFoundError: If no configuration file is found.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for directory in (current, *current.parents):
        candidate = directory / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` into a ``ConfigParser``.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System] DataFile`` and ``[System] SchemaVersion`` are required. The
    optional ``[Defaults] VatRate`` seeds the ``Settings`` sheet of newly
    created workbooks. Relative data file paths are anchored at ``base_path``
    (or the current working directory) and resolved.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to resolve a relative
            ``DataFile``.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If ``VatRate`` is not a number.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    vat_raw = parser.get("Defaults", "VatRate", fallback=str(DEFAULT_VAT_RATE))
    try:
        default_vat_rate = Decimal(vat_raw.strip())
    except ArithmeticError as exc:
        raise ValueError(f"Invalid VatRate in configuration: {vat_raw!r}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        schema_version=schema_version,
        default_vat_rate=default_vat_rate,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the master workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook at ``destination``, creating parent folders."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding unsaved in-memory changes."""

    return open_workbook(data_file)


def _iter_rows(workbook: Workbook, sheet_name: str) -> Iterable[tuple]:
    """Yield the non-empty data rows of ``sheet_name``, skipping the header."""

    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if any(cell is not None for cell in raw):
            yield raw


def rewrite_sheet(workbook: Workbook, sheet_name: str, rows: Iterable[Sequence[object]]) -> int:
    """Replace every data row of ``sheet_name`` with ``rows``.

    The header row is kept. Collections are small, so rewriting them whole is
    simpler than tracking row positions.

    Returns:
        int: Number of rows written.
    """

    sheet = workbook[sheet_name]
    if sheet.max_row > 1:
        sheet.delete_rows(2, sheet.max_row - 1)
    count = 0
    for row in rows:
        sheet.append(list(row))
        count += 1
    log.debug("Rewrote sheet '%s' with %d rows", sheet_name, count)
    return count


def serialize_product(record: Product) -> list[object]:
    """Convert a product into the ``Products`` column ordering."""

    return [
        record.product_id,
        record.name,
        record.sku,
        record.barcode,
        record.category,
        record.purchase_price,
        record.sale_price,
        record.quantity,
        record.low_stock_threshold,
    ]


def deserialize_product(raw_row: Sequence[object]) -> Product:
    """Convert a raw ``Products`` row into a :class:`Product`.

    Prices become :class:`~decimal.Decimal`, counts become ``int`` and text
    columns are coerced to ``str`` so barcodes Excel stored as numbers keep
    working as identifiers.
    """

    (
        product_id,
        name,
        sku,
        barcode,
        category,
        purchase_price,
        sale_price,
        quantity,
        low_stock_threshold,
    ) = tuple(raw_row[:9])
    return Product(
        product_id=str(product_id),
        name=_to_text(name),
        sku=_to_text(sku),
        barcode=_to_text(barcode),
        category=_to_text(category),
        purchase_price=_to_decimal(purchase_price),
        sale_price=_to_decimal(sale_price),
        quantity=_to_int(quantity, "quantity", product_id),
        low_stock_threshold=_to_int(low_stock_threshold, "low stock threshold", product_id),
    )


def serialize_document(record: Document) -> list[object]:
    """Convert a document header into the documents sheet column ordering."""

    return [
        record.document_id,
        record.document_number,
        record.party_id,
        record.party_name,
        record.date,
        record.subtotal,
        record.tax,
        record.total,
    ]


def serialize_line_item(document_id: str, line_no: int, record: LineItem) -> list[object]:
    """Convert a line into the items sheet column ordering."""

    return [
        document_id,
        line_no,
        record.product_id,
        record.product_name,
        record.quantity,
        record.unit_price,
        record.total,
    ]


def deserialize_line_item(raw_row: Sequence[object]) -> tuple[str, int, LineItem]:
    """Convert a raw items row into ``(document_id, line_no, LineItem)``."""

    document_id, line_no, product_id, product_name, quantity, unit_price, total = tuple(raw_row[:7])
    item = LineItem(
        product_id=_to_text(product_id),
        product_name=_to_text(product_name),
        quantity=_to_int(quantity, "quantity", document_id),
        unit_price=_to_decimal(unit_price),
        total=_to_decimal(total),
    )
    return str(document_id), _to_int(line_no, "line number", document_id), item


def deserialize_document(raw_row: Sequence[object], kind: DocumentKind, items: Sequence[LineItem] = ()) -> Document:
    """Convert a raw documents row into a :class:`Document` of ``kind``."""

    document_id, number, party_id, party_name, date, subtotal, tax, total = tuple(raw_row[:8])
    return Document(
        document_id=str(document_id),
        document_number=_to_text(number),
        kind=kind,
        party_id=_to_text(party_id),
        party_name=_to_text(party_name),
        date=_to_text(date),
        items=tuple(items),
        subtotal=_to_decimal(subtotal),
        tax=_to_decimal(tax),
        total=_to_decimal(total),
    )


def load_products(workbook: Workbook) -> List[Product]:
    """Read every product from the ``Products`` sheet in sheet order."""

    return [deserialize_product(raw) for raw in _iter_rows(workbook, SheetName.PRODUCTS.value)]


def load_documents(workbook: Workbook, kind: DocumentKind) -> List[Document]:
    """Read the documents of ``kind`` together with their line items.

    Lines are attached to their document by ``DocumentID`` and ordered by
    ``LineNo``. Lines whose document row is missing are dropped with a
    warning.
    """

    header_sheet, items_sheet = DOCUMENT_SHEETS[kind]
    grouped: Dict[str, List[tuple[int, LineItem]]] = {}
    for raw in _iter_rows(workbook, items_sheet.value):
        document_id, line_no, item = deserialize_line_item(raw)
        grouped.setdefault(document_id, []).append((line_no, item))

    documents: List[Document] = []
    for raw in _iter_rows(workbook, header_sheet.value):
        document_id = str(raw[0])
        lines = sorted(grouped.pop(document_id, []), key=lambda pair: pair[0])
        documents.append(deserialize_document(raw, kind, [item for _, item in lines]))

    for orphan_id in grouped:
        log.warning("Dropping line items for unknown %s document '%s'", kind.value, orphan_id)
    return documents


def write_products(workbook: Workbook, products: Iterable[Product]) -> int:
    """Rewrite the ``Products`` sheet from ``products``."""

    return rewrite_sheet(workbook, SheetName.PRODUCTS.value, (serialize_product(p) for p in products))


def write_documents(workbook: Workbook, kind: DocumentKind, documents: Iterable[Document]) -> int:
    """Rewrite the header and items sheets for ``kind``.

    Returns:
        int: Number of documents written.
    """

    header_sheet, items_sheet = DOCUMENT_SHEETS[kind]
    documents = list(documents)
    item_rows = [
        serialize_line_item(document.document_id, line_no, item)
        for document in documents
        for line_no, item in enumerate(document.items, start=1)
    ]
    rewrite_sheet(workbook, items_sheet.value, item_rows)
    return rewrite_sheet(workbook, header_sheet.value, (serialize_document(d) for d in documents))


_SETTINGS_KEYS = {
    "CompanyName": "company_name",
    "Address": "address",
    "Phone": "phone",
    "VatRate": "vat_rate",
}


def load_app_settings(workbook: Workbook, *, default_vat_rate: Decimal = DEFAULT_VAT_RATE) -> AppSettings:
    """Read the key/value ``Settings`` sheet; unknown keys are ignored."""

    values: Dict[str, Any] = {"vat_rate": default_vat_rate}
    for raw in _iter_rows(workbook, SheetName.SETTINGS.value):
        key, value = raw[0], (raw[1] if len(raw) > 1 else None)
        attribute = _SETTINGS_KEYS.get(_to_text(key))
        if attribute is None:
            log.warning("Ignoring unknown setting '%s'", key)
            continue
        values[attribute] = _to_decimal(value, str(default_vat_rate)) if attribute == "vat_rate" else _to_text(value)
    return AppSettings(**values)


def write_app_settings(workbook: Workbook, settings: AppSettings) -> int:
    """Rewrite the ``Settings`` sheet from ``settings``.

    The VAT rate is stored as text so it reads back exactly.
    """

    rows = []
    for key, attribute in _SETTINGS_KEYS.items():
        value = getattr(settings, attribute)
        rows.append([key, str(value) if attribute == "vat_rate" else value])
    return rewrite_sheet(workbook, SheetName.SETTINGS.value, rows)


# ---------------------------------------------------------------------------
# JSON records
# ---------------------------------------------------------------------------


def product_to_record(product: Product) -> Dict[str, Any]:
    return {
        "id": product.product_id,
        "name": product.name,
        "sku": product.sku,
        "barcode": product.barcode,
        "category": product.category,
        "purchasePrice": product.purchase_price,
        "salePrice": product.sale_price,
        "quantity": product.quantity,
        "lowStockThreshold": product.low_stock_threshold,
    }


def product_from_record(record: Mapping[str, Any]) -> Product:
    return Product(
        product_id=str(record["id"]),
        name=_to_text(record.get("name")),
        sku=_to_text(record.get("sku")),
        barcode=_to_text(record.get("barcode")),
        category=_to_text(record.get("category")),
        purchase_price=_to_decimal(record.get("purchasePrice")),
        sale_price=_to_decimal(record.get("salePrice")),
        quantity=_to_int(record.get("quantity"), "quantity", record["id"]),
        low_stock_threshold=_to_int(record.get("lowStockThreshold"), "low stock threshold", record["id"]),
    )


def document_to_record(document: Document) -> Dict[str, Any]:
    """Convert a document into the stored invoice shape.

    Both kinds use the same field names; ``customerId``/``customerName``
    carry the supplier on purchases.
    """

    return {
        "id": document.document_id,
        "invoiceNumber": document.document_number,
        "customerId": document.party_id,
        "customerName": document.party_name,
        "date": document.date,
        "items": [
            {
                "productId": item.product_id,
                "productName": item.product_name,
                "quantity": item.quantity,
                "unitPrice": item.unit_price,
                "total": item.total,
            }
            for item in document.items
        ],
        "subtotal": document.subtotal,
        "vat": document.tax,
        "total": document.total,
        "type": document.kind.value,
    }


def document_from_record(record: Mapping[str, Any]) -> Document:
    items = [
        LineItem(
            product_id=_to_text(item.get("productId")),
            product_name=_to_text(item.get("productName")),
            quantity=_to_int(item.get("quantity"), "quantity", record.get("id")),
            unit_price=_to_decimal(item.get("unitPrice")),
            total=_to_decimal(item.get("total")),
        )
        for item in record.get("items", [])
    ]
    return Document(
        document_id=str(record["id"]),
        document_number=_to_text(record.get("invoiceNumber")),
        kind=DocumentKind(record["type"]),
        party_id=_to_text(record.get("customerId")),
        party_name=_to_text(record.get("customerName")),
        date=_to_text(record.get("date")),
        items=items,
        subtotal=_to_decimal(record.get("subtotal")),
        tax=_to_decimal(record.get("vat")),
        total=_to_decimal(record.get("total")),
    )


def settings_to_record(settings: AppSettings) -> Dict[str, Any]:
    return {
        "companyName": settings.company_name,
        "address": settings.address,
        "phone": settings.phone,
        "vatRate": settings.vat_rate,
    }


def settings_from_record(record: Mapping[str, Any]) -> AppSettings:
    return AppSettings(
        company_name=_to_text(record.get("companyName")),
        address=_to_text(record.get("address")),
        phone=_to_text(record.get("phone")),
        vat_rate=_to_decimal(record.get("vatRate"), str(DEFAULT_VAT_RATE)),
    )


def _json_default(value: object) -> object:
    if isinstance(value, Decimal):
        # Integral amounts stay integers; everything else becomes a float.
        return int(value) if value == value.to_integral_value() else float(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dump_json(
    destination: Path,
    *,
    products: Iterable[Product],
    sales: Iterable[Document],
    purchases: Iterable[Document],
    settings: AppSettings,
) -> Path:
    """Write a JSON snapshot keyed by the fixed collection names."""

    payload = {
        "products": [product_to_record(p) for p in products],
        "invoices": [document_to_record(d) for d in sales],
        "purchases": [document_to_record(d) for d in purchases],
        "settings": settings_to_record(settings),
    }
    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    dest.write_text(json.dumps(payload, ensure_ascii=False, indent=2, default=_json_default), encoding="utf-8")
    return dest


def load_json(source: Path) -> Dict[str, Any]:
    """Read a JSON snapshot back into typed records.

    Returns:
        dict[str, Any]: ``products``, ``invoices`` and ``purchases`` as lists
            of records and ``settings`` as :class:`AppSettings`. Missing
            collections come back empty.

    Raises:
        FileNotFoundError: If ``source`` does not exist.
    """

    path = Path(source).expanduser().resolve()
    if not path.exists():
        raise FileNotFoundError(f"Snapshot not found: {path}")
    raw = json.loads(path.read_text(encoding="utf-8"), parse_float=Decimal)
    return {
        "products": [product_from_record(r) for r in raw.get("products", [])],
        "invoices": [document_from_record(r) for r in raw.get("invoices", [])],
        "purchases": [document_from_record(r) for r in raw.get("purchases", [])],
        "settings": settings_from_record(raw.get("settings", {})),
    }
