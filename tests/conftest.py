"""Shared pytest fixtures and utilities for Merch ERP tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterable, Iterator, Sequence
from unittest.mock import Mock

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from merch_erp import cli, constants, core_logic, data_manager  # noqa: E402
from merch_erp.documents import DocumentRepository  # noqa: E402
from merch_erp.ledger import ProductCatalog  # noqa: E402
from merch_erp.models import Document, LineItem, Product  # noqa: E402
from merch_erp.setup_excel import create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
DEFAULT_VAT_RATE = Decimal("0.14")
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Defaults]\n"
    "VatRate = {vat_rate}\n"
)


def make_product(
    product_id: str,
    quantity: int,
    *,
    name: str | None = None,
    purchase_price: str = "10.00",
    sale_price: str = "15.00",
    low_stock_threshold: int = 5,
) -> Product:
    """Build a product with sensible defaults for tests."""

    return Product(
        product_id=product_id,
        name=name or f"Product {product_id}",
        sku=f"SKU-{product_id}",
        barcode=f"BC-{product_id}",
        category="General",
        purchase_price=Decimal(purchase_price),
        sale_price=Decimal(sale_price),
        quantity=quantity,
        low_stock_threshold=low_stock_threshold,
    )


def make_line(product_id: str, quantity: int, unit_price: str = "15.00") -> LineItem:
    """Build a valued line item."""

    price = Decimal(unit_price)
    return LineItem(
        product_id=product_id,
        product_name=f"Product {product_id}",
        quantity=quantity,
        unit_price=price,
        total=price * quantity,
    )


def make_document(
    document_id: str,
    number: str,
    kind: constants.DocumentKind = constants.DocumentKind.SALE,
    items: Sequence[LineItem] = (),
    *,
    party_id: str = "cust1",
    party_name: str = "Acme Contracting",
    date: str = "2024-01-05",
) -> Document:
    """Build a document with the given lines; totals are left at zero."""

    return Document(
        document_id=document_id,
        document_number=number,
        kind=kind,
        party_id=party_id,
        party_name=party_name,
        date=date,
        items=tuple(items),
    )


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    vat_rate: Decimal


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def sample_products() -> list[Product]:
    """Two products: a scarce one and a plentiful one."""

    return [
        make_product("P1", 80, name="Rebar 16 mm", sale_price="27000", purchase_price="25000", low_stock_threshold=10),
        make_product("P2", 500, name="Portland Cement", sale_price="1650", purchase_price="1500", low_stock_threshold=50),
    ]


@pytest.fixture
def workbook_factory(tmp_path: Path, sample_products: list[Product]) -> Callable[..., Path]:
    """Factory that creates an initialized master workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        products: Iterable[Product] | None = None,
        vat_rate: Decimal = DEFAULT_VAT_RATE,
        filename: str = "master_workbook.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(
            workbook_path,
            vat_rate=vat_rate,
            company_name="Test Merchants",
            products=sample_products if products is None else products,
            overwrite=True,
        )
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh master workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        vat_rate: Decimal = DEFAULT_VAT_RATE,
        products: Iterable[Product] | None = None,
    ) -> ConfigBundle:
        bundle_id = uuid.uuid4().hex
        bundle_dir = tmp_path / f"bundle_{bundle_id}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(subdir=f"bundle_{bundle_id}", products=products, vat_rate=vat_rate)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                schema_version=schema_version,
                vat_rate=vat_rate,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
            vat_rate=vat_rate,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# In-memory fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def catalog(sample_products: list[Product]) -> ProductCatalog:
    return ProductCatalog(sample_products)


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "master_workbook.xlsx",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        default_vat_rate=DEFAULT_VAT_RATE,
    )


@pytest.fixture
def context(settings: data_manager.ConfigSettings, catalog: ProductCatalog) -> core_logic.RuntimeContext:
    """A runtime context backed by a mock workbook and in-memory collections."""

    return core_logic.RuntimeContext(
        settings=settings,
        workbook=Mock(name="workbook"),
        app_settings=data_manager.AppSettings(company_name="Test Merchants", vat_rate=DEFAULT_VAT_RATE),
        catalog=catalog,
        sales=DocumentRepository(constants.DocumentKind.SALE),
        purchases=DocumentRepository(constants.DocumentKind.PURCHASE),
    )


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="merch-cli", description="Merch CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_table_entry() -> tuple[str, cli.CommandSpec]:
    """Provide a placeholder command table entry for dispatch tests."""

    def execute(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
        execute.__dict__["called"] = True
        return 0

    def register(
        subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
    ) -> argparse.ArgumentParser:
        return subparsers.add_parser("catalog-test")

    spec = cli.CommandSpec(
        name="catalog-test",
        help_text="help",
        register=register,
        execute=execute,
    )
    return "catalog-test", spec


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]
