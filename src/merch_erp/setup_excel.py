"""Utility for initializing the Merch ERP master workbook.

Usable as a console script (``merch-setup``) and as a library from tests or
other tooling, so the workbook layout is created the same way everywhere.
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Mapping, Sequence

import openpyxl
from openpyxl.styles import Font

from . import data_manager
from .constants import DEFAULT_VAT_RATE, SheetName
from .models import Product


CONFIG_FILE = data_manager.CONFIG_FILE_NAME

# Starter catalog for demos and manual testing.
SAMPLE_PRODUCTS: Sequence[Product] = (
    Product("prod1", "Portland Cement", "CEM-001", "622000000001", "Cement",
            Decimal("1500"), Decimal("1650"), 500, 50),
    Product("prod2", "Rebar 16 mm", "STL-016", "622000000002", "Steel",
            Decimal("25000"), Decimal("27000"), 80, 10),
    Product("prod3", "Building Sand (m3)", "SND-001", "622000000003", "Aggregate",
            Decimal("80"), Decimal("100"), 200, 20),
    Product("prod4", "Red Brick (1000 pcs)", "BRK-001", "622000000004", "Brick",
            Decimal("1200"), Decimal("1350"), 20, 5),
)


@dataclass(frozen=True)
class SetupSettings:
    """Configuration values used during setup."""

    data_file: Path
    vat_rate: Decimal


def load_settings(config_path: Path) -> SetupSettings:
    """Read ``config.ini`` and produce :class:`SetupSettings`.

    Relative data file paths are resolved against the config file's directory.
    """

    parser = data_manager.read_config(config_path)
    settings = data_manager.parse_settings(parser, base_path=config_path.expanduser().resolve().parent)
    return SetupSettings(data_file=settings.data_file, vat_rate=settings.default_vat_rate)


def create_master_workbook(
    destination: Path,
    *,
    vat_rate: Decimal = DEFAULT_VAT_RATE,
    company_name: str = "",
    products: Iterable[Product] = (),
    sheet_columns: Mapping[str, Sequence[str]] = data_manager.SHEET_COLUMNS,
    overwrite: bool = False,
) -> Path:
    """Create the master workbook at ``destination``.

    Every sheet gets a bold header row. The ``Settings`` sheet is seeded with
    ``company_name`` and ``vat_rate``, and ``products`` (if any) are written
    to ``Products``.

    Raises:
        FileExistsError: If the target exists and ``overwrite`` is ``False``.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing master workbook: {destination}")

    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()

    # Remove the default sheet openpyxl generates so we can create ours.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)

    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font

    if SheetName.SETTINGS.value in sheet_columns:
        data_manager.write_app_settings(
            workbook,
            data_manager.AppSettings(company_name=company_name, vat_rate=Decimal(vat_rate)),
        )
    if SheetName.PRODUCTS.value in sheet_columns:
        data_manager.write_products(workbook, products)

    workbook.save(destination)
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False, with_samples: bool = False) -> Path:
    """Create the workbook named in ``config_path``."""

    settings = load_settings(config_path)
    return create_master_workbook(
        settings.data_file,
        vat_rate=settings.vat_rate,
        products=SAMPLE_PRODUCTS if with_samples else (),
        overwrite=overwrite,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(prog="merch-setup", description="Initialize the Merch ERP data file")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    parser.add_argument(
        "--with-samples",
        action="store_true",
        help="Seed the Products sheet with a small starter catalog.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Merch ERP Setup Script ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force, with_samples=args.with_samples)
    except (FileNotFoundError, KeyError, ValueError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except (PermissionError, OSError) as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created master workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
