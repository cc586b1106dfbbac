"""Command-line entry points for the Merch ERP toolkit.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the requests consumed by the business layer, and
printing read-only reports. Stock rules live in :mod:`merch_erp.ledger`.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, log
from .constants import DocumentKind
from .models import Document
from .valuation import quantize_money


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def parse_item(text: str) -> core_logic.LineRequest:
    """Parse ``PRODUCT_ID:QTY[:UNIT_PRICE]`` into a line request.

    Raises:
        argparse.ArgumentTypeError: If the value is malformed.
    """

    parts = text.split(":")
    if len(parts) not in (2, 3) or not parts[0]:
        raise argparse.ArgumentTypeError(f"Expected PRODUCT_ID:QTY[:UNIT_PRICE], got {text!r}")
    try:
        quantity = int(parts[1])
        unit_price = Decimal(parts[2]) if len(parts) == 3 else None
    except (ValueError, InvalidOperation) as exc:
        raise argparse.ArgumentTypeError(f"Invalid quantity or price in {text!r}") from exc
    if quantity <= 0:
        raise argparse.ArgumentTypeError(f"Quantity must be greater than zero in {text!r}")
    return core_logic.LineRequest(product_id=parts[0], quantity=quantity, unit_price=unit_price)


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="merch-cli",
        description="Command-line tools for the Merch ERP workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands."""
    specs = {
        "sale": register_document_command(subparsers, DocumentKind.SALE),
        "purchase": register_document_command(subparsers, DocumentKind.PURCHASE),
        "edit": register_edit_command(subparsers),
        "delete": register_delete_command(subparsers),
        "set-vat": register_set_vat_command(subparsers),
        "restore": register_restore_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands."""
    specs = {
        "stock": register_stock_command(subparsers),
        "low-stock": register_low_stock_command(subparsers),
        "documents": register_documents_command(subparsers),
        "summary": register_summary_command(subparsers),
        "export": register_export_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _add_kind_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--kind",
        choices=[member.value for member in DocumentKind],
        required=True,
    )


def register_document_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
    kind: DocumentKind,
) -> CommandSpec:
    """Register ``sale`` or ``purchase``; both create a document of ``kind``."""
    name = kind.value
    role = kind.party_role
    help_text = f"Record a new {kind.value} document."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--party-id", required=True, help=f"Identifier of the {role}.")
        parser.add_argument("--party-name", required=True, help=f"Name of the {role}.")
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            type=parse_item,
            required=True,
            metavar="PRODUCT_ID:QTY[:UNIT_PRICE]",
        )
        parser.add_argument("--date", default=None, help="Document date (YYYY-MM-DD); defaults to today.")
        parser.set_defaults(command=name, kind=kind.value)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_create_document)


def register_edit_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``edit``."""
    name = "edit"
    help_text = "Edit a stored document; --item replaces every line."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_kind_argument(parser)
        parser.add_argument("--document-id", required=True)
        parser.add_argument("--party-id", default=None)
        parser.add_argument("--party-name", default=None)
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            type=parse_item,
            default=None,
            metavar="PRODUCT_ID:QTY[:UNIT_PRICE]",
        )
        parser.add_argument("--date", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_edit_document)


def register_delete_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete``."""
    name = "delete"
    help_text = "Delete a document and reverse its stock effect."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_kind_argument(parser)
        parser.add_argument("--document-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_document)


def register_set_vat_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``set-vat``."""
    name = "set-vat"
    help_text = "Change the VAT rate applied to documents saved from now on."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--rate", required=True, help="Fraction, e.g. 0.14 for 14%%.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_set_vat)


def register_restore_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``restore``."""
    name = "restore"
    help_text = "Replace every collection with a JSON snapshot written by export."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--input", type=Path, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_restore)


def register_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stock``."""
    name = "stock"
    help_text = "Display current stock levels."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stock_report)


def register_low_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``low-stock``."""
    name = "low-stock"
    help_text = "Display products at or below their low-stock threshold."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_low_stock_report)


def register_documents_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``documents``."""
    name = "documents"
    help_text = "List documents, optionally filtered by number or party name."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_kind_argument(parser)
        parser.add_argument("--search", default="")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_documents_report)


def register_summary_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``summary``."""
    name = "summary"
    help_text = "Display sales, purchases and stock headline figures."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_summary_report)


def register_export_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``export``."""
    name = "export"
    help_text = "Write every collection to a JSON snapshot."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--output", type=Path, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_export)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    context = core_logic.load_runtime_context(target)
    core_logic.ensure_schema_version(context)
    return context


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def translate_create_document(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into a create-document request."""
    return {
        "kind": DocumentKind(args.kind),
        "party_id": args.party_id,
        "party_name": args.party_name,
        "lines": list(args.items),
        "date": args.date,
    }


def translate_edit_document(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into an edit-document request."""
    return {
        "kind": DocumentKind(args.kind),
        "document_id": args.document_id,
        "lines": list(args.items) if args.items is not None else None,
        "party_id": args.party_id,
        "party_name": args.party_name,
        "date": args.date,
    }


def translate_set_vat(args: argparse.Namespace) -> Decimal:
    """Translate CLI args into a VAT rate."""
    try:
        return Decimal(args.rate)
    except InvalidOperation as exc:
        raise ValueError(f"Invalid VAT rate: {args.rate!r}") from exc


def format_document(document: Document) -> str:
    """One-line rendering of a document for reports."""
    return (
        f"{document.document_number:<10} {document.date:<10} {document.party_name:<30} "
        f"{len(document.items):>3} lines  total {quantize_money(document.total)}"
    )


def run_create_document(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Create a sale or purchase via the BLL."""
    payload = translate_create_document(args)
    document = core_logic.create_document(context, **payload)
    print(f"Saved {document.kind.value} {document.document_number} ({document.document_id})")
    return 0


def run_edit_document(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Edit a stored document via the BLL."""
    payload = translate_edit_document(args)
    document = core_logic.edit_document(context, **payload)
    print(f"Updated {document.kind.value} {document.document_number}")
    return 0


def run_delete_document(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Delete a document via the BLL."""
    removed = core_logic.delete_document(context, DocumentKind(args.kind), args.document_id)
    if removed is not None:
        print(f"Deleted {removed.kind.value} {removed.document_number}")
    return 0


def run_set_vat(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Change the VAT rate via the BLL."""
    core_logic.set_vat_rate(context, translate_set_vat(args))
    return 0


def run_restore(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Load a JSON snapshot via the BLL."""
    counts = core_logic.import_snapshot(context, args.input)
    print(
        f"Restored {counts['products']} products, {counts['sales']} sales "
        f"and {counts['purchases']} purchases"
    )
    return 0


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print every product with its on-hand quantity."""
    for product in core_logic.list_products(context):
        flag = " LOW" if product.is_low_stock else ""
        print(f"{product.product_id:<12} {product.name:<30} {product.quantity:>8}{flag}")
    return 0


def run_low_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print products at or below their threshold."""
    for product in core_logic.list_low_stock(context):
        print(f"{product.product_id:<12} {product.name:<30} {product.quantity:>8} / {product.low_stock_threshold}")
    return 0


def run_documents_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print documents matching the search term."""
    documents: List[Document] = core_logic.search_documents(context, DocumentKind(args.kind), args.search)
    for document in documents:
        print(format_document(document))
    return 0


def run_summary_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the headline figures."""
    summary = core_logic.calculate_summary(context)
    for key, value in summary.items():
        rendered = quantize_money(value) if isinstance(value, Decimal) else value
        print(f"{key.replace('_', ' '):<18} {rendered}")
    return 0


def run_export(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Write a JSON snapshot via the BLL."""
    core_logic.export_snapshot(context, args.output)
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
