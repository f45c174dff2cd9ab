"""Command-line entry points for the BizTrack toolkit.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the command objects consumed by the business
layer, and printing the results. Figures shown by read commands come straight
from :mod:`biztrack.pl_engine` output; nothing is recomputed here.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, log, report_export
from .constants import RecordKind


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    mutates: bool = False


def parse_decimal(raw: str) -> Decimal:
    """argparse ``type`` converting text to a finite :class:`Decimal`."""
    try:
        value = Decimal(raw)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"invalid number: {raw!r}") from exc
    if not value.is_finite():
        raise argparse.ArgumentTypeError(f"invalid number: {raw!r}")
    return value


def parse_date(raw: str) -> date:
    """argparse ``type`` accepting ``YYYY-MM-DD``."""
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid date (expected YYYY-MM-DD): {raw!r}") from exc


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="biztrack-cli",
        description="Command-line tools for the BizTrack ledger workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to the nearest config.ini upward from here).",
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
    """Declare mutating CLI commands; the workbook is saved after each one."""
    specs = {
        "add-product": register_add_product_command(subparsers),
        "adjust-stock": register_adjust_stock_command(subparsers),
        "sale": register_sale_command(subparsers),
        "pay": register_pay_command(subparsers),
        "expense": register_expense_command(subparsers),
        "return": register_return_command(subparsers),
        "add-supplier": register_add_supplier_command(subparsers),
        "add-customer": register_add_customer_command(subparsers),
        "delete": register_delete_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    specs = {
        "stock": register_stock_command(subparsers),
        "report": register_report_command(subparsers),
        "dashboard": register_dashboard_command(subparsers),
        "debts": register_debts_command(subparsers),
        "export": register_export_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Register a new product in the Inventory sheet."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--cost-price", type=parse_decimal, required=True)
        parser.add_argument("--sell-price", type=parse_decimal, required=True)
        parser.add_argument("--stock", type=parse_decimal, default=Decimal("0"))
        parser.add_argument("--category", default=None)
        parser.add_argument("--unit", default="pcs")
        parser.add_argument("--reorder-level", type=parse_decimal, default=None)
        parser.add_argument("--supplier-id", default=None)
        parser.add_argument("--notes", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product, mutates=True)


def register_adjust_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``adjust-stock``."""
    name = "adjust-stock"
    help_text = "Set the stock level (and optionally prices) of a product."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--stock", type=parse_decimal, required=True)
        parser.add_argument("--cost-price", type=parse_decimal, default=None)
        parser.add_argument("--sell-price", type=parse_decimal, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_adjust_stock, mutates=True)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Record a sale, optionally on credit."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product", required=True)
        parser.add_argument("--quantity", type=parse_decimal, required=True)
        parser.add_argument("--unit-price", type=parse_decimal, required=True)
        parser.add_argument("--paid", type=parse_decimal, default=None, help="Amount paid now (defaults to the full total).")
        parser.add_argument("--cost-price", type=parse_decimal, default=None)
        parser.add_argument("--discount", type=parse_decimal, default=Decimal("0"), help="Discount percentage.")
        parser.add_argument("--category", default=None)
        parser.add_argument("--customer", default=None)
        parser.add_argument("--phone", default=None)
        parser.add_argument("--method", default=None)
        parser.add_argument("--due-date", type=parse_date, default=None)
        parser.add_argument("--inventory-id", default=None, help="Product id whose stock the sale draws down.")
        parser.add_argument("--notes", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale, mutates=True)


def register_pay_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``pay``."""
    name = "pay"
    help_text = "Record a payment against an outstanding sale."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--sale-id", required=True)
        parser.add_argument("--amount", type=parse_decimal, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_pay, mutates=True)


def register_expense_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``expense``."""
    name = "expense"
    help_text = "Record a business expense."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--category", required=True)
        parser.add_argument("--description", required=True)
        parser.add_argument("--amount", type=parse_decimal, required=True)
        parser.add_argument("--method", default=None)
        parser.add_argument("--reference", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_expense, mutates=True)


def register_return_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``return``."""
    name = "return"
    help_text = "Log goods returned against a sale."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--sale-id", required=True)
        parser.add_argument("--quantity", type=parse_decimal, required=True)
        parser.add_argument("--refund", type=parse_decimal, required=True)
        parser.add_argument("--reason", default=None)
        parser.add_argument("--inventory-id", default=None, help="Product id to restock.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_return, mutates=True)


def register_add_supplier_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-supplier``."""
    name = "add-supplier"
    help_text = "Register a supplier."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--contact", default=None)
        parser.add_argument("--phone", default=None)
        parser.add_argument("--email", default=None)
        parser.add_argument("--address", default=None)
        parser.add_argument("--notes", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_supplier, mutates=True)


def register_add_customer_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-customer``."""
    name = "add-customer"
    help_text = "Register a customer (no-op when the name already exists)."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--phone", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_customer, mutates=True)


def register_delete_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete``."""
    name = "delete"
    help_text = "Delete a record by kind and id."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--kind", choices=[member.value for member in RecordKind], required=True)
        parser.add_argument("--id", dest="record_id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete, mutates=True)


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


def register_report_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``report``."""
    name = "report"
    help_text = "Display the profit-and-loss report for a period."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--from", dest="from_date", type=parse_date, default=None)
        parser.add_argument("--to", dest="to_date", type=parse_date, default=None)
        parser.add_argument("--export", type=Path, default=None, help="Also write the report to this .xlsx path.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_pl_report)


def register_dashboard_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``dashboard``."""
    name = "dashboard"
    help_text = "Display today's figures and all-time headline KPIs."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_dashboard)


def register_debts_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``debts``."""
    name = "debts"
    help_text = "Display outstanding credit balances."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_debts_report)


def register_export_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``export``."""
    name = "export"
    help_text = "Write every record plus the all-time P&L summary to a spreadsheet."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--output", type=Path, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_data_export)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    return core_logic.load_runtime_context(Path(config_path) if config_path is not None else None)


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


def translate_add_product(args: argparse.Namespace) -> core_logic.ProductCommand:
    """Translate CLI args into a product command object."""
    return core_logic.ProductCommand(
        name=args.name,
        cost_price=args.cost_price,
        sell_price=args.sell_price,
        stock=args.stock,
        category=args.category,
        unit=args.unit,
        reorder_level=args.reorder_level,
        supplier_id=args.supplier_id,
        notes=args.notes,
    )


def translate_sale(args: argparse.Namespace) -> core_logic.SaleCommand:
    """Translate CLI args into a sale command object.

    An omitted ``--paid`` means the customer paid the discounted total in full.
    """
    paid = args.paid
    if paid is None:
        paid = core_logic.calculate_sale_total(args.quantity, args.unit_price, args.discount)
    return core_logic.SaleCommand(
        product=args.product,
        quantity=args.quantity,
        unit_price=args.unit_price,
        paid=paid,
        cost_price=args.cost_price,
        discount=args.discount,
        category=args.category,
        customer=args.customer,
        phone=args.phone,
        method=args.method,
        due_date=args.due_date,
        inventory_id=args.inventory_id,
        notes=args.notes,
    )


def translate_pay(args: argparse.Namespace) -> core_logic.PaymentCommand:
    return core_logic.PaymentCommand(sale_id=args.sale_id, amount=args.amount)


def translate_expense(args: argparse.Namespace) -> core_logic.ExpenseCommand:
    return core_logic.ExpenseCommand(
        category=args.category,
        description=args.description,
        amount=args.amount,
        method=args.method,
        reference=args.reference,
    )


def translate_return(args: argparse.Namespace) -> core_logic.ReturnCommand:
    return core_logic.ReturnCommand(
        sale_id=args.sale_id,
        quantity=args.quantity,
        refund=args.refund,
        reason=args.reason,
        inventory_id=args.inventory_id,
    )


def translate_add_supplier(args: argparse.Namespace) -> core_logic.SupplierCommand:
    return core_logic.SupplierCommand(
        name=args.name,
        contact=args.contact,
        phone=args.phone,
        email=args.email,
        address=args.address,
        notes=args.notes,
    )


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow in the BLL."""
    product = core_logic.add_product(context, translate_add_product(args))
    print(f"Added product {product.product_id}: {product.name}")
    return 0


def run_adjust_stock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the stock adjustment workflow in the BLL."""
    product = core_logic.adjust_stock(
        context,
        args.product_id,
        args.stock,
        cost_price=args.cost_price,
        sell_price=args.sell_price,
    )
    print(f"{product.product_id} stock is now {product.stock}")
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow via the BLL."""
    sale = core_logic.record_sale(context, translate_sale(args))
    print(f"Recorded sale {sale.sale_id}: total {sale.total}, paid {sale.paid}, status {sale.status}")
    return 0


def run_pay(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the payment workflow via the BLL."""
    sale = core_logic.record_payment(context, translate_pay(args))
    print(f"Sale {sale.sale_id}: balance {sale.balance}, status {sale.status}")
    return 0


def run_expense(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    expense = core_logic.record_expense(context, translate_expense(args))
    print(f"Recorded expense {expense.expense_id}: {expense.category} {expense.amount}")
    return 0


def run_return(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    entry = core_logic.record_return(context, translate_return(args))
    print(f"Recorded return {entry.return_id} against {entry.sale_id}: refund {entry.refund}")
    return 0


def run_add_supplier(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    supplier = core_logic.add_supplier(context, translate_add_supplier(args))
    print(f"Added supplier {supplier.supplier_id}: {supplier.name}")
    return 0


def run_add_customer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    customer = core_logic.upsert_customer(context, args.name, phone=args.phone)
    print(f"Customer {customer.customer_id}: {customer.name}")
    return 0


def run_delete(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the delete workflow via the BLL."""
    core_logic.delete_record(context, RecordKind(args.kind), args.record_id)
    print(f"Deleted {args.kind} record {args.record_id}")
    return 0


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print every product with its stock and reorder level."""
    items = core_logic.list_inventory(context)
    if not items:
        print("No products recorded.")
        return 0
    for item in items:
        reorder = item.reorder_level if item.reorder_level is not None else "-"
        print(f"{item.product_id}  {item.name:<30} stock {item.stock} {item.unit}  (reorder at {reorder})")
    return 0


def run_pl_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the P&L report and optionally write it to a spreadsheet."""
    report = core_logic.build_pl_report(context, args.from_date, args.to_date)
    currency = context.settings.business.currency
    lines = [
        ("Revenue", f"{report.revenue} {currency}"),
        ("Collected", f"{report.collected} {currency}"),
        ("Outstanding", f"{report.outstanding} {currency}"),
        ("COGS", f"{report.cogs} {currency}"),
        ("Gross profit", f"{report.gross_profit} {currency} ({report.gross_margin}%)"),
        ("Expenses", f"{report.total_expenses} {currency}"),
        ("Net profit", f"{report.net_profit} {currency} ({report.net_margin}%)"),
        ("Collection rate", f"{report.collection_rate}%"),
        ("Refunds", f"{report.refunds} {currency}"),
        ("Overdue debt", f"{report.overdue_debt} {currency}"),
        ("Sales", str(report.sales_count)),
        ("Customers", str(report.unique_customers)),
    ]
    for label, value in lines:
        print(f"{label:<16}{value}")

    if args.export is not None:
        period = None
        if args.from_date is not None or args.to_date is not None:
            period = (
                args.from_date.isoformat() if args.from_date else "start",
                args.to_date.isoformat() if args.to_date else "today",
            )
        data = core_logic.get_report_data(context, args.from_date, args.to_date)
        workbook = report_export.build_report_workbook(
            report,
            context.settings.business,
            period=period,
            sales=data.sales,
            expenses=data.expenses,
        )
        target = report_export.save_report(workbook, args.export)
        print(f"Report written to {target}")
    return 0


def run_dashboard(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the dashboard KPIs."""
    kpis = core_logic.build_dashboard(context)
    print(f"Today revenue     {kpis.today_revenue}")
    print(f"Today profit      {kpis.today_profit}")
    print(f"Total revenue     {kpis.total_revenue}")
    print(f"Total collected   {kpis.total_collected}")
    print(f"Outstanding       {kpis.total_balance}")
    print(f"Net profit        {kpis.net_profit} ({kpis.net_margin}%)")
    print(f"Overdue sales     {kpis.overdue_count}")
    print(f"Low stock         {kpis.low_stock_count} ({kpis.out_of_stock_count} out of stock)")
    return 0


def run_debts_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print outstanding sales, overdue ones first."""
    outstanding = core_logic.list_outstanding_sales(context)
    if not outstanding:
        print("No outstanding balances.")
        return 0
    for entry in outstanding:
        flag = "OVERDUE" if entry.overdue else "due"
        print(
            f"{entry.sale.sale_id}  {entry.sale.customer:<20} balance {entry.balance}"
            f"  {flag} {entry.sale.due_date or '-'}"
        )
    return 0


def run_data_export(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Write the full data export to ``--output``."""
    snapshot = report_export.ExportSnapshot(
        sales=core_logic.list_sales(context),
        inventory=core_logic.list_inventory(context),
        expenses=core_logic.list_expenses(context),
        customers=core_logic.list_customers(context),
        suppliers=core_logic.list_suppliers(context),
    )
    report = core_logic.build_pl_report(context)
    workbook = report_export.build_data_export_workbook(snapshot, report, context.settings.business)
    target = report_export.save_report(workbook, args.output)
    print(f"Export written to {target}")
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
        core_logic.ensure_schema_version(context)
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and command_table[args.command].mutates:
            persist_workbook(context)
        return exit_code
    except Exception as error:
        return handle_cli_error(error)
