"""Spreadsheet rendering for BizTrack reports and data exports.

Renderers only lay out values that :mod:`biztrack.pl_engine` already
computed; no metric is derived here except the per-item stock valuation
columns of the inventory export, which are row-level arithmetic on stored
prices.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

import openpyxl
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet

from . import data_manager, log, pl_engine
from .constants import DEFAULT_CUSTOMER, PaymentStatus


MIN_COLUMN_WIDTH = 10
MAX_COLUMN_WIDTH = 40
NO_DATA = "No data"


@dataclass(frozen=True)
class ExportSnapshot:
    """All stored records handed to :func:`build_data_export_workbook`."""

    sales: Sequence[data_manager.SaleRow] = ()
    inventory: Sequence[data_manager.InventoryRow] = ()
    expenses: Sequence[data_manager.ExpenseRow] = ()
    customers: Sequence[data_manager.CustomerRow] = ()
    suppliers: Sequence[data_manager.SupplierRow] = ()


@dataclass(frozen=True)
class _Table:
    title: str
    headers: Sequence[str]
    rows: List[Sequence[object]] = field(default_factory=list)
    money_columns: Tuple[int, ...] = ()


def money_format(currency: str) -> str:
    """Return the number format used for money cells, e.g. ``#,##0.00 "UGX"``."""

    return f'#,##0.00 "{currency}"'


def auto_fit_columns(worksheet: Worksheet) -> None:
    """Size each column to its longest value, clamped to 10..40 characters."""

    widths: dict[int, int] = {}
    for row in worksheet.iter_rows():
        for cell in row:
            if cell.value is None or cell.value == "":
                continue
            current = widths.get(cell.column, MIN_COLUMN_WIDTH)
            widths[cell.column] = max(current, len(str(cell.value)) + 2)

    for column_index in range(1, worksheet.max_column + 1):
        width = min(widths.get(column_index, MIN_COLUMN_WIDTH), MAX_COLUMN_WIDTH)
        worksheet.column_dimensions[get_column_letter(column_index)].width = width


def _new_workbook() -> Workbook:
    workbook = openpyxl.Workbook()
    if workbook.active is not None and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)
    return workbook


def _write_table(workbook: Workbook, table: _Table, number_format: str) -> Worksheet:
    worksheet = workbook.create_sheet(title=table.title)
    worksheet.append(list(table.headers))
    bold_font = Font(bold=True)
    for cell in worksheet[1]:
        cell.font = bold_font

    if not table.rows:
        worksheet.append([NO_DATA])
    for row in table.rows:
        worksheet.append(list(row))

    if table.rows:
        for column_index in table.money_columns:
            for (cell,) in worksheet.iter_rows(min_row=2, min_col=column_index, max_col=column_index):
                cell.number_format = number_format

    auto_fit_columns(worksheet)
    return worksheet


def _expenses_table(expenses: Iterable[data_manager.ExpenseRow]) -> _Table:
    return _Table(
        title="Expenses",
        headers=["Expense ID", "Date", "Category", "Description", "Amount", "Payment Method", "Reference"],
        rows=[
            [
                expense.expense_id, expense.timestamp_iso, expense.category, expense.description,
                expense.amount, expense.method, expense.reference,
            ]
            for expense in expenses
        ],
        money_columns=(5,),
    )


def _write_summary(
    workbook: Workbook,
    report: pl_engine.PLReport,
    settings: data_manager.BusinessSettings,
    period: Optional[Tuple[str, str]],
) -> Worksheet:
    worksheet = workbook.create_sheet(title="P&L Summary")
    number_format = money_format(settings.currency)
    period_label = f"{period[0]} to {period[1]}" if period else "All records"

    header_rows: List[Tuple[str, object]] = [
        ("Business", settings.name),
        ("Period", period_label),
        ("Generated", report.computed_at.isoformat()),
        ("Currency", settings.currency),
    ]
    money_rows: List[Tuple[str, object]] = [
        ("Total Revenue", report.revenue),
        ("Total Collected", report.collected),
        ("Outstanding", report.outstanding),
        ("Total Refunds", report.refunds),
        ("Cost of Goods Sold", report.cogs),
        ("Gross Profit", report.gross_profit),
        ("Total Expenses", report.total_expenses),
        ("Net Profit", report.net_profit),
        ("Overdue Debt", report.overdue_debt),
        ("Upcoming Debt", report.upcoming_debt),
    ]
    other_rows: List[Tuple[str, object]] = [
        ("Gross Margin %", report.gross_margin),
        ("Net Margin %", report.net_margin),
        ("Collection Rate %", report.collection_rate),
        ("Total Sales", report.sales_count),
        ("Unique Customers", report.unique_customers),
        ("Units Sold", report.units_sold),
    ]
    other_rows.extend(
        (f"{status.value.title()} Sales", report.status_counts.get(status.value, 0)) for status in PaymentStatus
    )

    bold_font = Font(bold=True)
    for label, value in header_rows:
        worksheet.append([label, value])
    worksheet.append([])
    for label, value in money_rows:
        worksheet.append([label, value])
        worksheet.cell(row=worksheet.max_row, column=2).number_format = number_format
    worksheet.append([])
    for label, value in other_rows:
        worksheet.append([label, value])
    for (cell,) in worksheet.iter_rows(min_col=1, max_col=1):
        if cell.value:
            cell.font = bold_font

    auto_fit_columns(worksheet)
    return worksheet


def build_report_workbook(
    report: pl_engine.PLReport,
    settings: Optional[data_manager.BusinessSettings] = None,
    *,
    period: Optional[Tuple[str, str]] = None,
    sales: Sequence[data_manager.SaleRow] = (),
    expenses: Sequence[data_manager.ExpenseRow] = (),
) -> Workbook:
    """Render a :class:`~biztrack.pl_engine.PLReport` as a multi-sheet workbook.

    Args:
        report: Engine output to render. Values are copied as-is.
        settings: Business metadata; only the name and currency are used.
        period: Optional ``(from, to)`` labels shown on the summary sheet.
        sales: The sales the report was computed from, listed on ``Sales``.
        expenses: The expenses the report was computed from, listed on
            ``Expenses``.

    Returns:
        Workbook: In-memory workbook; persist it with :func:`save_report`.
    """

    settings = settings or data_manager.BusinessSettings()
    number_format = money_format(settings.currency)
    workbook = _new_workbook()
    _write_summary(workbook, report, settings, period)

    tables = [
        _Table(
            title="Categories",
            headers=["Category", "Revenue", "COGS", "Profit", "Quantity", "Sales", "Margin %"],
            rows=[
                [item.name, item.revenue, item.cogs, item.profit, item.quantity, item.count, item.margin]
                for item in report.category_breakdown
            ],
            money_columns=(2, 3, 4),
        ),
        _Table(
            title="Payment Methods",
            headers=["Method", "Collected", "Share %"],
            rows=[[item.method, item.amount, item.pct] for item in report.payment_methods],
            money_columns=(2,),
        ),
        _Table(
            title="Expense Categories",
            headers=["Category", "Amount", "Share %"],
            rows=[[item.category, item.amount, item.pct] for item in report.expense_breakdown],
            money_columns=(2,),
        ),
        _Table(
            title="Top Customers",
            headers=["Customer", "Revenue", "Paid", "Balance", "Sales"],
            rows=[[item.name, item.revenue, item.paid, item.balance, item.count] for item in report.top_customers],
            money_columns=(2, 3, 4),
        ),
        _Table(
            title="Daily Trend",
            headers=["Date", "Revenue", "Gross Profit"],
            rows=[[point.date, point.revenue, point.profit] for point in report.daily_trend],
            money_columns=(2, 3),
        ),
        _Table(
            title="Status",
            headers=["Status", "Sales"],
            rows=[[status.value, report.status_counts.get(status.value, 0)] for status in PaymentStatus],
        ),
        _Table(
            title="Sales",
            headers=[
                "Receipt ID", "Date", "Customer", "Product", "Category", "Qty", "Unit Price",
                "Total", "Paid", "Balance", "Status", "Payment",
            ],
            rows=[
                [
                    sale.sale_id, sale.timestamp_iso, sale.customer or DEFAULT_CUSTOMER, sale.product,
                    sale.category, sale.quantity, sale.unit_price, sale.total, sale.paid, sale.balance,
                    sale.status, sale.method,
                ]
                for sale in sales
            ],
            money_columns=(7, 8, 9, 10),
        ),
        _expenses_table(expenses),
    ]
    for table in tables:
        _write_table(workbook, table, number_format)

    log.debug("Rendered report workbook with sheets: %s", ", ".join(workbook.sheetnames))
    return workbook


def _margin(cost_price: Decimal, sell_price: Decimal) -> str:
    if sell_price <= Decimal("0"):
        return "0.0"
    return pl_engine.format_rate(sell_price - cost_price, sell_price)


def _inventory_rows(items: Iterable[data_manager.InventoryRow]) -> List[Sequence[object]]:
    rows: List[Sequence[object]] = []
    for item in items:
        cost = data_manager.coerce_decimal(item.cost_price)
        sell = data_manager.coerce_decimal(item.sell_price)
        stock = data_manager.coerce_decimal(item.stock)
        rows.append(
            [
                item.product_id,
                item.name,
                item.category,
                item.unit,
                cost,
                sell,
                stock,
                item.reorder_level,
                stock * cost,
                stock * sell,
                sell - cost,
                _margin(cost, sell),
                item.supplier_id,
                item.notes,
            ]
        )
    return rows


def build_data_export_workbook(
    snapshot: ExportSnapshot,
    report: pl_engine.PLReport,
    settings: Optional[data_manager.BusinessSettings] = None,
) -> Workbook:
    """Render every stored record plus the all-time P&L summary.

    ``report`` must be the engine output computed over ``snapshot``; it fills
    the ``P&L Summary`` sheet.
    """

    settings = settings or data_manager.BusinessSettings()
    number_format = money_format(settings.currency)
    workbook = _new_workbook()

    _write_table(
        workbook,
        _Table(
            title="Sales",
            headers=[
                "Receipt ID", "Date", "Customer", "Phone", "Product", "Category", "Qty",
                "Unit Price", "Cost Price", "Discount %", "Total", "Amount Paid", "Balance",
                "Status", "Payment Method", "Notes", "Due Date",
            ],
            rows=[
                [
                    sale.sale_id, sale.timestamp_iso, sale.customer or DEFAULT_CUSTOMER, sale.phone,
                    sale.product, sale.category, sale.quantity, sale.unit_price, sale.cost_price,
                    sale.discount, sale.total, sale.paid, sale.balance, sale.status, sale.method,
                    sale.notes, sale.due_date,
                ]
                for sale in snapshot.sales
            ],
            money_columns=(8, 9, 11, 12, 13),
        ),
        number_format,
    )
    _write_table(
        workbook,
        _Table(
            title="Inventory",
            headers=[
                "Product ID", "Product Name", "Category", "Unit", "Cost Price", "Selling Price",
                "Current Stock", "Reorder Level", "Stock Value (Cost)", "Stock Value (Sell)",
                "Profit Per Unit", "Margin %", "Supplier ID", "Notes",
            ],
            rows=_inventory_rows(snapshot.inventory),
            money_columns=(5, 6, 9, 10, 11),
        ),
        number_format,
    )
    _write_table(workbook, _expenses_table(snapshot.expenses), number_format)
    _write_summary(workbook, report, settings, None)
    _write_table(
        workbook,
        _Table(
            title="Customers",
            headers=["Customer ID", "Name", "Phone", "Email", "Address", "Notes"],
            rows=[
                [customer.customer_id, customer.name, customer.phone, customer.email, customer.address, customer.notes]
                for customer in snapshot.customers
            ],
        ),
        number_format,
    )
    _write_table(
        workbook,
        _Table(
            title="Suppliers",
            headers=["Supplier ID", "Name", "Contact", "Phone", "Email", "Notes"],
            rows=[
                [supplier.supplier_id, supplier.name, supplier.contact, supplier.phone, supplier.email, supplier.notes]
                for supplier in snapshot.suppliers
            ],
        ),
        number_format,
    )

    log.debug("Rendered data export with %d sales and %d products", len(snapshot.sales), len(snapshot.inventory))
    return workbook


def save_report(workbook: Workbook, destination: Path) -> Path:
    """Persist a rendered workbook and return its resolved path."""

    target = Path(destination).expanduser().resolve()
    data_manager.save_workbook(workbook, destination=target)
    log.info("Saved spreadsheet export to '%s'", target)
    return target
