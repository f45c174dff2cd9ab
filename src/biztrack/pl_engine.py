"""Profit-and-loss aggregation engine for BizTrack.

This module turns snapshots of sales, expenses, returns, and inventory into
the metrics consumed by reports and the dashboard. It is the only place where
business rules about revenue, margin, overdue debt, and collection rate live;
renderers and the CLI display its output without recomputing anything.

Every function is synchronous, performs no I/O, holds no module state, and
never mutates its inputs. Results do depend on the evaluation instant
(``now``), which drives overdue classification, the "today" filter of the
dashboard, and ``PLReport.computed_at``. Callers that need reproducible
output pass ``now`` explicitly; omitting it reads the wall clock once at the
call boundary.

Calendar days are always taken in a single reference time zone: naive
timestamps are interpreted in it and aware ones are converted to it before
their date is extracted, for stored records and for ``now`` alike.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, tzinfo
from decimal import ROUND_HALF_UP, Decimal, localcontext
from types import MappingProxyType
from typing import Dict, Iterable, Optional, Tuple

from . import log
from .constants import (
    DEFAULT_CATEGORY,
    DEFAULT_CUSTOMER,
    DEFAULT_PAYMENT_METHOD,
    DEFAULT_REORDER_LEVEL,
    TOP_CUSTOMERS_LIMIT,
    PaymentStatus,
)
from .data_manager import (
    BusinessSettings,
    ExpenseRow,
    InventoryRow,
    ReturnRow,
    SaleRow,
    coerce_decimal,
)


ZERO = Decimal("0")
HUNDRED = Decimal("100")
RATE_QUANTUM = Decimal("0.1")


class DataIntegrityError(ValueError):
    """Raised when a stored record holds a value outside its closed domain."""


@dataclass(frozen=True)
class CategoryBreakdown:
    """Sales totals for one product category."""

    name: str
    revenue: Decimal
    cogs: Decimal
    profit: Decimal
    quantity: Decimal
    count: int
    margin: str


@dataclass(frozen=True)
class PaymentMethodShare:
    """Amount collected through one payment method."""

    method: str
    amount: Decimal
    pct: str


@dataclass(frozen=True)
class ExpenseCategoryShare:
    """Amount spent in one expense category."""

    category: str
    amount: Decimal
    pct: str


@dataclass(frozen=True)
class CustomerSummary:
    """Invoiced, paid, and outstanding totals for one customer."""

    name: str
    revenue: Decimal
    paid: Decimal
    balance: Decimal
    count: int


@dataclass(frozen=True)
class DailyTrendPoint:
    """Revenue and gross profit for one calendar day (``YYYY-MM-DD``)."""

    date: str
    revenue: Decimal
    profit: Decimal


@dataclass(frozen=True)
class PLReport:
    """Immutable snapshot of the profit-and-loss metrics for a set of records.

    Rates (``gross_margin``, ``net_margin``, ``collection_rate``) are strings
    with one decimal place, ``"0.0"`` when revenue is not positive. Breakdowns
    are sorted descending by their primary amount, ``daily_trend`` ascending
    by day.
    """

    revenue: Decimal
    collected: Decimal
    outstanding: Decimal
    cogs: Decimal
    gross_profit: Decimal
    gross_margin: str
    total_expenses: Decimal
    net_profit: Decimal
    net_margin: str
    collection_rate: str
    refunds: Decimal
    overdue_debt: Decimal
    upcoming_debt: Decimal
    sales_count: int
    unique_customers: int
    units_sold: Decimal
    status_counts: Mapping[str, int]
    category_breakdown: Tuple[CategoryBreakdown, ...]
    payment_methods: Tuple[PaymentMethodShare, ...]
    expense_breakdown: Tuple[ExpenseCategoryShare, ...]
    top_customers: Tuple[CustomerSummary, ...]
    daily_trend: Tuple[DailyTrendPoint, ...]
    computed_at: datetime


@dataclass(frozen=True)
class DashboardKPIs:
    """Today-focused and all-time headline figures for the dashboard."""

    today_revenue: Decimal
    today_profit: Decimal
    total_revenue: Decimal
    total_collected: Decimal
    total_balance: Decimal
    overdue_count: int
    low_stock_count: int
    out_of_stock_count: int
    total_expenses: Decimal
    gross_profit: Decimal
    net_profit: Decimal
    gross_margin: str
    net_margin: str


# ---------------------------------------------------------------------------
# Shared arithmetic
# ---------------------------------------------------------------------------


def sale_revenue(sale: SaleRow) -> Decimal:
    """Return the amount invoiced for ``sale`` (its stored total)."""

    return coerce_decimal(sale.total)


def sale_cogs(sale: SaleRow) -> Decimal:
    """Return the cost of goods sold for ``sale`` (quantity x unit cost)."""

    return coerce_decimal(sale.quantity) * coerce_decimal(sale.cost_price)


def sale_profit(sale: SaleRow) -> Decimal:
    """Return the gross profit contributed by ``sale``."""

    return sale_revenue(sale) - sale_cogs(sale)


def sum_revenue(sales: Iterable[SaleRow]) -> Decimal:
    return sum((sale_revenue(sale) for sale in sales), ZERO)


def sum_collected(sales: Iterable[SaleRow]) -> Decimal:
    return sum((coerce_decimal(sale.paid) for sale in sales), ZERO)


def sum_cogs(sales: Iterable[SaleRow]) -> Decimal:
    return sum((sale_cogs(sale) for sale in sales), ZERO)


def sum_balance(sales: Iterable[SaleRow]) -> Decimal:
    """Sum the stored ``balance`` fields; the balance is never re-derived."""

    return sum((coerce_decimal(sale.balance) for sale in sales), ZERO)


def sum_expenses(expenses: Iterable[ExpenseRow]) -> Decimal:
    return sum((coerce_decimal(expense.amount) for expense in expenses), ZERO)


def format_rate(part: Decimal, whole: Decimal) -> str:
    """Express ``part`` as a percentage of ``whole`` with one decimal place.

    Rounding is half-up. A non-positive ``whole`` yields ``"0.0"``.

    >>> format_rate(Decimal("450"), Decimal("1000"))
    '45.0'
    """

    if whole <= ZERO:
        return "0.0"
    rate = part * HUNDRED / whole
    with localcontext() as context:
        # quantize fails once the result needs more digits than the context holds
        context.prec = max(context.prec, rate.adjusted() + 3)
        rate = rate.quantize(RATE_QUANTUM, rounding=ROUND_HALF_UP)
    if rate.is_zero():
        rate = abs(rate)
    return f"{rate:.1f}"


def resolve_status(sale: SaleRow) -> PaymentStatus:
    """Map the stored status text of ``sale`` onto :class:`PaymentStatus`.

    A blank status reads as ``UNPAID``, the record store default.

    Raises:
        DataIntegrityError: If the status is not one of the four known values.
    """

    raw = sale.status
    if isinstance(raw, PaymentStatus):
        return raw
    if raw is None or not str(raw).strip():
        return PaymentStatus.UNPAID
    try:
        return PaymentStatus(str(raw).strip())
    except ValueError as exc:
        log.error("Sale '%s' carries unknown payment status %r", sale.sale_id, raw)
        raise DataIntegrityError(f"Sale '{sale.sale_id}' has unknown payment status {raw!r}") from exc


def to_instant(value: object, zone: tzinfo) -> Optional[datetime]:
    """Parse a stored timestamp or due date into an aware datetime.

    ISO-8601 strings (date-only or full, with or without offset), ``datetime``
    and ``date`` values are accepted. Naive values are placed in ``zone``.
    Blank or unparseable input yields ``None``.
    """

    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, date):
        moment = datetime.combine(value, time.min)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            moment = datetime.fromisoformat(text)
        except ValueError:
            log.debug("Ignoring unparseable timestamp %r", value)
            return None
    else:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=zone)
    return moment


def transaction_day(value: object, zone: tzinfo) -> Optional[str]:
    """Return the ``YYYY-MM-DD`` calendar day of ``value`` in ``zone``."""

    moment = to_instant(value, zone)
    if moment is None:
        return None
    return moment.astimezone(zone).date().isoformat()


def is_overdue(sale: SaleRow, now: datetime, zone: tzinfo = UTC) -> bool:
    """Tell whether ``sale`` is past due at ``now``.

    A sale is overdue when it is not ``PAID``, carries a parseable due date,
    and that due date lies strictly before ``now``. Balance is not considered
    here; callers that care about positive balances filter separately.
    """

    if resolve_status(sale) is PaymentStatus.PAID:
        return False
    due = to_instant(sale.due_date, zone)
    if due is None:
        return False
    return due < now


def _label(value: object, default: str) -> str:
    if value is None:
        return default
    text = str(value).strip()
    return text or default


def _resolve_now(now: Optional[datetime], zone: tzinfo) -> datetime:
    if now is None:
        return datetime.now(UTC)
    if now.tzinfo is None:
        return now.replace(tzinfo=zone)
    return now


def _require_records(name: str, records: object, row_type: type) -> Sequence:
    """Enforce the input shape contract: a sequence of ``row_type`` records.

    Raises:
        TypeError: If ``records`` is not a list-like sequence or holds an
            element of another type.
    """

    if records is None:
        return ()
    if isinstance(records, (str, bytes, Mapping)) or not isinstance(records, Sequence):
        raise TypeError(f"{name} must be a sequence of {row_type.__name__}, got {type(records).__name__}")
    for index, record in enumerate(records):
        if not isinstance(record, row_type):
            raise TypeError(f"{name}[{index}] must be {row_type.__name__}, got {type(record).__name__}")
    return records


# ---------------------------------------------------------------------------
# Breakdowns
# ---------------------------------------------------------------------------


def category_breakdown(sales: Sequence[SaleRow]) -> Tuple[CategoryBreakdown, ...]:
    """Group sales by category and sort the groups by revenue, descending.

    Groups with equal revenue keep the order in which their category was
    first encountered.
    """

    groups: Dict[str, Dict[str, Decimal]] = {}
    counts: Dict[str, int] = {}
    for sale in sales:
        name = _label(sale.category, DEFAULT_CATEGORY)
        totals = groups.setdefault(name, {"revenue": ZERO, "cogs": ZERO, "quantity": ZERO})
        totals["revenue"] += sale_revenue(sale)
        totals["cogs"] += sale_cogs(sale)
        totals["quantity"] += coerce_decimal(sale.quantity)
        counts[name] = counts.get(name, 0) + 1

    ordered = sorted(groups.items(), key=lambda item: item[1]["revenue"], reverse=True)
    result = []
    for name, totals in ordered:
        profit = totals["revenue"] - totals["cogs"]
        result.append(
            CategoryBreakdown(
                name=name,
                revenue=totals["revenue"],
                cogs=totals["cogs"],
                profit=profit,
                quantity=totals["quantity"],
                count=counts[name],
                margin=format_rate(profit, totals["revenue"]),
            )
        )
    return tuple(result)


def payment_method_breakdown(sales: Sequence[SaleRow], collected: Decimal) -> Tuple[PaymentMethodShare, ...]:
    """Sum amounts paid per payment method as a share of ``collected``."""

    amounts: Dict[str, Decimal] = {}
    for sale in sales:
        method = _label(sale.method, DEFAULT_PAYMENT_METHOD)
        amounts[method] = amounts.get(method, ZERO) + coerce_decimal(sale.paid)

    ordered = sorted(amounts.items(), key=lambda item: item[1], reverse=True)
    return tuple(
        PaymentMethodShare(method=method, amount=amount, pct=format_rate(amount, collected))
        for method, amount in ordered
    )


def expense_breakdown(expenses: Sequence[ExpenseRow], total_expenses: Decimal) -> Tuple[ExpenseCategoryShare, ...]:
    """Sum expense amounts per category as a share of ``total_expenses``."""

    amounts: Dict[str, Decimal] = {}
    for expense in expenses:
        category = _label(expense.category, DEFAULT_CATEGORY)
        amounts[category] = amounts.get(category, ZERO) + coerce_decimal(expense.amount)

    ordered = sorted(amounts.items(), key=lambda item: item[1], reverse=True)
    return tuple(
        ExpenseCategoryShare(category=category, amount=amount, pct=format_rate(amount, total_expenses))
        for category, amount in ordered
    )


def top_customers(sales: Sequence[SaleRow], limit: int = TOP_CUSTOMERS_LIMIT) -> Tuple[CustomerSummary, ...]:
    """Rank customers by invoiced revenue and keep the first ``limit``."""

    groups: Dict[str, Dict[str, Decimal]] = {}
    counts: Dict[str, int] = {}
    for sale in sales:
        name = _label(sale.customer, DEFAULT_CUSTOMER)
        totals = groups.setdefault(name, {"revenue": ZERO, "paid": ZERO, "balance": ZERO})
        totals["revenue"] += sale_revenue(sale)
        totals["paid"] += coerce_decimal(sale.paid)
        totals["balance"] += coerce_decimal(sale.balance)
        counts[name] = counts.get(name, 0) + 1

    ordered = sorted(groups.items(), key=lambda item: item[1]["revenue"], reverse=True)[:limit]
    return tuple(
        CustomerSummary(
            name=name,
            revenue=totals["revenue"],
            paid=totals["paid"],
            balance=totals["balance"],
            count=counts[name],
        )
        for name, totals in ordered
    )


def daily_trend(sales: Sequence[SaleRow], zone: tzinfo = UTC) -> Tuple[DailyTrendPoint, ...]:
    """Bucket revenue and profit per calendar day, oldest day first.

    Sales without a parseable timestamp are left out.
    """

    buckets: Dict[str, Dict[str, Decimal]] = {}
    for sale in sales:
        day = transaction_day(sale.timestamp_iso, zone)
        if day is None:
            continue
        totals = buckets.setdefault(day, {"revenue": ZERO, "profit": ZERO})
        totals["revenue"] += sale_revenue(sale)
        totals["profit"] += sale_profit(sale)

    # ISO dates sort lexicographically in chronological order.
    return tuple(
        DailyTrendPoint(date=day, revenue=totals["revenue"], profit=totals["profit"])
        for day, totals in sorted(buckets.items())
    )


# ---------------------------------------------------------------------------
# Aggregators
# ---------------------------------------------------------------------------


def compute_pl(
    sales: Optional[Sequence[SaleRow]] = None,
    expenses: Optional[Sequence[ExpenseRow]] = None,
    returns: Optional[Sequence[ReturnRow]] = None,
    settings: Optional[BusinessSettings] = None,
    *,
    now: Optional[datetime] = None,
) -> PLReport:
    """Compute the full profit-and-loss snapshot for the supplied records.

    Missing or non-numeric amounts count as zero and missing categorical
    fields fall back to ``"Uncategorised"``, ``"Walk-in"``, and ``"Cash"``,
    so well-shaped input never fails. Empty collections produce a zeroed
    report with empty breakdowns.

    Args:
        sales (Sequence[SaleRow] | None): Sales to aggregate.
        expenses (Sequence[ExpenseRow] | None): Expenses to aggregate.
        returns (Sequence[ReturnRow] | None): Returns whose refunds are summed.
        settings (BusinessSettings | None): Supplies the reference time zone
            used for calendar days; defaults to UTC settings.
        now (datetime | None): Evaluation instant for overdue classification
            and ``computed_at``. Defaults to the current UTC time.

    Returns:
        PLReport: Freshly allocated metrics snapshot.

    Raises:
        TypeError: If a collection is not a sequence of the expected record
            type.
        DataIntegrityError: If a sale carries an unknown payment status.
    """

    settings = settings if settings is not None else BusinessSettings()
    zone = settings.zone()
    sales = _require_records("sales", sales, SaleRow)
    expenses = _require_records("expenses", expenses, ExpenseRow)
    returns = _require_records("returns", returns, ReturnRow)
    moment = _resolve_now(now, zone)

    statuses = [resolve_status(sale) for sale in sales]

    revenue = sum_revenue(sales)
    collected = sum_collected(sales)
    cogs = sum_cogs(sales)
    gross_profit = revenue - cogs
    total_expenses = sum_expenses(expenses)
    net_profit = gross_profit - total_expenses
    refunds = sum((coerce_decimal(item.refund) for item in returns), ZERO)
    outstanding = sum_balance(sales)

    overdue_debt = ZERO
    upcoming_debt = ZERO
    status_counts = {status.value: 0 for status in PaymentStatus}
    for sale, status in zip(sales, statuses):
        status_counts[status.value] += 1
        balance = coerce_decimal(sale.balance)
        if balance <= ZERO:
            continue
        if is_overdue(sale, moment, zone):
            overdue_debt += balance
        elif status is not PaymentStatus.PAID:
            upcoming_debt += balance

    report = PLReport(
        revenue=revenue,
        collected=collected,
        outstanding=outstanding,
        cogs=cogs,
        gross_profit=gross_profit,
        gross_margin=format_rate(gross_profit, revenue),
        total_expenses=total_expenses,
        net_profit=net_profit,
        net_margin=format_rate(net_profit, revenue),
        collection_rate=format_rate(collected, revenue),
        refunds=refunds,
        overdue_debt=overdue_debt,
        upcoming_debt=upcoming_debt,
        sales_count=len(sales),
        unique_customers=len({_label(sale.customer, DEFAULT_CUSTOMER) for sale in sales}),
        units_sold=sum((coerce_decimal(sale.quantity) for sale in sales), ZERO),
        status_counts=MappingProxyType(status_counts),
        category_breakdown=category_breakdown(sales),
        payment_methods=payment_method_breakdown(sales, collected),
        expense_breakdown=expense_breakdown(expenses, total_expenses),
        top_customers=top_customers(sales),
        daily_trend=daily_trend(sales, zone),
        computed_at=moment,
    )
    log.debug(
        "Computed P&L over %d sales, %d expenses, %d returns: revenue=%s gross=%s net=%s",
        len(sales),
        len(expenses),
        len(returns),
        revenue,
        gross_profit,
        net_profit,
    )
    return report


def compute_dashboard_kpis(
    sales: Optional[Sequence[SaleRow]] = None,
    expenses: Optional[Sequence[ExpenseRow]] = None,
    inventory: Optional[Sequence[InventoryRow]] = None,
    *,
    now: Optional[datetime] = None,
    time_zone: tzinfo = UTC,
) -> DashboardKPIs:
    """Compute the dashboard headline figures.

    The figures are derived straight from the records rather than from a
    :class:`PLReport` so the dashboard can be refreshed from partial
    snapshots on its own schedule. "Today" is the calendar day of ``now`` in
    ``time_zone``; sale timestamps are converted to the same zone before
    their day is compared.

    Args:
        sales (Sequence[SaleRow] | None): Sales snapshot.
        expenses (Sequence[ExpenseRow] | None): Expenses snapshot.
        inventory (Sequence[InventoryRow] | None): Stock snapshot.
        now (datetime | None): Evaluation instant. Defaults to the current UTC
            time.
        time_zone (tzinfo): Reference zone for calendar days.

    Returns:
        DashboardKPIs: Freshly allocated KPI record.

    Raises:
        TypeError: If a collection is not a sequence of the expected record
            type.
        DataIntegrityError: If a sale carries an unknown payment status.
    """

    sales = _require_records("sales", sales, SaleRow)
    expenses = _require_records("expenses", expenses, ExpenseRow)
    inventory = _require_records("inventory", inventory, InventoryRow)
    moment = _resolve_now(now, time_zone)
    today = moment.astimezone(time_zone).date().isoformat()

    today_sales = [sale for sale in sales if transaction_day(sale.timestamp_iso, time_zone) == today]
    total_revenue = sum_revenue(sales)
    total_expenses = sum_expenses(expenses)
    gross_profit = total_revenue - sum_cogs(sales)
    net_profit = gross_profit - total_expenses

    overdue_count = sum(
        1 for sale in sales
        if is_overdue(sale, moment, time_zone) and coerce_decimal(sale.balance) > ZERO
    )
    low_stock_count = 0
    out_of_stock_count = 0
    for item in inventory:
        stock = coerce_decimal(item.stock)
        reorder_level = DEFAULT_REORDER_LEVEL if item.reorder_level is None else coerce_decimal(item.reorder_level)
        if stock <= reorder_level:
            low_stock_count += 1
        if stock == ZERO:
            out_of_stock_count += 1

    kpis = DashboardKPIs(
        today_revenue=sum_revenue(today_sales),
        today_profit=sum((sale_profit(sale) for sale in today_sales), ZERO),
        total_revenue=total_revenue,
        total_collected=sum_collected(sales),
        total_balance=sum_balance(sales),
        overdue_count=overdue_count,
        low_stock_count=low_stock_count,
        out_of_stock_count=out_of_stock_count,
        total_expenses=total_expenses,
        gross_profit=gross_profit,
        net_profit=net_profit,
        gross_margin=format_rate(gross_profit, total_revenue),
        net_margin=format_rate(net_profit, total_revenue),
    )
    log.debug(
        "Computed dashboard KPIs for %s: today_revenue=%s overdue=%d low_stock=%d",
        today,
        kpis.today_revenue,
        overdue_count,
        low_stock_count,
    )
    return kpis


__all__ = [
    "DataIntegrityError",
    "CategoryBreakdown",
    "PaymentMethodShare",
    "ExpenseCategoryShare",
    "CustomerSummary",
    "DailyTrendPoint",
    "PLReport",
    "DashboardKPIs",
    "sale_revenue",
    "sale_cogs",
    "sale_profit",
    "sum_revenue",
    "sum_collected",
    "sum_cogs",
    "sum_balance",
    "sum_expenses",
    "format_rate",
    "resolve_status",
    "to_instant",
    "transaction_day",
    "is_overdue",
    "category_breakdown",
    "payment_method_breakdown",
    "expense_breakdown",
    "top_customers",
    "daily_trend",
    "compute_pl",
    "compute_dashboard_kpis",
]
