"""Business logic layer for BizTrack.

This module owns the rules for recording sales, payments, expenses, returns,
and stock changes. It consumes the record store for all I/O, keeps per-sheet
caches so reporting does not rescan the workbook, and hands snapshots to
:mod:`biztrack.pl_engine` for every financial figure it reports.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

from openpyxl.workbook import Workbook

from . import data_manager, log, pl_engine
from .constants import (
    DEFAULT_CUSTOMER,
    DEFAULT_PAYMENT_METHOD,
    EXPECTED_SCHEMA_VERSION,
    SHEET_FOR_KIND,
    PaymentStatus,
    RecordKind,
    SheetName,
)


CENTS = Decimal("0.01")
HUNDRED = Decimal("100")


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced product, sale, or record is unknown."""


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and workbook references used by the BLL."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _cache: Dict[str, List[Any]] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class ProductCommand:
    """User intent for registering an inventory item."""

    name: str
    cost_price: Decimal
    sell_price: Decimal
    stock: Decimal = Decimal("0")
    category: Optional[str] = None
    unit: str = "pcs"
    reorder_level: Optional[Decimal] = None
    supplier_id: Optional[str] = None
    notes: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class SaleCommand:
    """User intent for recording a sale, optionally on credit."""

    product: str
    quantity: Decimal
    unit_price: Decimal
    paid: Decimal
    cost_price: Optional[Decimal] = None
    discount: Decimal = Decimal("0")
    category: Optional[str] = None
    customer: Optional[str] = None
    phone: Optional[str] = None
    method: Optional[str] = None
    due_date: Optional[date] = None
    inventory_id: Optional[str] = None
    notes: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class PaymentCommand:
    """User intent for settling part or all of an outstanding sale."""

    sale_id: str
    amount: Decimal


@dataclass(frozen=True)
class ExpenseCommand:
    """User intent for recording a business expense."""

    category: str
    description: str
    amount: Decimal
    method: Optional[str] = None
    reference: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class ReturnCommand:
    """User intent for logging goods returned against a sale."""

    sale_id: str
    quantity: Decimal
    refund: Decimal
    reason: Optional[str] = None
    inventory_id: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class SupplierCommand:
    """User intent for registering a supplier."""

    name: str
    contact: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    notes: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class ReportData:
    """Snapshot of the records that fall inside a reporting period."""

    sales: List[data_manager.SaleRow]
    expenses: List[data_manager.ExpenseRow]
    returns: List[data_manager.ReturnRow]


@dataclass(frozen=True)
class OutstandingSale:
    """An unsettled sale together with its overdue classification."""

    sale: data_manager.SaleRow
    balance: Decimal
    overdue: bool


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current UTC datetime when it is ``None``."""

    return candidate if candidate is not None else datetime.now(UTC)


def _records(context: RuntimeContext, sheet: SheetName) -> List[Any]:
    """Return the cached record list for ``sheet``, loading it on first use.

    Buckets are invalidated by :func:`_invalidate_cache` after every write so
    subsequent reads rebuild from the updated workbook.
    """

    bucket = context._cache.get(sheet.value)
    if bucket is None:
        bucket = list(data_manager.iter_records(context.workbook, sheet.value))
        context._cache[sheet.value] = bucket
        log.debug("Populated %s cache with %d entries", sheet.value, len(bucket))
    return bucket


def _invalidate_cache(context: RuntimeContext, *sheets: SheetName) -> None:
    """Evict one or more cache buckets after mutating workbook state."""

    if not sheets:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(sheet.value for sheet in sheets))

    for sheet in sheets:
        context._cache.pop(sheet.value, None)


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook for the BLL.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the record store searches upward from the
            current working directory.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

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
    return RuntimeContext(settings=settings, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
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

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Persist any in-memory workbook changes to the configured data file."""
    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    A new :class:`RuntimeContext` with an empty cache is returned; the old one
    should no longer be used.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook)


def list_inventory(context: RuntimeContext) -> List[data_manager.InventoryRow]:
    """Return inventory items sorted by name, case-insensitively."""
    return sorted(_records(context, SheetName.INVENTORY), key=lambda item: item.name.lower())


def list_sales(context: RuntimeContext) -> List[data_manager.SaleRow]:
    """Return sales newest first, in the order the sales screen lists them."""
    return sorted(_records(context, SheetName.SALES), key=lambda sale: sale.timestamp_iso or "", reverse=True)


def list_expenses(context: RuntimeContext) -> List[data_manager.ExpenseRow]:
    return sorted(_records(context, SheetName.EXPENSES), key=lambda item: item.timestamp_iso or "", reverse=True)


def list_returns(context: RuntimeContext) -> List[data_manager.ReturnRow]:
    return sorted(_records(context, SheetName.RETURNS), key=lambda item: item.timestamp_iso or "", reverse=True)


def list_customers(context: RuntimeContext) -> List[data_manager.CustomerRow]:
    return sorted(_records(context, SheetName.CUSTOMERS), key=lambda item: item.name.lower())


def list_suppliers(context: RuntimeContext) -> List[data_manager.SupplierRow]:
    return sorted(_records(context, SheetName.SUPPLIERS), key=lambda item: item.name.lower())


def get_product(context: RuntimeContext, product_id: str) -> data_manager.InventoryRow:
    """Resolve an inventory item by its identifier.

    Raises:
        MissingReferenceError: If ``product_id`` is absent from the workbook.
    """
    for item in _records(context, SheetName.INVENTORY):
        if item.product_id == product_id:
            return item
    log.warning("Product lookup failed for id '%s'", product_id)
    raise MissingReferenceError(f"Unknown product id: {product_id}")


def get_sale(context: RuntimeContext, sale_id: str) -> data_manager.SaleRow:
    """Resolve a sale by its identifier.

    Raises:
        MissingReferenceError: If ``sale_id`` is absent from the workbook.
    """
    for sale in _records(context, SheetName.SALES):
        if sale.sale_id == sale_id:
            return sale
    log.warning("Sale lookup failed for id '%s'", sale_id)
    raise MissingReferenceError(f"Unknown sale id: {sale_id}")


def derive_payment_state(total: Decimal, paid: Decimal) -> tuple[Decimal, PaymentStatus]:
    """Return the stored balance and status implied by ``total`` and ``paid``.

    The balance is floored at zero. A sale is ``PAID`` once nothing remains,
    ``PARTIAL`` once anything has been paid, and ``UNPAID`` otherwise.
    """
    balance = max(Decimal("0"), total - paid)
    if balance <= Decimal("0"):
        return balance, PaymentStatus.PAID
    if paid > Decimal("0"):
        return balance, PaymentStatus.PARTIAL
    return balance, PaymentStatus.UNPAID


def calculate_sale_total(quantity: Decimal, unit_price: Decimal, discount: Decimal) -> Decimal:
    """Apply a percentage discount to ``quantity x unit_price``, rounded to cents."""
    subtotal = quantity * unit_price
    return (subtotal - subtotal * discount / HUNDRED).quantize(CENTS, rounding=ROUND_HALF_UP)


def add_product(context: RuntimeContext, command: ProductCommand) -> data_manager.InventoryRow:
    """Validate and append a new inventory item.

    Raises:
        ValueError: If the name is blank or any price, stock, or reorder level
            is negative.
    """
    if not command.name.strip():
        log.error("Product validation failed: blank name")
        raise ValueError("Product name must not be blank")
    require_nonnegative_money(command.cost_price)
    require_nonnegative_money(command.sell_price)
    require_nonnegative_quantity(command.stock)
    if command.reorder_level is not None:
        require_nonnegative_quantity(command.reorder_level)

    timestamp = _resolve_timestamp(command.timestamp)
    record = data_manager.InventoryRow(
        product_id=generate_record_id("PRD", when=timestamp),
        name=command.name.strip(),
        category=command.category,
        unit=command.unit,
        cost_price=command.cost_price,
        sell_price=command.sell_price,
        stock=command.stock,
        reorder_level=command.reorder_level,
        supplier_id=command.supplier_id,
        notes=command.notes,
        created_at=timestamp.isoformat(),
    )
    data_manager.append_record(context.workbook, record)
    _invalidate_cache(context, SheetName.INVENTORY)
    log.info("Added product '%s' (%s) with stock %s", record.product_id, record.name, record.stock)
    return record


def adjust_stock(
    context: RuntimeContext,
    product_id: str,
    stock: Decimal,
    *,
    cost_price: Optional[Decimal] = None,
    sell_price: Optional[Decimal] = None,
) -> data_manager.InventoryRow:
    """Overwrite the stock level and optionally the prices of a product.

    Raises:
        MissingReferenceError: If the product is unknown.
        ValueError: If any supplied value is negative.
    """
    product = get_product(context, product_id)
    require_nonnegative_quantity(stock)
    field_values: Dict[str, Any] = {"Stock": stock}
    if cost_price is not None:
        require_nonnegative_money(cost_price)
        field_values["CostPrice"] = cost_price
    if sell_price is not None:
        require_nonnegative_money(sell_price)
        field_values["SellPrice"] = sell_price

    data_manager.update_record(context.workbook, SheetName.INVENTORY.value, product_id, field_values=field_values)
    _invalidate_cache(context, SheetName.INVENTORY)
    log.info("Adjusted stock for product '%s' from %s to %s", product_id, product.stock, stock)
    return replace(
        product,
        stock=stock,
        cost_price=cost_price if cost_price is not None else product.cost_price,
        sell_price=sell_price if sell_price is not None else product.sell_price,
    )


def record_sale(context: RuntimeContext, command: SaleCommand) -> data_manager.SaleRow:
    """Validate and append a sale, updating stock and the customer list.

    The total is ``quantity x unit_price`` less the discount percentage. The
    stored balance and status follow :func:`derive_payment_state`. When a
    balance remains and no due date is given, the due date falls
    ``pay_terms_days`` after the sale. When ``inventory_id`` is set, category
    and unit cost default from that product and its stock is reduced by the
    sold quantity, floored at zero.

    Raises:
        MissingReferenceError: If ``inventory_id`` is unknown.
        ValueError: When quantity, prices, discount, or payment fail
            validation.
    """
    require_positive_quantity(command.quantity)
    require_nonnegative_money(command.unit_price)
    require_nonnegative_money(command.paid)
    if command.cost_price is not None:
        require_nonnegative_money(command.cost_price)
    if not Decimal("0") <= command.discount <= HUNDRED:
        log.error("Discount validation failed: %s", command.discount)
        raise ValueError("Discount must be between 0 and 100 percent")

    product = get_product(context, command.inventory_id) if command.inventory_id else None
    category = command.category or (product.category if product is not None else None)
    cost_price = command.cost_price
    if cost_price is None:
        cost_price = data_manager.coerce_decimal(product.cost_price) if product is not None else Decimal("0")

    zone = context.settings.business.zone()
    timestamp = _resolve_timestamp(command.timestamp)
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=zone)
    total = calculate_sale_total(command.quantity, command.unit_price, command.discount)
    balance, status = derive_payment_state(total, command.paid)
    due_date = command.due_date
    if due_date is None and balance > Decimal("0"):
        local_day = timestamp.astimezone(zone).date()
        due_date = local_day + timedelta(days=context.settings.business.pay_terms_days)

    customer = (command.customer or "").strip() or DEFAULT_CUSTOMER
    sale = data_manager.SaleRow(
        sale_id=generate_record_id("SL", when=timestamp),
        product=command.product,
        category=category,
        quantity=command.quantity,
        unit_price=command.unit_price,
        cost_price=cost_price,
        discount=command.discount,
        total=total,
        paid=command.paid,
        balance=balance,
        status=status.value,
        customer=customer,
        phone=command.phone,
        method=command.method or DEFAULT_PAYMENT_METHOD,
        notes=command.notes,
        due_date=due_date.isoformat() if due_date is not None else None,
        timestamp_iso=timestamp.isoformat(),
    )
    data_manager.append_record(context.workbook, sale)
    _invalidate_cache(context, SheetName.SALES)

    if product is not None:
        remaining = max(Decimal("0"), data_manager.coerce_decimal(product.stock) - command.quantity)
        data_manager.update_record(
            context.workbook,
            SheetName.INVENTORY.value,
            product.product_id,
            field_values={"Stock": remaining},
        )
        _invalidate_cache(context, SheetName.INVENTORY)

    if customer != DEFAULT_CUSTOMER:
        upsert_customer(context, customer, phone=command.phone, when=timestamp)

    log.info(
        "Recorded sale '%s' of %s x '%s' (total=%s, paid=%s, status=%s)",
        sale.sale_id,
        command.quantity,
        command.product,
        total,
        command.paid,
        status.value,
    )
    return sale


def record_payment(context: RuntimeContext, command: PaymentCommand) -> data_manager.SaleRow:
    """Apply a payment against an existing sale.

    ``paid`` grows by the amount, the balance is recomputed from the total and
    floored at zero, and the status becomes ``PAID`` or ``PARTIAL``.

    Raises:
        MissingReferenceError: If the sale is unknown.
        BusinessRuleViolation: If the sale is already settled.
        ValueError: If the amount is not positive.
    """
    sale = get_sale(context, command.sale_id)
    if command.amount <= Decimal("0"):
        log.error("Payment validation failed: %s", command.amount)
        raise ValueError("Payment amount must be greater than zero")
    if pl_engine.resolve_status(sale) is PaymentStatus.PAID:
        log.warning("Attempted payment on settled sale '%s'", sale.sale_id)
        raise BusinessRuleViolation(f"Sale '{sale.sale_id}' is already paid")

    new_paid = data_manager.coerce_decimal(sale.paid) + command.amount
    balance, status = derive_payment_state(data_manager.coerce_decimal(sale.total), new_paid)
    if status is PaymentStatus.UNPAID:
        status = PaymentStatus.PARTIAL
    data_manager.update_record(
        context.workbook,
        SheetName.SALES.value,
        sale.sale_id,
        field_values={"Paid": new_paid, "Balance": balance, "Status": status.value},
    )
    _invalidate_cache(context, SheetName.SALES)
    log.info(
        "Recorded payment of %s against sale '%s' (balance=%s, status=%s)",
        command.amount,
        sale.sale_id,
        balance,
        status.value,
    )
    return replace(sale, paid=new_paid, balance=balance, status=status.value)


def record_expense(context: RuntimeContext, command: ExpenseCommand) -> data_manager.ExpenseRow:
    """Validate and append an expense.

    Raises:
        ValueError: If the category or description is blank or the amount is
            negative.
    """
    if not command.category.strip() or not command.description.strip():
        log.error("Expense validation failed: category and description are required")
        raise ValueError("Expense category and description must not be blank")
    require_nonnegative_money(command.amount)

    timestamp = _resolve_timestamp(command.timestamp)
    expense = data_manager.ExpenseRow(
        expense_id=generate_record_id("EXP", when=timestamp),
        category=command.category.strip(),
        description=command.description.strip(),
        amount=command.amount,
        method=command.method or DEFAULT_PAYMENT_METHOD,
        reference=command.reference,
        timestamp_iso=timestamp.isoformat(),
    )
    data_manager.append_record(context.workbook, expense)
    _invalidate_cache(context, SheetName.EXPENSES)
    log.info("Recorded expense '%s' (%s, amount=%s)", expense.expense_id, expense.category, expense.amount)
    return expense


def record_return(context: RuntimeContext, command: ReturnCommand) -> data_manager.ReturnRow:
    """Log goods returned against a sale and restock them when possible.

    Raises:
        MissingReferenceError: If the sale or the restock product is unknown.
        BusinessRuleViolation: If more units are returned than were sold.
        ValueError: If quantity or refund fail validation.
    """
    sale = get_sale(context, command.sale_id)
    require_positive_quantity(command.quantity)
    require_nonnegative_money(command.refund)
    already_returned = sum(
        (
            data_manager.coerce_decimal(entry.quantity)
            for entry in _records(context, SheetName.RETURNS)
            if entry.sale_id == sale.sale_id
        ),
        Decimal("0"),
    )
    if already_returned + command.quantity > data_manager.coerce_decimal(sale.quantity):
        log.warning(
            "Return of %s (after %s already returned) exceeds quantity %s sold in '%s'",
            command.quantity,
            already_returned,
            sale.quantity,
            sale.sale_id,
        )
        raise BusinessRuleViolation(f"Cannot return more than was sold in '{sale.sale_id}'")
    product = get_product(context, command.inventory_id) if command.inventory_id else None

    timestamp = _resolve_timestamp(command.timestamp)
    entry = data_manager.ReturnRow(
        return_id=generate_record_id("RET", when=timestamp),
        sale_id=sale.sale_id,
        product=sale.product,
        quantity=command.quantity,
        refund=command.refund,
        reason=command.reason,
        timestamp_iso=timestamp.isoformat(),
    )
    data_manager.append_record(context.workbook, entry)
    _invalidate_cache(context, SheetName.RETURNS)

    if product is not None:
        restocked = data_manager.coerce_decimal(product.stock) + command.quantity
        data_manager.update_record(
            context.workbook,
            SheetName.INVENTORY.value,
            product.product_id,
            field_values={"Stock": restocked},
        )
        _invalidate_cache(context, SheetName.INVENTORY)

    log.info("Recorded return '%s' against sale '%s' (refund=%s)", entry.return_id, sale.sale_id, entry.refund)
    return entry


def add_supplier(context: RuntimeContext, command: SupplierCommand) -> data_manager.SupplierRow:
    """Validate and append a supplier."""
    if not command.name.strip():
        log.error("Supplier validation failed: blank name")
        raise ValueError("Supplier name must not be blank")

    timestamp = _resolve_timestamp(command.timestamp)
    supplier = data_manager.SupplierRow(
        supplier_id=generate_record_id("SUP", when=timestamp),
        name=command.name.strip(),
        contact=command.contact,
        phone=command.phone,
        email=command.email,
        address=command.address,
        notes=command.notes,
        created_at=timestamp.isoformat(),
    )
    data_manager.append_record(context.workbook, supplier)
    _invalidate_cache(context, SheetName.SUPPLIERS)
    log.info("Added supplier '%s' (%s)", supplier.supplier_id, supplier.name)
    return supplier


def upsert_customer(
    context: RuntimeContext,
    name: str,
    *,
    phone: Optional[str] = None,
    when: Optional[datetime] = None,
) -> data_manager.CustomerRow:
    """Return the customer called ``name`` (case-insensitive), creating it if needed."""
    cleaned = name.strip()
    if not cleaned:
        log.error("Customer validation failed: blank name")
        raise ValueError("Customer name must not be blank")
    for customer in _records(context, SheetName.CUSTOMERS):
        if customer.name.casefold() == cleaned.casefold():
            return customer

    timestamp = _resolve_timestamp(when)
    customer = data_manager.CustomerRow(
        customer_id=generate_record_id("CUS", when=timestamp),
        name=cleaned,
        phone=phone,
        created_at=timestamp.isoformat(),
    )
    data_manager.append_record(context.workbook, customer)
    _invalidate_cache(context, SheetName.CUSTOMERS)
    log.info("Added customer '%s' (%s)", customer.customer_id, customer.name)
    return customer


def delete_record(context: RuntimeContext, kind: RecordKind, record_id: str) -> None:
    """Delete a record of the given kind by id.

    Raises:
        MissingReferenceError: If no such record exists.
    """
    sheet = SHEET_FOR_KIND[kind]
    try:
        data_manager.delete_record(context.workbook, sheet.value, record_id)
    except KeyError as exc:
        log.warning("Delete failed: %s record '%s' not found", sheet.value, record_id)
        raise MissingReferenceError(f"Unknown {kind.value} id: {record_id}") from exc
    _invalidate_cache(context, sheet)
    log.info("Deleted %s record '%s'", sheet.value, record_id)


def _in_period(value: Optional[str], zone, from_date: Optional[date], to_date: Optional[date]) -> bool:
    if from_date is None and to_date is None:
        return True
    day = pl_engine.transaction_day(value, zone)
    if day is None:
        return False
    if from_date is not None and day < from_date.isoformat():
        return False
    if to_date is not None and day > to_date.isoformat():
        return False
    return True


def get_report_data(
    context: RuntimeContext,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
) -> ReportData:
    """Collect the sales, expenses, and returns dated within a period.

    Both bounds are inclusive calendar days in the business time zone; an
    omitted bound leaves that side open. Records without a parseable
    timestamp are only included when no bound is given.

    Raises:
        ValueError: If ``from_date`` falls after ``to_date``.
    """
    if from_date is not None and to_date is not None and from_date > to_date:
        raise ValueError("Report start date must not be after its end date")
    zone = context.settings.business.zone()
    data = ReportData(
        sales=[row for row in list_sales(context) if _in_period(row.timestamp_iso, zone, from_date, to_date)],
        expenses=[row for row in list_expenses(context) if _in_period(row.timestamp_iso, zone, from_date, to_date)],
        returns=[row for row in list_returns(context) if _in_period(row.timestamp_iso, zone, from_date, to_date)],
    )
    log.debug(
        "Report data for %s..%s: %d sales, %d expenses, %d returns",
        from_date,
        to_date,
        len(data.sales),
        len(data.expenses),
        len(data.returns),
    )
    return data


def build_pl_report(
    context: RuntimeContext,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    *,
    now: Optional[datetime] = None,
) -> pl_engine.PLReport:
    """Compute the P&L report for a period (all records when unbounded)."""
    data = get_report_data(context, from_date, to_date)
    return pl_engine.compute_pl(
        data.sales,
        data.expenses,
        data.returns,
        context.settings.business,
        now=now,
    )


def build_dashboard(context: RuntimeContext, *, now: Optional[datetime] = None) -> pl_engine.DashboardKPIs:
    """Compute the dashboard KPIs over every stored record."""
    return pl_engine.compute_dashboard_kpis(
        list_sales(context),
        list_expenses(context),
        list_inventory(context),
        now=now,
        time_zone=context.settings.business.zone(),
    )


def list_outstanding_sales(context: RuntimeContext, *, now: Optional[datetime] = None) -> List[OutstandingSale]:
    """Return unsettled sales with a positive balance, overdue ones first.

    Within each group the sales keep newest-first order.
    """
    zone = context.settings.business.zone()
    moment = now if now is not None else datetime.now(UTC)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=zone)
    outstanding = []
    for sale in list_sales(context):
        balance = data_manager.coerce_decimal(sale.balance)
        if balance <= Decimal("0") or pl_engine.resolve_status(sale) is PaymentStatus.PAID:
            continue
        outstanding.append(
            OutstandingSale(sale=sale, balance=balance, overdue=pl_engine.is_overdue(sale, moment, zone))
        )
    return sorted(outstanding, key=lambda entry: not entry.overdue)


def generate_record_id(prefix: str, *, when: Optional[datetime] = None) -> str:
    """Generate a sortable record identifier such as ``SL-20240301083000123456``.

    Microseconds are packed into the identifier to avoid collisions when
    several records are created within the same second. Caller supplied
    timestamps allow deterministic identifiers during tests or imports.
    """
    when = when or _resolve_timestamp(None)
    return f"{prefix}-{when.strftime('%Y%m%d%H%M%S%f')}"


def require_positive_quantity(quantity: Decimal) -> None:
    """Validate that a quantity is strictly positive.

    Raises:
        ValueError: If ``quantity`` is zero or negative.
    """
    if quantity <= Decimal("0"):
        log.error("Quantity validation failed: %s", quantity)
        raise ValueError("Quantity must be greater than zero")


def require_nonnegative_quantity(quantity: Decimal) -> None:
    """Validate that a stock level or threshold is not negative."""
    if quantity < Decimal("0"):
        log.error("Quantity validation failed: %s", quantity)
        raise ValueError("Quantity must be zero or positive")


def require_nonnegative_money(amount: Decimal) -> None:
    """Validate that a monetary value is nonnegative.

    Raises:
        ValueError: If ``amount`` is less than zero.
    """
    if amount < Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValueError("Amount must be zero or positive")
