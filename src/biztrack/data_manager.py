"""Record store for BizTrack.

This module provides low-level helpers that read from and write to the
master workbook. Business rules belong in :mod:`biztrack.core_logic` and
financial aggregation in :mod:`biztrack.pl_engine`.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening and persisting the Excel file.
3. Sheet operations: loading typed records and appending, updating, or
   deleting individual rows.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass, fields
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Iterator, Mapping, Optional, Sequence, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import (
    DEFAULT_CUSTOMER,
    DEFAULT_PAYMENT_METHOD,
    SHEET_COLUMNS,
    PaymentStatus,
    SheetName,
)


CONFIG_FILE_NAME = "config.ini"
ZERO = Decimal("0")


@dataclass(frozen=True)
class BusinessSettings:
    """Business metadata from the ``[Business]`` section of ``config.ini``.

    The engine never does arithmetic with these values; they label output
    (currency), drive default due dates (pay terms) and pick the reference
    time zone used for calendar-day comparisons.
    """

    name: str = "My Business"
    owner: str = ""
    business_type: str = "General Shop"
    currency: str = "UGX"
    pay_terms_days: int = 30
    tax_rate: Decimal = ZERO
    low_stock_threshold: int = 5
    invoice_footer: str = "Thank you for your business!"
    time_zone: str = "UTC"

    def zone(self) -> ZoneInfo:
        """Return the configured reference time zone."""

        return ZoneInfo(self.time_zone)


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    schema_version: str
    business: BusinessSettings


@dataclass(frozen=True)
class InventoryRow:
    """In-memory view of a row from the ``Inventory`` sheet."""

    product_id: str
    name: str = ""
    category: Optional[str] = None
    unit: str = "pcs"
    cost_price: Optional[Decimal] = None
    sell_price: Optional[Decimal] = None
    stock: Optional[Decimal] = None
    reorder_level: Optional[Decimal] = None
    supplier_id: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[str] = None


@dataclass(frozen=True)
class SaleRow:
    """In-memory view of a row from the ``Sales`` sheet.

    ``balance`` is stored, not derived: readers must use the persisted value
    even when it disagrees with ``total - paid``.
    """

    sale_id: str
    product: str = ""
    category: Optional[str] = None
    quantity: Optional[Decimal] = None
    unit_price: Optional[Decimal] = None
    cost_price: Optional[Decimal] = None
    discount: Optional[Decimal] = None
    total: Optional[Decimal] = None
    paid: Optional[Decimal] = None
    balance: Optional[Decimal] = None
    status: Optional[str] = PaymentStatus.UNPAID.value
    customer: Optional[str] = DEFAULT_CUSTOMER
    phone: Optional[str] = None
    method: Optional[str] = DEFAULT_PAYMENT_METHOD
    notes: Optional[str] = None
    due_date: Optional[str] = None
    timestamp_iso: Optional[str] = None


@dataclass(frozen=True)
class ExpenseRow:
    """In-memory view of a row from the ``Expenses`` sheet."""

    expense_id: str
    category: Optional[str] = None
    description: str = ""
    amount: Optional[Decimal] = None
    method: Optional[str] = DEFAULT_PAYMENT_METHOD
    reference: Optional[str] = None
    timestamp_iso: Optional[str] = None


@dataclass(frozen=True)
class ReturnRow:
    """In-memory view of a row from the ``Returns`` sheet."""

    return_id: str
    sale_id: Optional[str] = None
    product: Optional[str] = None
    quantity: Optional[Decimal] = None
    refund: Optional[Decimal] = None
    reason: Optional[str] = None
    timestamp_iso: Optional[str] = None


@dataclass(frozen=True)
class CustomerRow:
    """In-memory view of a row from the ``Customers`` sheet."""

    customer_id: str
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[str] = None


@dataclass(frozen=True)
class SupplierRow:
    """In-memory view of a row from the ``Suppliers`` sheet."""

    supplier_id: str
    name: str
    contact: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[str] = None


Record = Union[InventoryRow, SaleRow, ExpenseRow, ReturnRow, CustomerRow, SupplierRow]

ROW_TYPES: Mapping[str, type] = {
    SheetName.INVENTORY.value: InventoryRow,
    SheetName.SALES.value: SaleRow,
    SheetName.EXPENSES.value: ExpenseRow,
    SheetName.RETURNS.value: ReturnRow,
    SheetName.CUSTOMERS.value: CustomerRow,
    SheetName.SUPPLIERS.value: SupplierRow,
}


def coerce_decimal(value: object) -> Decimal:
    """Normalize an arbitrary cell or field value into a finite Decimal.

    Missing values, blank strings, booleans, non-numeric text, NaN, and
    infinities all collapse to ``Decimal("0")`` so that aggregation never has
    to guard against malformed records.

    Args:
        value (object): Raw value read from a worksheet or supplied by a
            caller.

    Returns:
        Decimal: The numeric interpretation of ``value`` or zero.
    """

    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        candidate = value
    elif isinstance(value, (int, float)):
        candidate = Decimal(str(value))
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return ZERO
        try:
            candidate = Decimal(text)
        except InvalidOperation:
            return ZERO
    else:
        return ZERO
    if not candidate.is_finite():
        return ZERO
    return candidate


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the record store behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for candidate_dir in (current, *current.parents):
        candidate = candidate_dir / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Validation of required entries happens in :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    Relative ``DataFile`` entries are expanded against ``base_path`` when
    provided, or against the current working directory as a fallback.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used as the anchor for relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container with the resolved data
            file path, schema version, and business settings.

    Raises:
        KeyError: If a required option is missing or the time zone is unknown.
        ValueError: If a numeric business option cannot be parsed.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        schema_version=schema_version,
        business=parse_business_settings(parser),
    )


def parse_business_settings(parser: configparser.ConfigParser) -> BusinessSettings:
    """Read the optional ``[Business]`` section, applying defaults per option."""

    defaults = BusinessSettings()
    section = "Business"
    try:
        tax_rate = Decimal(parser.get(section, "TaxRate", fallback=str(defaults.tax_rate)))
    except InvalidOperation as exc:
        raise ValueError("Business.TaxRate must be numeric") from exc

    time_zone = parser.get(section, "TimeZone", fallback=defaults.time_zone)
    try:
        ZoneInfo(time_zone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise KeyError(f"Unknown time zone: {time_zone}") from exc

    return BusinessSettings(
        name=parser.get(section, "Name", fallback=defaults.name),
        owner=parser.get(section, "Owner", fallback=defaults.owner),
        business_type=parser.get(section, "Type", fallback=defaults.business_type),
        currency=parser.get(section, "Currency", fallback=defaults.currency),
        pay_terms_days=parser.getint(section, "PayTerms", fallback=defaults.pay_terms_days),
        tax_rate=tax_rate,
        low_stock_threshold=parser.getint(section, "LowStock", fallback=defaults.low_stock_threshold),
        invoice_footer=parser.get(section, "InvoiceFooter", fallback=defaults.invoice_footer),
        time_zone=time_zone,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the master Excel workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk, creating parent directories on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def sheet_for_record(record: Record) -> str:
    """Return the sheet name that stores records of ``record``'s type.

    Raises:
        TypeError: If ``record`` is not one of the known row dataclasses.
    """

    for sheet_name, row_type in ROW_TYPES.items():
        if isinstance(record, row_type):
            return sheet_name
    raise TypeError(f"Unsupported record type: {type(record).__name__}")


def record_id(record: Record) -> str:
    """Return the primary identifier of a row dataclass (its first field)."""

    return getattr(record, fields(record)[0].name)


def iter_records(workbook: Workbook, sheet_name: str) -> Iterator[Record]:
    """Stream typed records from the named worksheet.

    The header row and fully empty rows are skipped. Each remaining row is
    converted via :func:`deserialize_record`, which never raises on malformed
    cell values.

    Args:
        workbook (Workbook): Workbook containing ``sheet_name``.
        sheet_name (str): One of the :class:`~biztrack.constants.SheetName`
            values.

    Yields:
        Record: Row dataclass for each populated row, in sheet order.
    """

    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if any(cell is not None for cell in raw):
            yield deserialize_record(sheet_name, raw)


def append_record(workbook: Workbook, record: Record) -> None:
    """Append a record to the worksheet matching its type."""

    sheet = workbook[sheet_for_record(record)]
    sheet.append(serialize_record(record))


def update_record(workbook: Workbook, sheet_name: str, key_value: str, *, field_values: dict[str, Any]) -> None:
    """Update selected columns for an existing record.

    The row whose id column matches ``key_value`` is located, each requested
    column is validated against the header row, and only those cells are
    overwritten.

    Args:
        workbook (Workbook): Workbook containing ``sheet_name``.
        sheet_name (str): Worksheet to modify.
        key_value (str): Identifier stored in the first column.
        field_values (dict[str, Any]): Mapping of column names to replacement
            values.

    Raises:
        KeyError: If the record or any referenced column cannot be found.
    """

    key_column = SHEET_COLUMNS[sheet_name][0]
    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"{sheet_name} record not found: {key_value}")

    sheet = workbook[sheet_name]
    header_map = {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}

    for field_name, value in field_values.items():
        if field_name not in header_map:
            raise KeyError(f"Unknown {sheet_name} field: {field_name}")
        sheet.cell(row=row_index, column=header_map[field_name], value=value)


def delete_record(workbook: Workbook, sheet_name: str, key_value: str) -> None:
    """Remove the row whose id column matches ``key_value``.

    Raises:
        KeyError: If no such record exists.
    """

    key_column = SHEET_COLUMNS[sheet_name][0]
    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"{sheet_name} record not found: {key_value}")
    workbook[sheet_name].delete_rows(row_index)
    log.debug("Deleted %s record '%s' at row %d", sheet_name, key_value, row_index)


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    sheet = workbook[sheet_name]
    header_map = {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]

    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        cell_value = row[key_col_index - 1]
        if cell_value is not None and str(cell_value) == key_value:
            return row_idx

    return None


def serialize_record(record: Record) -> list[object]:
    """Convert a row dataclass into its worksheet column ordering.

    Dataclass field order mirrors :data:`~biztrack.constants.SHEET_COLUMNS`,
    so values are emitted in declaration order with Decimals preserved.
    """

    return [getattr(record, field.name) for field in fields(record)]


def deserialize_record(sheet_name: str, raw_row: Sequence[object]) -> Record:
    """Dispatch a raw worksheet row to the deserializer for ``sheet_name``."""

    try:
        deserializer = _DESERIALIZERS[sheet_name]
    except KeyError as exc:
        raise KeyError(f"Unknown sheet: {sheet_name}") from exc
    width = len(SHEET_COLUMNS[sheet_name])
    padded = list(raw_row[:width]) + [None] * (width - len(raw_row))
    return deserializer(padded)


def _text(value: object, default: str = "") -> str:
    normalized = _optional_text(value)
    return default if normalized is None else normalized


def _optional_text(value: object) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    text = str(value).strip()
    return text or None


def _optional_decimal(value: object) -> Optional[Decimal]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return coerce_decimal(value)


def deserialize_inventory(raw_row: Sequence[object]) -> InventoryRow:
    """Convert a raw ``Inventory`` row into an :class:`InventoryRow`.

    A blank reorder level stays ``None`` so readers can apply their own
    default threshold.
    """

    (product_id, name, category, unit, cost_price, sell_price, stock,
     reorder_level, supplier_id, notes, created_at) = raw_row
    return InventoryRow(
        product_id=_text(product_id),
        name=_text(name),
        category=_optional_text(category),
        unit=_text(unit, "pcs"),
        cost_price=coerce_decimal(cost_price),
        sell_price=coerce_decimal(sell_price),
        stock=coerce_decimal(stock),
        reorder_level=_optional_decimal(reorder_level),
        supplier_id=_optional_text(supplier_id),
        notes=_optional_text(notes),
        created_at=_optional_text(created_at),
    )


def deserialize_sale(raw_row: Sequence[object]) -> SaleRow:
    """Convert a raw ``Sales`` row into a :class:`SaleRow`.

    Numeric columns are coerced to Decimal, blank status/customer/method cells
    receive the store defaults, and the status text is kept verbatim so the
    engine can reject values outside :class:`~biztrack.constants.PaymentStatus`.
    """

    (sale_id, product, category, quantity, unit_price, cost_price, discount,
     total, paid, balance, status, customer, phone, method, notes, due_date,
     timestamp) = raw_row
    return SaleRow(
        sale_id=_text(sale_id),
        product=_text(product),
        category=_optional_text(category),
        quantity=coerce_decimal(quantity),
        unit_price=coerce_decimal(unit_price),
        cost_price=coerce_decimal(cost_price),
        discount=coerce_decimal(discount),
        total=coerce_decimal(total),
        paid=coerce_decimal(paid),
        balance=coerce_decimal(balance),
        status=_text(status, PaymentStatus.UNPAID.value),
        customer=_text(customer, DEFAULT_CUSTOMER),
        phone=_optional_text(phone),
        method=_text(method, DEFAULT_PAYMENT_METHOD),
        notes=_optional_text(notes),
        due_date=_optional_text(due_date),
        timestamp_iso=_optional_text(timestamp),
    )


def deserialize_expense(raw_row: Sequence[object]) -> ExpenseRow:
    """Convert a raw ``Expenses`` row into an :class:`ExpenseRow`."""

    expense_id, category, description, amount, method, reference, timestamp = raw_row
    return ExpenseRow(
        expense_id=_text(expense_id),
        category=_optional_text(category),
        description=_text(description),
        amount=coerce_decimal(amount),
        method=_text(method, DEFAULT_PAYMENT_METHOD),
        reference=_optional_text(reference),
        timestamp_iso=_optional_text(timestamp),
    )


def deserialize_return(raw_row: Sequence[object]) -> ReturnRow:
    """Convert a raw ``Returns`` row into a :class:`ReturnRow`."""

    return_id, sale_id, product, quantity, refund, reason, timestamp = raw_row
    return ReturnRow(
        return_id=_text(return_id),
        sale_id=_optional_text(sale_id),
        product=_optional_text(product),
        quantity=coerce_decimal(quantity),
        refund=coerce_decimal(refund),
        reason=_optional_text(reason),
        timestamp_iso=_optional_text(timestamp),
    )


def deserialize_customer(raw_row: Sequence[object]) -> CustomerRow:
    customer_id, name, phone, email, address, notes, created_at = raw_row
    return CustomerRow(
        customer_id=_text(customer_id),
        name=_text(name),
        phone=_optional_text(phone),
        email=_optional_text(email),
        address=_optional_text(address),
        notes=_optional_text(notes),
        created_at=_optional_text(created_at),
    )


def deserialize_supplier(raw_row: Sequence[object]) -> SupplierRow:
    supplier_id, name, contact, phone, email, address, notes, created_at = raw_row
    return SupplierRow(
        supplier_id=_text(supplier_id),
        name=_text(name),
        contact=_optional_text(contact),
        phone=_optional_text(phone),
        email=_optional_text(email),
        address=_optional_text(address),
        notes=_optional_text(notes),
        created_at=_optional_text(created_at),
    )


_DESERIALIZERS = {
    SheetName.INVENTORY.value: deserialize_inventory,
    SheetName.SALES.value: deserialize_sale,
    SheetName.EXPENSES.value: deserialize_expense,
    SheetName.RETURNS.value: deserialize_return,
    SheetName.CUSTOMERS.value: deserialize_customer,
    SheetName.SUPPLIERS.value: deserialize_supplier,
}
