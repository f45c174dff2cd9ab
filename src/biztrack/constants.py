"""Enumerations and fallback labels shared across BizTrack modules.

The record store, the P&L engine, and the presentation layers all read their
identifiers from here so a status value or sheet name is spelled exactly once.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Mapping, Sequence


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

DEFAULT_CATEGORY = "Uncategorised"
DEFAULT_CUSTOMER = "Walk-in"
DEFAULT_PAYMENT_METHOD = "Cash"
DEFAULT_REORDER_LEVEL = Decimal("5")
TOP_CUSTOMERS_LIMIT = 10


class PaymentStatus(str, Enum):
    """Enumerate the settlement states a sale can be in."""

    PAID = "PAID"
    PARTIAL = "PARTIAL"
    UNPAID = "UNPAID"
    OVERDUE = "OVERDUE"


class RecordKind(str, Enum):
    """Enumerate the entity kinds held by the record store."""

    INVENTORY = "inventory"
    SALES = "sales"
    EXPENSES = "expenses"
    RETURNS = "returns"
    CUSTOMERS = "customers"
    SUPPLIERS = "suppliers"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the record store."""

    INVENTORY = "Inventory"
    SALES = "Sales"
    EXPENSES = "Expenses"
    RETURNS = "Returns"
    CUSTOMERS = "Customers"
    SUPPLIERS = "Suppliers"


SHEET_FOR_KIND: Mapping[RecordKind, SheetName] = {
    RecordKind.INVENTORY: SheetName.INVENTORY,
    RecordKind.SALES: SheetName.SALES,
    RecordKind.EXPENSES: SheetName.EXPENSES,
    RecordKind.RETURNS: SheetName.RETURNS,
    RecordKind.CUSTOMERS: SheetName.CUSTOMERS,
    RecordKind.SUPPLIERS: SheetName.SUPPLIERS,
}

# Column order of every sheet; the first column is always the record id.
SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.INVENTORY.value: [
        "ProductID",
        "Name",
        "Category",
        "Unit",
        "CostPrice",
        "SellPrice",
        "Stock",
        "ReorderLevel",
        "SupplierID",
        "Notes",
        "CreatedAt",
    ],
    SheetName.SALES.value: [
        "SaleID",
        "Product",
        "Category",
        "Quantity",
        "UnitPrice",
        "CostPrice",
        "Discount",
        "Total",
        "Paid",
        "Balance",
        "Status",
        "Customer",
        "Phone",
        "Method",
        "Notes",
        "DueDate",
        "Timestamp",
    ],
    SheetName.EXPENSES.value: [
        "ExpenseID",
        "Category",
        "Description",
        "Amount",
        "Method",
        "Reference",
        "Timestamp",
    ],
    SheetName.RETURNS.value: [
        "ReturnID",
        "SaleID",
        "Product",
        "Quantity",
        "Refund",
        "Reason",
        "Timestamp",
    ],
    SheetName.CUSTOMERS.value: [
        "CustomerID",
        "Name",
        "Phone",
        "Email",
        "Address",
        "Notes",
        "CreatedAt",
    ],
    SheetName.SUPPLIERS.value: [
        "SupplierID",
        "Name",
        "Contact",
        "Phone",
        "Email",
        "Address",
        "Notes",
        "CreatedAt",
    ],
}


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_CATEGORY",
    "DEFAULT_CUSTOMER",
    "DEFAULT_PAYMENT_METHOD",
    "DEFAULT_REORDER_LEVEL",
    "TOP_CUSTOMERS_LIMIT",
    "PaymentStatus",
    "RecordKind",
    "SheetName",
    "SHEET_FOR_KIND",
    "SHEET_COLUMNS",
]
