"""Unit tests for the dashboard KPI aggregator."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from biztrack import pl_engine
from biztrack.data_manager import ExpenseRow, InventoryRow, SaleRow


NOW = datetime(2024, 3, 15, 12, 0, tzinfo=UTC)


def make_sale(sale_id: str = "SL-1", **overrides) -> SaleRow:
    values = dict(
        quantity=Decimal("1"),
        cost_price=Decimal("60"),
        total=Decimal("100"),
        paid=Decimal("100"),
        balance=Decimal("0"),
        status="PAID",
        timestamp_iso="2024-03-15T09:30:00+00:00",
    )
    values.update(overrides)
    return SaleRow(sale_id=sale_id, **values)


def test_today_figures_only_include_sales_from_evaluation_day():
    """today_revenue and today_profit are restricted to the calendar day of now."""

    sales = [
        make_sale("SL-1", total=Decimal("100"), cost_price=Decimal("60")),
        make_sale("SL-2", total=Decimal("250"), cost_price=Decimal("100"), timestamp_iso="2024-03-14T09:30:00+00:00"),
    ]

    kpis = pl_engine.compute_dashboard_kpis(sales, now=NOW)

    assert kpis.today_revenue == Decimal("100")
    assert kpis.today_profit == Decimal("40")
    assert kpis.total_revenue == Decimal("350")


def test_today_uses_reference_time_zone_for_sales_and_clock():
    """A sale late on the 14th UTC is "today" when the business runs on UTC+3."""

    sale = make_sale(timestamp_iso="2024-03-14T22:30:00Z")
    kampala = ZoneInfo("Africa/Kampala")

    in_utc = pl_engine.compute_dashboard_kpis([sale], now=datetime(2024, 3, 15, 8, 0, tzinfo=UTC))
    in_kampala = pl_engine.compute_dashboard_kpis(
        [sale],
        now=datetime(2024, 3, 15, 8, 0, tzinfo=UTC),
        time_zone=kampala,
    )

    assert in_utc.today_revenue == Decimal("0")
    assert in_kampala.today_revenue == Decimal("100")


def test_all_time_totals_cover_every_sale():
    """Revenue, collected, and balance sums do not filter by day or status."""

    sales = [
        make_sale("SL-1", total=Decimal("100"), paid=Decimal("100")),
        make_sale("SL-2", total=Decimal("300"), paid=Decimal("120"), balance=Decimal("180"), status="PARTIAL",
                  timestamp_iso="2023-12-01T10:00:00"),
    ]

    kpis = pl_engine.compute_dashboard_kpis(sales, now=NOW)

    assert kpis.total_revenue == Decimal("400")
    assert kpis.total_collected == Decimal("220")
    assert kpis.total_balance == Decimal("180")


def test_profit_and_margins_match_report_formulas():
    """Dashboard gross/net figures agree with the P&L aggregator for the same records."""

    sales = [make_sale(total=Decimal("1000"), quantity=Decimal("2"), cost_price=Decimal("200"))]
    expenses = [ExpenseRow("EXP-1", category="Rent", amount=Decimal("150"))]

    kpis = pl_engine.compute_dashboard_kpis(sales, expenses, now=NOW)
    report = pl_engine.compute_pl(sales, expenses, now=NOW)

    assert kpis.gross_profit == report.gross_profit == Decimal("600")
    assert kpis.net_profit == report.net_profit == Decimal("450")
    assert (kpis.gross_margin, kpis.net_margin) == ("60.0", "45.0")
    assert kpis.total_expenses == Decimal("150")


def test_overdue_count_requires_positive_balance():
    """Only overdue sales that still owe money are counted."""

    sales = [
        make_sale("SL-1", status="UNPAID", paid=Decimal("0"), balance=Decimal("100"), due_date="2024-03-01"),
        make_sale("SL-2", status="PARTIAL", balance=Decimal("0"), due_date="2024-03-01"),
        make_sale("SL-3", status="UNPAID", balance=Decimal("100"), due_date="2024-04-01"),
        make_sale("SL-4", status="PAID", balance=Decimal("100"), due_date="2024-03-01"),
    ]

    kpis = pl_engine.compute_dashboard_kpis(sales, now=NOW)

    assert kpis.overdue_count == 1


def test_low_and_out_of_stock_counts():
    """Stock at or below the reorder level is low; exactly zero is out of stock."""

    inventory = [
        InventoryRow("PRD-1", stock=Decimal("3"), reorder_level=Decimal("5")),
        InventoryRow("PRD-2", stock=Decimal("5"), reorder_level=Decimal("5")),
        InventoryRow("PRD-3", stock=Decimal("6"), reorder_level=Decimal("5")),
        InventoryRow("PRD-4", stock=Decimal("0"), reorder_level=Decimal("2")),
    ]

    kpis = pl_engine.compute_dashboard_kpis(inventory=inventory, now=NOW)

    assert kpis.low_stock_count == 3
    assert kpis.out_of_stock_count == 1


def test_missing_reorder_level_defaults_to_five_but_zero_is_honoured():
    """A blank reorder level means 5, while an explicit 0 stays 0."""

    inventory = [
        InventoryRow("PRD-1", stock=Decimal("4"), reorder_level=None),
        InventoryRow("PRD-2", stock=Decimal("4"), reorder_level=Decimal("0")),
    ]

    kpis = pl_engine.compute_dashboard_kpis(inventory=inventory, now=NOW)

    assert kpis.low_stock_count == 1


def test_missing_stock_counts_as_out_of_stock():
    """A product without a stock figure is treated as empty."""

    kpis = pl_engine.compute_dashboard_kpis(inventory=[InventoryRow("PRD-1", stock=None)], now=NOW)

    assert kpis.out_of_stock_count == 1
    assert kpis.low_stock_count == 1


def test_empty_snapshot_yields_zeroes():
    """No data at all should produce zero counts and "0.0" margins."""

    kpis = pl_engine.compute_dashboard_kpis(now=NOW)

    assert kpis.today_revenue == kpis.total_revenue == kpis.net_profit == Decimal("0")
    assert kpis.overdue_count == kpis.low_stock_count == kpis.out_of_stock_count == 0
    assert (kpis.gross_margin, kpis.net_margin) == ("0.0", "0.0")


def test_dashboard_rejects_non_sequence_inventory():
    """A mapping in place of the inventory list fails fast."""

    with pytest.raises(TypeError):
        pl_engine.compute_dashboard_kpis(inventory={"PRD-1": 3}, now=NOW)


def test_dashboard_surfaces_unknown_status():
    """Unknown statuses raise the same integrity error as the P&L report."""

    sale = make_sale(status="VOID", due_date="2024-03-01", balance=Decimal("5"))

    with pytest.raises(pl_engine.DataIntegrityError):
        pl_engine.compute_dashboard_kpis([sale], now=NOW)
