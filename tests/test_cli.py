"""Unit tests describing the CLI presentation layer contract."""

from __future__ import annotations

import argparse
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Iterable

import openpyxl
import pytest

from biztrack import cli, core_logic


WRITE_COMMANDS = {
    "add-product",
    "adjust-stock",
    "sale",
    "pay",
    "expense",
    "return",
    "add-supplier",
    "add-customer",
    "delete",
}

READ_COMMANDS = {
    "stock",
    "report",
    "dashboard",
    "debts",
    "export",
}


def _parse(argv: list[str]) -> argparse.Namespace:
    parser = cli.build_parser()
    cli.configure_subcommands(parser)
    return parser.parse_args(argv)


def _stub_parser(command: str) -> argparse.ArgumentParser:
    """Create a stub parser that always returns the supplied command."""

    class _Stub(argparse.ArgumentParser):
        def parse_args(self, args: Iterable[str] | None = None, namespace: argparse.Namespace | None = None):  # type: ignore[override]
            return argparse.Namespace(command=command, config=None)

    return _Stub(prog="test")


# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def test_build_parser_sets_program_metadata():
    """build_parser should set user-facing program metadata."""

    parser = cli.build_parser()
    assert parser.prog == "biztrack-cli"
    assert "BizTrack" in (parser.description or "")


def test_configure_subcommands_registers_every_command(cli_parser):
    """configure_subcommands should wire read and write sub-commands."""

    command_table = cli.configure_subcommands(cli_parser)

    assert set(command_table) == WRITE_COMMANDS | READ_COMMANDS


def test_write_commands_are_flagged_as_mutating(subparsers_action):
    """Only write commands trigger a workbook save."""

    write_specs = cli.register_write_commands(subparsers_action)
    read_specs = cli.register_read_commands(subparsers_action)

    assert set(write_specs) == WRITE_COMMANDS
    assert set(read_specs) == READ_COMMANDS
    assert all(spec.mutates for spec in write_specs.values())
    assert not any(spec.mutates for spec in read_specs.values())


def test_build_command_table_detects_duplicate_commands():
    """build_command_table should guard against duplicate command names."""

    specs = [
        cli.CommandSpec("alpha", "A", lambda s: s.add_parser("alpha"), lambda c, a: 0),
        cli.CommandSpec("alpha", "Duplicate", lambda s: s.add_parser("alpha"), lambda c, a: 0),
    ]
    with pytest.raises(ValueError):
        cli.build_command_table(specs)


def test_build_command_table_indexes_specs(command_spec_iterable):
    table = cli.build_command_table(command_spec_iterable)
    assert set(table) == {"alpha", "beta", "gamma"}


def test_dispatch_command_handles_unknown_commands(context):
    """dispatch_command should raise a clear error for unknown commands."""

    with pytest.raises(KeyError):
        cli.dispatch_command(context, argparse.Namespace(command="unknown"), {})


# ---------------------------------------------------------------------------
# Argument parsing and translation
# ---------------------------------------------------------------------------


def test_sale_arguments_are_parsed_as_decimals_and_dates():
    """Numeric and date options are converted by argparse."""

    args = _parse(
        [
            "sale", "--product", "Sugar", "--quantity", "2", "--unit-price", "4500",
            "--paid", "5000", "--discount", "5", "--due-date", "2024-04-01", "--customer", "Amina",
        ]
    )

    assert args.quantity == Decimal("2")
    assert args.paid == Decimal("5000")
    assert args.discount == Decimal("5")
    assert args.due_date == date(2024, 4, 1)


@pytest.mark.parametrize("value", ["abc", "NaN", "inf"])
def test_invalid_numbers_are_rejected_by_the_parser(value):
    """Bad numbers exit through argparse's usage error."""

    with pytest.raises(SystemExit) as excinfo:
        _parse(["pay", "--sale-id", "SL-1", "--amount", value])
    assert excinfo.value.code == 2


def test_delete_kind_is_restricted_to_record_kinds():
    with pytest.raises(SystemExit):
        _parse(["delete", "--kind", "planets", "--id", "X"])


def test_translate_sale_defaults_paid_to_discounted_total():
    """Omitting --paid means the sale was paid in full."""

    args = _parse(["sale", "--product", "Soap", "--quantity", "3", "--unit-price", "100", "--discount", "10"])

    command = cli.translate_sale(args)

    assert command.paid == Decimal("270.00")
    assert command.customer is None


def test_translate_add_product_builds_command():
    args = _parse(["add-product", "--name", "Rice", "--cost-price", "3", "--sell-price", "4", "--reorder-level", "0"])

    command = cli.translate_add_product(args)

    assert command == core_logic.ProductCommand(
        name="Rice",
        cost_price=Decimal("3"),
        sell_price=Decimal("4"),
        stock=Decimal("0"),
        reorder_level=Decimal("0"),
    )


# ---------------------------------------------------------------------------
# Executors against a real workbook
# ---------------------------------------------------------------------------


def test_run_stock_report_lists_products(runtime_context, capsys):
    """The stock command prints each product with its level."""

    core_logic.add_product(
        runtime_context,
        core_logic.ProductCommand(name="Rice", cost_price=Decimal("3"), sell_price=Decimal("4"), stock=Decimal("9")),
    )

    assert cli.run_stock_report(runtime_context, argparse.Namespace()) == 0
    assert "Rice" in capsys.readouterr().out


def test_run_debts_report_with_no_debt(runtime_context, capsys):
    assert cli.run_debts_report(runtime_context, argparse.Namespace()) == 0
    assert "No outstanding balances." in capsys.readouterr().out


def test_run_pl_report_can_export(runtime_context, tmp_path, capsys):
    """report --export writes a report workbook."""

    args = _parse(["report", "--from", "2024-03-01", "--to", "2024-03-31", "--export", str(tmp_path / "r.xlsx")])

    assert cli.run_pl_report(runtime_context, args) == 0

    output = capsys.readouterr().out
    assert "Revenue" in output
    workbook = openpyxl.load_workbook(tmp_path / "r.xlsx")
    assert workbook["P&L Summary"]["B2"].value == "2024-03-01 to 2024-03-31"


def test_run_data_export_writes_all_sheets(runtime_context, tmp_path):
    args = _parse(["export", "--output", str(tmp_path / "backup.xlsx")])

    assert cli.run_data_export(runtime_context, args) == 0

    workbook = openpyxl.load_workbook(tmp_path / "backup.xlsx")
    assert "Inventory" in workbook.sheetnames


# ---------------------------------------------------------------------------
# Error handling and persistence
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "error, expected",
    [
        (core_logic.BusinessRuleViolation("invalid"), 2),
        (core_logic.MissingReferenceError("missing id"), 2),
        (FileNotFoundError("missing"), 3),
        (ValueError("bad value"), 1),
    ],
)
def test_handle_cli_error_returns_exit_code(error: Exception, expected: int, caplog: pytest.LogCaptureFixture):
    """handle_cli_error should convert exceptions into exit codes."""

    caplog.set_level("ERROR")
    assert cli.handle_cli_error(error) == expected
    assert any(str(error) in record.getMessage() for record in caplog.records)


def test_persist_workbook_wraps_permission_errors(context, monkeypatch):
    """A locked workbook surfaces as RuntimeError."""

    def fake_persist(_: core_logic.RuntimeContext) -> None:
        raise PermissionError("file is open in Excel")

    monkeypatch.setattr(cli.core_logic, "persist_context", fake_persist)
    with pytest.raises(RuntimeError):
        cli.persist_workbook(context)


@pytest.mark.parametrize(("mutates", "expected_saves"), [(True, 1), (False, 0)])
def test_main_persists_only_after_write_commands(monkeypatch, runtime_context, mutates, expected_saves):
    """main should save the workbook after write commands only."""

    command_table = {"cmd": cli.CommandSpec("cmd", "help", lambda _: None, lambda *_: 0, mutates=mutates)}
    monkeypatch.setattr(cli, "build_parser", lambda: _stub_parser("cmd"))
    monkeypatch.setattr(cli, "configure_subcommands", lambda _: command_table)
    monkeypatch.setattr(cli, "load_runtime_context", lambda path=None: runtime_context)
    saves = []
    monkeypatch.setattr(cli, "persist_workbook", saves.append)

    assert cli.main(["cmd"]) == 0
    assert len(saves) == expected_saves


def test_main_handles_bll_errors(monkeypatch, runtime_context):
    """main should surface business rule violations as non-zero exits without saving."""

    def fail(*_: object) -> int:
        raise core_logic.BusinessRuleViolation("invalid")

    command_table = {"cmd": cli.CommandSpec("cmd", "help", lambda _: None, fail, mutates=True)}
    monkeypatch.setattr(cli, "build_parser", lambda: _stub_parser("cmd"))
    monkeypatch.setattr(cli, "configure_subcommands", lambda _: command_table)
    monkeypatch.setattr(cli, "load_runtime_context", lambda path=None: runtime_context)
    monkeypatch.setattr(cli, "persist_workbook", lambda _: pytest.fail("should not persist"))

    assert cli.main(["cmd"]) == 2


def test_main_missing_config_returns_three(tmp_path):
    """A missing configuration file maps to exit code 3."""

    assert cli.main(["--config", str(tmp_path / "absent.ini"), "stock"]) == 3


def test_main_rejects_schema_mismatch(config_factory):
    """An incompatible workbook schema is refused before any command runs."""

    bundle = config_factory(schema_version="0.1.0")

    assert cli.main(["--config", str(bundle.config_path), "stock"]) == 1


def test_main_write_command_persists_to_disk(config_factory, capsys):
    """A real write through main lands in the workbook on disk."""

    bundle = config_factory()

    exit_code = cli.main(
        ["--config", str(bundle.config_path), "add-product", "--name", "Sugar", "--cost-price", "3500",
         "--sell-price", "4500", "--stock", "12"]
    )

    assert exit_code == 0
    assert "Added product" in capsys.readouterr().out
    rows = list(openpyxl.load_workbook(bundle.workbook_path)["Inventory"].iter_rows(min_row=2, values_only=True))
    assert rows[0][1] == "Sugar"
    assert Path(bundle.workbook_path).exists()
