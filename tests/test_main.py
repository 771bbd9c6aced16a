"""Tests for the command-line entry point."""

from __future__ import annotations

import asyncio
from datetime import date
from pathlib import Path
from unittest.mock import patch

import pytest

from utility_billing.billing.customer import Customer
from utility_billing.config.schema import AppConfig
from utility_billing.db.engine import open_db
from utility_billing.main import build_services, main, parse_args
from utility_billing.metering.meter import MeterType


@pytest.fixture
def paths(tmp_path: Path) -> dict[str, Path]:
    defaults = tmp_path / "config.defaults.yaml"
    defaults.write_text("billing:\n  invoice_number_prefix: 'INV'\n")
    return {
        "defaults": defaults,
        "config": tmp_path / "config.yaml",
        "db": tmp_path / "billing.db",
    }


@pytest.fixture(autouse=True)
def _no_logging_setup():
    """Keep the test runner's log handlers in place."""
    with patch("utility_billing.main.setup_logging") as mock:
        yield mock


def _run(paths: dict[str, Path], *command: str) -> int:
    return main([
        "--defaults", str(paths["defaults"]),
        "--config", str(paths["config"]),
        "--db-path", str(paths["db"]),
        *command,
    ])


async def _seed(db_path: Path) -> str:
    async with open_db(db_path) as db:
        services = build_services(AppConfig(), db)
        tariff = await services.catalog.create_flat(
            "Standard", "28.62", "0.45", effective_from=date(2024, 1, 1),
        )
        customer = Customer(first_name="Rosalind", last_name="Franklin", tariff_id=tariff.tariff_id)
        await services.customers.save(customer)
        meter = await services.engine.install_meter(customer.customer_id, MeterType.ELECTRICITY)
        await services.engine.record_reading(
            customer.customer_id, meter.meter_id, date(2024, 1, 31), value="100",
        )
        return customer.customer_id


class TestParseArgs:
    def test_bill_arguments(self) -> None:
        args = parse_args([
            "bill", "--start", "2024-01-01", "--end", "2024-01-31",
            "--customer", "c1", "--customer", "c2",
        ])
        assert args.command == "bill"
        assert args.start == date(2024, 1, 1)
        assert args.end == date(2024, 1, 31)
        assert args.issue_date is None
        assert args.customers == ["c1", "c2"]

    def test_defaults(self) -> None:
        args = parse_args(["check-ledger"])
        assert args.config == "config.yaml"
        assert args.defaults == "config.defaults.yaml"
        assert args.db_path == ""

    def test_bad_date_exits(self) -> None:
        with pytest.raises(SystemExit):
            parse_args(["bill", "--start", "01/01/2024", "--end", "2024-01-31"])

    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            parse_args([])


class TestMain:
    def test_check_ledger_on_empty_database(self, paths, capsys) -> None:
        assert _run(paths, "check-ledger") == 0
        assert "ledger consistent" in capsys.readouterr().out
        assert paths["db"].exists()

    def test_bill_with_nothing_to_do(self, paths, capsys) -> None:
        assert _run(paths, "bill", "--start", "2024-01-01", "--end", "2024-01-31") == 0
        assert "0 issued" in capsys.readouterr().out

    def test_inverted_period_is_an_error(self, paths, capsys) -> None:
        assert _run(paths, "bill", "--start", "2024-02-01", "--end", "2024-01-01") == 2
        assert "error:" in capsys.readouterr().err

    def test_bill_overdue_and_check(self, paths, capsys) -> None:
        customer_id = asyncio.run(_seed(paths["db"]))

        assert _run(
            paths, "bill", "--start", "2024-01-01", "--end", "2024-01-31", "--issue-date", "2024-02-01",
        ) == 0
        out = capsys.readouterr().out
        assert f"INV-001000  {customer_id}  44.70" in out
        assert "1 issued" in out

        assert _run(paths, "overdue", "--today", "2024-03-01") == 0
        assert "1 invoices marked overdue" in capsys.readouterr().out

        assert _run(paths, "check-ledger") == 0
        assert "ledger consistent" in capsys.readouterr().out

    def test_logging_configured_from_settings(self, paths, _no_logging_setup) -> None:
        paths["config"].write_text("logging:\n  level: DEBUG\n  format: console\n")
        _run(paths, "check-ledger")
        _no_logging_setup.assert_called_once_with(level="DEBUG", fmt="console", log_file="")

    def test_show_config_reflects_overrides(self, paths, capsys) -> None:
        paths["config"].write_text("billing:\n  invoice_due_days: 30\n")
        assert _run(paths, "show-config") == 0
        out = capsys.readouterr().out
        assert '"invoice_due_days": 30' in out
        assert str(paths["db"]) in out
        assert not paths["db"].exists()
