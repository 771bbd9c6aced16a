"""Command-line entry point.

Startup sequence:
  config → logging → SQLite → repositories → services → command → close
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass
from datetime import date
from pathlib import Path

import aiosqlite

from utility_billing import __version__
from utility_billing.billing.engine import BillingEngine
from utility_billing.billing.ledger import LedgerService
from utility_billing.billing.locks import CustomerLocks
from utility_billing.config.manager import ConfigManager
from utility_billing.config.schema import AppConfig
from utility_billing.db.engine import open_db
from utility_billing.db.repository import (
    SqliteCustomerRepository,
    SqliteInvoiceRepository,
    SqlitePaymentRepository,
    SqliteReadingRepository,
    SqliteTariffRepository,
)
from utility_billing.errors import BillingError
from utility_billing.logging.context import bind_context
from utility_billing.logging.structured import setup_logging
from utility_billing.tariff.catalog import TariffCatalog

logger = logging.getLogger(__name__)


@dataclass
class Services:
    engine: BillingEngine
    ledger: LedgerService
    catalog: TariffCatalog
    customers: SqliteCustomerRepository


def build_services(config: AppConfig, db: aiosqlite.Connection) -> Services:
    """Wire repositories into the services. One lock registry is shared."""
    locks = CustomerLocks()
    customers = SqliteCustomerRepository(db)
    invoices = SqliteInvoiceRepository(db, config.billing.invoice_number_start)
    tariffs = SqliteTariffRepository(db)
    engine = BillingEngine(
        config,
        readings=SqliteReadingRepository(db),
        tariffs=tariffs,
        customers=customers,
        invoices=invoices,
        locks=locks,
    )
    ledger = LedgerService(customers, invoices, SqlitePaymentRepository(db), locks=locks)
    return Services(engine, ledger, TariffCatalog(config, tariffs), customers)


def _date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}") from exc


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="utility-billing", description="Utility billing engine")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", default="config.yaml")
    parser.add_argument("--defaults", default="config.defaults.yaml")
    parser.add_argument("--db-path", default="")
    sub = parser.add_subparsers(dest="command", required=True)

    bill = sub.add_parser("bill", help="Generate invoices for a billing period")
    bill.add_argument("--start", type=_date, required=True)
    bill.add_argument("--end", type=_date, required=True)
    bill.add_argument("--issue-date", type=_date, default=None)
    bill.add_argument("--customer", action="append", dest="customers", default=None)

    overdue = sub.add_parser("overdue", help="Mark unpaid invoices past due as overdue")
    overdue.add_argument("--today", type=_date, default=None)

    sub.add_parser("check-ledger", help="Verify every account against its invoices and payments")
    sub.add_parser("show-config", help="Print the effective configuration as JSON")
    return parser.parse_args(argv)


async def _bill(services: Services, args: argparse.Namespace) -> int:
    result = await services.engine.generate_invoices(
        args.start, args.end, customer_ids=args.customers, issue_date=args.issue_date,
    )
    for customer_id, invoice in result.invoices.items():
        print(f"{invoice.invoice_number}  {customer_id}  {invoice.total_amount}")
    for customer_id, error in result.errors.items():
        print(f"FAILED  {customer_id}  {error}", file=sys.stderr)
    print(
        f"{result.issued_count} issued, {len(result.skipped)} with nothing to bill, "
        f"{len(result.errors)} failed; total {result.total_billed}"
    )
    return 1 if result.errors else 0


async def _overdue(services: Services, args: argparse.Namespace) -> int:
    changed = await services.ledger.mark_overdue_invoices(today=args.today)
    for invoice in changed:
        print(f"{invoice.invoice_number}  {invoice.customer_id}  due {invoice.due_date}  {invoice.balance_due}")
    print(f"{len(changed)} invoices marked overdue")
    return 0


async def _check_ledger(services: Services, args: argparse.Namespace) -> int:
    failures = 0
    for customer_id in await services.customers.list_ids():
        try:
            await services.ledger.verify_ledger(customer_id)
        except BillingError as exc:
            failures += 1
            print(f"INCONSISTENT  {customer_id}  {exc.message}", file=sys.stderr)
    print("ledger consistent" if not failures else f"{failures} inconsistent accounts")
    return 1 if failures else 0


_COMMANDS = {
    "bill": _bill,
    "overdue": _overdue,
    "check-ledger": _check_ledger,
}


async def run(config: AppConfig, args: argparse.Namespace) -> int:
    async with open_db(config.db.path) as db:
        services = build_services(config, db)
        return await _COMMANDS[args.command](services, args)


def main(argv: list[str] | None = None) -> int:
    """Entry point for the ``utility-billing`` command."""
    args = parse_args(argv)
    manager = ConfigManager(defaults_path=Path(args.defaults), user_path=Path(args.config))
    config = manager.load()
    if args.db_path:
        config.db.path = args.db_path

    setup_logging(
        level=config.logging.level,
        fmt=config.logging.format,
        log_file=config.logging.file,
    )
    bind_context(command=args.command)
    logger.info("Utility Billing v%s: %s", __version__, args.command)
    if args.command == "show-config":
        print(manager.to_json())
        return 0

    try:
        return asyncio.run(run(config, args))
    except BillingError as exc:
        logger.error("Command %s failed: %s", args.command, exc)
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
