"""Tests for the SQLite engine, migrations and repositories."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import aiosqlite
import pytest

from utility_billing.billing.customer import Customer
from utility_billing.billing.engine import BillingEngine
from utility_billing.billing.invoice import InvoiceStatus
from utility_billing.billing.ledger import LedgerService
from utility_billing.billing.payment import Payment, PaymentStatus
from utility_billing.config.schema import AppConfig
from utility_billing.db.engine import check_integrity, get_db, open_db
from utility_billing.db.migrations import (
    EXPECTED_TABLES,
    missing_tables,
    run_migrations,
    schema_version,
)
from utility_billing.db.models import SCHEMA_VERSION
from utility_billing.db.repository import (
    SqliteCustomerRepository,
    SqliteInvoiceRepository,
    SqlitePaymentRepository,
    SqliteReadingRepository,
    SqliteTariffRepository,
)
from utility_billing.errors import BillingError, ErrorKind
from utility_billing.metering.meter import Meter, MeterType
from utility_billing.metering.reading import Reading
from utility_billing.tariff.base import DayNightTariff, GasTariff

D = Decimal
JAN_1 = date(2024, 1, 1)
JAN_31 = date(2024, 1, 31)


@pytest.mark.asyncio
class TestEngine:
    async def test_init_creates_schema(self, db: aiosqlite.Connection) -> None:
        async with db.execute("SELECT version FROM schema_version WHERE id = 1") as cursor:
            row = await cursor.fetchone()
        assert row[0] == SCHEMA_VERSION
        assert await check_integrity(db)
        assert await get_db() is db

    async def test_migrations_are_idempotent(self, db: aiosqlite.Connection) -> None:
        await run_migrations(db)
        async with db.execute("SELECT COUNT(*) FROM schema_version") as cursor:
            row = await cursor.fetchone()
        assert row[0] == 1

    async def test_dropped_table_is_recreated(self, db: aiosqlite.Connection) -> None:
        await db.execute("DROP TABLE payments")
        await db.commit()
        assert await missing_tables(db) == {"payments"}
        assert await run_migrations(db) == SCHEMA_VERSION
        assert await missing_tables(db) == set()

    async def test_expected_tables(self) -> None:
        assert {"customers", "tariffs", "meter_readings", "invoices", "payments"} <= EXPECTED_TABLES

    async def test_newer_schema_refused(self, db: aiosqlite.Connection) -> None:
        await db.execute("UPDATE schema_version SET version = ? WHERE id = 1", (SCHEMA_VERSION + 1,))
        await db.commit()
        with pytest.raises(RuntimeError):
            await run_migrations(db)
        assert await schema_version(db) == SCHEMA_VERSION + 1

    async def test_open_db_closes_on_exit(self, tmp_path) -> None:
        async with open_db(tmp_path / "scoped.db") as db:
            assert await get_db() is db
        with pytest.raises(RuntimeError):
            await get_db()


# ── Repositories ────────────────────────────────────────────


@pytest.mark.asyncio
class TestCustomerRepository:
    async def test_round_trip_with_meters(self, db: aiosqlite.Connection) -> None:
        repo = SqliteCustomerRepository(db)
        customer = Customer(first_name="Ada", last_name="Lovelace")
        customer.add_meter(Meter(meter_type=MeterType.GAS, imperial=True, current_reading=D("12.5")))
        await repo.save(customer)

        loaded = await repo.get(customer.customer_id)
        assert loaded == customer
        assert loaded.meters[0].imperial
        assert await repo.get("missing") is None

    async def test_balance_moves_only_through_adjustments(self, db: aiosqlite.Connection) -> None:
        repo = SqliteCustomerRepository(db)
        customer = Customer()
        await repo.save(customer)

        assert await repo.debit_account(customer.customer_id, D("44.70")) == D("-44.70")
        assert await repo.credit_account(customer.customer_id, D("20")) == D("-24.70")

        stale = await repo.get(customer.customer_id)
        stale.account_balance = D("1000")
        stale.first_name = "Renamed"
        await repo.update(stale)

        loaded = await repo.get(customer.customer_id)
        assert loaded.first_name == "Renamed"
        assert loaded.account_balance == D("-24.70")

    async def test_adjustment_errors(self, db: aiosqlite.Connection) -> None:
        repo = SqliteCustomerRepository(db)
        with pytest.raises(BillingError) as exc_info:
            await repo.credit_account("missing", D("1"))
        assert exc_info.value.kind == ErrorKind.CUSTOMER_NOT_FOUND
        with pytest.raises(BillingError) as exc_info:
            await repo.debit_account("missing", D("0"))
        assert exc_info.value.kind == ErrorKind.LEDGER_INCONSISTENCY

    async def test_update_missing_row(self, db: aiosqlite.Connection) -> None:
        with pytest.raises(BillingError) as exc_info:
            await SqliteCustomerRepository(db).update(Customer())
        assert exc_info.value.kind == ErrorKind.PERSISTENCE_FAILURE

    async def test_duplicate_save_is_persistence_failure(self, db: aiosqlite.Connection) -> None:
        repo = SqliteCustomerRepository(db)
        customer = Customer()
        await repo.save(customer)
        with pytest.raises(BillingError) as exc_info:
            await repo.save(customer)
        assert exc_info.value.kind == ErrorKind.PERSISTENCE_FAILURE
        assert isinstance(exc_info.value.__cause__, aiosqlite.Error)

    async def test_list_ids(self, db: aiosqlite.Connection) -> None:
        repo = SqliteCustomerRepository(db)
        first, second = Customer(), Customer()
        await repo.save(first)
        await repo.save(second)
        assert set(await repo.list_ids()) == {first.customer_id, second.customer_id}


@pytest.mark.asyncio
class TestReadingRepository:
    async def test_find_in_date_order(self, db: aiosqlite.Connection) -> None:
        repo = SqliteReadingRepository(db)
        late = Reading(meter_id="m1", customer_id="c1", reading_date=JAN_31, value=D("200"))
        early = Reading(meter_id="m1", customer_id="c1", reading_date=date(2024, 1, 10), value=D("100"))
        other = Reading(meter_id="m2", customer_id="c1", reading_date=date(2024, 1, 15), value=D("5"))
        outside = Reading(meter_id="m1", customer_id="c1", reading_date=date(2024, 2, 1), value=D("300"))
        for reading in (late, early, other, outside):
            await repo.save(reading)

        assert await repo.find("m1", JAN_1, JAN_31) == [early, late]
        assert len(await repo.find_by_meter("m1")) == 3

    async def test_update_marks_billed(self, db: aiosqlite.Connection) -> None:
        repo = SqliteReadingRepository(db)
        reading = Reading(meter_id="m1", customer_id="c1", reading_date=JAN_31, value=D("200"))
        await repo.save(reading)
        reading.billed = True
        reading.invoice_id = "inv-1"
        await repo.update(reading)
        [loaded] = await repo.find_by_meter("m1")
        assert loaded.billed
        assert loaded.invoice_id == "inv-1"

    async def test_update_missing_row(self, db: aiosqlite.Connection) -> None:
        reading = Reading(meter_id="m1", customer_id="c1", reading_date=JAN_31)
        with pytest.raises(BillingError) as exc_info:
            await SqliteReadingRepository(db).update(reading)
        assert exc_info.value.kind == ErrorKind.PERSISTENCE_FAILURE


@pytest.mark.asyncio
class TestTariffRepository:
    async def test_variant_restored(self, db: aiosqlite.Connection) -> None:
        repo = SqliteTariffRepository(db)
        gas = GasTariff(name="Gas", rate_pence=D("7.42"), standing_charge=D("0.3"), effective_from=JAN_1)
        e7 = DayNightTariff(
            name="E7", day_rate_pence=D("30"), night_rate_pence=D("15"),
            standing_charge=D("0.5"), effective_from=JAN_1,
        )
        await repo.save(gas)
        await repo.save(e7)

        loaded_gas = await repo.find_by_id(gas.tariff_id)
        loaded_e7 = await repo.find_by_id(e7.tariff_id)
        assert isinstance(loaded_gas, GasTariff)
        assert loaded_gas.calorific_value == D("39.4")
        assert isinstance(loaded_e7, DayNightTariff)
        assert loaded_e7.night_rate_pence == D("15")

    async def test_update(self, db: aiosqlite.Connection) -> None:
        repo = SqliteTariffRepository(db)
        gas = GasTariff(name="Gas", rate_pence=D("7.42"), standing_charge=D("0.3"), effective_from=JAN_1)
        await repo.save(gas)
        gas.active = False
        await repo.update(gas)
        assert not (await repo.find_by_id(gas.tariff_id)).active


@pytest.mark.asyncio
class TestInvoiceAndPaymentRepositories:
    async def test_number_sequence_starts_at_configured_value(self, db: aiosqlite.Connection) -> None:
        repo = SqliteInvoiceRepository(db, number_start=5000)
        assert [await repo.next_number() for _ in range(3)] == [5000, 5001, 5002]
        # The stored sequence wins over a different start value
        assert await SqliteInvoiceRepository(db, number_start=1).next_number() == 5003

    async def test_payment_round_trip(self, db: aiosqlite.Connection) -> None:
        repo = SqlitePaymentRepository(db)
        payment = Payment(customer_id="c1", amount=D("12.34"), payment_date=JAN_31)
        await repo.save(payment)
        payment.status = PaymentStatus.REFUNDED
        await repo.update(payment)
        loaded = await repo.get(payment.payment_id)
        assert loaded.status == PaymentStatus.REFUNDED
        assert loaded.amount == D("12.34")
        assert await repo.find_by_customer("c1") == [loaded]
        assert await repo.get("missing") is None


# ── End to end ──────────────────────────────────────────────


def _services(db: aiosqlite.Connection) -> tuple[BillingEngine, LedgerService, SqliteCustomerRepository]:
    config = AppConfig()
    customers = SqliteCustomerRepository(db)
    invoices = SqliteInvoiceRepository(db, config.billing.invoice_number_start)
    engine = BillingEngine(
        config, SqliteReadingRepository(db), SqliteTariffRepository(db), customers, invoices,
    )
    ledger = LedgerService(customers, invoices, SqlitePaymentRepository(db), locks=engine.locks)
    return engine, ledger, customers


@pytest.mark.asyncio
class TestEndToEnd:
    async def test_bill_pay_and_verify(self, db: aiosqlite.Connection) -> None:
        engine, ledger, customers = _services(db)
        tariffs = SqliteTariffRepository(db)
        tariff = GasTariff(name="Gas", rate_pence=D("7.42"), standing_charge=D("0.30"), effective_from=JAN_1)
        await tariffs.save(tariff)
        customer = Customer(first_name="Mary", last_name="Somerville", tariff_id=tariff.tariff_id)
        await customers.save(customer)

        meter = await engine.install_meter(customer.customer_id, MeterType.GAS, imperial=True)
        await engine.record_reading(customer.customer_id, meter.meter_id, JAN_31, value="100")
        invoice = await engine.generate_invoice(customer.customer_id, JAN_1, JAN_31, date(2024, 2, 1))

        # 235.02 units + 9.30 standing, 5% VAT
        assert invoice.unit_cost == D("235.02")
        assert invoice.total_amount == D("256.54")
        assert invoice.invoice_number == "INV-001000"

        await ledger.record_payment(invoice.invoice_id, "100")
        assert await ledger.verify_ledger(customer.customer_id) == D("-156.54")

        with pytest.raises(BillingError) as exc_info:
            await engine.generate_invoice(customer.customer_id, JAN_1, JAN_31)
        assert exc_info.value.kind == ErrorKind.NOTHING_TO_BILL

        cancelled = await engine.cancel_invoice(invoice.invoice_id)
        assert cancelled.status == InvoiceStatus.CANCELLED
        assert await ledger.verify_ledger(customer.customer_id) == D("100")
