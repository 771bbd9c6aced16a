"""SQLite implementations of the repository protocols.

Every ``aiosqlite.Error`` surfaces as a ``PERSISTENCE_FAILURE``. The
customer balance column is the source of truth for the balance and is only
written through ``credit_account``/``debit_account``.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Iterator

import aiosqlite

from utility_billing.billing.customer import Customer
from utility_billing.billing.invoice import Invoice
from utility_billing.billing.payment import Payment
from utility_billing.errors import (
    ErrorKind,
    ledger_inconsistency,
    not_found,
    persistence_failure,
)
from utility_billing.metering.reading import Reading
from utility_billing.tariff.base import TARIFF_ADAPTER, Tariff

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@contextlib.contextmanager
def _storage(operation: str, entity_id: str | None = None) -> Iterator[None]:
    try:
        yield
    except aiosqlite.Error as exc:
        logger.error("SQLite %s failed for %s: %s", operation, entity_id, exc)
        raise persistence_failure(operation, entity_id) from exc


async def _fetch_all(db: aiosqlite.Connection, sql: str, params: tuple = ()) -> list[aiosqlite.Row]:
    async with db.execute(sql, params) as cursor:
        return list(await cursor.fetchall())


async def _fetch_one(db: aiosqlite.Connection, sql: str, params: tuple = ()) -> aiosqlite.Row | None:
    async with db.execute(sql, params) as cursor:
        return await cursor.fetchone()


async def _execute(db: aiosqlite.Connection, sql: str, params: tuple) -> int:
    """Run one write and commit it. Returns the number of rows changed."""
    async with db.execute(sql, params) as cursor:
        changed = cursor.rowcount
    await db.commit()
    return changed


# ── Readings ────────────────────────────────────────────────


class SqliteReadingRepository:
    def __init__(self, db: aiosqlite.Connection) -> None:
        self.db = db

    async def find(self, meter_id: str, start: date, end: date) -> list[Reading]:
        with _storage("find readings", meter_id):
            rows = await _fetch_all(
                self.db,
                """SELECT data_json FROM meter_readings
                   WHERE meter_id = ? AND reading_date >= ? AND reading_date <= ?
                   ORDER BY reading_date, recorded_at""",
                (meter_id, start.isoformat(), end.isoformat()),
            )
        return [Reading.model_validate_json(r["data_json"]) for r in rows]

    async def find_by_meter(self, meter_id: str) -> list[Reading]:
        with _storage("find readings", meter_id):
            rows = await _fetch_all(
                self.db,
                """SELECT data_json FROM meter_readings WHERE meter_id = ?
                   ORDER BY reading_date, recorded_at""",
                (meter_id,),
            )
        return [Reading.model_validate_json(r["data_json"]) for r in rows]

    async def save(self, reading: Reading) -> None:
        with _storage("save reading", reading.reading_id):
            await _execute(
                self.db,
                """INSERT INTO meter_readings
                   (reading_id, meter_id, customer_id, reading_date, billed, invoice_id,
                    recorded_at, data_json)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    reading.reading_id, reading.meter_id, reading.customer_id,
                    reading.reading_date.isoformat(), 1 if reading.billed else 0,
                    reading.invoice_id, reading.recorded_at.isoformat(),
                    reading.model_dump_json(),
                ),
            )

    async def update(self, reading: Reading) -> None:
        with _storage("update reading", reading.reading_id):
            changed = await _execute(
                self.db,
                """UPDATE meter_readings SET billed = ?, invoice_id = ?, data_json = ?
                   WHERE reading_id = ?""",
                (
                    1 if reading.billed else 0, reading.invoice_id,
                    reading.model_dump_json(), reading.reading_id,
                ),
            )
        if changed == 0:
            raise persistence_failure("update reading", reading.reading_id)


# ── Tariffs ─────────────────────────────────────────────────


class SqliteTariffRepository:
    def __init__(self, db: aiosqlite.Connection) -> None:
        self.db = db

    async def find_by_id(self, tariff_id: str) -> Tariff | None:
        with _storage("get tariff", tariff_id):
            row = await _fetch_one(
                self.db, "SELECT data_json FROM tariffs WHERE tariff_id = ?", (tariff_id,),
            )
        return TARIFF_ADAPTER.validate_json(row["data_json"]) if row else None

    def _params(self, tariff: Tariff) -> tuple:
        return (
            tariff.kind.value, tariff.meter_type.value, 1 if tariff.active else 0,
            tariff.effective_from.isoformat(),
            tariff.effective_to.isoformat() if tariff.effective_to else None,
            tariff.model_dump_json(),
        )

    async def save(self, tariff: Tariff) -> None:
        with _storage("save tariff", tariff.tariff_id):
            await _execute(
                self.db,
                """INSERT INTO tariffs
                   (kind, meter_type, active, effective_from, effective_to, data_json, tariff_id)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (*self._params(tariff), tariff.tariff_id),
            )

    async def update(self, tariff: Tariff) -> None:
        with _storage("update tariff", tariff.tariff_id):
            changed = await _execute(
                self.db,
                """UPDATE tariffs SET kind = ?, meter_type = ?, active = ?, effective_from = ?,
                   effective_to = ?, data_json = ? WHERE tariff_id = ?""",
                (*self._params(tariff), tariff.tariff_id),
            )
        if changed == 0:
            raise persistence_failure("update tariff", tariff.tariff_id)


# ── Customers ───────────────────────────────────────────────


class SqliteCustomerRepository:
    def __init__(self, db: aiosqlite.Connection) -> None:
        self.db = db
        self._balance_lock = asyncio.Lock()

    async def get(self, customer_id: str) -> Customer | None:
        with _storage("get customer", customer_id):
            row = await _fetch_one(
                self.db,
                "SELECT data_json, account_balance FROM customers WHERE customer_id = ?",
                (customer_id,),
            )
        if row is None:
            return None
        customer = Customer.model_validate_json(row["data_json"])
        customer.account_balance = Decimal(row["account_balance"])
        return customer

    async def save(self, customer: Customer) -> None:
        with _storage("save customer", customer.customer_id):
            await _execute(
                self.db,
                """INSERT INTO customers
                   (customer_id, account_number, tariff_id, account_balance, active,
                    data_json, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    customer.customer_id, customer.account_number, customer.tariff_id,
                    str(customer.account_balance), 1 if customer.active else 0,
                    customer.model_dump_json(), _now(),
                ),
            )

    async def update(self, customer: Customer) -> None:
        """Store everything but the balance."""
        with _storage("update customer", customer.customer_id):
            changed = await _execute(
                self.db,
                """UPDATE customers SET account_number = ?, tariff_id = ?, active = ?,
                   data_json = ?, updated_at = ? WHERE customer_id = ?""",
                (
                    customer.account_number, customer.tariff_id, 1 if customer.active else 0,
                    customer.model_dump_json(), _now(), customer.customer_id,
                ),
            )
        if changed == 0:
            raise persistence_failure("update customer", customer.customer_id)

    async def credit_account(self, customer_id: str, amount: Decimal) -> Decimal:
        return await self._adjust(customer_id, amount, credit=True)

    async def debit_account(self, customer_id: str, amount: Decimal) -> Decimal:
        return await self._adjust(customer_id, amount, credit=False)

    async def _adjust(self, customer_id: str, amount: Decimal, credit: bool) -> Decimal:
        if amount <= 0:
            raise ledger_inconsistency(
                f"Balance adjustment must be positive, got {amount}",
                customer_id=customer_id, amount=amount,
            )
        delta = amount if credit else -amount
        async with self._balance_lock:
            with _storage("adjust balance", customer_id):
                row = await _fetch_one(
                    self.db,
                    "SELECT account_balance FROM customers WHERE customer_id = ?",
                    (customer_id,),
                )
                if row is None:
                    raise not_found(ErrorKind.CUSTOMER_NOT_FOUND, "Customer", customer_id)
                balance = Decimal(row["account_balance"]) + delta
                await _execute(
                    self.db,
                    "UPDATE customers SET account_balance = ?, updated_at = ? WHERE customer_id = ?",
                    (str(balance), _now(), customer_id),
                )
        return balance

    async def list_ids(self) -> list[str]:
        with _storage("list customers"):
            rows = await _fetch_all(self.db, "SELECT customer_id FROM customers ORDER BY account_number")
        return [r["customer_id"] for r in rows]


# ── Invoices ────────────────────────────────────────────────


class SqliteInvoiceRepository:
    def __init__(self, db: aiosqlite.Connection, number_start: int = 1000) -> None:
        self.db = db
        self._number_start = number_start
        self._number_lock = asyncio.Lock()

    async def get(self, invoice_id: str) -> Invoice | None:
        with _storage("get invoice", invoice_id):
            row = await _fetch_one(
                self.db, "SELECT data_json FROM invoices WHERE invoice_id = ?", (invoice_id,),
            )
        return Invoice.model_validate_json(row["data_json"]) if row else None

    def _params(self, invoice: Invoice) -> tuple:
        return (
            invoice.invoice_number, invoice.customer_id, invoice.status.value,
            invoice.issue_date.isoformat(), invoice.due_date.isoformat(),
            str(invoice.total_amount), str(invoice.balance_due),
            invoice.model_dump_json(), _now(),
        )

    async def save(self, invoice: Invoice) -> None:
        with _storage("save invoice", invoice.invoice_id):
            await _execute(
                self.db,
                """INSERT INTO invoices
                   (invoice_number, customer_id, status, issue_date, due_date, total_amount,
                    balance_due, data_json, updated_at, invoice_id)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (*self._params(invoice), invoice.invoice_id),
            )

    async def update(self, invoice: Invoice) -> None:
        with _storage("update invoice", invoice.invoice_id):
            changed = await _execute(
                self.db,
                """UPDATE invoices SET invoice_number = ?, customer_id = ?, status = ?,
                   issue_date = ?, due_date = ?, total_amount = ?, balance_due = ?,
                   data_json = ?, updated_at = ? WHERE invoice_id = ?""",
                (*self._params(invoice), invoice.invoice_id),
            )
        if changed == 0:
            raise persistence_failure("update invoice", invoice.invoice_id)

    async def find_by_customer(self, customer_id: str) -> list[Invoice]:
        with _storage("find invoices", customer_id):
            rows = await _fetch_all(
                self.db,
                """SELECT data_json FROM invoices WHERE customer_id = ?
                   ORDER BY issue_date, invoice_number""",
                (customer_id,),
            )
        return [Invoice.model_validate_json(r["data_json"]) for r in rows]

    async def next_number(self) -> int:
        async with self._number_lock:
            with _storage("allocate invoice number"):
                await self.db.execute(
                    "INSERT OR IGNORE INTO invoice_sequence (id, next_number) VALUES (1, ?)",
                    (self._number_start,),
                )
                row = await _fetch_one(
                    self.db, "SELECT next_number FROM invoice_sequence WHERE id = 1",
                )
                number = int(row["next_number"])
                await _execute(
                    self.db,
                    "UPDATE invoice_sequence SET next_number = ? WHERE id = 1",
                    (number + 1,),
                )
        return number

    async def discard(self, invoice_id: str) -> None:
        with _storage("discard invoice", invoice_id):
            await _execute(self.db, "DELETE FROM invoices WHERE invoice_id = ?", (invoice_id,))


# ── Payments ────────────────────────────────────────────────


class SqlitePaymentRepository:
    def __init__(self, db: aiosqlite.Connection) -> None:
        self.db = db

    async def get(self, payment_id: str) -> Payment | None:
        with _storage("get payment", payment_id):
            row = await _fetch_one(
                self.db, "SELECT data_json FROM payments WHERE payment_id = ?", (payment_id,),
            )
        return Payment.model_validate_json(row["data_json"]) if row else None

    async def save(self, payment: Payment) -> None:
        with _storage("save payment", payment.payment_id):
            await _execute(
                self.db,
                """INSERT INTO payments
                   (payment_id, reference, customer_id, invoice_id, amount, status,
                    payment_date, recorded_at, data_json)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    payment.payment_id, payment.reference, payment.customer_id,
                    payment.invoice_id, str(payment.amount), payment.status.value,
                    payment.payment_date.isoformat(), payment.recorded_at.isoformat(),
                    payment.model_dump_json(),
                ),
            )

    async def update(self, payment: Payment) -> None:
        with _storage("update payment", payment.payment_id):
            changed = await _execute(
                self.db,
                "UPDATE payments SET status = ?, data_json = ? WHERE payment_id = ?",
                (payment.status.value, payment.model_dump_json(), payment.payment_id),
            )
        if changed == 0:
            raise persistence_failure("update payment", payment.payment_id)

    async def find_by_customer(self, customer_id: str) -> list[Payment]:
        with _storage("find payments", customer_id):
            rows = await _fetch_all(
                self.db,
                """SELECT data_json FROM payments WHERE customer_id = ?
                   ORDER BY payment_date, recorded_at""",
                (customer_id,),
            )
        return [Payment.model_validate_json(r["data_json"]) for r in rows]
