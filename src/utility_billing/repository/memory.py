"""In-memory repositories.

Stores hand out deep copies, so a caller only changes stored state through
an explicit ``save``/``update``. Used by tests and for dry runs.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Generic, TypeVar

from pydantic import BaseModel

from utility_billing.billing.customer import Customer
from utility_billing.billing.invoice import Invoice
from utility_billing.billing.payment import Payment
from utility_billing.errors import ErrorKind, ledger_inconsistency, not_found, persistence_failure
from utility_billing.metering.reading import Reading
from utility_billing.tariff.base import Tariff

M = TypeVar("M", bound=BaseModel)


class _Store(Generic[M]):
    _key: str = ""
    _entity: str = ""

    def __init__(self) -> None:
        self._items: dict[str, M] = {}

    def _id(self, item: M) -> str:
        return getattr(item, self._key)

    def _get(self, item_id: str) -> M | None:
        item = self._items.get(item_id)
        return item.model_copy(deep=True) if item is not None else None

    def _put(self, item: M) -> None:
        self._items[self._id(item)] = item.model_copy(deep=True)

    def _replace(self, item: M) -> None:
        if self._id(item) not in self._items:
            raise persistence_failure(f"update {self._entity}", self._id(item))
        self._put(item)

    def _all(self) -> list[M]:
        return [item.model_copy(deep=True) for item in self._items.values()]

    def __len__(self) -> int:
        return len(self._items)


class MemoryReadingRepository(_Store[Reading]):
    _key = "reading_id"
    _entity = "reading"

    async def find(self, meter_id: str, start: date, end: date) -> list[Reading]:
        found = [
            r for r in self._all()
            if r.meter_id == meter_id and start <= r.reading_date <= end
        ]
        return sorted(found, key=lambda r: (r.reading_date, r.recorded_at))

    async def find_by_meter(self, meter_id: str) -> list[Reading]:
        found = [r for r in self._all() if r.meter_id == meter_id]
        return sorted(found, key=lambda r: (r.reading_date, r.recorded_at))

    async def get(self, reading_id: str) -> Reading | None:
        return self._get(reading_id)

    async def save(self, reading: Reading) -> None:
        self._put(reading)

    async def update(self, reading: Reading) -> None:
        self._replace(reading)


class MemoryTariffRepository(_Store[Tariff]):
    _key = "tariff_id"
    _entity = "tariff"

    async def find_by_id(self, tariff_id: str) -> Tariff | None:
        return self._get(tariff_id)

    async def save(self, tariff: Tariff) -> None:
        self._put(tariff)

    async def update(self, tariff: Tariff) -> None:
        self._replace(tariff)


class MemoryCustomerRepository(_Store[Customer]):
    _key = "customer_id"
    _entity = "customer"

    async def get(self, customer_id: str) -> Customer | None:
        return self._get(customer_id)

    async def save(self, customer: Customer) -> None:
        self._put(customer)

    async def update(self, customer: Customer) -> None:
        self._replace(customer)

    async def credit_account(self, customer_id: str, amount: Decimal) -> Decimal:
        return self._adjust(customer_id, amount, credit=True)

    async def debit_account(self, customer_id: str, amount: Decimal) -> Decimal:
        return self._adjust(customer_id, amount, credit=False)

    def _adjust(self, customer_id: str, amount: Decimal, credit: bool) -> Decimal:
        if amount <= 0:
            raise ledger_inconsistency(
                f"Balance adjustment must be positive, got {amount}",
                customer_id=customer_id, amount=amount,
            )
        customer = self._items.get(customer_id)
        if customer is None:
            raise not_found(ErrorKind.CUSTOMER_NOT_FOUND, "Customer", customer_id)
        if credit:
            customer.credit(amount)
        else:
            customer.debit(amount)
        return customer.account_balance

    async def list_ids(self) -> list[str]:
        return list(self._items)


class MemoryInvoiceRepository(_Store[Invoice]):
    _key = "invoice_id"
    _entity = "invoice"

    def __init__(self, number_start: int = 1000) -> None:
        super().__init__()
        self._next_number = number_start

    async def get(self, invoice_id: str) -> Invoice | None:
        return self._get(invoice_id)

    async def save(self, invoice: Invoice) -> None:
        self._put(invoice)

    async def update(self, invoice: Invoice) -> None:
        self._replace(invoice)

    async def find_by_customer(self, customer_id: str) -> list[Invoice]:
        found = [i for i in self._all() if i.customer_id == customer_id]
        return sorted(found, key=lambda i: (i.issue_date, i.invoice_number))

    async def next_number(self) -> int:
        number = self._next_number
        self._next_number += 1
        return number

    async def discard(self, invoice_id: str) -> None:
        self._items.pop(invoice_id, None)


class MemoryPaymentRepository(_Store[Payment]):
    _key = "payment_id"
    _entity = "payment"

    async def get(self, payment_id: str) -> Payment | None:
        return self._get(payment_id)

    async def save(self, payment: Payment) -> None:
        self._put(payment)

    async def update(self, payment: Payment) -> None:
        self._replace(payment)

    async def find_by_customer(self, customer_id: str) -> list[Payment]:
        found = [p for p in self._all() if p.customer_id == customer_id]
        return sorted(found, key=lambda p: (p.payment_date, p.recorded_at))
