"""Storage contracts consumed by the billing core.

Implementations: the in-memory stores in ``repository.memory`` and the
SQLite stores in ``db.repository``. Every method may raise a
``PERSISTENCE_FAILURE`` ``BillingError``; lookups by id return ``None``
when the entity does not exist.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from utility_billing.metering.reading import Reading
from utility_billing.tariff.base import Tariff

if TYPE_CHECKING:
    from utility_billing.billing.customer import Customer
    from utility_billing.billing.invoice import Invoice
    from utility_billing.billing.payment import Payment


@runtime_checkable
class ReadingRepository(Protocol):
    async def find(self, meter_id: str, start: date, end: date) -> list[Reading]:
        """Readings for a meter dated within [start, end], ordered by date."""
        ...

    async def find_by_meter(self, meter_id: str) -> list[Reading]:
        """All readings for a meter, ordered by date."""
        ...

    async def save(self, reading: Reading) -> None:
        ...

    async def update(self, reading: Reading) -> None:
        ...


@runtime_checkable
class TariffRepository(Protocol):
    async def find_by_id(self, tariff_id: str) -> Tariff | None:
        """The current definition of a tariff."""
        ...

    async def save(self, tariff: Tariff) -> None:
        ...

    async def update(self, tariff: Tariff) -> None:
        ...


@runtime_checkable
class CustomerRepository(Protocol):
    async def get(self, customer_id: str) -> Customer | None:
        ...

    async def save(self, customer: Customer) -> None:
        ...

    async def update(self, customer: Customer) -> None:
        ...

    async def credit_account(self, customer_id: str, amount: Decimal) -> Decimal:
        """Atomically add a positive amount to the balance. Returns the new balance."""
        ...

    async def debit_account(self, customer_id: str, amount: Decimal) -> Decimal:
        """Atomically subtract a positive amount from the balance. Returns the new balance."""
        ...

    async def list_ids(self) -> list[str]:
        ...


@runtime_checkable
class InvoiceRepository(Protocol):
    async def get(self, invoice_id: str) -> Invoice | None:
        ...

    async def save(self, invoice: Invoice) -> None:
        ...

    async def update(self, invoice: Invoice) -> None:
        ...

    async def find_by_customer(self, customer_id: str) -> list[Invoice]:
        """All invoices for a customer, oldest first."""
        ...

    async def next_number(self) -> int:
        """Allocate the next sequential invoice number."""
        ...

    async def discard(self, invoice_id: str) -> None:
        """Remove an invoice that was saved but never issued (compensation only)."""
        ...


@runtime_checkable
class PaymentRepository(Protocol):
    async def get(self, payment_id: str) -> Payment | None:
        ...

    async def save(self, payment: Payment) -> None:
        ...

    async def update(self, payment: Payment) -> None:
        ...

    async def find_by_customer(self, customer_id: str) -> list[Payment]:
        ...
