"""Billing orchestrator.

Records readings against customer meters and turns unbilled readings into
invoices. All storage goes through the repository protocols; every
operation that touches a customer's meters or balance holds that
customer's lock for its whole duration.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from utility_billing.billing.assembly import assemble_invoice, format_invoice_number
from utility_billing.billing.customer import Customer
from utility_billing.billing.invoice import Invoice
from utility_billing.billing.locks import CustomerLocks
from utility_billing.config.schema import AppConfig
from utility_billing.errors import (
    BillingError,
    ErrorKind,
    ledger_inconsistency,
    not_found,
    persistence_failure,
)
from utility_billing.logging.context import log_context
from utility_billing.metering.consumption import (
    estimate_reading_values,
    mark_billed,
    record_reading,
)
from utility_billing.metering.meter import Meter, MeterType
from utility_billing.metering.reading import Reading, ReadingType
from utility_billing.money import ZERO, billing_days
from utility_billing.repository.base import (
    CustomerRepository,
    InvoiceRepository,
    ReadingRepository,
    TariffRepository,
)
from utility_billing.tariff.base import Tariff

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    """Outcome of a batch billing run, keyed by customer id."""

    invoices: dict[str, Invoice] = field(default_factory=dict)
    skipped: dict[str, BillingError] = field(default_factory=dict)
    errors: dict[str, BillingError] = field(default_factory=dict)

    @property
    def issued_count(self) -> int:
        return len(self.invoices)

    @property
    def total_billed(self) -> Decimal:
        return sum((inv.total_amount for inv in self.invoices.values()), ZERO)


class BillingEngine:
    """Reading capture and invoice generation."""

    def __init__(
        self,
        config: AppConfig,
        readings: ReadingRepository,
        tariffs: TariffRepository,
        customers: CustomerRepository,
        invoices: InvoiceRepository,
        locks: CustomerLocks | None = None,
    ) -> None:
        self._config = config
        self._readings = readings
        self._tariffs = tariffs
        self._customers = customers
        self._invoices = invoices
        self._locks = locks or CustomerLocks()

    @property
    def locks(self) -> CustomerLocks:
        return self._locks

    async def _load_customer(self, customer_id: str) -> Customer:
        customer = await self._customers.get(customer_id)
        if customer is None:
            raise not_found(ErrorKind.CUSTOMER_NOT_FOUND, "Customer", customer_id)
        return customer

    @staticmethod
    def _find_meter(customer: Customer, meter_id: str) -> Meter:
        meter = customer.get_meter(meter_id)
        if meter is None:
            raise not_found(ErrorKind.METER_NOT_FOUND, "Meter", meter_id)
        return meter

    # ── Meters and readings ──────────────────────────────────

    async def install_meter(
        self,
        customer_id: str,
        meter_type: MeterType,
        *,
        serial_number: str = "",
        day_night: bool = False,
        imperial: bool = False,
        opening_reading: Decimal = ZERO,
        opening_day_reading: Decimal = ZERO,
        opening_night_reading: Decimal = ZERO,
        max_reading: Decimal | None = None,
        installed_on: date | None = None,
    ) -> Meter:
        """Attach a new meter to a customer.

        Raises pydantic ``ValidationError`` for an impossible meter definition
        (day/night gas meter, imperial electricity meter, opening register
        above the ceiling).
        """
        meter = Meter(
            meter_type=meter_type,
            serial_number=serial_number,
            day_night=day_night,
            imperial=imperial,
            current_reading=opening_reading,
            current_day_reading=opening_day_reading,
            current_night_reading=opening_night_reading,
            max_reading=max_reading or self._config.meters.default_max_reading,
            installed_on=installed_on,
        )
        async with self._locks.for_customer(customer_id):
            customer = await self._load_customer(customer_id)
            customer.add_meter(meter)
            await self._customers.update(customer)
        logger.info(
            "Installed %s meter %s for customer %s",
            meter_type.value, meter.meter_id, customer_id,
        )
        return meter

    async def deactivate_meter(self, customer_id: str, meter_id: str) -> Meter:
        """Stop a meter accepting readings.

        Meters are never removed; unbilled readings already taken on a
        deactivated meter are still invoiced.
        """
        with log_context(customer_id=customer_id, meter_id=meter_id):
            async with self._locks.for_customer(customer_id):
                customer = await self._load_customer(customer_id)
                self._find_meter(customer, meter_id)
                if customer.deactivate_meter(meter_id):
                    await self._customers.update(customer)
                    logger.info("Deactivated meter %s for customer %s", meter_id, customer_id)
                return self._find_meter(customer, meter_id)

    async def record_reading(
        self,
        customer_id: str,
        meter_id: str,
        reading_date: date,
        value: Decimal | int | str | None = None,
        day_value: Decimal | int | str | None = None,
        night_value: Decimal | int | str | None = None,
        reading_type: ReadingType = ReadingType.ACTUAL,
    ) -> Reading:
        """Record a reading and advance the meter."""
        with log_context(customer_id=customer_id, meter_id=meter_id):
            async with self._locks.for_customer(customer_id):
                customer = await self._load_customer(customer_id)
                return await self._apply_reading(
                    customer, meter_id, reading_date,
                    value, day_value, night_value, reading_type,
                )

    async def record_estimated_reading(
        self, customer_id: str, meter_id: str, reading_date: date,
    ) -> Reading:
        """Record a reading projected from the meter's usage history."""
        with log_context(customer_id=customer_id, meter_id=meter_id):
            async with self._locks.for_customer(customer_id):
                customer = await self._load_customer(customer_id)
                meter = self._find_meter(customer, meter_id)
                history = await self._readings.find_by_meter(meter_id)
                estimate = estimate_reading_values(meter, history, reading_date)
                return await self._apply_reading(
                    customer, meter_id, reading_date,
                    estimate.value, estimate.day_value, estimate.night_value,
                    ReadingType.ESTIMATED,
                )

    async def _apply_reading(
        self,
        customer: Customer,
        meter_id: str,
        reading_date: date,
        value: Decimal | int | str | None,
        day_value: Decimal | int | str | None,
        night_value: Decimal | int | str | None,
        reading_type: ReadingType,
    ) -> Reading:
        # Caller holds the customer lock.
        original = self._find_meter(customer, meter_id)
        working = original.model_copy(deep=True)
        reading = record_reading(
            working,
            customer.customer_id,
            reading_date,
            value=value,
            day_value=day_value,
            night_value=night_value,
            reading_type=reading_type,
            tolerance=self._config.billing.rollover_tolerance,
        )

        customer.replace_meter(working)
        await self._customers.update(customer)
        try:
            await self._readings.save(reading)
        except Exception as exc:
            logger.error(
                "Saving reading for meter %s failed, restoring meter state",
                meter_id, exc_info=True,
            )
            customer.replace_meter(original)
            await self._customers.update(customer)
            if isinstance(exc, BillingError) and exc.kind == ErrorKind.PERSISTENCE_FAILURE:
                raise
            raise persistence_failure("save reading", reading.reading_id) from exc

        logger.info(
            "Recorded %s reading on meter %s: consumption %s%s",
            reading.reading_type.value, meter_id, reading.consumption,
            " (rollover)" if reading.rolled_over else "",
        )
        return reading

    # ── Invoice generation ───────────────────────────────────

    async def _resolve_tariff(self, customer: Customer, period_end: date) -> Tariff:
        if not customer.tariff_id:
            raise BillingError(
                ErrorKind.NO_TARIFF_ASSIGNED,
                f"Customer {customer.customer_id} has no tariff assigned",
                customer_id=customer.customer_id,
            )
        tariff = await self._tariffs.find_by_id(customer.tariff_id)
        if tariff is None:
            raise not_found(ErrorKind.TARIFF_NOT_FOUND, "Tariff", customer.tariff_id)
        if not tariff.active:
            raise BillingError(
                ErrorKind.TARIFF_NOT_FOUND,
                f"Tariff {tariff.tariff_id} is inactive",
                entity_id=tariff.tariff_id, reason="inactive",
            )
        if not tariff.is_valid_on(period_end):
            raise BillingError(
                ErrorKind.TARIFF_NOT_FOUND,
                f"Tariff {tariff.tariff_id} is not in effect on {period_end}",
                entity_id=tariff.tariff_id, reason="not_effective",
            )
        return tariff

    async def _unbilled_readings(
        self, meters: list[Meter], period_start: date, period_end: date,
    ) -> dict[str, list[Reading]]:
        by_meter: dict[str, list[Reading]] = {}
        for meter in meters:
            found = await self._readings.find(meter.meter_id, period_start, period_end)
            unbilled = sorted(
                (r for r in found if not r.billed),
                key=lambda r: (r.reading_date, r.recorded_at),
            )
            if unbilled:
                by_meter[meter.meter_id] = unbilled
        return by_meter

    async def generate_invoice(
        self,
        customer_id: str,
        period_start: date,
        period_end: date,
        issue_date: date | None = None,
    ) -> Invoice:
        """Bill a customer's unbilled readings for the period.

        All validation happens before anything is written. On a storage
        failure during commit the readings are un-billed and the unissued
        invoice discarded before the error is raised.
        """
        billing_days(period_start, period_end)
        issue_date = issue_date or date.today()

        with log_context(customer_id=customer_id):
            async with self._locks.for_customer(customer_id):
                customer = await self._load_customer(customer_id)
                tariff = await self._resolve_tariff(customer, period_end)

                meters = customer.meters_of_type(tariff.meter_type)
                if not meters:
                    raise BillingError(
                        ErrorKind.NO_MATCHING_METER,
                        f"Customer {customer_id} has no {tariff.meter_type.value} meter "
                        f"for tariff {tariff.tariff_id}",
                        customer_id=customer_id, meter_type=tariff.meter_type.value,
                    )

                readings_by_meter = await self._unbilled_readings(meters, period_start, period_end)
                if not readings_by_meter:
                    raise BillingError(
                        ErrorKind.NOTHING_TO_BILL,
                        f"No unbilled readings for customer {customer_id} "
                        f"between {period_start} and {period_end}",
                        customer_id=customer_id,
                        period_start=period_start, period_end=period_end,
                    )

                number = await self._invoices.next_number()
                invoice = assemble_invoice(
                    customer=customer,
                    tariff=tariff,
                    readings_by_meter=readings_by_meter,
                    period_start=period_start,
                    period_end=period_end,
                    issue_date=issue_date,
                    invoice_number=format_invoice_number(
                        self._config.billing.invoice_number_prefix, number,
                    ),
                    due_days=self._config.billing.invoice_due_days,
                )
                readings = [r for group in readings_by_meter.values() for r in group]
                with log_context(invoice_id=invoice.invoice_id):
                    await self._commit_invoice(invoice, readings)
                    logger.info(
                        "Issued invoice %s for customer %s: %s units, total %s",
                        invoice.invoice_number, customer_id,
                        invoice.units_consumed, invoice.total_amount,
                    )
                return invoice

    async def _commit_invoice(self, invoice: Invoice, readings: list[Reading]) -> None:
        if invoice.total_amount < 0:
            raise ledger_inconsistency(
                f"Invoice {invoice.invoice_number} has a negative total {invoice.total_amount}",
                customer_id=invoice.customer_id, invoice_id=invoice.invoice_id,
                total_amount=invoice.total_amount,
            )
        billed: list[Reading] = []
        saved = False
        try:
            for reading in readings:
                await self._readings.update(mark_billed(reading, invoice.invoice_id))
                billed.append(reading)
            await self._invoices.save(invoice)
            saved = True
            if invoice.total_amount > 0:
                await self._customers.debit_account(invoice.customer_id, invoice.total_amount)
        except Exception as exc:
            logger.error(
                "Committing invoice %s failed, compensating", invoice.invoice_number,
                exc_info=True,
            )
            compensated = await self._compensate(invoice, billed, saved)
            if isinstance(exc, BillingError) and exc.kind == ErrorKind.PERSISTENCE_FAILURE:
                exc.context.setdefault("compensated", compensated)
                raise
            error = persistence_failure("commit invoice", invoice.invoice_id)
            error.context["compensated"] = compensated
            raise error from exc

    async def _compensate(self, invoice: Invoice, billed: list[Reading], saved: bool) -> bool:
        """Undo a partial commit. Returns False if any step could not be undone."""
        ok = True
        for reading in reversed(billed):
            try:
                await self._readings.update(reading)
            except Exception:
                ok = False
                logger.error(
                    "Could not restore unbilled reading %s", reading.reading_id, exc_info=True,
                )
        if saved:
            try:
                await self._invoices.discard(invoice.invoice_id)
            except Exception:
                ok = False
                logger.error(
                    "Could not discard invoice %s", invoice.invoice_number, exc_info=True,
                )
        return ok

    async def generate_invoices(
        self,
        period_start: date,
        period_end: date,
        customer_ids: Iterable[str] | None = None,
        issue_date: date | None = None,
    ) -> BatchResult:
        """Bill many customers concurrently, collecting per-customer outcomes."""
        billing_days(period_start, period_end)
        ids = list(customer_ids) if customer_ids is not None else await self._customers.list_ids()
        semaphore = asyncio.Semaphore(self._config.billing.batch_concurrency)

        async def bill_one(customer_id: str) -> tuple[str, Invoice | BillingError]:
            async with semaphore:
                try:
                    return customer_id, await self.generate_invoice(
                        customer_id, period_start, period_end, issue_date,
                    )
                except BillingError as exc:
                    return customer_id, exc

        result = BatchResult()
        for customer_id, outcome in await asyncio.gather(*(bill_one(c) for c in ids)):
            if isinstance(outcome, Invoice):
                result.invoices[customer_id] = outcome
            elif outcome.kind == ErrorKind.NOTHING_TO_BILL:
                result.skipped[customer_id] = outcome
            else:
                logger.warning("Billing customer %s failed: %s", customer_id, outcome)
                result.errors[customer_id] = outcome

        logger.info(
            "Batch billing %s to %s: %d issued, %d skipped, %d failed, total %s",
            period_start, period_end, result.issued_count,
            len(result.skipped), len(result.errors), result.total_billed,
        )
        return result

    # ── Cancellation ─────────────────────────────────────────

    async def cancel_invoice(self, invoice_id: str, reason: str = "") -> Invoice:
        """Cancel an invoice and credit its total back to the account.

        The invoice's readings stay billed; re-billing the period needs
        new readings.
        """
        existing = await self._invoices.get(invoice_id)
        if existing is None:
            raise not_found(ErrorKind.INVOICE_NOT_FOUND, "Invoice", invoice_id)

        with log_context(customer_id=existing.customer_id, invoice_id=invoice_id):
            async with self._locks.for_customer(existing.customer_id):
                invoice = await self._invoices.get(invoice_id)
                if invoice is None:
                    raise not_found(ErrorKind.INVOICE_NOT_FOUND, "Invoice", invoice_id)
                before = invoice.model_copy(deep=True)
                invoice.cancel()
                if reason:
                    invoice.notes = f"{invoice.notes} | Cancelled: {reason}" if invoice.notes else f"Cancelled: {reason}"
                await self._invoices.update(invoice)
                if invoice.total_amount > 0:
                    try:
                        await self._customers.credit_account(invoice.customer_id, invoice.total_amount)
                    except Exception:
                        logger.error(
                            "Crediting cancelled invoice %s failed, restoring it",
                            invoice.invoice_number, exc_info=True,
                        )
                        await self._invoices.update(before)
                        raise
                logger.info(
                    "Cancelled invoice %s, credited %s", invoice.invoice_number, invoice.total_amount,
                )
                return invoice
