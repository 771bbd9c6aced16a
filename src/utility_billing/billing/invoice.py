"""Invoice object graph.

The invoice is the artefact rendered into documents, so it carries a
snapshot of every tariff value used to price it and never refers back to
the live tariff.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field

from utility_billing.errors import BillingError, ErrorKind, ledger_inconsistency
from utility_billing.metering.meter import MeterType
from utility_billing.money import ZERO, round_money
from utility_billing.tariff.base import (
    DayNightTariff,
    FlatRateTariff,
    GasConversion,
    GasTariff,
    Tariff,
    TariffKind,
    TieredTariff,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InvoiceStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class InvoiceLineItem(BaseModel):
    """One itemised charge. ``unit_price`` is pounds per unit."""

    description: str
    quantity: Decimal
    unit: str
    unit_price: Decimal
    amount: Decimal


class TariffSnapshot(BaseModel):
    """Tariff values frozen at issue time."""

    tariff_id: str
    name: str
    kind: TariffKind
    meter_type: MeterType
    standing_charge: Decimal
    vat_rate: Decimal
    rate_pence: Decimal | None = None
    day_rate_pence: Decimal | None = None
    night_rate_pence: Decimal | None = None
    threshold: Decimal | None = None
    tier1_rate_pence: Decimal | None = None
    tier2_rate_pence: Decimal | None = None
    correction_factor: Decimal | None = None
    calorific_value: Decimal | None = None
    imperial_to_metric: Decimal | None = None
    kwh_divisor: Decimal | None = None

    @classmethod
    def from_tariff(cls, tariff: Tariff) -> TariffSnapshot:
        snapshot = cls(
            tariff_id=tariff.tariff_id,
            name=tariff.name,
            kind=tariff.kind,
            meter_type=tariff.meter_type,
            standing_charge=tariff.standing_charge,
            vat_rate=tariff.vat_rate,
        )
        if isinstance(tariff, FlatRateTariff):
            snapshot.rate_pence = tariff.rate_pence
        elif isinstance(tariff, DayNightTariff):
            snapshot.day_rate_pence = tariff.day_rate_pence
            snapshot.night_rate_pence = tariff.night_rate_pence
        elif isinstance(tariff, TieredTariff):
            snapshot.threshold = tariff.threshold
            snapshot.tier1_rate_pence = tariff.tier1_rate_pence
            snapshot.tier2_rate_pence = tariff.tier2_rate_pence
        elif isinstance(tariff, GasTariff):
            snapshot.rate_pence = tariff.rate_pence
            snapshot.correction_factor = tariff.correction_factor
            snapshot.calorific_value = tariff.calorific_value
            snapshot.imperial_to_metric = tariff.imperial_to_metric
            snapshot.kwh_divisor = tariff.kwh_divisor
        return snapshot


class MeterUsage(BaseModel):
    """Opening and closing registers for one meter over the period."""

    meter_id: str
    reading_count: int
    opening_reading: Decimal | None = None
    closing_reading: Decimal | None = None
    opening_day_reading: Decimal | None = None
    closing_day_reading: Decimal | None = None
    opening_night_reading: Decimal | None = None
    closing_night_reading: Decimal | None = None
    units: Decimal = ZERO
    day_units: Decimal = ZERO
    night_units: Decimal = ZERO
    imperial: bool = False


class Invoice(BaseModel):
    invoice_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    invoice_number: str
    customer_id: str
    account_number: str
    period_start: date
    period_end: date
    issue_date: date
    due_date: date
    status: InvoiceStatus = InvoiceStatus.PENDING
    meter_type: MeterType
    tariff: TariffSnapshot

    meter_usage: list[MeterUsage] = Field(default_factory=list)
    units_consumed: Decimal = ZERO
    day_units: Decimal = ZERO
    night_units: Decimal = ZERO
    gas_conversion: GasConversion | None = None

    line_items: list[InvoiceLineItem] = Field(default_factory=list)
    billing_days: int
    unit_cost: Decimal = ZERO
    standing_charge_total: Decimal = ZERO
    subtotal: Decimal = ZERO
    vat_rate: Decimal
    vat_amount: Decimal = ZERO
    total_amount: Decimal = ZERO
    amount_paid: Decimal = ZERO
    balance_due: Decimal = ZERO

    previous_balance: Decimal = ZERO
    balance_after: Decimal = ZERO
    reading_ids: list[str] = Field(default_factory=list)
    notes: str = ""
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    @property
    def is_active(self) -> bool:
        """Cancelled invoices no longer count against the account."""
        return self.status != InvoiceStatus.CANCELLED

    @property
    def opening_reading(self) -> Decimal | None:
        return self.meter_usage[0].opening_reading if self.meter_usage else None

    @property
    def closing_reading(self) -> Decimal | None:
        return self.meter_usage[-1].closing_reading if self.meter_usage else None

    def check_totals(self) -> None:
        """Raise if the stored totals break the invoice identities."""
        line_sum = sum((item.amount for item in self.line_items), ZERO)
        problems = []
        if line_sum != self.subtotal:
            problems.append(f"line items {line_sum} != subtotal {self.subtotal}")
        if self.unit_cost + self.standing_charge_total != self.subtotal:
            problems.append("unit cost + standing charge != subtotal")
        if round_money(self.subtotal + self.vat_amount) != self.total_amount:
            problems.append("subtotal + VAT != total")
        if self.total_amount - self.amount_paid != self.balance_due:
            problems.append("total - paid != balance due")
        if problems:
            raise ledger_inconsistency(
                f"Invoice {self.invoice_number} totals are inconsistent: {'; '.join(problems)}",
                invoice_id=self.invoice_id,
            )

    def is_overdue(self, today: date) -> bool:
        if self.status in (InvoiceStatus.PAID, InvoiceStatus.CANCELLED):
            return False
        return today > self.due_date

    def apply_payment(self, amount: Decimal) -> None:
        if self.status in (InvoiceStatus.PAID, InvoiceStatus.CANCELLED):
            raise BillingError(
                ErrorKind.INVALID_INVOICE_STATE,
                f"Cannot pay invoice {self.invoice_number} in status {self.status.value}",
                invoice_id=self.invoice_id, status=self.status.value,
            )
        if amount <= 0:
            raise BillingError(
                ErrorKind.INVALID_PAYMENT, f"Payment amount must be positive, got {amount}",
                invoice_id=self.invoice_id, amount=amount,
            )
        if amount > self.balance_due:
            raise BillingError(
                ErrorKind.INVALID_PAYMENT,
                f"Payment {amount} exceeds balance due {self.balance_due}",
                invoice_id=self.invoice_id, amount=amount, balance_due=self.balance_due,
            )
        self.amount_paid += amount
        self.balance_due = self.total_amount - self.amount_paid
        if self.balance_due == 0:
            self.status = InvoiceStatus.PAID
        elif self.status != InvoiceStatus.OVERDUE:
            self.status = InvoiceStatus.PARTIAL
        self.updated_at = _now()

    def reverse_payment(self, amount: Decimal, today: date) -> None:
        """Undo a refunded payment and recompute the status from the amounts."""
        if amount <= 0 or amount > self.amount_paid:
            raise ledger_inconsistency(
                f"Cannot reverse {amount} on invoice {self.invoice_number} "
                f"with {self.amount_paid} paid",
                invoice_id=self.invoice_id, amount=amount,
            )
        self.amount_paid -= amount
        self.balance_due = self.total_amount - self.amount_paid
        if self.status != InvoiceStatus.CANCELLED:
            if self.balance_due == 0:
                self.status = InvoiceStatus.PAID
            elif today > self.due_date:
                self.status = InvoiceStatus.OVERDUE
            elif self.amount_paid > 0:
                self.status = InvoiceStatus.PARTIAL
            else:
                self.status = InvoiceStatus.PENDING
        self.updated_at = _now()

    def mark_overdue(self, today: date) -> bool:
        """Move an unpaid invoice past its due date to overdue."""
        if self.status in (InvoiceStatus.PENDING, InvoiceStatus.PARTIAL) and self.is_overdue(today):
            self.status = InvoiceStatus.OVERDUE
            self.updated_at = _now()
            return True
        return False

    def cancel(self) -> None:
        if self.status == InvoiceStatus.CANCELLED:
            raise BillingError(
                ErrorKind.INVALID_INVOICE_STATE,
                f"Invoice {self.invoice_number} is already cancelled",
                invoice_id=self.invoice_id,
            )
        self.status = InvoiceStatus.CANCELLED
        self.updated_at = _now()
