"""Customer aggregate: meters and account balance."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from pydantic import BaseModel, Field

from utility_billing.errors import ledger_inconsistency
from utility_billing.metering.meter import Meter, MeterType
from utility_billing.money import ZERO


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _account_number() -> str:
    return f"ACC-{uuid.uuid4().int % 1_000_000:06d}"


class Customer(BaseModel):
    """A billed customer.

    ``account_balance`` is signed: negative means the customer owes money.
    Invoices debit it, payments credit it.
    """

    customer_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    account_number: str = Field(default_factory=_account_number)
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    tariff_id: str | None = None
    meters: list[Meter] = Field(default_factory=list)
    account_balance: Decimal = ZERO
    active: bool = True
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    def get_meter(self, meter_id: str) -> Meter | None:
        return next((m for m in self.meters if m.meter_id == meter_id), None)

    def meters_of_type(self, meter_type: MeterType) -> list[Meter]:
        return [m for m in self.meters if m.meter_type == meter_type]

    def add_meter(self, meter: Meter) -> None:
        if self.get_meter(meter.meter_id) is None:
            self.meters.append(meter)
            self.updated_at = _now()

    def replace_meter(self, meter: Meter) -> None:
        """Store new state for a meter this customer already owns."""
        for i, existing in enumerate(self.meters):
            if existing.meter_id == meter.meter_id:
                self.meters[i] = meter
                self.updated_at = _now()
                return
        raise KeyError(meter.meter_id)

    def deactivate_meter(self, meter_id: str) -> bool:
        meter = self.get_meter(meter_id)
        if meter is None or not meter.active:
            return False
        meter.deactivate()
        self.updated_at = _now()
        return True

    def credit(self, amount: Decimal) -> None:
        if amount <= 0:
            raise ledger_inconsistency(
                f"Credit amount must be positive, got {amount}",
                customer_id=self.customer_id, amount=amount,
            )
        self.account_balance += amount
        self.updated_at = _now()

    def debit(self, amount: Decimal) -> None:
        if amount <= 0:
            raise ledger_inconsistency(
                f"Debit amount must be positive, got {amount}",
                customer_id=self.customer_id, amount=amount,
            )
        self.account_balance -= amount
        self.updated_at = _now()
