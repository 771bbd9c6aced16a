"""Physical meter model."""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field, model_validator

DEFAULT_MAX_READING = Decimal("99999.99")


class MeterType(str, Enum):
    """Fuel a meter measures (and a tariff prices)."""

    ELECTRICITY = "electricity"
    GAS = "gas"

    @property
    def prefix(self) -> str:
        return "ELEC" if self is MeterType.ELECTRICITY else "GAS"


def _meter_id() -> str:
    return f"MTR-{uuid.uuid4().hex[:10].upper()}"


class Meter(BaseModel):
    """A meter owned by exactly one customer.

    ``day_night`` meters register two channels (day and night) instead of a
    single value. ``imperial`` gas meters register hundreds of cubic feet;
    the raw units are kept and converted at pricing time.
    """

    meter_id: str = Field(default_factory=_meter_id)
    meter_type: MeterType
    serial_number: str = ""
    day_night: bool = False
    imperial: bool = False
    current_reading: Decimal = Decimal("0")
    current_day_reading: Decimal = Decimal("0")
    current_night_reading: Decimal = Decimal("0")
    max_reading: Decimal = Field(DEFAULT_MAX_READING, gt=0)
    active: bool = True
    installed_on: date | None = None

    @model_validator(mode="after")
    def _check_mode_flags(self) -> Meter:
        if self.day_night and self.meter_type is not MeterType.ELECTRICITY:
            raise ValueError("only electricity meters can be day/night")
        if self.imperial and self.meter_type is not MeterType.GAS:
            raise ValueError("only gas meters can be imperial")
        return self

    @model_validator(mode="after")
    def _check_registers(self) -> Meter:
        for name in ("current_reading", "current_day_reading", "current_night_reading"):
            value = getattr(self, name)
            if value < 0 or value > self.max_reading:
                raise ValueError(f"{name} {value} must be between 0 and {self.max_reading}")
        return self

    def deactivate(self) -> None:
        self.active = False
