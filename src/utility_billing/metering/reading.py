"""Meter reading events."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field


class ReadingType(str, Enum):
    ACTUAL = "actual"
    ESTIMATED = "estimated"
    SMART = "smart"
    OPENING = "opening"
    FINAL = "final"


class Reading(BaseModel):
    """A recorded reading plus the consumption it represents.

    Previous values are captured when the reading is recorded so that the
    consumption can be audited later without replaying meter history.
    ``consumption`` is the single-rate delta, or day + night for a
    day/night reading.
    """

    reading_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    meter_id: str
    customer_id: str
    reading_date: date
    reading_type: ReadingType = ReadingType.ACTUAL

    value: Decimal | None = None
    previous_value: Decimal | None = None
    day_value: Decimal | None = None
    night_value: Decimal | None = None
    previous_day_value: Decimal | None = None
    previous_night_value: Decimal | None = None

    consumption: Decimal = Decimal("0")
    day_consumption: Decimal = Decimal("0")
    night_consumption: Decimal = Decimal("0")
    rolled_over: bool = False
    imperial: bool = False

    billed: bool = False
    invoice_id: str | None = None
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_day_night(self) -> bool:
        return self.day_value is not None and self.night_value is not None
