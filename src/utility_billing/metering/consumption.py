"""Consumption deltas, rollover handling and reading creation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation

from utility_billing.errors import invalid_reading
from utility_billing.metering.meter import Meter
from utility_billing.metering.reading import Reading, ReadingType
from utility_billing.money import (
    ZERO,
    average_daily_usage,
    estimate_consumption,
    round_money,
    to_decimal,
)

logger = logging.getLogger(__name__)

DEFAULT_ROLLOVER_TOLERANCE = Decimal("0.95")


@dataclass(frozen=True)
class ChannelDelta:
    """Consumption on one register (overall, day or night)."""

    consumption: Decimal
    rolled_over: bool = False


def channel_consumption(
    meter_id: str,
    previous: Decimal,
    new: Decimal,
    max_reading: Decimal,
    tolerance: Decimal = DEFAULT_ROLLOVER_TOLERANCE,
) -> ChannelDelta:
    """Units consumed between two register values.

    A lower value is only a rollover when the previous value was close to
    the meter's ceiling; anything else is a regressed reading.
    """
    if not new.is_finite():
        raise invalid_reading(meter_id, new, "reading is not a finite number")
    if new < 0:
        raise invalid_reading(meter_id, new, "reading cannot be negative")
    if new > max_reading:
        raise invalid_reading(
            meter_id, new, f"reading exceeds meter maximum {max_reading}",
            max_reading=max_reading,
        )
    if new >= previous:
        return ChannelDelta(new - previous)
    if previous >= tolerance * max_reading:
        return ChannelDelta((max_reading - previous) + new, rolled_over=True)
    logger.warning(
        "Rejected regressed reading on meter %s: %s < previous %s (max %s)",
        meter_id, new, previous, max_reading,
    )
    raise invalid_reading(
        meter_id, new, f"reading regressed below previous value {previous}",
        previous=previous,
    )


def register_value(meter_id: str, raw: Decimal | float | int | str) -> Decimal:
    """Parse a submitted register value into a finite Decimal."""
    try:
        value = to_decimal(raw)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise invalid_reading(meter_id, raw, "reading is not a number") from exc
    if not value.is_finite():
        raise invalid_reading(meter_id, raw, "reading is not a finite number")
    return value


def record_reading(
    meter: Meter,
    customer_id: str,
    reading_date: date,
    value: Decimal | float | int | str | None = None,
    day_value: Decimal | float | int | str | None = None,
    night_value: Decimal | float | int | str | None = None,
    reading_type: ReadingType = ReadingType.ACTUAL,
    tolerance: Decimal = DEFAULT_ROLLOVER_TOLERANCE,
) -> Reading:
    """Create a reading and advance the meter's registers.

    Every channel is validated before the meter is touched, so a rejected
    reading leaves the meter exactly as it was.
    """
    if not meter.active:
        raise invalid_reading(meter.meter_id, value, "meter is deactivated")

    if meter.day_night:
        if day_value is None or night_value is None or value is not None:
            raise invalid_reading(
                meter.meter_id, value, "day/night meter needs a day and a night value",
            )
        day = register_value(meter.meter_id, day_value)
        night = register_value(meter.meter_id, night_value)
        day_delta = channel_consumption(
            meter.meter_id, meter.current_day_reading, day, meter.max_reading, tolerance,
        )
        night_delta = channel_consumption(
            meter.meter_id, meter.current_night_reading, night, meter.max_reading, tolerance,
        )
        reading = Reading(
            meter_id=meter.meter_id,
            customer_id=customer_id,
            reading_date=reading_date,
            reading_type=reading_type,
            day_value=day,
            night_value=night,
            previous_day_value=meter.current_day_reading,
            previous_night_value=meter.current_night_reading,
            day_consumption=day_delta.consumption,
            night_consumption=night_delta.consumption,
            consumption=day_delta.consumption + night_delta.consumption,
            rolled_over=day_delta.rolled_over or night_delta.rolled_over,
        )
        meter.current_day_reading = day
        meter.current_night_reading = night
        return reading

    if value is None or day_value is not None or night_value is not None:
        raise invalid_reading(meter.meter_id, value, "single-rate meter needs exactly one value")
    new = register_value(meter.meter_id, value)
    delta = channel_consumption(
        meter.meter_id, meter.current_reading, new, meter.max_reading, tolerance,
    )
    reading = Reading(
        meter_id=meter.meter_id,
        customer_id=customer_id,
        reading_date=reading_date,
        reading_type=reading_type,
        value=new,
        previous_value=meter.current_reading,
        consumption=delta.consumption,
        rolled_over=delta.rolled_over,
        imperial=meter.imperial,
    )
    meter.current_reading = new
    return reading


def mark_billed(reading: Reading, invoice_id: str) -> Reading:
    """Return a billed copy of ``reading``."""
    if reading.billed:
        raise invalid_reading(
            reading.meter_id, reading.value, "reading has already been billed",
            reading_id=reading.reading_id, invoice_id=reading.invoice_id,
        )
    return reading.model_copy(update={"billed": True, "invoice_id": invoice_id})


@dataclass(frozen=True)
class EstimatedValues:
    value: Decimal | None = None
    day_value: Decimal | None = None
    night_value: Decimal | None = None


def _project(current: Decimal, usage: Decimal, max_reading: Decimal) -> Decimal:
    projected = round_money(current + usage)
    if projected > max_reading:
        projected = projected - max_reading
    return projected


def estimate_reading_values(
    meter: Meter, history: list[Reading], reading_date: date,
) -> EstimatedValues:
    """Project the meter's registers forward to ``reading_date``.

    Uses the average daily usage across ``history`` (date ordered). The first
    reading only anchors the span; its own consumption covers earlier days.
    """
    if len(history) < 2:
        raise invalid_reading(meter.meter_id, None, "not enough reading history to estimate")
    first, last = history[0], history[-1]
    span_days = (last.reading_date - first.reading_date).days
    days_ahead = (reading_date - last.reading_date).days
    if span_days <= 0 or days_ahead <= 0:
        raise invalid_reading(
            meter.meter_id, None, "estimate date must follow a history spanning at least one day",
        )

    def usage(field: str) -> Decimal:
        total = sum((getattr(r, field) for r in history[1:]), ZERO)
        return estimate_consumption(average_daily_usage(total, span_days), days_ahead)

    if meter.day_night:
        return EstimatedValues(
            day_value=_project(meter.current_day_reading, usage("day_consumption"), meter.max_reading),
            night_value=_project(meter.current_night_reading, usage("night_consumption"), meter.max_reading),
        )
    return EstimatedValues(
        value=_project(meter.current_reading, usage("consumption"), meter.max_reading),
    )
