"""Tariff cost computation.

``compute_cost`` is the single dispatch point over the tariff variants. Each
variant prices the aggregated consumption into one or more usage bands; the
bands are what the invoice itemises, so their amounts always sum to the
unit cost exactly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from utility_billing.money import ZERO, flat_cost
from utility_billing.tariff.base import (
    DayNightTariff,
    FlatRateTariff,
    GasConversion,
    GasTariff,
    Tariff,
    TieredTariff,
)


@dataclass(frozen=True)
class Consumption:
    """Aggregated consumption for one billing period.

    ``units`` holds single-rate (or metric gas) units, ``imperial_units``
    raw units from imperial gas meters, ``day_units``/``night_units`` the
    split registers of day/night meters.
    """

    units: Decimal = ZERO
    imperial_units: Decimal = ZERO
    day_units: Decimal = ZERO
    night_units: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.units + self.imperial_units + self.day_units + self.night_units

    def __add__(self, other: Consumption) -> Consumption:
        return Consumption(
            units=self.units + other.units,
            imperial_units=self.imperial_units + other.imperial_units,
            day_units=self.day_units + other.day_units,
            night_units=self.night_units + other.night_units,
        )


@dataclass(frozen=True)
class UsageBand:
    """One priced usage line."""

    description: str
    quantity: Decimal
    unit: str
    rate_pence: Decimal
    amount: Decimal


@dataclass
class UsageCharge:
    bands: list[UsageBand] = field(default_factory=list)
    gas: GasConversion | None = None

    @property
    def unit_cost(self) -> Decimal:
        return sum((b.amount for b in self.bands), ZERO)


def _band(description: str, units: Decimal, rate_pence: Decimal, unit: str = "kWh") -> UsageBand:
    return UsageBand(description, units, unit, rate_pence, flat_cost(units, rate_pence))


def _fmt_units(units: Decimal) -> str:
    return f"{units.normalize():f}"


def flat_rate_cost(tariff: FlatRateTariff, consumption: Consumption) -> UsageCharge:
    return UsageCharge([_band("Electricity usage", consumption.total, tariff.rate_pence)])


def day_night_cost(tariff: DayNightTariff, consumption: Consumption) -> UsageCharge:
    """Day and night priced separately, never blended.

    Units from single-rate meters carry no split and are priced at the day rate.
    """
    day = consumption.day_units + consumption.units
    night = consumption.night_units
    return UsageCharge([
        _band("Electricity day usage", day, tariff.day_rate_pence),
        _band("Electricity night usage", night, tariff.night_rate_pence),
    ])


def tiered_cost(tariff: TieredTariff, consumption: Consumption) -> UsageCharge:
    units = consumption.total
    threshold = tariff.threshold
    first = min(units, threshold)
    bands = [
        _band(
            f"Electricity usage (first {_fmt_units(threshold)} kWh)",
            first,
            tariff.tier1_rate_pence,
        ),
    ]
    excess = max(ZERO, units - threshold)
    if excess > 0:
        bands.append(_band(
            f"Electricity usage (above {_fmt_units(threshold)} kWh)",
            excess,
            tariff.tier2_rate_pence,
        ))
    return UsageCharge(bands)


def convert_gas_volume(tariff: GasTariff, metric_units: Decimal, imperial_units: Decimal = ZERO) -> GasConversion:
    """Raw meter units → m³ → corrected volume → kWh.

    Imperial units are converted to cubic meters first; metric units are
    already cubic meters. No stage is rounded.
    """
    cubic_meters = metric_units + imperial_units * tariff.imperial_to_metric
    corrected = cubic_meters * tariff.correction_factor
    kwh = corrected * tariff.calorific_value / tariff.kwh_divisor
    return GasConversion(
        metric_units=metric_units,
        imperial_units=imperial_units,
        cubic_meters=cubic_meters,
        corrected_volume=corrected,
        kwh=kwh,
        correction_factor=tariff.correction_factor,
        calorific_value=tariff.calorific_value,
    )


def gas_cost(tariff: GasTariff, consumption: Consumption) -> UsageCharge:
    metric = consumption.units + consumption.day_units + consumption.night_units
    conversion = convert_gas_volume(tariff, metric, consumption.imperial_units)
    band = _band(
        f"Gas usage ({conversion.kwh:.1f} kWh)", conversion.kwh, tariff.rate_pence,
    )
    return UsageCharge([band], gas=conversion)


def compute_cost(tariff: Tariff, consumption: Consumption) -> UsageCharge:
    """Price ``consumption`` under ``tariff``."""
    if isinstance(tariff, FlatRateTariff):
        return flat_rate_cost(tariff, consumption)
    if isinstance(tariff, DayNightTariff):
        return day_night_cost(tariff, consumption)
    if isinstance(tariff, TieredTariff):
        return tiered_cost(tariff, consumption)
    if isinstance(tariff, GasTariff):
        return gas_cost(tariff, consumption)
    raise TypeError(f"Unsupported tariff variant: {type(tariff).__name__}")


def unit_cost(tariff: Tariff, consumption: Consumption) -> Decimal:
    return compute_cost(tariff, consumption).unit_cost
