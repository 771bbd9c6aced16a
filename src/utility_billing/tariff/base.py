"""Tariff variants.

A tariff is one of a closed set of pricing variants, tagged by ``kind``.
Pricing lives in ``tariff.pricing.compute_cost``, which dispatches on the
variant; the models here only carry data and validity rules.
"""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, model_validator

from utility_billing.metering.meter import MeterType

IMPERIAL_TO_METRIC = Decimal("2.83")
DEFAULT_CORRECTION_FACTOR = Decimal("1.02264")
DEFAULT_CALORIFIC_VALUE = Decimal("39.4")
KWH_DIVISOR = Decimal("3.6")


class TariffKind(str, Enum):
    FLAT = "flat"
    DAY_NIGHT = "day_night"
    TIERED = "tiered"
    GAS = "gas"


class TariffBase(BaseModel):
    """Fields shared by every variant. Standing charge is pounds per day."""

    tariff_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str = Field(min_length=1)
    description: str = ""
    standing_charge: Decimal = Field(ge=0)
    vat_rate: Decimal = Field(Decimal("0.05"), ge=0, le=1)
    effective_from: date
    effective_to: date | None = None
    active: bool = True

    @model_validator(mode="after")
    def _check_effective_range(self) -> TariffBase:
        if self.effective_to is not None and self.effective_to < self.effective_from:
            raise ValueError("effective_to is before effective_from")
        return self

    def is_valid_on(self, day: date) -> bool:
        if not self.active:
            return False
        if day < self.effective_from:
            return False
        if self.effective_to is not None and day > self.effective_to:
            return False
        return True


class FlatRateTariff(TariffBase):
    kind: Literal[TariffKind.FLAT] = TariffKind.FLAT
    meter_type: Literal[MeterType.ELECTRICITY] = MeterType.ELECTRICITY
    rate_pence: Decimal = Field(gt=0)


class DayNightTariff(TariffBase):
    kind: Literal[TariffKind.DAY_NIGHT] = TariffKind.DAY_NIGHT
    meter_type: Literal[MeterType.ELECTRICITY] = MeterType.ELECTRICITY
    day_rate_pence: Decimal = Field(gt=0)
    night_rate_pence: Decimal = Field(gt=0)


class TieredTariff(TariffBase):
    """Units up to ``threshold`` at tier 1, the excess at tier 2."""

    kind: Literal[TariffKind.TIERED] = TariffKind.TIERED
    meter_type: Literal[MeterType.ELECTRICITY] = MeterType.ELECTRICITY
    threshold: Decimal = Field(gt=0)
    tier1_rate_pence: Decimal = Field(gt=0)
    tier2_rate_pence: Decimal = Field(gt=0)


class GasTariff(TariffBase):
    """Priced per kWh after converting metered volume to energy."""

    kind: Literal[TariffKind.GAS] = TariffKind.GAS
    meter_type: Literal[MeterType.GAS] = MeterType.GAS
    rate_pence: Decimal = Field(gt=0)
    correction_factor: Decimal = Field(DEFAULT_CORRECTION_FACTOR, gt=0)
    calorific_value: Decimal = Field(DEFAULT_CALORIFIC_VALUE, gt=0)
    imperial_to_metric: Decimal = Field(IMPERIAL_TO_METRIC, gt=0)
    kwh_divisor: Decimal = Field(KWH_DIVISOR, gt=0)


Tariff = Annotated[
    Union[FlatRateTariff, DayNightTariff, TieredTariff, GasTariff],
    Field(discriminator="kind"),
]

TARIFF_ADAPTER: TypeAdapter[Tariff] = TypeAdapter(Tariff)


class GasConversion(BaseModel):
    """Every stage of the volume-to-energy conversion, kept for audit.

    Raw meter units are split by register kind: ``metric_units`` are cubic
    meters, ``imperial_units`` hundreds of cubic feet.
    """

    metric_units: Decimal = Decimal("0")
    imperial_units: Decimal = Decimal("0")
    cubic_meters: Decimal
    corrected_volume: Decimal
    kwh: Decimal
    correction_factor: Decimal
    calorific_value: Decimal

    @property
    def imperial(self) -> bool:
        return self.imperial_units > 0
