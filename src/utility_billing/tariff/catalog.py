"""Tariff creation, rate changes and deactivation."""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any

from pydantic import ValidationError

from utility_billing.config.schema import AppConfig
from utility_billing.errors import BillingError, ErrorKind, not_found
from utility_billing.money import to_decimal
from utility_billing.repository.base import TariffRepository
from utility_billing.tariff.base import (
    TARIFF_ADAPTER,
    DayNightTariff,
    FlatRateTariff,
    GasTariff,
    Tariff,
    TieredTariff,
)

logger = logging.getLogger(__name__)


def _number(value: Any) -> Any:
    """Floats go through str; anything else is left for pydantic to validate."""
    return to_decimal(value) if isinstance(value, float) else value


# Fields a rate change may never touch.
_IMMUTABLE_FIELDS = frozenset({"tariff_id", "kind", "meter_type"})


def _invalid(exc: ValidationError, name: str) -> BillingError:
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'tariff'}: {err['msg']}" for err in exc.errors()
    )
    return BillingError(
        ErrorKind.INVALID_TARIFF, f"Invalid tariff '{name}': {problems}",
        errors=[{"loc": list(e["loc"]), "msg": e["msg"]} for e in exc.errors()],
    )


class TariffCatalog:
    """Validated access to the tariff store.

    Tariffs are only ever deactivated, never deleted: issued invoices
    carry their own snapshot but still reference the tariff id.
    """

    def __init__(self, config: AppConfig, tariffs: TariffRepository) -> None:
        self._config = config
        self._tariffs = tariffs

    async def get(self, tariff_id: str) -> Tariff:
        tariff = await self._tariffs.find_by_id(tariff_id)
        if tariff is None:
            raise not_found(ErrorKind.TARIFF_NOT_FOUND, "Tariff", tariff_id)
        return tariff

    async def _create(self, model: type[Tariff], **fields: Any) -> Tariff:
        if fields.get("vat_rate") is None:
            fields["vat_rate"] = self._config.billing.default_vat_rate
        if fields.get("effective_from") is None:
            fields["effective_from"] = date.today()
        try:
            tariff = model(**fields)
        except ValidationError as exc:
            raise _invalid(exc, str(fields.get("name", ""))) from exc
        await self._tariffs.save(tariff)
        logger.info("Created %s tariff %s (%s)", tariff.kind.value, tariff.name, tariff.tariff_id)
        return tariff

    async def create_flat(
        self,
        name: str,
        rate_pence: Decimal | int | str,
        standing_charge: Decimal | int | str,
        *,
        vat_rate: Decimal | None = None,
        effective_from: date | None = None,
        effective_to: date | None = None,
        description: str = "",
    ) -> FlatRateTariff:
        return await self._create(
            FlatRateTariff,
            name=name,
            rate_pence=_number(rate_pence),
            standing_charge=_number(standing_charge),
            vat_rate=vat_rate,
            effective_from=effective_from,
            effective_to=effective_to,
            description=description,
        )

    async def create_day_night(
        self,
        name: str,
        day_rate_pence: Decimal | int | str,
        night_rate_pence: Decimal | int | str,
        standing_charge: Decimal | int | str,
        *,
        vat_rate: Decimal | None = None,
        effective_from: date | None = None,
        effective_to: date | None = None,
        description: str = "",
    ) -> DayNightTariff:
        return await self._create(
            DayNightTariff,
            name=name,
            day_rate_pence=_number(day_rate_pence),
            night_rate_pence=_number(night_rate_pence),
            standing_charge=_number(standing_charge),
            vat_rate=vat_rate,
            effective_from=effective_from,
            effective_to=effective_to,
            description=description,
        )

    async def create_tiered(
        self,
        name: str,
        threshold: Decimal | int | str,
        tier1_rate_pence: Decimal | int | str,
        tier2_rate_pence: Decimal | int | str,
        standing_charge: Decimal | int | str,
        *,
        vat_rate: Decimal | None = None,
        effective_from: date | None = None,
        effective_to: date | None = None,
        description: str = "",
    ) -> TieredTariff:
        return await self._create(
            TieredTariff,
            name=name,
            threshold=_number(threshold),
            tier1_rate_pence=_number(tier1_rate_pence),
            tier2_rate_pence=_number(tier2_rate_pence),
            standing_charge=_number(standing_charge),
            vat_rate=vat_rate,
            effective_from=effective_from,
            effective_to=effective_to,
            description=description,
        )

    async def create_gas(
        self,
        name: str,
        rate_pence: Decimal | int | str,
        standing_charge: Decimal | int | str,
        *,
        vat_rate: Decimal | None = None,
        effective_from: date | None = None,
        effective_to: date | None = None,
        description: str = "",
    ) -> GasTariff:
        """Gas tariff using the configured conversion factors."""
        gas = self._config.gas
        return await self._create(
            GasTariff,
            name=name,
            rate_pence=_number(rate_pence),
            standing_charge=_number(standing_charge),
            correction_factor=gas.correction_factor,
            calorific_value=gas.calorific_value,
            imperial_to_metric=gas.imperial_to_metric,
            kwh_divisor=gas.kwh_divisor,
            vat_rate=vat_rate,
            effective_from=effective_from,
            effective_to=effective_to,
            description=description,
        )

    async def update_rates(self, tariff_id: str, **changes: Any) -> Tariff:
        """Change rates or other fields. Issued invoices keep their snapshot."""
        locked = _IMMUTABLE_FIELDS & changes.keys()
        if locked:
            raise BillingError(
                ErrorKind.INVALID_TARIFF,
                f"Cannot change {', '.join(sorted(locked))} of tariff {tariff_id}",
                tariff_id=tariff_id,
            )
        current = await self.get(tariff_id)
        data = current.model_dump(mode="json")
        data.update({key: _number(value) for key, value in changes.items()})
        try:
            updated = TARIFF_ADAPTER.validate_python(data)
        except ValidationError as exc:
            raise _invalid(exc, current.name) from exc
        await self._tariffs.update(updated)
        logger.info("Updated tariff %s: %s", tariff_id, ", ".join(sorted(changes)))
        return updated

    async def deactivate(self, tariff_id: str) -> Tariff:
        tariff = await self.get(tariff_id)
        if tariff.active:
            tariff.active = False
            await self._tariffs.update(tariff)
            logger.info("Deactivated tariff %s", tariff_id)
        return tariff

    async def reactivate(self, tariff_id: str) -> Tariff:
        tariff = await self.get(tariff_id)
        if not tariff.active:
            tariff.active = True
            await self._tariffs.update(tariff)
            logger.info("Reactivated tariff %s", tariff_id)
        return tariff
