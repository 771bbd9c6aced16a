"""Pydantic configuration models for all system settings."""

from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, Field


class BillingConfig(BaseModel):
    invoice_due_days: int = Field(14, ge=0)
    invoice_number_prefix: str = "INV"
    invoice_number_start: int = Field(1000, ge=1)
    # A reading below the previous one is only a rollover when the previous
    # value is at or above this fraction of the meter's max reading.
    rollover_tolerance: Decimal = Field(Decimal("0.95"), ge=0, le=1)
    batch_concurrency: int = Field(8, ge=1)
    default_vat_rate: Decimal = Field(Decimal("0.05"), ge=0, le=1)


class GasConversionConfig(BaseModel):
    """Defaults applied to newly created gas tariffs."""

    imperial_to_metric: Decimal = Field(Decimal("2.83"), gt=0)
    correction_factor: Decimal = Field(Decimal("1.02264"), gt=0)
    calorific_value: Decimal = Field(Decimal("39.4"), gt=0)
    kwh_divisor: Decimal = Field(Decimal("3.6"), gt=0)


class MeterConfig(BaseModel):
    default_max_reading: Decimal = Field(Decimal("99999.99"), gt=0)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "json"
    file: str = ""


class DBConfig(BaseModel):
    path: str = "utility_billing.db"


class AppConfig(BaseModel):
    """Root configuration model containing all system settings."""

    billing: BillingConfig = BillingConfig()
    gas: GasConversionConfig = GasConversionConfig()
    meters: MeterConfig = MeterConfig()
    logging: LoggingConfig = LoggingConfig()
    db: DBConfig = DBConfig()
