"""Pure invoice assembly: readings and a tariff in, a priced invoice out."""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

from utility_billing.billing.customer import Customer
from utility_billing.billing.invoice import (
    Invoice,
    InvoiceLineItem,
    MeterUsage,
    TariffSnapshot,
)
from utility_billing.metering.reading import Reading
from utility_billing.money import (
    UNIT_PRICE_PLACES,
    ZERO,
    billing_days,
    pence_to_pounds,
    round_money,
    standing_charge_total,
    vat_amount,
)
from utility_billing.tariff.base import Tariff
from utility_billing.tariff.pricing import Consumption, compute_cost

STANDING_CHARGE_DESCRIPTION = "Standing charge"


def format_invoice_number(prefix: str, number: int) -> str:
    return f"{prefix}-{number:06d}"


def summarise_meter(meter_id: str, readings: list[Reading]) -> tuple[MeterUsage, Consumption]:
    """Opening/closing registers and summed consumption for one meter.

    ``readings`` must be non-empty and ordered by date. The opening value is
    the register before the first reading in the period.
    """
    first, last = readings[0], readings[-1]
    day_night = first.is_day_night
    imperial = first.imperial

    units = sum((r.consumption for r in readings), ZERO)
    day_units = sum((r.day_consumption for r in readings), ZERO)
    night_units = sum((r.night_consumption for r in readings), ZERO)

    usage = MeterUsage(
        meter_id=meter_id,
        reading_count=len(readings),
        opening_reading=first.previous_value,
        closing_reading=last.value,
        opening_day_reading=first.previous_day_value,
        closing_day_reading=last.day_value,
        opening_night_reading=first.previous_night_value,
        closing_night_reading=last.night_value,
        units=units,
        day_units=day_units,
        night_units=night_units,
        imperial=imperial,
    )

    if day_night:
        consumption = Consumption(day_units=day_units, night_units=night_units)
    elif imperial:
        consumption = Consumption(imperial_units=units)
    else:
        consumption = Consumption(units=units)
    return usage, consumption


def assemble_invoice(
    *,
    customer: Customer,
    tariff: Tariff,
    readings_by_meter: dict[str, list[Reading]],
    period_start: date,
    period_end: date,
    issue_date: date,
    invoice_number: str,
    due_days: int,
) -> Invoice:
    """Price the period's readings and build the invoice.

    Nothing is persisted here and no argument is mutated.
    """
    days = billing_days(period_start, period_end)

    usages: list[MeterUsage] = []
    consumption = Consumption()
    reading_ids: list[str] = []
    for meter_id, readings in readings_by_meter.items():
        if not readings:
            continue
        usage, meter_consumption = summarise_meter(meter_id, readings)
        usages.append(usage)
        consumption = consumption + meter_consumption
        reading_ids.extend(r.reading_id for r in readings)

    charge = compute_cost(tariff, consumption)
    line_items = [
        InvoiceLineItem(
            description=band.description,
            quantity=band.quantity,
            unit=band.unit,
            unit_price=pence_to_pounds(band.rate_pence),
            amount=band.amount,
        )
        for band in charge.bands
    ]

    standing = standing_charge_total(tariff.standing_charge, days)
    line_items.append(InvoiceLineItem(
        description=STANDING_CHARGE_DESCRIPTION,
        quantity=Decimal(days),
        unit="days",
        unit_price=tariff.standing_charge.quantize(Decimal(1).scaleb(-UNIT_PRICE_PLACES)),
        amount=standing,
    ))

    subtotal = charge.unit_cost + standing
    vat = vat_amount(subtotal, tariff.vat_rate)
    total = round_money(subtotal + vat)

    return Invoice(
        invoice_number=invoice_number,
        customer_id=customer.customer_id,
        account_number=customer.account_number,
        period_start=period_start,
        period_end=period_end,
        issue_date=issue_date,
        due_date=issue_date + timedelta(days=due_days),
        meter_type=tariff.meter_type,
        tariff=TariffSnapshot.from_tariff(tariff),
        meter_usage=usages,
        units_consumed=consumption.total,
        day_units=consumption.day_units,
        night_units=consumption.night_units,
        gas_conversion=charge.gas,
        line_items=line_items,
        billing_days=days,
        unit_cost=charge.unit_cost,
        standing_charge_total=standing,
        subtotal=subtotal,
        vat_rate=tariff.vat_rate,
        vat_amount=vat,
        total_amount=total,
        balance_due=total,
        previous_balance=customer.account_balance,
        balance_after=customer.account_balance - total,
        reading_ids=reading_ids,
    )
