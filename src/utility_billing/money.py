"""Fixed-point money and quantity arithmetic.

All amounts are ``Decimal``. Money is rounded half-up to pence only at the
point a charge is produced; unit rates stay in pence until then.
"""

from __future__ import annotations

from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from utility_billing.errors import invalid_period

ZERO = Decimal("0")
PENNY = Decimal("0.01")
HUNDRED = Decimal("100")

# Minimum precision for pence-to-pounds unit prices shown on line items.
UNIT_PRICE_PLACES = 4


def to_decimal(value: Decimal | int | float | str) -> Decimal:
    """Convert to Decimal without binary float artefacts."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def round_money(amount: Decimal) -> Decimal:
    """Round to 2 decimal places, half-up."""
    return amount.quantize(PENNY, rounding=ROUND_HALF_UP)


def pence_to_pounds(pence: Decimal, places: int = UNIT_PRICE_PLACES) -> Decimal:
    """Convert a pence rate to pounds keeping ``places`` decimals (at least 4)."""
    places = max(places, UNIT_PRICE_PLACES)
    return (pence / HUNDRED).quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def flat_cost(units: Decimal, rate_pence: Decimal) -> Decimal:
    """Cost in pounds of ``units`` at ``rate_pence`` per unit."""
    return round_money(rate_pence * units / HUNDRED)


def billing_days(start: date | None, end: date | None) -> int:
    """Inclusive day count of a billing period."""
    if start is None or end is None:
        raise invalid_period(start, end, "both dates are required")
    if start > end:
        raise invalid_period(start, end, "start is after end")
    return (end - start).days + 1


def standing_charge_total(daily_charge: Decimal, days: int) -> Decimal:
    return round_money(daily_charge * days)


def vat_amount(subtotal: Decimal, vat_rate: Decimal) -> Decimal:
    return round_money(subtotal * vat_rate)


def average_daily_usage(total_units: Decimal, days: int) -> Decimal:
    """Average units per day; zero for an empty span."""
    if days <= 0:
        return ZERO
    return total_units / days


def estimate_consumption(average_daily: Decimal, days: int) -> Decimal:
    return average_daily * max(days, 0)
