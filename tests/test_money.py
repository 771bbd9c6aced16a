"""Tests for money arithmetic and billing-period helpers."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from utility_billing.errors import BillingError, ErrorKind
from utility_billing.money import (
    average_daily_usage,
    billing_days,
    estimate_consumption,
    flat_cost,
    pence_to_pounds,
    round_money,
    standing_charge_total,
    to_decimal,
    vat_amount,
)


class TestRounding:
    def test_half_up_not_bankers(self) -> None:
        assert round_money(Decimal("2.125")) == Decimal("2.13")
        assert round_money(Decimal("2.124")) == Decimal("2.12")

    def test_negative_rounds_away_from_zero(self) -> None:
        assert round_money(Decimal("-2.125")) == Decimal("-2.13")

    def test_result_has_two_places(self) -> None:
        assert str(round_money(Decimal("5"))) == "5.00"

    def test_float_goes_through_str(self) -> None:
        assert to_decimal(0.1) == Decimal("0.1")
        assert to_decimal("28.62") == Decimal("28.62")
        assert to_decimal(3) == Decimal(3)


class TestCharges:
    def test_flat_cost_in_pounds(self) -> None:
        assert flat_cost(Decimal("100"), Decimal("28.62")) == Decimal("28.62")

    def test_flat_cost_rounds_once_at_the_end(self) -> None:
        # 33.3 units at 10.05p = 334.665p
        assert flat_cost(Decimal("33.3"), Decimal("10.05")) == Decimal("3.35")

    def test_zero_units_cost_nothing(self) -> None:
        assert flat_cost(Decimal("0"), Decimal("28.62")) == Decimal("0.00")

    def test_standing_charge_total(self) -> None:
        assert standing_charge_total(Decimal("0.45"), 31) == Decimal("13.95")

    def test_vat_rounded_half_up(self) -> None:
        # 42.57 * 0.05 = 2.1285
        assert vat_amount(Decimal("42.57"), Decimal("0.05")) == Decimal("2.13")

    def test_pence_to_pounds_keeps_four_places(self) -> None:
        assert pence_to_pounds(Decimal("28.62")) == Decimal("0.2862")
        assert pence_to_pounds(Decimal("7.425")) == Decimal("0.0743")

    def test_pence_to_pounds_never_below_four_places(self) -> None:
        assert str(pence_to_pounds(Decimal("7.425"), places=2)) == "0.0743"
        assert str(pence_to_pounds(Decimal("7.425"), places=6)) == "0.074250"


class TestBillingDays:
    def test_inclusive_count(self) -> None:
        assert billing_days(date(2024, 1, 1), date(2024, 1, 31)) == 31

    def test_single_day_period(self) -> None:
        assert billing_days(date(2024, 3, 5), date(2024, 3, 5)) == 1

    def test_leap_february(self) -> None:
        assert billing_days(date(2024, 2, 1), date(2024, 2, 29)) == 29

    def test_start_after_end_rejected(self) -> None:
        with pytest.raises(BillingError) as exc_info:
            billing_days(date(2024, 2, 1), date(2024, 1, 1))
        assert exc_info.value.kind == ErrorKind.INVALID_BILLING_PERIOD

    def test_missing_date_rejected(self) -> None:
        with pytest.raises(BillingError) as exc_info:
            billing_days(None, date(2024, 1, 1))
        assert exc_info.value.kind == ErrorKind.INVALID_BILLING_PERIOD


class TestUsageAverages:
    def test_average_daily_usage(self) -> None:
        assert average_daily_usage(Decimal("100"), 4) == Decimal("25")

    def test_empty_span_averages_zero(self) -> None:
        assert average_daily_usage(Decimal("100"), 0) == Decimal("0")

    def test_estimate_consumption(self) -> None:
        assert estimate_consumption(Decimal("25"), 3) == Decimal("75")
        assert estimate_consumption(Decimal("25"), -3) == Decimal("0")
