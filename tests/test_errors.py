"""Tests for the billing error type."""

from __future__ import annotations

from datetime import date

from utility_billing.errors import (
    BillingError,
    ErrorKind,
    invalid_period,
    invalid_reading,
    ledger_inconsistency,
    not_found,
    persistence_failure,
)


class TestBillingError:
    def test_message_carries_kind(self) -> None:
        err = BillingError(ErrorKind.NO_TARIFF_ASSIGNED, "no tariff", customer_id="c1")
        assert str(err) == "[no_tariff_assigned] no tariff"
        assert err.context == {"customer_id": "c1"}

    def test_only_persistence_failures_are_retryable(self) -> None:
        assert persistence_failure("save invoice", "i1").retryable
        assert not invalid_reading("m1", -1, "negative").retryable

    def test_ledger_inconsistency_is_fatal(self) -> None:
        assert ledger_inconsistency("mismatch").fatal
        assert not persistence_failure("save").fatal


class TestFactories:
    def test_invalid_reading_context(self) -> None:
        err = invalid_reading("MTR-1", 42, "regressed", previous=50)
        assert err.kind == ErrorKind.INVALID_READING
        assert err.context["meter_id"] == "MTR-1"
        assert err.context["value"] == 42
        assert err.context["previous"] == 50

    def test_invalid_period_context(self) -> None:
        err = invalid_period(date(2024, 2, 1), date(2024, 1, 1), "start is after end")
        assert err.kind == ErrorKind.INVALID_BILLING_PERIOD
        assert err.context["period_start"] == date(2024, 2, 1)

    def test_not_found(self) -> None:
        err = not_found(ErrorKind.INVOICE_NOT_FOUND, "Invoice", "inv-9")
        assert err.kind == ErrorKind.INVOICE_NOT_FOUND
        assert "inv-9" in err.message
        assert err.context["entity_id"] == "inv-9"
