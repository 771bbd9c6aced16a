"""Billing error type.

Every failure the engine reports is a ``BillingError`` tagged with an
``ErrorKind``. Callers branch on ``kind`` rather than on exception classes;
``context`` carries the structured detail (offending value, entity ids).
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Kinds of billing failure."""

    INVALID_READING = "invalid_reading"
    INVALID_BILLING_PERIOD = "invalid_billing_period"
    NO_TARIFF_ASSIGNED = "no_tariff_assigned"
    TARIFF_NOT_FOUND = "tariff_not_found"
    NO_MATCHING_METER = "no_matching_meter"
    PERSISTENCE_FAILURE = "persistence_failure"
    LEDGER_INCONSISTENCY = "ledger_inconsistency"
    CUSTOMER_NOT_FOUND = "customer_not_found"
    METER_NOT_FOUND = "meter_not_found"
    INVOICE_NOT_FOUND = "invoice_not_found"
    PAYMENT_NOT_FOUND = "payment_not_found"
    INVALID_PAYMENT = "invalid_payment"
    INVALID_INVOICE_STATE = "invalid_invoice_state"
    INVALID_TARIFF = "invalid_tariff"
    NOTHING_TO_BILL = "nothing_to_bill"


class BillingError(Exception):
    """Typed billing failure with structured context."""

    def __init__(self, kind: ErrorKind, message: str, **context: Any) -> None:
        self.kind = kind
        self.message = message
        self.context = context
        super().__init__(f"[{kind.value}] {message}")

    @property
    def retryable(self) -> bool:
        """Storage failures leave state untouched and may be retried by the caller."""
        return self.kind == ErrorKind.PERSISTENCE_FAILURE

    @property
    def fatal(self) -> bool:
        """Internal invariant violations are programmer errors."""
        return self.kind == ErrorKind.LEDGER_INCONSISTENCY


def invalid_reading(meter_id: str, value: Any, reason: str, **context: Any) -> BillingError:
    return BillingError(
        ErrorKind.INVALID_READING,
        f"Invalid reading {value} for meter {meter_id}: {reason}",
        meter_id=meter_id,
        value=value,
        **context,
    )


def invalid_period(start: Any, end: Any, reason: str) -> BillingError:
    return BillingError(
        ErrorKind.INVALID_BILLING_PERIOD,
        f"Invalid billing period {start} to {end}: {reason}",
        period_start=start,
        period_end=end,
    )


def not_found(kind: ErrorKind, entity: str, entity_id: str) -> BillingError:
    return BillingError(kind, f"{entity} {entity_id} not found", entity_id=entity_id)


def persistence_failure(operation: str, entity_id: str | None = None) -> BillingError:
    return BillingError(
        ErrorKind.PERSISTENCE_FAILURE,
        f"Storage operation failed: {operation}",
        operation=operation,
        entity_id=entity_id,
    )


def ledger_inconsistency(message: str, **context: Any) -> BillingError:
    return BillingError(ErrorKind.LEDGER_INCONSISTENCY, message, **context)
