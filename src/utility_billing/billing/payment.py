"""Payments applied to customer accounts."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field


class PaymentMethod(str, Enum):
    CASH = "cash"
    CHEQUE = "cheque"
    BANK_TRANSFER = "bank_transfer"
    DEBIT_CARD = "debit_card"
    CREDIT_CARD = "credit_card"
    DIRECT_DEBIT = "direct_debit"
    ONLINE = "online"
    OTHER = "other"


class PaymentStatus(str, Enum):
    COMPLETED = "completed"
    REFUNDED = "refunded"
    FAILED = "failed"


def _reference() -> str:
    return f"PAY-{uuid.uuid4().hex[:10].upper()}"


class Payment(BaseModel):
    payment_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    reference: str = Field(default_factory=_reference)
    customer_id: str
    account_number: str = ""
    invoice_id: str | None = None
    invoice_number: str | None = None
    amount: Decimal = Field(gt=0)
    method: PaymentMethod = PaymentMethod.CASH
    status: PaymentStatus = PaymentStatus.COMPLETED
    payment_date: date = Field(default_factory=date.today)
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    notes: str = ""

    @property
    def is_invoice_payment(self) -> bool:
        return bool(self.invoice_id)

    @property
    def is_applied(self) -> bool:
        """Completed payments count towards the account balance."""
        return self.status == PaymentStatus.COMPLETED

    def mark_refunded(self, reason: str) -> None:
        self.status = PaymentStatus.REFUNDED
        note = f"Refund: {reason}"
        self.notes = f"{self.notes} | {note}" if self.notes else note
