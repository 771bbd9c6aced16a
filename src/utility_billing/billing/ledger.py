"""Payments, refunds and the account ledger.

A customer's balance always equals the sum of completed payments minus the
totals of every non-cancelled invoice. Each operation here keeps that
identity by pairing its invoice/payment change with exactly one balance
movement, under the same per-customer lock the billing engine uses.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date
from decimal import Decimal, InvalidOperation

from utility_billing.billing.customer import Customer
from utility_billing.billing.invoice import Invoice
from utility_billing.billing.locks import CustomerLocks
from utility_billing.billing.payment import Payment, PaymentMethod, PaymentStatus
from utility_billing.errors import (
    BillingError,
    ErrorKind,
    ledger_inconsistency,
    not_found,
)
from utility_billing.logging.context import log_context
from utility_billing.money import ZERO, to_decimal
from utility_billing.repository.base import (
    CustomerRepository,
    InvoiceRepository,
    PaymentRepository,
)

logger = logging.getLogger(__name__)


def _positive_amount(amount: Decimal | int | str) -> Decimal:
    try:
        value = to_decimal(amount)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise BillingError(
            ErrorKind.INVALID_PAYMENT, f"Payment amount {amount!r} is not a number",
            amount=amount,
        ) from exc
    if not value.is_finite() or value <= 0:
        raise BillingError(
            ErrorKind.INVALID_PAYMENT, f"Payment amount must be positive, got {value}",
            amount=value,
        )
    return value


class LedgerService:
    def __init__(
        self,
        customers: CustomerRepository,
        invoices: InvoiceRepository,
        payments: PaymentRepository,
        locks: CustomerLocks | None = None,
    ) -> None:
        self._customers = customers
        self._invoices = invoices
        self._payments = payments
        self._locks = locks or CustomerLocks()

    async def _load_customer(self, customer_id: str) -> Customer:
        customer = await self._customers.get(customer_id)
        if customer is None:
            raise not_found(ErrorKind.CUSTOMER_NOT_FOUND, "Customer", customer_id)
        return customer

    async def _load_invoice(self, invoice_id: str) -> Invoice:
        invoice = await self._invoices.get(invoice_id)
        if invoice is None:
            raise not_found(ErrorKind.INVOICE_NOT_FOUND, "Invoice", invoice_id)
        return invoice

    async def _load_payment(self, payment_id: str) -> Payment:
        payment = await self._payments.get(payment_id)
        if payment is None:
            raise not_found(ErrorKind.PAYMENT_NOT_FOUND, "Payment", payment_id)
        return payment

    async def _fail_payment(self, payment: Payment, note: str) -> None:
        payment.status = PaymentStatus.FAILED
        payment.notes = f"{payment.notes} | {note}" if payment.notes else note
        try:
            await self._payments.update(payment)
        except Exception:
            logger.error("Could not mark payment %s failed", payment.reference, exc_info=True)

    # ── Payments ─────────────────────────────────────────────

    async def record_payment(
        self,
        invoice_id: str,
        amount: Decimal | int | str,
        method: PaymentMethod = PaymentMethod.CASH,
        payment_date: date | None = None,
        notes: str = "",
    ) -> Payment:
        """Pay (part of) an invoice and credit the customer's account."""
        value = _positive_amount(amount)
        existing = await self._load_invoice(invoice_id)

        with log_context(customer_id=existing.customer_id, invoice_id=invoice_id):
            async with self._locks.for_customer(existing.customer_id):
                invoice = await self._load_invoice(invoice_id)
                customer = await self._load_customer(invoice.customer_id)
                before = invoice.model_copy(deep=True)
                invoice.apply_payment(value)

                payment = Payment(
                    customer_id=customer.customer_id,
                    account_number=customer.account_number,
                    invoice_id=invoice.invoice_id,
                    invoice_number=invoice.invoice_number,
                    amount=value,
                    method=method,
                    payment_date=payment_date or date.today(),
                    notes=notes,
                )
                await self._payments.save(payment)
                try:
                    await self._invoices.update(invoice)
                except Exception:
                    await self._fail_payment(payment, "invoice update failed")
                    raise
                try:
                    await self._customers.credit_account(customer.customer_id, value)
                except Exception:
                    logger.error(
                        "Crediting payment %s failed, reverting invoice %s",
                        payment.reference, invoice.invoice_number, exc_info=True,
                    )
                    await self._invoices.update(before)
                    await self._fail_payment(payment, "account credit failed")
                    raise

                logger.info(
                    "Recorded payment %s of %s against invoice %s (%s)",
                    payment.reference, value, invoice.invoice_number, invoice.status.value,
                )
                return payment

    async def record_account_payment(
        self,
        customer_id: str,
        amount: Decimal | int | str,
        method: PaymentMethod = PaymentMethod.CASH,
        payment_date: date | None = None,
        notes: str = "",
    ) -> Payment:
        """Credit the account without allocating to an invoice."""
        value = _positive_amount(amount)
        with log_context(customer_id=customer_id):
            async with self._locks.for_customer(customer_id):
                customer = await self._load_customer(customer_id)
                payment = Payment(
                    customer_id=customer_id,
                    account_number=customer.account_number,
                    amount=value,
                    method=method,
                    payment_date=payment_date or date.today(),
                    notes=notes,
                )
                await self._payments.save(payment)
                try:
                    await self._customers.credit_account(customer_id, value)
                except Exception:
                    await self._fail_payment(payment, "account credit failed")
                    raise
                logger.info("Recorded account payment %s of %s", payment.reference, value)
                return payment

    async def refund_payment(
        self, payment_id: str, reason: str, today: date | None = None,
    ) -> Payment:
        """Refund a completed payment, reopening its invoice if it had one."""
        today = today or date.today()
        existing = await self._load_payment(payment_id)

        with log_context(customer_id=existing.customer_id, payment_id=payment_id):
            async with self._locks.for_customer(existing.customer_id):
                payment = await self._load_payment(payment_id)
                if payment.status != PaymentStatus.COMPLETED:
                    raise BillingError(
                        ErrorKind.INVALID_PAYMENT,
                        f"Payment {payment.reference} cannot be refunded in status "
                        f"{payment.status.value}",
                        payment_id=payment_id, status=payment.status.value,
                    )

                invoice: Invoice | None = None
                if payment.invoice_id:
                    invoice = await self._load_invoice(payment.invoice_id)
                    invoice_before = invoice.model_copy(deep=True)
                    invoice.reverse_payment(payment.amount, today)

                payment_before = payment.model_copy(deep=True)
                payment.mark_refunded(reason)
                await self._payments.update(payment)
                try:
                    if invoice is not None:
                        await self._invoices.update(invoice)
                    await self._customers.debit_account(payment.customer_id, payment.amount)
                except Exception:
                    logger.error("Refund of %s failed, restoring", payment.reference, exc_info=True)
                    await self._payments.update(payment_before)
                    if invoice is not None:
                        await self._invoices.update(invoice_before)
                    raise

                logger.info(
                    "Refunded payment %s of %s: %s", payment.reference, payment.amount, reason,
                )
                return payment

    # ── Overdue and consistency ──────────────────────────────

    async def mark_overdue_invoices(
        self, today: date | None = None, customer_ids: Iterable[str] | None = None,
    ) -> list[Invoice]:
        """Flag unpaid invoices past their due date. Returns the ones changed."""
        today = today or date.today()
        ids = list(customer_ids) if customer_ids is not None else await self._customers.list_ids()
        changed: list[Invoice] = []
        for customer_id in ids:
            async with self._locks.for_customer(customer_id):
                for invoice in await self._invoices.find_by_customer(customer_id):
                    if invoice.mark_overdue(today):
                        await self._invoices.update(invoice)
                        changed.append(invoice)
        if changed:
            logger.info("Marked %d invoices overdue as of %s", len(changed), today)
        return changed

    async def expected_balance(self, customer_id: str) -> Decimal:
        """Completed payments minus the totals of non-cancelled invoices."""
        invoices = await self._invoices.find_by_customer(customer_id)
        payments = await self._payments.find_by_customer(customer_id)
        charged = sum((i.total_amount for i in invoices if i.is_active), ZERO)
        paid = sum((p.amount for p in payments if p.is_applied), ZERO)
        return paid - charged

    async def verify_ledger(self, customer_id: str) -> Decimal:
        """Check the account against its invoices and payments.

        Returns the balance. Raises ``LEDGER_INCONSISTENCY`` on any mismatch.
        """
        async with self._locks.for_customer(customer_id):
            customer = await self._load_customer(customer_id)
            invoices = await self._invoices.find_by_customer(customer_id)
            payments = await self._payments.find_by_customer(customer_id)

            for invoice in invoices:
                invoice.check_totals()
                applied = sum(
                    (p.amount for p in payments if p.invoice_id == invoice.invoice_id and p.is_applied),
                    ZERO,
                )
                if applied != invoice.amount_paid:
                    raise ledger_inconsistency(
                        f"Invoice {invoice.invoice_number} records {invoice.amount_paid} paid "
                        f"but payments total {applied}",
                        customer_id=customer_id, invoice_id=invoice.invoice_id,
                    )

            expected = await self.expected_balance(customer_id)
            if customer.account_balance != expected:
                raise ledger_inconsistency(
                    f"Account balance {customer.account_balance} for customer {customer_id} "
                    f"does not match ledger {expected}",
                    customer_id=customer_id,
                    expected=expected, actual=customer.account_balance,
                )
            return customer.account_balance
