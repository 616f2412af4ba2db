"""
Reconciliation Service - keeps the payments ledger in step with OnePay.

Three signals feed it:
1. initiate: the client asks for a checkout link
2. ingest_callback: OnePay posts an unauthenticated, possibly out-of-order callback
3. get_status: the client polls; we actively verify with OnePay for a bounded time

Every status change is a conditional ledger write. Finalization (QR credential
+ confirmation e-mail) runs once after the PAID transition; its failure is
recorded on the payment and retried later, never rolled back.
"""

import asyncio
import math
import uuid
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Union
from urllib.parse import urlencode

from sqlalchemy.ext.asyncio import AsyncSession

from confpay.config import settings
from confpay.errors import (
    AppError,
    BadRequestError,
    ConflictError,
    GatewayError,
    NotFoundError,
)
from confpay.fsm.states import (
    GatewayOutcome,
    OrderPaymentStatus,
    PaymentStatus,
    TRANSIENT_PAYMENT_STATUSES,
)
from confpay.models.payment import Payment
from confpay.services.finalization_service import FinalizationService
from confpay.services.onepay_client import (
    CustomerInfo,
    OnePayClient,
    classify_outcome,
    to_minor_units,
)
from confpay.services.payment_ledger import PaymentLedger
from confpay.services.registration_service import RegistrationService, parse_registration_id

logger = logging.getLogger(__name__)

NOT_CONFIRMED_REASON = "Payment not confirmed within the verification window."
MIN_CHECK_TIMEOUT_SECONDS = 1.0


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class InitiateResult:
    payment_id: uuid.UUID
    redirect_url: str
    provider_transaction_id: str
    reused: bool


@dataclass
class CallbackResult:
    status: str
    already_processed: bool = False


class ReconciliationService:
    """Payment state machine driver."""

    def __init__(
        self,
        db: AsyncSession,
        gateway: OnePayClient,
        finalizer: FinalizationService,
        verify_budget_seconds: Optional[float] = None,
        verify_interval_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
        redirect_base_url: Optional[str] = None,
    ):
        self.db = db
        self.gateway = gateway
        self.finalizer = finalizer
        self.ledger = PaymentLedger(db)
        self.registrations = RegistrationService(db)
        self.verify_budget = (
            verify_budget_seconds
            if verify_budget_seconds is not None
            else settings.payment_verify_budget_seconds
        )
        self.verify_interval = (
            verify_interval_seconds
            if verify_interval_seconds is not None
            else settings.payment_verify_interval_seconds
        )
        self.sleep = sleep
        self.clock = clock
        self.redirect_base_url = redirect_base_url or settings.onepay_transaction_redirect_url

    # ------------------------------------------------------------------
    # Initiation
    # ------------------------------------------------------------------

    async def initiate(self, registration_id: Union[str, uuid.UUID]) -> InitiateResult:
        """
        Create or reuse the registration's transient payment and obtain a checkout link.
        A PENDING payment that already has a link is returned as-is (reused=True).
        """
        registration_id = parse_registration_id(registration_id)
        registration = await self.registrations.get_order(registration_id)
        # The order's status mirror can lag the ledger
        if registration.is_paid or await self.ledger.has_paid(registration_id):
            raise ConflictError("Registration is already paid.", {"registration_id": str(registration_id)})

        payment, _ = await self.ledger.create_or_reuse_transient(
            registration_id,
            registration.registration_code,
            registration.fee_amount,
            registration.fee_currency,
        )
        # A lost creation race rolls the session back; read the order again.
        registration = await self.registrations.get_order(registration_id)

        if payment.status == PaymentStatus.PENDING.value and payment.redirect_url:
            logger.info(f"Reusing checkout for payment {payment.reference}")
            return self._initiate_result(payment, reused=True)

        await self.ledger.record_attempt(payment)
        try:
            checkout = await self.gateway.create_checkout(
                amount=payment.amount,
                currency=payment.currency,
                reference=payment.reference,
                customer=CustomerInfo(
                    first_name=registration.first_name or "N/A",
                    last_name=registration.last_name or "N/A",
                    phone=registration.mobile or "N/A",
                    email=registration.email,
                ),
                redirect_target=self._redirect_target(registration_id),
                additional_data=registration.registration_code,
            )
        except Exception as e:
            reason = e.message if isinstance(e, AppError) else (str(e) or "Initiation failed")
            logger.error(f"Checkout creation failed for payment {payment.reference}: {reason}")
            if await self.ledger.transition(
                payment, PaymentStatus.FAILED, expected=TRANSIENT_PAYMENT_STATUSES, last_error=reason
            ):
                await self.registrations.save_payment_mirror(
                    registration_id, OrderPaymentStatus.FAILED, payment.reference
                )
            if isinstance(e, AppError):
                raise
            raise GatewayError("Failed to initiate payment.") from e

        won = await self.ledger.transition(
            payment,
            PaymentStatus.PENDING,
            expected={PaymentStatus.INITIATED},
            provider_transaction_id=checkout.provider_transaction_id,
            redirect_url=checkout.redirect_url,
        )
        if not won:
            if payment.status == PaymentStatus.PENDING.value and payment.redirect_url:
                return self._initiate_result(payment, reused=True)
            raise ConflictError(
                "Payment changed during initiation.",
                {"payment_id": str(payment.id), "status": payment.status},
            )

        await self.registrations.save_payment_mirror(
            registration_id, OrderPaymentStatus.PENDING, checkout.provider_transaction_id
        )
        return self._initiate_result(payment, reused=False)

    def _redirect_target(self, registration_id: uuid.UUID) -> str:
        return f"{self.redirect_base_url}?{urlencode({'rid': str(registration_id)})}"

    @staticmethod
    def _initiate_result(payment: Payment, reused: bool) -> InitiateResult:
        return InitiateResult(
            payment_id=payment.id,
            redirect_url=payment.redirect_url,
            provider_transaction_id=payment.provider_transaction_id,
            reused=reused,
        )

    # ------------------------------------------------------------------
    # Callback
    # ------------------------------------------------------------------

    async def ingest_callback(self, payload: Dict[str, Any]) -> CallbackResult:
        """
        Record a OnePay callback and act on it only after verification.

        The callback is unauthenticated: a failure status never fails the
        payment, and a success status is trusted only after the amount and
        currency check (or, when the callback omits them, one status query).
        """
        if not isinstance(payload, dict):
            raise BadRequestError("Callback body must be a JSON object.")

        transaction_id = payload.get("transaction_id")
        if not transaction_id:
            raise BadRequestError("Missing transaction_id.")

        payment = await self.ledger.find_by_provider_tx_id(str(transaction_id))
        if payment is None:
            raise NotFoundError(
                "Payment not found for transaction_id.", {"transaction_id": str(transaction_id)}
            )

        await self.ledger.annotate(payment, last_callback=dict(payload))

        if payment.is_paid:
            return CallbackResult(status=payment.status, already_processed=True)
        if not payment.is_transient:
            return CallbackResult(status=payment.status)

        outcome = classify_outcome(payload.get("status"), payload.get("status_message"))
        if outcome != GatewayOutcome.PAID:
            logger.info(
                f"Callback for {payment.reference} reports {outcome.value}; recorded for audit only"
            )
            return CallbackResult(status=payment.status)

        amount = payload.get("amount")
        currency = payload.get("currency")
        if amount is not None and currency:
            await self._confirm_paid(payment, amount, currency, None)
            return CallbackResult(status=payment.status)

        try:
            status = await self.gateway.get_status(payment.provider_transaction_id)
        except GatewayError as e:
            logger.warning(f"Callback verification for {payment.reference} failed: {e.message}")
            await self.ledger.annotate(payment, last_error=e.message)
            return CallbackResult(status=payment.status)

        if status.outcome == GatewayOutcome.PAID:
            await self._confirm_paid(payment, status.amount, status.currency, status.paid_at)
        return CallbackResult(status=payment.status)

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def get_status(self, registration_id: Union[str, uuid.UUID]) -> Payment:
        """
        Return the latest payment for a registration, verifying with OnePay
        for up to the configured budget while it is still transient.

        Exhausting the budget fails the payment: the caller always gets a
        final status.
        """
        registration_id = parse_registration_id(registration_id)
        await self.registrations.get_order(registration_id)

        payment = await self.ledger.find_latest(registration_id)
        if payment is None:
            raise NotFoundError(
                "No payment found for this registration.", {"registration_id": str(registration_id)}
            )

        if payment.is_paid:
            if payment.finalized_at is None:
                await self._finalize(payment)
            return payment

        if not payment.is_transient:
            return payment

        if not payment.provider_transaction_id:
            await self._fail(payment, "Missing OnePay transaction id.")
            return payment

        return await self._verify_until_final(payment)

    async def _verify_until_final(self, payment: Payment) -> Payment:
        """
        Poll OnePay every verify_interval seconds until the payment is terminal.

        The budget bounds wall-clock time, not just the number of checks: no
        sleep may run past the deadline and each status query is cut off at
        the time remaining.
        """
        checks = max(1, math.ceil(self.verify_budget / self.verify_interval))
        deadline = self.clock() + timedelta(seconds=self.verify_budget)
        last_error: Optional[str] = None

        for attempt in range(checks):
            remaining = (deadline - self.clock()).total_seconds()
            if attempt > 0 and remaining <= 0:
                break
            try:
                if await self.verify_once(payment, timeout=max(remaining, MIN_CHECK_TIMEOUT_SECONDS)):
                    return payment
            except GatewayError as e:
                last_error = e.message
                logger.warning(
                    f"Status check {attempt + 1}/{checks} for {payment.reference} failed: {last_error}"
                )
                await self.ledger.annotate(payment, last_error=last_error)

            if attempt == checks - 1:
                break
            if (deadline - self.clock()).total_seconds() < self.verify_interval:
                break
            await self.sleep(self.verify_interval)
            await self.ledger.reload(payment)
            if not payment.is_transient:
                # A callback or another poll concluded it meanwhile
                return payment

        await self._fail(payment, last_error or NOT_CONFIRMED_REASON)
        return payment

    async def verify_once(self, payment: Payment, timeout: Optional[float] = None) -> bool:
        """
        One status query. Returns True once the payment is terminal.
        Raises GatewayError on transport failure or when the query outlives
        timeout, and ConflictError on an amount/currency mismatch.
        """
        try:
            status = await asyncio.wait_for(
                self.gateway.get_status(payment.provider_transaction_id), timeout
            )
        except asyncio.TimeoutError:
            raise GatewayError(f"OnePay status check timed out after {timeout:.1f}s")

        if status.outcome == GatewayOutcome.PAID:
            await self._confirm_paid(payment, status.amount, status.currency, status.paid_at)
            return True

        if status.outcome == GatewayOutcome.FAILED:
            await self._fail(payment, status.message or "Payment failed at the gateway.")
            return True

        return False

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _confirm_paid(
        self,
        payment: Payment,
        amount: Any,
        currency: Optional[str],
        paid_at: Optional[datetime],
    ) -> None:
        await self._check_amount(payment, amount, currency)

        won = await self.ledger.transition(
            payment,
            PaymentStatus.PAID,
            expected=TRANSIENT_PAYMENT_STATUSES,
            paid_at=paid_at or self.clock(),
            last_error=None,
        )
        if not won:
            return

        await self.registrations.save_payment_mirror(
            payment.registration_id, OrderPaymentStatus.PAID, payment.provider_transaction_id
        )
        await self._finalize(payment)

    async def _check_amount(self, payment: Payment, amount: Any, currency: Optional[str]) -> None:
        """Compare a PAID report against the stored amount (in minor units) and currency."""
        problem = None
        if amount is not None and to_minor_units(amount) != to_minor_units(payment.amount):
            problem = "Payment amount mismatch. Manual review required."
        elif currency and str(currency).upper() != payment.currency.upper():
            problem = "Payment currency mismatch. Manual review required."

        if problem is None:
            return

        details = {
            "payment_id": str(payment.id),
            "expected_amount": str(payment.amount),
            "expected_currency": payment.currency,
            "reported_amount": str(amount),
            "reported_currency": currency,
        }
        logger.error(f"{problem} payment={payment.reference} details={details}")
        await self.ledger.annotate(payment, last_error=problem)
        raise ConflictError(problem, details)

    async def _fail(self, payment: Payment, reason: str) -> None:
        won = await self.ledger.transition(
            payment,
            PaymentStatus.FAILED,
            expected=TRANSIENT_PAYMENT_STATUSES,
            last_error=reason,
        )
        if won:
            await self.registrations.save_payment_mirror(
                payment.registration_id, OrderPaymentStatus.FAILED, payment.provider_transaction_id
            )

    async def _finalize(self, payment: Payment) -> None:
        """Run the on-paid trigger; record failures for a later retry."""
        try:
            await self.finalizer.on_paid(payment.registration_id)
        except Exception as e:
            logger.error(f"Finalization failed for payment {payment.reference}: {e}", exc_info=True)
            await self.db.rollback()
            await self.ledger.reload(payment)
            await self.ledger.annotate(payment, last_error=f"Finalize failed: {e}")
            return

        await self.ledger.annotate(payment, finalized_at=self.clock(), last_error=None)

    # ------------------------------------------------------------------
    # Background sweep
    # ------------------------------------------------------------------

    async def retry_finalization(self, payment: Payment) -> bool:
        """Re-run finalization for a PAID payment; True if it completed."""
        if not payment.is_paid or payment.finalized_at is not None:
            return False
        await self._finalize(payment)
        return payment.finalized_at is not None

    async def reconcile_once(self, payment: Payment) -> str:
        """Single best-effort verification of a stale transient payment."""
        if not payment.is_transient or not payment.provider_transaction_id:
            return payment.status
        try:
            await self.verify_once(payment)
        except GatewayError as e:
            await self.ledger.annotate(payment, last_error=e.message)
        except ConflictError as e:
            logger.warning(f"Stale payment {payment.reference} left for manual review: {e.message}")
        return payment.status
