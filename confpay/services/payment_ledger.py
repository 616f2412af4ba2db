"""
Payment Ledger - persistent record of payment attempts.

All status changes are conditional UPDATEs (compare-and-set on the stored
status), so concurrent initiation, callback and polling requests for the same
registration never overwrite each other; the losing writer reloads the row
and sees the winner's result.
"""

import re
import secrets
import uuid
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Iterable, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from confpay.fsm.states import (
    PaymentProvider,
    PaymentStatus,
    TRANSIENT_PAYMENT_STATUSES,
    sources_for,
)
from confpay.models.payment import Payment

logger = logging.getLogger(__name__)

REFERENCE_MAX_LENGTH = 21
REFERENCE_SUFFIX_LENGTH = 6

# Columns that may still change once a payment is PAID
DIAGNOSTIC_FIELDS = frozenset({"attempts", "last_error", "last_callback", "finalized_at"})


def make_reference(registration_code: str) -> str:
    """
    Build the provider-facing reference: <code>-<6 hex chars>, at most 21 characters.
    The random suffix keeps retries for the same registration distinct.
    """
    suffix = secrets.token_hex(REFERENCE_SUFFIX_LENGTH // 2).upper()
    base = re.sub(r"[^A-Za-z0-9\-]", "", registration_code or "")
    max_base = REFERENCE_MAX_LENGTH - (1 + len(suffix))
    base = base[:max_base] or "REG"
    return f"{base}-{suffix}"


class PaymentLedger:
    """Keyed store of Payment rows with atomic per-row writes."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_latest(self, registration_id: uuid.UUID) -> Optional[Payment]:
        """Most recent payment for a registration."""
        result = await self.db.execute(
            select(Payment)
            .where(Payment.registration_id == registration_id)
            .order_by(Payment.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_transient(self, registration_id: uuid.UUID) -> Optional[Payment]:
        """The INITIATED/PENDING payment for a registration, if any."""
        result = await self.db.execute(
            select(Payment)
            .where(Payment.registration_id == registration_id)
            .where(Payment.status.in_([s.value for s in TRANSIENT_PAYMENT_STATUSES]))
            .order_by(Payment.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def has_paid(self, registration_id: uuid.UUID) -> bool:
        """True if any payment for the registration reached PAID."""
        result = await self.db.execute(
            select(Payment.id)
            .where(Payment.registration_id == registration_id)
            .where(Payment.status == PaymentStatus.PAID.value)
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def find_by_provider_tx_id(self, provider_transaction_id: str) -> Optional[Payment]:
        result = await self.db.execute(
            select(Payment)
            .where(Payment.provider_transaction_id == provider_transaction_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def create_or_reuse_transient(
        self,
        registration_id: uuid.UUID,
        registration_code: str,
        amount: Decimal,
        currency: str,
    ) -> Tuple[Payment, bool]:
        """
        Return the registration's transient payment, creating one if none exists.

        Returns (payment, reused). A concurrent creator that loses the race on
        the one-transient-per-registration index gets the winner's row back.
        """
        existing = await self.find_transient(registration_id)
        if existing is not None:
            return existing, True

        payment = Payment(
            registration_id=registration_id,
            provider=PaymentProvider.ONEPAY.value,
            reference=make_reference(registration_code),
            amount=amount,
            currency=currency,
            status=PaymentStatus.INITIATED.value,
            attempts=0,
        )
        self.db.add(payment)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            winner = await self.find_transient(registration_id)
            if winner is None:
                raise
            logger.info(f"Concurrent initiation for {registration_id}; reusing payment {winner.id}")
            return winner, True

        logger.info(f"Created payment {payment.reference} for registration {registration_id}")
        return payment, False

    async def save(self, payment: Payment) -> Payment:
        """Persist a new or modified payment."""
        self.db.add(payment)
        await self.db.commit()
        return payment

    async def reload(self, payment: Payment) -> Payment:
        """Refresh a payment from storage (observe concurrent writers)."""
        await self.db.refresh(payment)
        return payment

    async def transition(
        self,
        payment: Payment,
        target: PaymentStatus,
        expected: Optional[Iterable[PaymentStatus]] = None,
        **values: Any,
    ) -> bool:
        """
        Move payment to target only if its stored status is one of expected
        (default: every status that may legally reach target).

        Returns True if this call performed the transition. Either way the
        in-memory payment is refreshed to the stored row.
        """
        allowed = frozenset(expected) if expected is not None else sources_for(target)
        result = await self.db.execute(
            update(Payment)
            .where(Payment.id == payment.id)
            .where(Payment.status.in_([s.value for s in allowed]))
            .values(status=target.value, **values)
            .execution_options(synchronize_session=False)
        )
        won = result.rowcount == 1
        await self.db.commit()
        await self.db.refresh(payment)

        if won:
            logger.info(f"Payment {payment.reference} -> {target.value}")
        else:
            logger.info(
                f"Payment {payment.reference} transition to {target.value} lost; "
                f"stored status is {payment.status}"
            )
        return won

    async def annotate(self, payment: Payment, **diagnostics: Any) -> Payment:
        """Write diagnostic columns; allowed in every status, including PAID."""
        unknown = set(diagnostics) - DIAGNOSTIC_FIELDS
        if unknown:
            raise ValueError(f"Not a diagnostic field: {', '.join(sorted(unknown))}")

        await self.db.execute(
            update(Payment)
            .where(Payment.id == payment.id)
            .values(**diagnostics)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        await self.db.refresh(payment)
        return payment

    async def record_attempt(self, payment: Payment) -> Payment:
        """Count one checkout call to the provider and clear the previous error."""
        return await self.annotate(payment, attempts=Payment.attempts + 1, last_error=None)

    async def list_unfinalized_paid(self, limit: int) -> List[Payment]:
        """PAID payments whose credential/e-mail step has not completed yet."""
        result = await self.db.execute(
            select(Payment)
            .where(Payment.status == PaymentStatus.PAID.value)
            .where(Payment.finalized_at.is_(None))
            .order_by(Payment.paid_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_stale_transient(self, older_than_minutes: int, limit: int) -> List[Payment]:
        """Transient payments with a provider id that nobody has polled recently."""
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=older_than_minutes)
        result = await self.db.execute(
            select(Payment)
            .where(Payment.status.in_([s.value for s in TRANSIENT_PAYMENT_STATUSES]))
            .where(Payment.provider_transaction_id.is_not(None))
            .where(Payment.updated_at < cutoff)
            .order_by(Payment.updated_at)
            .limit(limit)
        )
        return list(result.scalars().all())
