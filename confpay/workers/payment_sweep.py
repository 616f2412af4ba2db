"""
Payment Sweep Worker.

Picks up work the request paths left behind:
- PAID payments whose finalization (QR + e-mail) failed
- transient payments that were never polled after checkout
"""

import asyncio
import logging
from typing import Dict

from sqlalchemy.ext.asyncio import AsyncSession

from confpay.config import settings
from confpay.database import get_db_context
from confpay.services.finalization_service import FinalizationService
from confpay.services.mail_service import Mailer
from confpay.services.onepay_client import OnePayClient
from confpay.services.payment_ledger import PaymentLedger
from confpay.services.reconciliation_service import ReconciliationService
from confpay.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


async def run_finalization_sweep(
    db: AsyncSession,
    gateway: OnePayClient,
    mailer: Mailer,
    limit: int,
) -> Dict[str, int]:
    service = ReconciliationService(db, gateway, FinalizationService(db, mailer))
    payments = await PaymentLedger(db).list_unfinalized_paid(limit)

    completed = 0
    for payment in payments:
        if await service.retry_finalization(payment):
            completed += 1
    return {"checked": len(payments), "finalized": completed}


async def run_stale_sweep(
    db: AsyncSession,
    gateway: OnePayClient,
    mailer: Mailer,
    older_than_minutes: int,
    limit: int,
) -> Dict[str, int]:
    service = ReconciliationService(db, gateway, FinalizationService(db, mailer))
    payments = await PaymentLedger(db).list_stale_transient(older_than_minutes, limit)

    concluded = 0
    for payment in payments:
        status = await service.reconcile_once(payment)
        if status not in ("INITIATED", "PENDING"):
            concluded += 1
    return {"checked": len(payments), "concluded": concluded}


async def _with_collaborators(sweep, **kwargs) -> Dict[str, int]:
    gateway = OnePayClient.from_settings(settings)
    mailer = Mailer.from_settings(settings)
    try:
        async with get_db_context() as db:
            return await sweep(db, gateway, mailer, **kwargs)
    finally:
        await gateway.aclose()
        await mailer.aclose()


@celery_app.task(bind=True, max_retries=3)
def retry_pending_finalizations(self):
    """Re-run finalization for PAID payments without a finalized_at marker."""
    try:
        result = asyncio.run(
            _with_collaborators(run_finalization_sweep, limit=settings.finalization_sweep_batch_size)
        )
        logger.info(f"Finalization sweep: {result}")
        return {"success": True, **result}
    except Exception as e:
        logger.error(f"Finalization sweep failed: {e}")
        self.retry(exc=e, countdown=60)


@celery_app.task(bind=True, max_retries=3)
def reconcile_stale_payments(self):
    """One status check for transient payments nobody has polled recently."""
    try:
        result = asyncio.run(
            _with_collaborators(
                run_stale_sweep,
                older_than_minutes=settings.stale_payment_minutes,
                limit=settings.finalization_sweep_batch_size,
            )
        )
        logger.info(f"Stale payment sweep: {result}")
        return {"success": True, **result}
    except Exception as e:
        logger.error(f"Stale payment sweep failed: {e}")
        self.retry(exc=e, countdown=60)
