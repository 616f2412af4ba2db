#!/usr/bin/env python3
"""
Run the bounded payment verification for one registration from the command line.

Usage:
    python scripts/verify_payment.py <registration_id> [--budget 60] [--interval 5]
"""

import argparse
import asyncio
import os
import sys

# Add project root to python path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from confpay.config import settings
from confpay.database import get_db_context
from confpay.errors import AppError
from confpay.logging_config import configure_logging
from confpay.services.finalization_service import FinalizationService
from confpay.services.mail_service import Mailer
from confpay.services.onepay_client import OnePayClient
from confpay.services.reconciliation_service import ReconciliationService


async def verify(registration_id: str, budget: float, interval: float) -> int:
    gateway = OnePayClient.from_settings(settings)
    mailer = Mailer.from_settings(settings)
    try:
        async with get_db_context() as db:
            service = ReconciliationService(
                db,
                gateway,
                FinalizationService(db, mailer),
                verify_budget_seconds=budget,
                verify_interval_seconds=interval,
            )
            payment = await service.get_status(registration_id)
            print(f"Payment {payment.reference}: {payment.status}")
            print(f"  transaction: {payment.provider_transaction_id}")
            print(f"  paid at:     {payment.paid_at}")
            print(f"  last error:  {payment.last_error}")
            return 0
    except AppError as e:
        print(f"{e.kind}: {e.message}")
        return 1
    finally:
        await gateway.aclose()
        await mailer.aclose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Verify a registration's OnePay payment")
    parser.add_argument("registration_id")
    parser.add_argument("--budget", type=float, default=settings.payment_verify_budget_seconds)
    parser.add_argument("--interval", type=float, default=settings.payment_verify_interval_seconds)
    args = parser.parse_args()

    configure_logging()
    if sys.platform == "win32":
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    sys.exit(asyncio.run(verify(args.registration_id, args.budget, args.interval)))
