"""
OnePay payment endpoints.

- POST /payments/onepay/initiate: frontend asks for a checkout link
- POST /payments/onepay/callback: OnePay posts transaction updates (configure in the OnePay portal)
- GET  /payments/onepay/status/{registration_id}: frontend long-polls for a final result
"""

import logging
import uuid

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from confpay.api.deps import get_reconciliation_service
from confpay.errors import BadRequestError
from confpay.services.reconciliation_service import ReconciliationService

router = APIRouter()
logger = logging.getLogger(__name__)


class InitiateRequest(BaseModel):
    """Request body for payment initiation."""
    registration_id: uuid.UUID


@router.post("/onepay/initiate")
async def initiate_payment(
    body: InitiateRequest,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """Create or reuse a checkout link for a registration."""
    result = await service.initiate(body.registration_id)
    return {
        "payment_id": str(result.payment_id),
        "redirect_url": result.redirect_url,
        "provider_transaction_id": result.provider_transaction_id,
        "reused": result.reused,
    }


@router.post("/onepay/callback")
async def onepay_callback(
    request: Request,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """
    Handle a OnePay callback.

    Payload: {"transaction_id", "status", "status_message", "additional_data"}.
    The body is stored for audit and answered quickly; OnePay retries on timeout.
    """
    try:
        payload = await request.json()
    except ValueError:
        raise BadRequestError("Callback body must be JSON.")

    logger.info(f"OnePay callback received for {payload.get('transaction_id') if isinstance(payload, dict) else None}")
    result = await service.ingest_callback(payload)

    response = {"ok": True, "status": result.status}
    if result.already_processed:
        response["already_processed"] = True
    return response


@router.get("/onepay/status/{registration_id}")
async def payment_status(
    registration_id: str,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """Long-poll: verifies with OnePay for up to the configured budget."""
    payment = await service.get_status(registration_id)
    return {
        "payment_status": payment.status,
        "provider_transaction_id": payment.provider_transaction_id,
        "redirect_url": payment.redirect_url,
        "paid_at": payment.paid_at.isoformat() if payment.paid_at else None,
        "last_error": payment.last_error,
    }
