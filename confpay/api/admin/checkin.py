"""
Admin Check-in Endpoints.
Scan desk preview and confirmation of QR credentials.
"""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from confpay.api.deps import get_admin_user
from confpay.database import get_db
from confpay.services.checkin_service import CheckInService

router = APIRouter()
logger = logging.getLogger(__name__)


class CheckInRequest(BaseModel):
    """Request body carrying scanned QR text."""
    qr_text: str


@router.post("/checkin/preview")
async def preview_checkin(
    request: CheckInRequest,
    db: AsyncSession = Depends(get_db),
    _: str = Depends(get_admin_user),
):
    """Show attendee and check-in state without recording anything."""
    return await CheckInService(db).preview(request.qr_text)


@router.post("/checkin/confirm")
async def confirm_checkin(
    request: CheckInRequest,
    db: AsyncSession = Depends(get_db),
    admin: str = Depends(get_admin_user),
):
    """Record the check-in; repeated scans are reported, not rejected."""
    return await CheckInService(db).confirm(request.qr_text, checked_in_by=admin)
