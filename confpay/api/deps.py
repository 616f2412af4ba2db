from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from confpay.config import settings
from confpay.database import get_db
from confpay.services.finalization_service import FinalizationService
from confpay.services.mail_service import Mailer
from confpay.services.onepay_client import OnePayClient
from confpay.services.reconciliation_service import ReconciliationService


async def get_admin_user(
    x_admin_key: Optional[str] = Header(None, alias="X-Admin-Key"),
    x_admin_name: Optional[str] = Header(None, alias="X-Admin-Name"),
) -> str:
    """
    Validate the Admin Key header.
    Returns the desk operator's name (or "admin"), raises 401 otherwise.
    """
    valid_key = getattr(settings, "admin_api_key", None)

    if not x_admin_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Admin Key",
        )

    if not valid_key or x_admin_key != valid_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid Admin Key",
        )

    return x_admin_name or "admin"


def get_gateway(request: Request) -> OnePayClient:
    """Shared OnePay client built at startup."""
    return request.app.state.gateway


def get_mailer(request: Request) -> Mailer:
    """Shared mailer built at startup."""
    return request.app.state.mailer


async def get_reconciliation_service(
    db: AsyncSession = Depends(get_db),
    gateway: OnePayClient = Depends(get_gateway),
    mailer: Mailer = Depends(get_mailer),
) -> ReconciliationService:
    return ReconciliationService(db, gateway, FinalizationService(db, mailer))
