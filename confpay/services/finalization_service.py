"""
Finalization Service - the on-paid trigger.

Issues (or reuses) the QR credential and sends the confirmation e-mail once.
Safe to run repeatedly for the same registration.
"""

import uuid
import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from confpay.services.credential_service import CredentialService, render_qr_png
from confpay.services.mail_service import Mailer
from confpay.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


@dataclass
class FinalizationResult:
    credential_id: uuid.UUID
    reused: bool
    email_sent: bool


class FinalizationService:
    """Runs credential issuance and notification after a PAID transition."""

    def __init__(self, db: AsyncSession, mailer: Mailer):
        self.db = db
        self.credentials = CredentialService(db)
        self.notifications = NotificationService(db, mailer)

    async def on_paid(self, registration_id: uuid.UUID) -> FinalizationResult:
        issued = await self.credentials.issue(registration_id)
        qr_png = render_qr_png(issued.qr_text)
        result = await self.notifications.notify_once(registration_id, issued.record, qr_png)

        logger.info(
            f"Finalized registration {registration_id}: "
            f"credential reused={issued.reused}, email sent={result.sent}"
        )
        return FinalizationResult(
            credential_id=issued.record.id,
            reused=issued.reused,
            email_sent=result.sent,
        )
