"""
Notification Service - one confirmation e-mail per credential.
"""

import uuid
import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from confpay.models.credential import RegistrationCredential
from confpay.services.credential_service import CredentialService
from confpay.services.mail_service import Mailer
from confpay.services.registration_service import RegistrationService

logger = logging.getLogger(__name__)


@dataclass
class NotificationResult:
    sent: bool


class NotificationService:
    """
    Sends the registration confirmation carrying the QR credential.

    The credential's email_sent_at marker is checked before sending and set
    after a successful send, so retries never deliver a second message.
    """

    def __init__(self, db: AsyncSession, mailer: Mailer):
        self.db = db
        self.mailer = mailer
        self.registrations = RegistrationService(db)
        self.credentials = CredentialService(db)

    async def notify_once(
        self,
        registration_id: uuid.UUID,
        record: RegistrationCredential,
        qr_png: bytes,
    ) -> NotificationResult:
        fresh = await self.credentials.get_record(record.id)
        if fresh is None or fresh.email_sent_at is not None:
            return NotificationResult(sent=False)

        registration = await self.registrations.get_order(registration_id)
        email = self.mailer.render_registration_confirmation(
            first_name=registration.first_name or "",
            registration_code=registration.registration_code,
            conference_type=registration.conference_type or "",
            qr_png=qr_png,
        )
        await self.mailer.send(registration.email, email)
        await self.credentials.mark_email_sent(fresh)

        logger.info(f"Confirmation sent for registration {registration.registration_code}")
        return NotificationResult(sent=True)
