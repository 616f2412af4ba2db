"""
Check-in Service - validates QR credentials at the conference entrance.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

import jwt
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from confpay.errors import BadRequestError, ConflictError, NotFoundError, UnauthorizedError
from confpay.fsm.states import CheckInStatus, CredentialStatus
from confpay.models.credential import RegistrationCredential
from confpay.models.registration import Registration
from confpay.services.credential_service import (
    CredentialService,
    as_utc,
    parse_qr_text,
    sha256_hex,
    verify_token,
)
from confpay.services.registration_service import RegistrationService

logger = logging.getLogger(__name__)


def attendee_summary(registration: Registration) -> Dict[str, Any]:
    return {
        "registration_code": registration.registration_code,
        "first_name": registration.first_name,
        "last_name": registration.last_name,
        "conference_type": registration.conference_type,
        "email": registration.email,
    }


class CheckInService:
    """Preview and confirm check-ins from scanned QR text."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.credentials = CredentialService(db)
        self.registrations = RegistrationService(db)

    async def _resolve(
        self, qr_text: Optional[str]
    ) -> Tuple[RegistrationCredential, Registration]:
        if not qr_text:
            raise BadRequestError("qr_text is required.")

        token = parse_qr_text(qr_text, self.credentials.qr_prefix)
        if token is None:
            raise BadRequestError("Invalid QR format.")

        try:
            claims = verify_token(token, self.credentials.signing_secret)
        except jwt.InvalidTokenError:
            raise UnauthorizedError("Invalid or expired QR.")

        record = await self.credentials.find_by_token_hash(sha256_hex(token))
        if record is None:
            raise NotFoundError("QR not found.")

        if record.status != CredentialStatus.ACTIVE.value:
            raise ConflictError(f"QR is {record.status}.")

        expires_at = as_utc(record.expires_at)
        if expires_at is not None and expires_at <= datetime.now(timezone.utc):
            await self.db.execute(
                update(RegistrationCredential)
                .where(RegistrationCredential.id == record.id)
                .values(status=CredentialStatus.EXPIRED.value)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
            raise UnauthorizedError("QR expired.")

        registration = await self.registrations.get_order(record.registration_id)
        if not registration.is_paid:
            raise ConflictError("Registration is not PAID.")

        if claims.get("rid") and claims["rid"] != registration.registration_code:
            raise ConflictError("QR does not match this registration.")

        return record, registration

    async def preview(self, qr_text: Optional[str]) -> Dict[str, Any]:
        """Attendee and check-in state; no writes."""
        record, registration = await self._resolve(qr_text)
        return {
            "ok": True,
            "attendee": attendee_summary(registration),
            "qr": {
                "status": record.status,
                "check_in_status": record.check_in_status,
                "checked_in_at": record.checked_in_at,
                "checked_in_by": record.checked_in_by,
            },
        }

    async def confirm(self, qr_text: Optional[str], checked_in_by: str) -> Dict[str, Any]:
        """
        Mark the attendee as checked in. Idempotent: a second scan reports
        already_checked_in instead of failing. Two desks scanning at once
        race on a conditional update; only one wins.
        """
        record, registration = await self._resolve(qr_text)

        if record.check_in_status != CheckInStatus.CHECKED_IN.value:
            result = await self.db.execute(
                update(RegistrationCredential)
                .where(RegistrationCredential.id == record.id)
                .where(RegistrationCredential.status == CredentialStatus.ACTIVE.value)
                .where(RegistrationCredential.check_in_status == CheckInStatus.NOT_CHECKED_IN.value)
                .values(
                    check_in_status=CheckInStatus.CHECKED_IN.value,
                    checked_in_at=datetime.now(timezone.utc),
                    checked_in_by=checked_in_by,
                )
                .execution_options(synchronize_session=False)
            )
            won = result.rowcount == 1
            await self.db.commit()
            await self.db.refresh(record)

            if won:
                logger.info(f"Checked in {registration.registration_code} by {checked_in_by}")
                return {
                    "ok": True,
                    "message": "Checked in",
                    "already_checked_in": False,
                    "attendee": attendee_summary(registration),
                    "checked_in_at": record.checked_in_at,
                }

            if record.check_in_status != CheckInStatus.CHECKED_IN.value:
                raise ConflictError(f"QR is {record.status}.")

        return {
            "ok": True,
            "message": "Already checked in",
            "already_checked_in": True,
            "attendee": attendee_summary(registration),
            "checked_in_at": record.checked_in_at,
        }
