"""
Credential Service - signed, revocable QR credentials for paid registrations.

The token is an HS256 JWT whose claims are fully determined by the stored
(jti, issued_at, expires_at), so an ACTIVE credential can be re-displayed or
re-sent by regenerating the same token instead of storing it.
"""

import io
import hashlib
import secrets
import uuid
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
import qrcode
from qrcode.constants import ERROR_CORRECT_M
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from confpay.config import settings
from confpay.errors import ConflictError
from confpay.fsm.states import CredentialStatus
from confpay.models.credential import RegistrationCredential
from confpay.models.registration import Registration
from confpay.services.registration_service import RegistrationService

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def make_jti() -> str:
    return secrets.token_hex(16)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (as returned by SQLite) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _epoch(value: datetime) -> int:
    return int(as_utc(value).timestamp())


def build_qr_text(token: str, prefix: Optional[str] = None) -> str:
    return f"{prefix or settings.qr_prefix}.{token}"


def parse_qr_text(qr_text: Any, prefix: Optional[str] = None) -> Optional[str]:
    """Strip the QR prefix; None if the text is not one of ours."""
    expected = f"{prefix or settings.qr_prefix}."
    if not isinstance(qr_text, str) or not qr_text.startswith(expected):
        return None
    return qr_text[len(expected):] or None


def create_token(
    registration: Registration,
    jti: str,
    issued_at: datetime,
    expires_at: Optional[datetime],
    secret: str,
) -> str:
    """Sign the credential claims; same inputs always give the same token."""
    claims: Dict[str, Any] = {
        "sub": str(registration.id),
        "rid": registration.registration_code,
        "ct": registration.conference_type or "",
        "jti": jti,
        "iat": _epoch(issued_at),
    }
    if expires_at is not None:
        claims["exp"] = _epoch(expires_at)
    return jwt.encode(claims, secret, algorithm=JWT_ALGORITHM)


def verify_token(token: str, secret: str) -> Dict[str, Any]:
    """Check signature and expiry; raises jwt.InvalidTokenError."""
    return jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])


def render_qr_png(qr_text: str) -> bytes:
    """Render QR text as a PNG image."""
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_M, box_size=6, border=2)
    qr.add_data(qr_text)
    qr.make(fit=True)
    buffer = io.BytesIO()
    qr.make_image().save(buffer)
    return buffer.getvalue()


@dataclass
class IssuedCredential:
    record: RegistrationCredential
    token: str
    qr_text: str
    reused: bool


class CredentialService:
    """Issues (or reuses) one ACTIVE credential per paid registration."""

    def __init__(
        self,
        db: AsyncSession,
        signing_secret: Optional[str] = None,
        validity_days: Optional[int] = None,
        qr_prefix: Optional[str] = None,
    ):
        self.db = db
        self.registrations = RegistrationService(db)
        self.signing_secret = signing_secret or settings.qr_signing_secret
        self.validity_days = validity_days or settings.qr_token_expires_in_days
        self.qr_prefix = qr_prefix or settings.qr_prefix

    async def get_record(self, credential_id: uuid.UUID) -> Optional[RegistrationCredential]:
        result = await self.db.execute(
            select(RegistrationCredential)
            .where(RegistrationCredential.id == credential_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_by_token_hash(self, token_hash: str) -> Optional[RegistrationCredential]:
        result = await self.db.execute(
            select(RegistrationCredential)
            .where(RegistrationCredential.token_hash == token_hash)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_active(self, registration_id: uuid.UUID) -> Optional[RegistrationCredential]:
        result = await self.db.execute(
            select(RegistrationCredential)
            .where(RegistrationCredential.registration_id == registration_id)
            .where(RegistrationCredential.status == CredentialStatus.ACTIVE.value)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def issue(self, registration_id: uuid.UUID) -> IssuedCredential:
        """
        Issue a credential for a PAID registration.

        An ACTIVE, unexpired credential is reused: its token is regenerated
        from the stored claims. Otherwise every ACTIVE record is revoked and a
        new one is minted with a fresh jti.
        """
        if not self.signing_secret:
            raise RuntimeError("QR_SIGNING_SECRET is not configured.")

        registration = await self.registrations.get_order(registration_id)
        if not registration.is_paid:
            raise ConflictError(
                "Cannot issue QR until payment is PAID.",
                {"registration_id": str(registration_id), "payment_status": registration.payment_status},
            )

        now = datetime.now(timezone.utc).replace(microsecond=0)
        previous = None
        if registration.credential_id:
            previous = await self.get_record(registration.credential_id)
        if previous is None or previous.status != CredentialStatus.ACTIVE.value:
            # Minted but never linked (interrupted before link_credential)
            previous = await self.find_active(registration.id)

        if previous is not None:
            expires_at = as_utc(previous.expires_at)
            if expires_at is None or expires_at > now:
                if registration.credential_id != previous.id:
                    await self.registrations.link_credential(registration.id, previous.id)
                    registration = await self.registrations.get_order(registration.id)
                return self._reuse(registration, previous)

        await self._revoke_active(registration.id)

        issued_at = now
        expires_at = issued_at + timedelta(days=self.validity_days)
        jti = make_jti()
        token = create_token(registration, jti, issued_at, expires_at, self.signing_secret)

        record = RegistrationCredential(
            registration_id=registration.id,
            registration_code=registration.registration_code,
            jti=jti,
            token_hash=sha256_hex(token),
            status=CredentialStatus.ACTIVE.value,
            issued_at=issued_at,
            expires_at=expires_at,
        )
        self.db.add(record)
        try:
            await self.db.commit()
        except IntegrityError:
            # Another finalizer minted the ACTIVE record first
            await self.db.rollback()
            winner = await self.find_active(registration_id)
            if winner is None:
                raise
            registration = await self.registrations.get_order(registration_id)
            return self._reuse(registration, winner)
        await self.registrations.link_credential(registration.id, record.id)

        logger.info(f"Issued credential {jti} for registration {registration.registration_code}")
        return IssuedCredential(
            record=record,
            token=token,
            qr_text=build_qr_text(token, self.qr_prefix),
            reused=False,
        )

    def _reuse(self, registration: Registration, record: RegistrationCredential) -> IssuedCredential:
        """Regenerate the token of an existing record from its stored claims."""
        token = create_token(
            registration, record.jti, record.issued_at, record.expires_at, self.signing_secret
        )
        return IssuedCredential(
            record=record,
            token=token,
            qr_text=build_qr_text(token, self.qr_prefix),
            reused=True,
        )

    async def _revoke_active(self, registration_id: uuid.UUID) -> None:
        """Revoke every ACTIVE record of the registration before minting a new one."""
        result = await self.db.execute(
            update(RegistrationCredential)
            .where(RegistrationCredential.registration_id == registration_id)
            .where(RegistrationCredential.status == CredentialStatus.ACTIVE.value)
            .values(status=CredentialStatus.REVOKED.value)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if result.rowcount:
            logger.info(f"Revoked {result.rowcount} credential(s) for registration {registration_id}")

    async def mark_email_sent(self, record: RegistrationCredential) -> RegistrationCredential:
        await self.db.execute(
            update(RegistrationCredential)
            .where(RegistrationCredential.id == record.id)
            .values(email_sent_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        await self.db.refresh(record)
        return record
