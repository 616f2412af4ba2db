"""Registration credential model - revocable QR token records."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey, Index, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from confpay.database import Base
from confpay.fsm.states import CredentialStatus, CheckInStatus
from confpay.models.registration import utcnow

_ACTIVE_WHERE = text("status = 'ACTIVE'")


class RegistrationCredential(Base):
    """
    QR credential issued for a paid registration.
    Only the sha256 of the signed token is stored, never the token itself.
    """

    __tablename__ = "registration_credentials"
    __table_args__ = (
        Index(
            "uq_registration_credentials_active",
            "registration_id",
            unique=True,
            postgresql_where=_ACTIVE_WHERE,
            sqlite_where=_ACTIVE_WHERE,
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    registration_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("registrations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    registration_code: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    # Token id claim
    jti: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)

    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=CredentialStatus.ACTIVE.value,
        nullable=False,
    )

    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    check_in_status: Mapped[str] = mapped_column(
        String(20),
        default=CheckInStatus.NOT_CHECKED_IN.value,
        nullable=False,
    )
    checked_in_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    checked_in_by: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)

    # At-most-once confirmation e-mail marker
    email_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<RegistrationCredential {self.jti} {self.status}>"
