"""Registration model - the conference order a payment is attached to."""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, DateTime, Numeric
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from confpay.database import Base
from confpay.fsm.states import OrderPaymentStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Registration(Base):
    """
    Conference registration (the Order).
    Owned by the registration subsystem; the payment core only reads it
    and writes the payment mirror fields.
    """

    __tablename__ = "registrations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    # Human-facing registration id, e.g. APSC-2026-0042
    registration_code: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
        index=True,
    )

    first_name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    mobile: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    conference_type: Mapped[Optional[str]] = mapped_column(String(60), nullable=True)

    # Fee
    fee_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
    )

    fee_currency: Mapped[str] = mapped_column(
        String(3),
        default="USD",
        nullable=False,
    )

    # Payment mirror (derived from the payments ledger)
    payment_status: Mapped[str] = mapped_column(
        String(20),
        default=OrderPaymentStatus.UNPAID.value,
        nullable=False,
    )

    payment_provider: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    payment_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Currently linked QR credential
    credential_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        nullable=True,
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Registration {self.registration_code} {self.payment_status}>"

    @property
    def is_paid(self) -> bool:
        return self.payment_status == OrderPaymentStatus.PAID.value
