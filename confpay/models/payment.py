"""Payment model - one OnePay payment attempt per row, never deleted."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import JSON, String, DateTime, ForeignKey, Numeric, Integer, Text, Index, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from confpay.database import Base
from confpay.fsm.states import PaymentProvider, PaymentStatus
from confpay.models.registration import utcnow

_TRANSIENT_WHERE = text("status IN ('INITIATED', 'PENDING')")


class Payment(Base):
    """
    Payment ledger row.

    At most one INITIATED/PENDING row may exist per registration; the partial
    unique index below enforces it. Once status is PAID only the diagnostic
    columns (attempts, last_error, last_callback, finalized_at) change.
    """

    __tablename__ = "payments"
    __table_args__ = (
        Index("ix_payments_registration_created", "registration_id", "created_at"),
        Index(
            "uq_payments_transient_registration",
            "registration_id",
            unique=True,
            postgresql_where=_TRANSIENT_WHERE,
            sqlite_where=_TRANSIENT_WHERE,
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    registration_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("registrations.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    provider: Mapped[str] = mapped_column(
        String(20),
        default=PaymentProvider.ONEPAY.value,
        nullable=False,
    )

    # Idempotency reference sent to the provider (<= 21 chars, alnum + dash)
    reference: Mapped[str] = mapped_column(
        String(21),
        unique=True,
        nullable=False,
    )

    # Set once the provider accepts the checkout request
    provider_transaction_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        unique=True,
        nullable=True,
    )

    currency: Mapped[str] = mapped_column(
        String(3),
        default="USD",
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        default=PaymentStatus.INITIATED.value,
        nullable=False,
        index=True,
    )

    # Provider-hosted checkout link
    redirect_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Diagnostics
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_callback: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    finalized_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    canceled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

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
        return f"<Payment {self.reference} {self.status}>"

    @property
    def is_paid(self) -> bool:
        return self.status == PaymentStatus.PAID.value

    @property
    def is_transient(self) -> bool:
        return PaymentStatus(self.status).is_transient
