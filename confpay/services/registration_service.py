"""
Registration Service - the narrow slice of the registration subsystem
the payment core depends on.
"""

import uuid
import logging
from typing import Optional, Union

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from confpay.errors import BadRequestError, NotFoundError
from confpay.fsm.states import OrderPaymentStatus, PaymentProvider
from confpay.models.registration import Registration

logger = logging.getLogger(__name__)


def parse_registration_id(value: Union[str, uuid.UUID]) -> uuid.UUID:
    """Parse a registration id, rejecting anything that is not a UUID."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise BadRequestError("Invalid registration id.", {"registration_id": str(value)})


class RegistrationService:
    """Order lookups and payment mirror updates."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_order(self, registration_id: uuid.UUID) -> Optional[Registration]:
        """Load a registration with fresh column values."""
        result = await self.db.execute(
            select(Registration)
            .where(Registration.id == registration_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_order(self, registration_id: uuid.UUID) -> Registration:
        """Load a registration or raise NotFound."""
        registration = await self.find_order(registration_id)
        if registration is None:
            raise NotFoundError("Registration not found.", {"registration_id": str(registration_id)})
        return registration

    async def save_payment_mirror(
        self,
        registration_id: uuid.UUID,
        status: OrderPaymentStatus,
        reference: Optional[str],
        provider: PaymentProvider = PaymentProvider.ONEPAY,
    ) -> None:
        """
        Mirror the ledger status onto the registration.
        Best-effort: the payments table stays the source of truth.
        """
        await self.db.execute(
            update(Registration)
            .where(Registration.id == registration_id)
            .values(
                payment_status=status.value,
                payment_provider=provider.value,
                payment_reference=reference,
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        logger.info(f"Registration {registration_id} payment mirror -> {status.value}")

    async def link_credential(self, registration_id: uuid.UUID, credential_id: uuid.UUID) -> None:
        """Point the registration at its current credential."""
        await self.db.execute(
            update(Registration)
            .where(Registration.id == registration_id)
            .values(credential_id=credential_id)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
