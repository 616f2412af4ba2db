"""
Payment state definitions.
Enums for payments, the order's payment mirror and QR credentials,
plus the payment transition table.
"""

from enum import Enum
from typing import Dict, FrozenSet


class PaymentStatus(str, Enum):
    """
    Lifecycle of one payment attempt.
    INITIATED -> PENDING -> {PAID | FAILED | CANCELED}; PAID is absorbing.
    """

    INITIATED = "INITIATED"
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    CANCELED = "CANCELED"

    @property
    def is_transient(self) -> bool:
        return self in TRANSIENT_PAYMENT_STATUSES

    @property
    def is_terminal(self) -> bool:
        return not self.is_transient


TRANSIENT_PAYMENT_STATUSES: FrozenSet[PaymentStatus] = frozenset(
    {PaymentStatus.INITIATED, PaymentStatus.PENDING}
)


# Allowed moves; anything not listed is rejected by can_transition().
PAYMENT_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.INITIATED: frozenset(
        {PaymentStatus.PENDING, PaymentStatus.PAID, PaymentStatus.FAILED, PaymentStatus.CANCELED}
    ),
    PaymentStatus.PENDING: frozenset(
        {PaymentStatus.PAID, PaymentStatus.FAILED, PaymentStatus.CANCELED}
    ),
    PaymentStatus.PAID: frozenset(),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.CANCELED: frozenset(),
}


def can_transition(current: PaymentStatus, target: PaymentStatus) -> bool:
    """Check whether a payment may move from current to target."""
    return target in PAYMENT_TRANSITIONS[current]


def sources_for(target: PaymentStatus) -> FrozenSet[PaymentStatus]:
    """All statuses from which target is reachable in one step."""
    return frozenset(
        source for source, targets in PAYMENT_TRANSITIONS.items() if target in targets
    )


class OrderPaymentStatus(str, Enum):
    """Payment mirror kept on the registration; always derived from the ledger."""

    UNPAID = "UNPAID"
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"


class PaymentProvider(str, Enum):
    """Supported payment providers."""

    ONEPAY = "ONEPAY"


class CredentialStatus(str, Enum):
    """Status of an issued QR credential."""

    ACTIVE = "ACTIVE"
    REVOKED = "REVOKED"
    EXPIRED = "EXPIRED"


class CheckInStatus(str, Enum):
    """Check-in sub-state tracked on the credential."""

    NOT_CHECKED_IN = "NOT_CHECKED_IN"
    CHECKED_IN = "CHECKED_IN"


class GatewayOutcome(str, Enum):
    """Normalised answer of the gateway status query."""

    PAID = "PAID"
    FAILED = "FAILED"
    PENDING = "PENDING"
