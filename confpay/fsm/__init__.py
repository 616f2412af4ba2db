"""FSM package for payment state management."""

from confpay.fsm.states import (
    PaymentStatus,
    OrderPaymentStatus,
    PaymentProvider,
    CredentialStatus,
    CheckInStatus,
    GatewayOutcome,
    can_transition,
    sources_for,
)

__all__ = [
    "PaymentStatus",
    "OrderPaymentStatus",
    "PaymentProvider",
    "CredentialStatus",
    "CheckInStatus",
    "GatewayOutcome",
    "can_transition",
    "sources_for",
]
