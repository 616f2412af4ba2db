"""Models package for database models."""

from confpay.models.registration import Registration
from confpay.models.payment import Payment
from confpay.models.credential import RegistrationCredential

__all__ = [
    "Registration",
    "Payment",
    "RegistrationCredential",
]
