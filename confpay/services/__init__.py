"""Services package."""

from confpay.services.registration_service import RegistrationService
from confpay.services.payment_ledger import PaymentLedger
from confpay.services.onepay_client import OnePayClient
from confpay.services.credential_service import CredentialService
from confpay.services.mail_service import Mailer
from confpay.services.notification_service import NotificationService
from confpay.services.finalization_service import FinalizationService
from confpay.services.reconciliation_service import ReconciliationService
from confpay.services.checkin_service import CheckInService

__all__ = [
    "RegistrationService",
    "PaymentLedger",
    "OnePayClient",
    "CredentialService",
    "Mailer",
    "NotificationService",
    "FinalizationService",
    "ReconciliationService",
    "CheckInService",
]
