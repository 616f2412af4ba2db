"""
OnePay Client - checkout creation and transaction status over the OnePay v3 API.

One instance is built at startup and shared: it owns a pooled httpx.AsyncClient.
"""

import hashlib
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Optional

import httpx

from confpay.config import Settings
from confpay.errors import GatewayError
from confpay.fsm.states import GatewayOutcome

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")

# Whole words only: UNPAID and UNSUCCESSFUL are not payments
_PAID_MESSAGE = re.compile(r"\b(SUCCESS|SUCCESSFUL|PAID)\b")
_NEGATED_PAID_MESSAGE = re.compile(r"\bNOT\s+(SUCCESS|SUCCESSFUL|PAID)\b")
_FAILED_MESSAGE = re.compile(r"FAIL|DECLIN|CANCEL|EXPIRE")


def to_2dp(amount: Any) -> Decimal:
    """Round an amount to exactly two decimal places."""
    try:
        return Decimal(str(amount)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {amount!r}")


def to_minor_units(amount: Any) -> Optional[int]:
    """Amount in integer minor units (cents), or None if it is not a number."""
    if amount is None:
        return None
    try:
        return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    except InvalidOperation:
        return None


def generate_hash(app_id: str, currency: str, amount: Any, salt: str) -> str:
    """sha256(app_id + currency + amount(2dp) + salt), hex encoded."""
    raw = f"{app_id}{currency}{to_2dp(amount)}{salt}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def classify_outcome(status: Any, message: Optional[str]) -> GatewayOutcome:
    """
    Map OnePay's status code / message to PAID, FAILED or PENDING.
    Shared by the status query and the callback.

    An explicit status decides on its own; the message can only mark it
    FAILED. The message alone is read only when no status was sent.
    """
    text = (message or "").upper()
    failed_text = bool(_FAILED_MESSAGE.search(text))

    if status is not None and status != "":
        if status is True or status in (1, "1"):
            return GatewayOutcome.PAID
        if status in (-1, "-1") or failed_text:
            return GatewayOutcome.FAILED
        return GatewayOutcome.PENDING

    if failed_text:
        return GatewayOutcome.FAILED
    if _PAID_MESSAGE.search(text) and not _NEGATED_PAID_MESSAGE.search(text):
        return GatewayOutcome.PAID
    return GatewayOutcome.PENDING


def _parse_paid_on(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError:
        logger.warning(f"Unparseable paid_on from OnePay: {value!r}")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class CustomerInfo:
    first_name: str
    last_name: str
    phone: str
    email: str


@dataclass
class CheckoutSession:
    provider_transaction_id: str
    redirect_url: str
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TransactionStatus:
    outcome: GatewayOutcome
    amount: Optional[Decimal]
    currency: Optional[str]
    paid_at: Optional[datetime]
    message: str
    raw: Dict[str, Any] = field(default_factory=dict)


class OnePayClient:
    """Signed requests to the OnePay payment gateway."""

    def __init__(
        self,
        base_url: str,
        app_id: str,
        app_token: str,
        hash_salt: str,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.app_id = app_id
        self.hash_salt = hash_salt
        self.headers = {
            "Content-Type": "application/json",
            "Authorization": app_token,
        }
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    @classmethod
    def from_settings(cls, settings: Settings) -> "OnePayClient":
        return cls(
            base_url=settings.onepay_base_url,
            app_id=settings.onepay_app_id,
            app_token=settings.onepay_app_token,
            hash_salt=settings.onepay_hash_salt,
            timeout=settings.onepay_timeout_seconds,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, path: str, payload: Dict[str, Any], action: str) -> Dict[str, Any]:
        """POST to OnePay and return the decoded JSON body; raise GatewayError otherwise."""
        if not self.base_url or not self.app_id:
            raise GatewayError("OnePay credentials not configured.")

        try:
            response = await self._client.post(
                f"{self.base_url}{path}",
                json=payload,
                headers=self.headers,
            )
        except httpx.HTTPError as e:
            logger.error(f"OnePay {action} transport error: {e}")
            raise GatewayError(f"OnePay {action} unreachable: {e}")

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if not response.is_success:
            logger.error(f"OnePay {action} error {response.status_code}: {response.text[:500]}")
            raise GatewayError(
                body.get("message") or f"OnePay {action} failed.",
                {"status_code": response.status_code, "onepay": body},
            )
        return body

    async def create_checkout(
        self,
        amount: Decimal,
        currency: str,
        reference: str,
        customer: CustomerInfo,
        redirect_target: str,
        additional_data: str = "",
    ) -> CheckoutSession:
        """
        Create a hosted checkout link.

        The same two-decimal amount goes into the hash and the request body;
        OnePay rejects the request otherwise.
        """
        amount_2dp = to_2dp(amount)
        payload = {
            "currency": currency,
            "app_id": self.app_id,
            "hash": generate_hash(self.app_id, currency, amount_2dp, self.hash_salt),
            "amount": float(amount_2dp),
            "reference": reference,
            "customer_first_name": customer.first_name,
            "customer_last_name": customer.last_name,
            "customer_phone_number": customer.phone,
            "customer_email": customer.email,
            "transaction_redirect_url": redirect_target,
            "additional_data": additional_data or "",
        }

        body = await self._post("/v3/checkout/link/", payload, "checkout")
        data = body.get("data") if isinstance(body.get("data"), dict) else {}
        nested = data.get("data") if isinstance(data.get("data"), dict) else {}
        gateway = data.get("gateway") if isinstance(data.get("gateway"), dict) else {}

        transaction_id = (
            data.get("transaction_id")
            or data.get("ipg_transaction_id")
            or nested.get("transaction_id")
        )
        redirect_url = (
            data.get("payment_url")
            or gateway.get("redirect_url")
            or data.get("redirect_url")
        )

        if not transaction_id or not redirect_url:
            raise GatewayError(
                "OnePay response missing transaction id or redirect url.",
                {"onepay": body},
            )

        logger.info(f"OnePay checkout created for {reference}: {transaction_id}")
        return CheckoutSession(
            provider_transaction_id=str(transaction_id),
            redirect_url=str(redirect_url),
            raw=body,
        )

    async def get_status(self, provider_transaction_id: str) -> TransactionStatus:
        """Query the authoritative status of a transaction."""
        body = await self._post(
            "/v3/transaction/status/",
            {"app_id": self.app_id, "transaction_id": provider_transaction_id},
            "status",
        )

        data = body.get("data")
        if not isinstance(data, dict):
            raise GatewayError("OnePay status response missing data.", {"onepay": body})

        message = str(data.get("status_message") or data.get("message") or "")
        amount = data.get("amount")
        try:
            parsed_amount = to_2dp(amount) if amount is not None else None
        except ValueError:
            raise GatewayError("OnePay status response has an invalid amount.", {"onepay": body})

        return TransactionStatus(
            outcome=classify_outcome(data.get("status"), message),
            amount=parsed_amount,
            currency=data.get("currency") or None,
            paid_at=_parse_paid_on(data.get("paid_on")),
            message=message,
            raw=body,
        )
