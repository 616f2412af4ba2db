"""
Pytest configuration and fixtures.
"""

import sys
import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, List, Optional

# Settings are read at import time
os.environ.setdefault("QR_SIGNING_SECRET", "test-signing-secret")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("MAIL_API_KEY", "test-mail-key")

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# Add project to path
sys.path.append(os.getcwd())

from confpay.database import Base, build_engine
from confpay.errors import GatewayError
from confpay.fsm.states import GatewayOutcome
from confpay.models.registration import Registration
from confpay.services.finalization_service import FinalizationService
from confpay.services.mail_service import Mailer
from confpay.services.onepay_client import CheckoutSession, TransactionStatus, to_2dp
from confpay.services.reconciliation_service import ReconciliationService

# Use in-memory SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create a fresh async engine (and schema) per test."""
    engine = build_engine(TEST_DB_URL)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_maker(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for a test."""
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def make_registration(db):
    """Factory for registrations (orders)."""
    counter = {"n": 0}

    async def _make(
        amount: str = "100.00",
        currency: str = "USD",
        payment_status: str = "UNPAID",
        email: str = "delegate@example.com",
    ) -> Registration:
        counter["n"] += 1
        registration = Registration(
            registration_code=f"APSC-2026-{counter['n']:04d}",
            first_name="Nimali",
            last_name="Perera",
            email=email,
            mobile="+94771234567",
            conference_type="Delegate",
            fee_amount=Decimal(amount),
            fee_currency=currency,
            payment_status=payment_status,
        )
        db.add(registration)
        await db.commit()
        return registration

    return _make


class FakeGateway:
    """
    Scripted stand-in for OnePayClient.

    status_results holds what successive get_status calls return; an
    exception instance in the list is raised instead. The last entry repeats.
    """

    def __init__(self):
        self.checkout_calls: List[dict] = []
        self.status_calls: List[str] = []
        self.checkout_error: Optional[Exception] = None
        self.status_results: List[object] = []
        self._next_tx = 0

    async def create_checkout(self, **kwargs) -> CheckoutSession:
        self.checkout_calls.append(kwargs)
        if self.checkout_error is not None:
            raise self.checkout_error
        self._next_tx += 1
        tx_id = f"tx-{self._next_tx}"
        return CheckoutSession(
            provider_transaction_id=tx_id,
            redirect_url=f"https://pay.example.com/checkout/{tx_id}",
        )

    async def get_status(self, provider_transaction_id: str) -> TransactionStatus:
        self.status_calls.append(provider_transaction_id)
        if not self.status_results:
            return pending_status()
        result = self.status_results.pop(0) if len(self.status_results) > 1 else self.status_results[0]
        if isinstance(result, Exception):
            raise result
        return result


def paid_status(amount: str = "100.00", currency: str = "USD") -> TransactionStatus:
    return TransactionStatus(
        outcome=GatewayOutcome.PAID,
        amount=to_2dp(amount),
        currency=currency,
        paid_at=None,
        message="SUCCESS",
    )


def pending_status() -> TransactionStatus:
    return TransactionStatus(
        outcome=GatewayOutcome.PENDING,
        amount=None,
        currency=None,
        paid_at=None,
        message="PENDING",
    )


def failed_status(message: str = "DECLINED") -> TransactionStatus:
    return TransactionStatus(
        outcome=GatewayOutcome.FAILED,
        amount=None,
        currency=None,
        paid_at=None,
        message=message,
    )


def unreachable() -> GatewayError:
    return GatewayError("OnePay status unreachable: connection refused")


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


class MailOutbox:
    """Records requests made to the mail API."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.fail = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail:
            return httpx.Response(500, json={"message": "mail provider down"})
        return httpx.Response(201, json={"messageId": f"<msg-{len(self.requests)}@example.com>"})


@pytest.fixture
def outbox() -> MailOutbox:
    return MailOutbox()


@pytest_asyncio.fixture
async def mailer(outbox):
    mailer = Mailer(
        api_url="https://mail.example.com/v3/smtp/email",
        api_key="test-mail-key",
        from_name="APSC 2026 Secretariat",
        from_address="noreply@example.com",
        transport=httpx.MockTransport(outbox.handler),
    )
    yield mailer
    await mailer.aclose()


class SleepRecorder:
    """Replaces asyncio.sleep in the verification loop."""

    def __init__(self):
        self.calls: List[float] = []
        self.on_sleep = None

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.on_sleep is not None:
            await self.on_sleep()


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


class FakeClock:
    """Manually advanced UTC clock for the verification deadline."""

    def __init__(self):
        self.now = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def make_service(db, gateway, mailer, sleeper):
    """Factory for a ReconciliationService wired to the fakes."""

    def _make(
        session: Optional[AsyncSession] = None,
        budget: float = 10,
        interval: float = 5,
        clock: Optional[FakeClock] = None,
    ):
        session = session or db
        extra = {"clock": clock} if clock is not None else {}
        return ReconciliationService(
            session,
            gateway,
            FinalizationService(session, mailer),
            verify_budget_seconds=budget,
            verify_interval_seconds=interval,
            sleep=sleeper,
            redirect_base_url="https://www.example.com/payment/return",
            **extra,
        )

    return _make
