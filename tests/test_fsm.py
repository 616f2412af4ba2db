"""
Tests for payment state definitions.
"""

import pytest
from confpay.fsm.states import (
    PaymentStatus,
    OrderPaymentStatus,
    CredentialStatus,
    CheckInStatus,
    TRANSIENT_PAYMENT_STATUSES,
    can_transition,
    sources_for,
)


class TestPaymentStatus:
    """Tests for PaymentStatus enum."""

    def test_all_states_defined(self):
        """Verify all payment states are defined."""
        expected_states = ["INITIATED", "PENDING", "PAID", "FAILED", "CANCELED"]
        actual_states = [s.value for s in PaymentStatus]
        assert set(expected_states) == set(actual_states)

    def test_transient_states(self):
        assert TRANSIENT_PAYMENT_STATUSES == {PaymentStatus.INITIATED, PaymentStatus.PENDING}
        assert PaymentStatus.PENDING.is_transient
        assert PaymentStatus.FAILED.is_terminal

    def test_state_string_conversion(self):
        assert PaymentStatus("PAID") is PaymentStatus.PAID
        assert PaymentStatus.PAID == "PAID"


class TestTransitions:
    """Tests for the payment transition table."""

    @pytest.mark.parametrize("target", [
        PaymentStatus.PENDING,
        PaymentStatus.PAID,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELED,
    ])
    def test_initiated_moves_forward(self, target):
        assert can_transition(PaymentStatus.INITIATED, target)

    def test_pending_cannot_go_back(self):
        assert not can_transition(PaymentStatus.PENDING, PaymentStatus.INITIATED)

    @pytest.mark.parametrize("target", list(PaymentStatus))
    def test_paid_is_absorbing(self, target):
        assert not can_transition(PaymentStatus.PAID, target)

    def test_failed_is_terminal(self):
        assert not can_transition(PaymentStatus.FAILED, PaymentStatus.PAID)
        assert not can_transition(PaymentStatus.FAILED, PaymentStatus.PENDING)

    def test_sources_for_paid(self):
        assert sources_for(PaymentStatus.PAID) == TRANSIENT_PAYMENT_STATUSES

    def test_nothing_reaches_initiated(self):
        assert sources_for(PaymentStatus.INITIATED) == frozenset()


class TestSideStatuses:
    """Order mirror and credential enums."""

    def test_order_mirror_states(self):
        assert {s.value for s in OrderPaymentStatus} == {"UNPAID", "PENDING", "PAID", "FAILED"}

    def test_credential_states(self):
        assert {s.value for s in CredentialStatus} == {"ACTIVE", "REVOKED", "EXPIRED"}
        assert {s.value for s in CheckInStatus} == {"NOT_CHECKED_IN", "CHECKED_IN"}
