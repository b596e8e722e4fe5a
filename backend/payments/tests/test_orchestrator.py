"""Tests for booking money movement and the transaction ledger."""

from __future__ import annotations

from decimal import Decimal

import pytest

from bookings.models import Booking
from bookings.tests.fakes import FakeGateway
from payments.ledger import summarize_booking_ledger
from payments.models import OwnerPayoutAccount, Transaction
from payments.orchestrator import PaymentOrchestrator
from payments.stripe_api import StripePaymentError, StripeTransientError

pytestmark = pytest.mark.django_db


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def orchestrator(gateway):
    return PaymentOrchestrator(gateway)


def test_authorize_holds_amount_due(orchestrator, gateway, booking_factory):
    booking = booking_factory(status=Booking.Status.PAYMENT_REQUIRED, points_credit=Decimal("5.00"))

    outcome = orchestrator.authorize(booking, customer_id="cus_1")

    assert outcome.success
    (call,) = gateway.calls_to("authorize")
    assert call["amount"] == Decimal("267.50")
    assert call["metadata"]["booking_id"] == str(booking.id)
    assert call["metadata"]["owner_id"] == str(booking.owner_id)


def test_authorize_without_payout_account(orchestrator, gateway, booking_factory, owner_user):
    OwnerPayoutAccount.objects.filter(user=owner_user).update(payouts_enabled=False)
    booking = booking_factory(status=Booking.Status.PAYMENT_REQUIRED)

    outcome = orchestrator.authorize(booking)

    assert not outcome.success
    assert outcome.error_code == "payee_not_onboarded"
    assert gateway.calls_to("authorize") == []


def test_void_without_authorization_is_noop(orchestrator, gateway, booking_factory):
    outcome = orchestrator.void(booking_factory())
    assert outcome.success
    assert gateway.calls_to("void") == []


def test_void_records_ledger_row(orchestrator, booking_factory):
    booking = booking_factory(payment_intent_id="pi_hold")

    outcome = orchestrator.void(booking)

    assert outcome.success
    assert Transaction.objects.filter(
        booking=booking, kind=Transaction.Kind.PAYMENT_VOID, stripe_id="pi_hold"
    ).exists()


def test_void_after_capture_only_warns(orchestrator, gateway, paid_booking_factory):
    outcome = orchestrator.void(paid_booking_factory())
    assert outcome.success
    assert outcome.warnings
    assert gateway.calls_to("void") == []


def test_void_of_finished_intent_is_soft(orchestrator, gateway, booking_factory):
    gateway.fail_void = StripePaymentError("No such payment_intent", code="resource_missing")
    outcome = orchestrator.void(booking_factory(payment_intent_id="pi_gone"))
    assert outcome.success
    assert outcome.warnings


def test_capture_requires_authorization(orchestrator, booking_factory):
    outcome = orchestrator.capture(booking_factory(status=Booking.Status.PAYMENT_REQUIRED))
    assert not outcome.success
    assert outcome.error_code == "missing_authorization"


def test_capture_failure_is_reported(orchestrator, gateway, booking_factory):
    gateway.fail_capture = StripeTransientError("Temporary Stripe error, please retry.")
    outcome = orchestrator.capture(booking_factory(payment_intent_id="pi_1"))
    assert not outcome.success
    assert outcome.retryable
    assert outcome.unavailable
    assert not Transaction.objects.exists()


def test_transfer_payout_is_idempotent(orchestrator, gateway, paid_booking_factory):
    booking = paid_booking_factory(status=Booking.Status.COMPLETED)

    first = orchestrator.transfer_payout(booking)
    second = orchestrator.transfer_payout(booking)

    assert first.success
    assert first.value.amount == Decimal("120.00")
    assert second.success
    assert second.warnings
    assert len(gateway.calls_to("transfer")) == 1
    ledger = summarize_booking_ledger(booking)
    assert ledger["owner_payout"] == "120.00"
    # Commission plus the renter-side service fee.
    assert ledger["platform_fee"] == "52.50"


def test_transfer_payout_adds_retained_deposit(orchestrator, gateway, paid_booking_factory):
    booking = paid_booking_factory(status=Booking.Status.COMPLETED)
    outcome = orchestrator.transfer_payout(booking, extra_amount=Decimal("40.00"))
    assert outcome.value.amount == Decimal("160.00")


def test_refund_deposit_bounds_and_idempotency(orchestrator, gateway, paid_booking_factory):
    booking = paid_booking_factory(status=Booking.Status.COMPLETED)

    too_much = orchestrator.refund_deposit(booking, Decimal("150.00"))
    assert not too_much.success
    assert too_much.error_code == "refund_exceeds_deposit"

    partial = orchestrator.refund_deposit(booking, Decimal("60.00"))
    assert partial.success
    assert partial.value.amount == Decimal("60.00")

    again = orchestrator.refund_deposit(booking)
    assert again.success
    assert again.warnings
    assert len(gateway.calls_to("refund")) == 1


def test_refund_charge_refunds_amount_due(orchestrator, gateway, paid_booking_factory):
    booking = paid_booking_factory()
    outcome = orchestrator.refund_charge(booking)
    assert outcome.success
    (call,) = gateway.calls_to("refund")
    assert call["amount"] == booking.amount_due
    assert call["charge_id"] == "ch_paid"
    assert Transaction.objects.filter(booking=booking, kind=Transaction.Kind.REFUND).exists()


def test_release_runs_both_halves_independently(orchestrator, gateway, paid_booking_factory):
    gateway.fail_transfer = StripeTransientError("Temporary Stripe error, please retry.")
    booking = paid_booking_factory(status=Booking.Status.COMPLETED)

    outcome = orchestrator.release(booking)

    assert not outcome.success
    assert outcome.value.payout_failed
    assert outcome.value.deposit_refund_id
    assert outcome.value.deposit_refunded == Decimal("100.00")
    assert any("payout" in w.lower() for w in outcome.warnings)


def test_release_skips_deposit_when_damage_reported(orchestrator, gateway, paid_booking_factory):
    booking = paid_booking_factory(status=Booking.Status.COMPLETED, damage_reported=True)

    outcome = orchestrator.release(booking)

    assert outcome.success
    assert outcome.value.transfer_id
    assert gateway.calls_to("refund") == []
