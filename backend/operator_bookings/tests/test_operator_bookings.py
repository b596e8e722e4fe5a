"""Tests for operator booking tooling: settlement, forced cancellation and the API."""

from __future__ import annotations

from decimal import Decimal

import pytest
from django.core.exceptions import ValidationError
from rest_framework.test import APIClient

from bookings.domain import InvalidBookingTransition
from bookings.models import Booking
from bookings.workflow import BookingPaymentFailed
from notifications.events import BookingCancelled, DepositRefunded, FundsReleased
from operator_bookings.models import BookingEvent
from operator_bookings.services import force_cancel_booking, release_funds
from operator_core.models import OperatorAuditEvent
from payments.stripe_api import StripePaymentError, StripeTransientError

pytestmark = pytest.mark.django_db


def _ops_client(user=None):
    client = APIClient()
    if user:
        client.force_authenticate(user=user)
    return client


@pytest.fixture
def damaged_booking(paid_booking_factory):
    return paid_booking_factory(
        status=Booking.Status.COMPLETED,
        damage_reported=True,
        damage_report="[owner] Cracked lens",
        requires_admin_review=True,
    )


class TestReleaseFunds:
    def test_partial_deposit_refund_pays_remainder_to_owner(
        self, workflow, fake_gateway, dispatcher, damaged_booking, operator_user, owner_user, renter_user
    ):
        result = release_funds(
            damaged_booking,
            operator_user=operator_user,
            reason="Lens repair quote was 40",
            deposit_refund_amount=Decimal("60.00"),
            workflow=workflow,
        )

        booking = result.booking
        assert booking.status == Booking.Status.FUNDS_RELEASED
        assert booking.payout_status == Booking.PayoutStatus.RELEASED
        assert booking.deposit_status == Booking.DepositStatus.PARTIALLY_REFUNDED
        assert not booking.requires_admin_review
        (transfer,) = fake_gateway.calls_to("transfer")
        assert transfer["amount"] == Decimal("160.00")
        (refund,) = fake_gateway.calls_to("refund")
        assert refund["amount"] == Decimal("60.00")
        assert [e.amount for _, e in dispatcher.events_of(FundsReleased)] == ["160.00"]
        assert dispatcher.recipients_of(DepositRefunded) == {renter_user.id}

        audit = OperatorAuditEvent.objects.get(action="booking.release_funds")
        assert audit.actor == operator_user
        assert audit.entity_id == str(booking.id)
        assert audit.before_json["status"] == Booking.Status.COMPLETED
        assert audit.after_json["status"] == Booking.Status.FUNDS_RELEASED
        assert BookingEvent.objects.filter(
            booking=booking, type=BookingEvent.Type.OPERATOR_ACTION, actor=operator_user
        ).exists()

    def test_full_refund_by_default(self, workflow, fake_gateway, damaged_booking, operator_user):
        booking = release_funds(
            damaged_booking, operator_user=operator_user, reason="No damage found", workflow=workflow
        ).booking

        assert booking.deposit_status == Booking.DepositStatus.REFUNDED
        assert fake_gateway.calls_to("transfer")[0]["amount"] == Decimal("120.00")

    def test_zero_refund_retains_deposit(self, workflow, fake_gateway, damaged_booking, operator_user):
        booking = release_funds(
            damaged_booking,
            operator_user=operator_user,
            reason="Item destroyed",
            deposit_refund_amount=Decimal("0"),
            workflow=workflow,
        ).booking

        assert booking.deposit_status == Booking.DepositStatus.RETAINED
        assert fake_gateway.calls_to("refund") == []
        assert fake_gateway.calls_to("transfer")[0]["amount"] == Decimal("220.00")

    def test_refund_above_deposit_is_rejected(self, workflow, damaged_booking, operator_user):
        with pytest.raises(ValidationError):
            release_funds(
                damaged_booking,
                operator_user=operator_user,
                reason="Typo",
                deposit_refund_amount=Decimal("150.00"),
                workflow=workflow,
            )

    def test_reason_is_required(self, workflow, damaged_booking, operator_user):
        with pytest.raises(ValidationError):
            release_funds(damaged_booking, operator_user=operator_user, reason="  ", workflow=workflow)

    def test_failed_payout_leaves_booking_for_retry(
        self, workflow, fake_gateway, damaged_booking, operator_user
    ):
        fake_gateway.fail_transfer = StripeTransientError("Temporary Stripe error, please retry.")

        with pytest.raises(BookingPaymentFailed):
            release_funds(
                damaged_booking, operator_user=operator_user, reason="Settle", workflow=workflow
            )

        damaged_booking.refresh_from_db()
        assert damaged_booking.status == Booking.Status.COMPLETED
        assert damaged_booking.requires_admin_review
        assert fake_gateway.calls_to("refund") == []

        fake_gateway.fail_transfer = None
        booking = release_funds(
            damaged_booking, operator_user=operator_user, reason="Settle", workflow=workflow
        ).booking
        assert booking.status == Booking.Status.FUNDS_RELEASED

    def test_failed_deposit_refund_is_a_warning(
        self, workflow, fake_gateway, damaged_booking, operator_user
    ):
        fake_gateway.fail_refund = StripePaymentError("Charge already refunded.")

        result = release_funds(
            damaged_booking, operator_user=operator_user, reason="Settle", workflow=workflow
        )

        assert result.booking.status == Booking.Status.FUNDS_RELEASED
        assert result.booking.deposit_status == Booking.DepositStatus.REFUND_FAILED
        assert result.warnings
        damaged_booking.refresh_from_db()
        assert damaged_booking.needs_manual_followup

    def test_already_settled_booking(self, workflow, paid_booking_factory, operator_user):
        booking = paid_booking_factory(
            status=Booking.Status.COMPLETED,
            payout_status=Booking.PayoutStatus.RELEASED,
            deposit_status=Booking.DepositStatus.REFUNDED,
        )
        with pytest.raises(InvalidBookingTransition):
            release_funds(booking, operator_user=operator_user, reason="Again", workflow=workflow)

    def test_failed_automatic_payout_can_be_retried(
        self, workflow, fake_gateway, paid_booking_factory, operator_user
    ):
        booking = paid_booking_factory(
            status=Booking.Status.COMPLETED,
            payout_status=Booking.PayoutStatus.FAILED,
            deposit_status=Booking.DepositStatus.REFUNDED,
            deposit_refund_id="re_earlier",
        )

        result = release_funds(booking, operator_user=operator_user, reason="Retry payout", workflow=workflow)

        assert result.booking.status == Booking.Status.FUNDS_RELEASED
        assert fake_gateway.calls_to("transfer")[0]["amount"] == Decimal("120.00")
        assert fake_gateway.calls_to("refund") == []


class TestForceCancel:
    def test_unpaid_booking_follows_regular_cancellation(
        self, workflow, dispatcher, booking_factory, operator_user, owner_user, renter_user
    ):
        booking = booking_factory(points_used=100)
        balance = renter_user.points_balance

        result = force_cancel_booking(
            booking, operator_user=operator_user, reason="Fraud check", workflow=workflow
        )

        assert result.booking.status == Booking.Status.CANCELLED
        assert result.booking.cancelled_by == Booking.CancelledBy.OPERATOR
        assert dispatcher.recipients_of(BookingCancelled) == {owner_user.id, renter_user.id}
        renter_user.refresh_from_db()
        assert renter_user.points_balance == balance + 100
        assert OperatorAuditEvent.objects.filter(action="booking.force_cancel").exists()

    def test_paid_booking_is_refunded_in_full(
        self, workflow, fake_gateway, paid_booking_factory, operator_user
    ):
        booking = paid_booking_factory()

        result = force_cancel_booking(
            booking, operator_user=operator_user, reason="Listing removed", workflow=workflow
        )

        assert result.booking.status == Booking.Status.CANCELLED
        assert result.booking.deposit_status == Booking.DepositStatus.REFUNDED
        (refund,) = fake_gateway.calls_to("refund")
        assert refund["amount"] == booking.amount_due

    def test_refund_failure_keeps_booking(self, workflow, fake_gateway, paid_booking_factory, operator_user):
        fake_gateway.fail_refund = StripePaymentError("Charge disputed.")
        booking = paid_booking_factory()

        with pytest.raises(BookingPaymentFailed):
            force_cancel_booking(booking, operator_user=operator_user, reason="Remove", workflow=workflow)

        booking.refresh_from_db()
        assert booking.status == Booking.Status.CONFIRMED

    def test_picked_up_booking_cannot_be_cancelled(self, workflow, paid_booking_factory, operator_user):
        booking = paid_booking_factory(status=Booking.Status.IN_PROGRESS)
        with pytest.raises(InvalidBookingTransition):
            force_cancel_booking(booking, operator_user=operator_user, reason="Too late", workflow=workflow)


@pytest.mark.usefixtures("use_fake_workflow")
class TestOperatorBookingsApi:
    def test_regular_users_are_forbidden(self, renter_user):
        assert _ops_client(renter_user).get("/api/operator/bookings/").status_code == 403
        assert _ops_client().get("/api/operator/bookings/").status_code == 401

    def test_list_filters_by_review_flag(self, support_user, damaged_booking, booking_factory):
        booking_factory()

        resp = _ops_client(support_user).get(
            "/api/operator/bookings/", {"requires_admin_review": "true"}
        )

        assert resp.status_code == 200
        assert resp.data["count"] == 1
        row = resp.data["results"][0]
        assert row["id"] == damaged_booking.id
        assert row["listing_title"] == "Pro Camera Kit"
        assert row["owner"]["name"] == "Olive Owner"

    def test_detail_includes_timeline_and_ledger(self, support_user, damaged_booking):
        BookingEvent.objects.create(
            booking=damaged_booking,
            type=BookingEvent.Type.STATUS_CHANGE,
            payload={"from": "in_progress", "to": "completed"},
        )

        resp = _ops_client(support_user).get(f"/api/operator/bookings/{damaged_booking.id}/")

        assert resp.status_code == 200
        assert resp.data["damage_report"] == "[owner] Cracked lens"
        assert resp.data["events"][0]["payload"]["to"] == "completed"
        assert resp.data["ledger"]["owner_payout"] == "0.00"

    def test_support_role_cannot_move_money(self, support_user, damaged_booking):
        resp = _ops_client(support_user).post(
            f"/api/operator/bookings/{damaged_booking.id}/release-funds/",
            {"reason": "Settle"},
            format="json",
        )
        assert resp.status_code == 403

    def test_release_funds_endpoint(self, operator_user, damaged_booking):
        resp = _ops_client(operator_user).post(
            f"/api/operator/bookings/{damaged_booking.id}/release-funds/",
            {"reason": "Repair cost agreed", "deposit_refund_amount": "25.00"},
            format="json",
            HTTP_X_FORWARDED_FOR="203.0.113.9",
        )

        assert resp.status_code == 200, resp.data
        assert resp.data["status"] == Booking.Status.FUNDS_RELEASED
        assert resp.data["deposit_status"] == Booking.DepositStatus.PARTIALLY_REFUNDED
        assert resp.data["warnings"] == []
        assert OperatorAuditEvent.objects.get(action="booking.release_funds").ip == "203.0.113.9"

    def test_release_funds_requires_reason(self, operator_user, damaged_booking):
        resp = _ops_client(operator_user).post(
            f"/api/operator/bookings/{damaged_booking.id}/release-funds/", {}, format="json"
        )
        assert resp.status_code == 400

    def test_release_funds_on_open_booking_conflicts(self, operator_user, paid_booking_factory):
        booking = paid_booking_factory(status=Booking.Status.IN_PROGRESS)
        resp = _ops_client(operator_user).post(
            f"/api/operator/bookings/{booking.id}/release-funds/", {"reason": "Settle"}, format="json"
        )
        assert resp.status_code == 409

    def test_release_funds_gateway_outage(self, operator_user, damaged_booking, fake_gateway):
        fake_gateway.fail_transfer = StripeTransientError("Temporary Stripe error, please retry.")
        resp = _ops_client(operator_user).post(
            f"/api/operator/bookings/{damaged_booking.id}/release-funds/",
            {"reason": "Settle"},
            format="json",
        )
        assert resp.status_code == 503

    def test_force_cancel_endpoint(self, operator_user, paid_booking_factory):
        booking = paid_booking_factory()
        resp = _ops_client(operator_user).post(
            f"/api/operator/bookings/{booking.id}/force-cancel/",
            {"reason": "Owner account suspended"},
            format="json",
        )
        assert resp.status_code == 200, resp.data
        assert resp.data["status"] == Booking.Status.CANCELLED
        assert resp.data["cancelled_by"] == Booking.CancelledBy.OPERATOR

    def test_unknown_booking(self, operator_user):
        resp = _ops_client(operator_user).post(
            "/api/operator/bookings/999999/force-cancel/", {"reason": "x"}, format="json"
        )
        assert resp.status_code == 404
