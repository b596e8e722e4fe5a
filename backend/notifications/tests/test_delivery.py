"""Tests for notification delivery tasks and the Celery dispatcher."""

from __future__ import annotations

from datetime import timedelta

import pytest
from django.core import mail
from django.utils import timezone

from bookings.models import Booking
from notifications import tasks as notification_tasks
from notifications.dispatcher import CeleryNotificationDispatcher
from notifications.events import BookingApproved, DamageReviewRequired, PickupReminder
from notifications.models import Notification, NotificationLog
from notifications.tasks import deliver_admin_notification, deliver_notification
from operator_bookings.models import BookingEvent

pytestmark = pytest.mark.django_db


def _approved(booking) -> BookingApproved:
    return BookingApproved(
        booking_id=booking.id,
        listing_title="Pro Camera Kit",
        amount_due="272.50",
        payment_expires_at="2026-11-02 10:00",
    )


def test_delivery_writes_in_app_and_email(booking_factory, renter_user):
    booking = booking_factory()
    event = _approved(booking)

    result = deliver_notification(renter_user.id, event.event_type, event.to_payload())

    assert result == {"in_app": True, "push": False, "email": True}
    notification = Notification.objects.get(user=renter_user)
    assert notification.event_type == "booking_approved"
    assert notification.booking_id == booking.id
    assert "272.50" in notification.message
    assert len(mail.outbox) == 1
    assert mail.outbox[0].to == [renter_user.email]
    assert mail.outbox[0].subject == event.title()
    statuses = dict(
        NotificationLog.objects.filter(booking_id=booking.id).values_list("channel", "status")
    )
    assert statuses == {"in_app": "sent", "push": "skipped", "email": "sent"}


def test_push_goes_to_redis_when_enabled(settings, monkeypatch, booking_factory, renter_user):
    settings.NOTIFICATIONS_PUSH_ENABLED = True
    pushed = []
    monkeypatch.setattr(
        notification_tasks,
        "push_event",
        lambda user_id, event_type, payload: pushed.append((user_id, event_type, payload)) or "1-0",
    )
    event = _approved(booking_factory())

    deliver_notification(renter_user.id, event.event_type, event.to_payload())

    (user_id, event_type, payload) = pushed[0]
    assert user_id == renter_user.id
    assert event_type == "booking:booking_approved"
    assert payload["amount_due"] == "272.50"


def test_push_failure_is_logged_on_booking(settings, monkeypatch, booking_factory, renter_user):
    settings.NOTIFICATIONS_PUSH_ENABLED = True

    def broken_push(*args, **kwargs):
        raise ConnectionError("redis unavailable")

    monkeypatch.setattr(notification_tasks, "push_event", broken_push)
    booking = booking_factory()
    event = _approved(booking)

    result = deliver_notification(renter_user.id, event.event_type, event.to_payload())

    assert result["push"] is False
    assert result["email"] is True
    failure = BookingEvent.objects.get(booking=booking, type=BookingEvent.Type.NOTIFICATION_FAILED)
    assert failure.payload["channel"] == "push"
    assert "redis unavailable" in failure.payload["error"]


def test_email_disabled(settings, booking_factory, renter_user):
    settings.NOTIFICATIONS_EMAIL_ENABLED = False
    event = _approved(booking_factory())
    result = deliver_notification(renter_user.id, event.event_type, event.to_payload())
    assert result["email"] is False
    assert mail.outbox == []


def test_missing_email_is_a_failed_delivery(booking_factory, renter_user):
    renter_user.email = ""
    renter_user.save()
    event = _approved(booking_factory())

    deliver_notification(renter_user.id, event.event_type, event.to_payload())

    assert NotificationLog.objects.filter(
        channel="email", status="failed", user=renter_user
    ).exists()


def test_unknown_user_or_event_is_dropped(booking_factory):
    event = _approved(booking_factory())
    assert deliver_notification(999_999, event.event_type, event.to_payload()) is None
    assert deliver_notification(1, "booking_teleported", {"booking_id": 1}) is None
    assert not Notification.objects.exists()


def test_stale_pickup_reminder_is_skipped(booking_factory, renter_user):
    booking = booking_factory(status=Booking.Status.CANCELLED)
    reminder = PickupReminder(booking_id=booking.id, start_date=booking.start_date.isoformat())

    assert deliver_notification(renter_user.id, reminder.event_type, reminder.to_payload()) is None
    assert not Notification.objects.exists()


def test_pickup_reminder_for_confirmed_booking(paid_booking_factory, renter_user):
    booking = paid_booking_factory()
    reminder = PickupReminder(booking_id=booking.id, start_date=booking.start_date.isoformat())

    deliver_notification(renter_user.id, reminder.event_type, reminder.to_payload())

    assert Notification.objects.filter(user=renter_user, event_type="pickup_reminder").exists()


def test_admin_notification_reaches_active_staff(booking_factory, operator_user, support_user):
    support_user.is_active = False
    support_user.save()
    event = DamageReviewRequired(booking_id=booking_factory().id, damage_report="[renter] Cracked")

    assert deliver_admin_notification(event.event_type, event.to_payload()) == 1
    assert Notification.objects.filter(user=operator_user).count() == 1


class TestCeleryDispatcher:
    def test_notify_runs_delivery(self, booking_factory, renter_user):
        event = _approved(booking_factory())
        assert CeleryNotificationDispatcher().notify(renter_user.id, event)
        assert Notification.objects.filter(user=renter_user).exists()

    def test_enqueue_failure_returns_false(self, monkeypatch, booking_factory, renter_user):
        def broken_delay(*args, **kwargs):
            raise ConnectionError("broker down")

        monkeypatch.setattr(deliver_notification, "delay", broken_delay)
        event = _approved(booking_factory())

        assert CeleryNotificationDispatcher().notify(renter_user.id, event) is False

    def test_schedule_passes_eta(self, monkeypatch, booking_factory, renter_user):
        calls = []
        monkeypatch.setattr(
            deliver_notification, "apply_async", lambda **kwargs: calls.append(kwargs)
        )
        booking = booking_factory()
        reminder = PickupReminder(booking_id=booking.id, start_date=booking.start_date.isoformat())
        eta = timezone.now() + timedelta(days=2)

        assert CeleryNotificationDispatcher().schedule(renter_user.id, reminder, eta)

        (call,) = calls
        assert call["eta"] == eta
        assert call["args"] == (renter_user.id, "pickup_reminder", reminder.to_payload())
