from __future__ import annotations

import logging
from typing import Any, Optional

from celery import shared_task
from django.apps import apps
from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.mail import EmailMultiAlternatives
from django.template import TemplateDoesNotExist
from django.template.loader import render_to_string

from core.redis import push_event
from notifications.events import NotificationEvent, PickupReminder, event_from_payload
from notifications.models import Notification, NotificationLog

logger = logging.getLogger(__name__)
User = get_user_model()

EMAIL_TEXT_TEMPLATE = "email/booking_notification.txt"
EMAIL_HTML_TEMPLATE = "email/booking_notification.html"


def _get_user(user_id: int) -> Optional[User]:
    try:
        return User.objects.get(pk=user_id)
    except User.DoesNotExist:
        logger.warning("notifications: user %s no longer exists", user_id)
        return None


def _display_name(user) -> str:
    full_name = " ".join(
        part for part in ((user.first_name or "").strip(), (user.last_name or "").strip()) if part
    )
    return full_name or user.username or "there"


def _build_email_context(extra: Optional[dict]) -> dict:
    frontend_origin = (getattr(settings, "FRONTEND_ORIGIN", "") or "").rstrip("/")
    site_name = getattr(settings, "SITE_NAME", "Rent It Forward")
    context = {
        "site_name": site_name,
        "site_url": frontend_origin,
        "brand_primary_color": getattr(settings, "SITE_PRIMARY_COLOR", "#44D62C"),
        "brand_text_color": getattr(settings, "SITE_EMAIL_TEXT_COLOR", "#1F2933"),
        "brand_background_color": getattr(settings, "SITE_EMAIL_BACKGROUND_COLOR", "#F7F5F4"),
    }
    if extra:
        context.update(extra)
    return context


def _log_notification(
    channel: str,
    type_: str,
    status: str,
    *,
    user_id: int | None = None,
    booking_id: int | None = None,
    error: str | None = None,
) -> None:
    try:
        NotificationLog.objects.create(
            channel=channel,
            type=type_,
            status=status,
            user_id=user_id,
            booking_id=booking_id,
            error=error or "",
        )
    except Exception:
        logger.exception(
            "notifications: failed to persist notification log",
            extra={"channel": channel, "type": type_, "status": status},
        )


def _log_booking_failure(*, booking_id: int | None, channel: str, type_: str, error: str) -> None:
    """Put a failed delivery on the booking timeline for operators."""
    if not booking_id:
        return
    try:
        BookingEvent = apps.get_model("operator_bookings", "BookingEvent")
        Booking = apps.get_model("bookings", "Booking")
        booking = Booking.objects.filter(pk=booking_id).first()
        if not booking:
            return
        BookingEvent.objects.create(
            booking=booking,
            type=BookingEvent.Type.NOTIFICATION_FAILED,
            payload={"notification_type": type_, "channel": channel, "error": error},
        )
    except Exception:
        logger.exception(
            "booking_event: failed to log notification failure",
            extra={"booking_id": booking_id, "channel": channel, "type": type_},
        )


def _failed(channel: str, event: NotificationEvent, user_id: int, error: str) -> None:
    _log_notification(
        channel,
        event.event_type,
        NotificationLog.Status.FAILED,
        user_id=user_id,
        booking_id=event.booking_id,
        error=error,
    )
    _log_booking_failure(
        booking_id=event.booking_id, channel=channel, type_=event.event_type, error=error
    )


def _sent(channel: str, event: NotificationEvent, user_id: int) -> None:
    _log_notification(
        channel,
        event.event_type,
        NotificationLog.Status.SENT,
        user_id=user_id,
        booking_id=event.booking_id,
    )


def _deliver_in_app(user, event: NotificationEvent) -> bool:
    try:
        Notification.objects.create(
            user=user,
            event_type=event.event_type,
            booking_id=event.booking_id,
            title=event.title(),
            message=event.message(),
            payload=event.to_payload(),
        )
    except Exception as exc:
        logger.exception(
            "notifications: in-app notification failed",
            extra={"type": event.event_type, "booking_id": event.booking_id, "user_id": user.id},
        )
        _failed(NotificationLog.Channel.IN_APP, event, user.id, str(exc) or exc.__class__.__name__)
        return False
    _sent(NotificationLog.Channel.IN_APP, event, user.id)
    return True


def _deliver_push(user, event: NotificationEvent) -> bool:
    if not getattr(settings, "NOTIFICATIONS_PUSH_ENABLED", True):
        _log_notification(
            NotificationLog.Channel.PUSH,
            event.event_type,
            NotificationLog.Status.SKIPPED,
            user_id=user.id,
            booking_id=event.booking_id,
        )
        return False
    try:
        push_event(
            user.id,
            f"booking:{event.event_type}",
            {"title": event.title(), "message": event.message(), **event.to_payload()},
        )
    except Exception as exc:
        logger.warning(
            "notifications: push failed for user %s type=%s",
            user.id,
            event.event_type,
            exc_info=True,
        )
        _failed(NotificationLog.Channel.PUSH, event, user.id, str(exc) or exc.__class__.__name__)
        return False
    _sent(NotificationLog.Channel.PUSH, event, user.id)
    return True


def _prepare_email_bodies(subject: str, context: dict) -> tuple[str, str | None]:
    context_with_brand = _build_email_context(context)
    context_with_brand["subject"] = subject
    body = render_to_string(EMAIL_TEXT_TEMPLATE, context_with_brand).strip()
    try:
        html_body = render_to_string(EMAIL_HTML_TEMPLATE, context_with_brand).strip()
    except TemplateDoesNotExist:
        html_body = None
    return body, html_body


def _deliver_email(user, event: NotificationEvent) -> bool:
    if not getattr(settings, "NOTIFICATIONS_EMAIL_ENABLED", True):
        return False
    if not user.email:
        logger.warning("notifications: cannot send email without recipient")
        _failed(NotificationLog.Channel.EMAIL, event, user.id, "missing recipient email")
        return False

    frontend_origin = (getattr(settings, "FRONTEND_ORIGIN", "") or "").rstrip("/")
    subject = event.title()
    try:
        body, html_body = _prepare_email_bodies(
            subject,
            {
                "recipient_name": _display_name(user),
                "message": event.message(),
                "event": event,
                "cta_url": f"{frontend_origin}/bookings/{event.booking_id}" if frontend_origin else "",
            },
        )
        message = EmailMultiAlternatives(
            subject=subject,
            body=body,
            from_email=settings.DEFAULT_FROM_EMAIL,
            to=[user.email],
        )
        if html_body:
            message.attach_alternative(html_body, "text/html")
        message.send(fail_silently=False)
    except Exception as exc:
        logger.exception(
            "notifications: email send failed",
            extra={"type": event.event_type, "booking_id": event.booking_id, "user_id": user.id},
        )
        _failed(NotificationLog.Channel.EMAIL, event, user.id, str(exc) or exc.__class__.__name__)
        return False
    _sent(NotificationLog.Channel.EMAIL, event, user.id)
    return True


def _is_stale(event: NotificationEvent) -> bool:
    """Scheduled reminders are dropped once the booking has moved on."""
    if not isinstance(event, PickupReminder):
        return False
    Booking = apps.get_model("bookings", "Booking")
    status = Booking.objects.filter(pk=event.booking_id).values_list("status", flat=True).first()
    return status != Booking.Status.CONFIRMED


def deliver(user, event: NotificationEvent) -> dict[str, bool]:
    """Fan one event out to every channel; a failing channel does not stop the others."""
    return {
        NotificationLog.Channel.IN_APP.value: _deliver_in_app(user, event),
        NotificationLog.Channel.PUSH.value: _deliver_push(user, event),
        NotificationLog.Channel.EMAIL.value: _deliver_email(user, event),
    }


@shared_task(name="notifications.deliver_notification", queue="notifications")
def deliver_notification(user_id: int, event_type: str, payload: dict[str, Any]):
    try:
        event = event_from_payload(event_type, payload)
    except (TypeError, ValueError):
        logger.exception("notifications: dropping malformed event %s", event_type)
        return None

    if _is_stale(event):
        logger.info(
            "notifications: skipping stale %s",
            event_type,
            extra={"booking_id": event.booking_id, "user_id": user_id},
        )
        return None

    user = _get_user(user_id)
    if not user:
        return None
    return deliver(user, event)


@shared_task(name="notifications.deliver_admin_notification", queue="notifications")
def deliver_admin_notification(event_type: str, payload: dict[str, Any]):
    """Deliver an event to every active staff user."""
    try:
        event = event_from_payload(event_type, payload)
    except (TypeError, ValueError):
        logger.exception("notifications: dropping malformed admin event %s", event_type)
        return 0

    admins = list(User.objects.filter(is_staff=True, is_active=True).order_by("id"))
    if not admins:
        logger.warning(
            "notifications: no staff users to receive %s",
            event_type,
            extra={"booking_id": event.booking_id},
        )
    for admin in admins:
        deliver(admin, event)
    return len(admins)
