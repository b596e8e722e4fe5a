"""Booking timeline writers shared by the workflow, webhooks and operator tooling."""

from __future__ import annotations

import logging
from typing import Iterable

from bookings.models import Booking
from operator_bookings.models import BookingEvent

logger = logging.getLogger(__name__)


def record_event(booking: Booking, *, type_value: str, payload: dict, actor=None) -> None:
    try:
        BookingEvent.objects.create(
            booking=booking,
            actor=actor,
            type=type_value,
            payload=payload,
        )
    except Exception:
        logger.exception(
            "booking_event: failed to record %s", type_value, extra={"booking_id": booking.id}
        )


def record_status_change(
    booking: Booking, *, from_status: str | None, reason: str = "", actor=None
) -> None:
    payload = {"from": from_status, "to": booking.status}
    if reason:
        payload["reason"] = reason
    record_event(booking, type_value=BookingEvent.Type.STATUS_CHANGE, payload=payload, actor=actor)


def record_side_effect_warnings(
    booking: Booking, warnings: Iterable[str], *, source: str, actor=None
) -> bool:
    """
    Persist side-effect warnings and flag the booking for manual follow-up.
    The flag write does not touch status, so it never conflicts with a
    concurrent transition.
    """
    messages = [w for w in warnings if w]
    if not messages:
        return False
    record_event(
        booking,
        type_value=BookingEvent.Type.SIDE_EFFECT_FAILED,
        payload={"source": source, "warnings": messages},
        actor=actor,
    )
    Booking.objects.filter(pk=booking.pk).update(needs_manual_followup=True)
    booking.needs_manual_followup = True
    logger.warning(
        "bookings: %s finished with warnings",
        source,
        extra={"booking_id": booking.id, "warnings": messages},
    )
    return True


def record_gateway_event(
    booking_id: int, *, event_type: str, payment_intent_id: str = "", detail: str = ""
) -> bool:
    """Attach a payment processor webhook to the booking it references."""
    booking = Booking.objects.filter(pk=booking_id).first()
    if booking is None:
        logger.info("stripe_webhook: booking %s not found for %s", booking_id, event_type)
        return False
    payload = {"event": event_type, "payment_intent_id": payment_intent_id}
    if detail:
        payload["detail"] = detail
    record_event(booking, type_value=BookingEvent.Type.GATEWAY_EVENT, payload=payload)
    return True
