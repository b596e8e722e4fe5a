"""Two-party pickup/return confirmation tracking."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal, Sequence

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from .domain import (
    TRANSITIONS,
    InvalidBookingTransition,
    assert_can_confirm_pickup,
    assert_can_confirm_return,
)
from .models import Booking, BookingEvidence
from .store import BookingStore

logger = logging.getLogger(__name__)

Phase = Literal["pickup", "return"]
PARTIES = ("renter", "owner")
PHASES = ("pickup", "return")


@dataclass(frozen=True)
class Evidence:
    photos: Sequence[str] = ()
    notes: str = ""
    damage_report: str = ""


@dataclass(frozen=True)
class ConfirmationResult:
    booking: Booking
    newly_recorded: bool
    phase_complete: bool


def flag_name(party: str, phase: str) -> str:
    return f"{phase}_confirmed_by_{party}"


def is_confirmed(booking: Booking, party: str, phase: str) -> bool:
    return bool(getattr(booking, flag_name(party, phase)))


def both_confirmed(booking: Booking, phase: str) -> bool:
    return all(is_confirmed(booking, party, phase) for party in PARTIES)


def photo_limits(phase: str) -> tuple[int, int]:
    if phase == "return":
        return (
            getattr(settings, "BOOKINGS_RETURN_MIN_PHOTOS", 3),
            getattr(settings, "BOOKINGS_RETURN_MAX_PHOTOS", 8),
        )
    return 0, getattr(settings, "BOOKINGS_PICKUP_MAX_PHOTOS", 8)


def validate_evidence(phase: str, evidence: Evidence) -> None:
    minimum, maximum = photo_limits(phase)
    photos = [url for url in evidence.photos if url]
    if len(photos) < minimum:
        raise ValidationError(
            {"photos": [f"At least {minimum} photos are required to confirm {phase}."]}
        )
    if len(photos) > maximum:
        raise ValidationError(
            {"photos": [f"No more than {maximum} photos can be attached to a {phase}."]}
        )
    if evidence.damage_report and phase != "return":
        raise ValidationError(
            {"damage_report": ["Damage can only be reported when confirming the return."]}
        )


class ConfirmationTracker:
    """
    Records one party's pickup or return confirmation and reports when both
    parties have confirmed the phase.

    Confirming twice is a no-op and the order of the two parties does not
    matter: the phase completes on whichever confirmation sets the second flag.
    """

    def __init__(self, store: BookingStore | None = None):
        self.store = store or BookingStore()

    def confirm(
        self,
        booking: Booking,
        party: str,
        phase: str,
        evidence: Evidence | None = None,
    ) -> ConfirmationResult:
        if party not in PARTIES:
            raise ValidationError({"party": ["Party must be renter or owner."]})
        if phase not in PHASES:
            raise ValidationError({"phase": ["Phase must be pickup or return."]})
        evidence = evidence or Evidence()

        if booking.is_terminal():
            raise InvalidBookingTransition(
                f"Booking is already {booking.status}.", current_status=booking.status
            )
        if is_confirmed(booking, party, phase):
            return ConfirmationResult(booking=booking, newly_recorded=False, phase_complete=False)

        if phase == "pickup":
            assert_can_confirm_pickup(booking)
        else:
            assert_can_confirm_return(booking)
        validate_evidence(phase, evidence)

        now = timezone.now()
        flag = flag_name(party, phase)
        patch: dict = {flag: True, f"{flag}_at": now}
        damage_report = (evidence.damage_report or "").strip()
        if damage_report:
            existing = (booking.damage_report or "").strip()
            patch["damage_reported"] = True
            patch["damage_report"] = (
                f"{existing}\n[{party}] {damage_report}" if existing else f"[{party}] {damage_report}"
            )

        transition = TRANSITIONS[f"confirm_{phase}"]
        with transaction.atomic():
            updated = self.store.update_booking(booking.id, patch, transition.sources)
            BookingEvidence.objects.bulk_create(
                [
                    BookingEvidence(
                        booking=updated,
                        party=party,
                        phase=phase,
                        url=url,
                        notes=evidence.notes or "",
                    )
                    for url in evidence.photos
                    if url
                ]
            )

        phase_complete = both_confirmed(updated, phase)
        logger.info(
            "bookings: %s confirmed %s",
            party,
            phase,
            extra={"booking_id": updated.id, "phase_complete": phase_complete},
        )
        return ConfirmationResult(
            booking=updated,
            newly_recorded=True,
            phase_complete=phase_complete,
        )
