"""Persistent record store for bookings backed by the Django ORM."""

from __future__ import annotations

import logging
from typing import Any, Iterable

from django.contrib.auth import get_user_model
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from .domain import BookingConflict, needs_points_restore
from .models import Booking

logger = logging.getLogger(__name__)
User = get_user_model()


def _as_statuses(expected_status: str | Iterable[str]) -> tuple[str, ...]:
    if isinstance(expected_status, str):
        return (expected_status,)
    return tuple(expected_status)


class BookingStore:
    """
    Reads and compare-and-swap writes for Booking rows.

    Every status-changing write is a single UPDATE filtered on the status the
    caller last observed, so two racing transitions cannot both apply.
    """

    def get_booking(self, booking_id: int) -> Booking:
        return Booking.objects.select_related("listing", "owner", "renter").get(pk=booking_id)

    def update_booking(
        self,
        booking_id: int,
        patch: dict[str, Any],
        expected_status: str | Iterable[str],
    ) -> Booking:
        """
        Apply `patch` only if the booking's status is still one of
        `expected_status`. Raises BookingConflict when zero rows match.
        """
        statuses = _as_statuses(expected_status)
        values = {**patch, "updated_at": timezone.now()}
        updated = Booking.objects.filter(pk=booking_id, status__in=statuses).update(**values)
        if updated == 0:
            current = (
                Booking.objects.filter(pk=booking_id).values_list("status", flat=True).first()
            )
            logger.info(
                "bookings: compare-and-swap lost",
                extra={"booking_id": booking_id, "expected": statuses, "current": current},
            )
            raise BookingConflict(
                "This booking was changed by another request. Refresh and try again.",
                current_status=current,
            )
        return self.get_booking(booking_id)

    def restore_points(self, user_id: int, amount: int) -> None:
        if amount <= 0:
            return
        User.objects.filter(pk=user_id).update(points_balance=F("points_balance") + amount)

    def deduct_points(self, user_id: int, amount: int) -> bool:
        """Take `amount` points from the user; False if the balance is too low."""
        if amount <= 0:
            return True
        updated = User.objects.filter(pk=user_id, points_balance__gte=amount).update(
            points_balance=F("points_balance") - amount
        )
        return updated == 1

    def transition(
        self,
        booking: Booking,
        patch: dict[str, Any],
        expected_status: str | Iterable[str],
        *,
        restore_points: bool = False,
    ) -> Booking:
        """
        Status write plus, when asked, the renter's points restoration in one
        atomic block. `points_restored_at` rides along in the same guarded
        UPDATE, so the restore can only ever happen once.
        """
        with transaction.atomic():
            points = booking.points_used if restore_points and needs_points_restore(booking) else 0
            if points:
                patch = {**patch, "points_restored_at": timezone.now()}
            updated = self.update_booking(booking.id, patch, expected_status)
            if points:
                self.restore_points(booking.renter_id, points)
        return updated
