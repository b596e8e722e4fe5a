"""Domain helpers for booking validation and state transitions."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Literal, Optional

from django.core.exceptions import PermissionDenied, ValidationError
from django.utils import timezone

from listings.models import Listing

from .models import TERMINAL_STATUSES, Booking

Party = Literal["renter", "owner"]
CancelActor = Literal["renter", "owner", "system", "operator"]

REJECTION_REASON_MIN_LENGTH = 10
REJECTION_REASON_MAX_LENGTH = 500

# Statuses that block dates for availability and conflict detection.
# Pending requests may overlap until the owner approves one of them.
ACTIVE_BOOKING_STATUSES = (
    Booking.Status.PAYMENT_REQUIRED,
    Booking.Status.CONFIRMED,
    Booking.Status.ACTIVE,
    Booking.Status.IN_PROGRESS,
)

PICKED_UP_STATUSES = (Booking.Status.IN_PROGRESS, Booking.Status.ACTIVE)

# Deposit states an operator release still has to settle.
DEPOSIT_UNSETTLED = (Booking.DepositStatus.HELD, Booking.DepositStatus.REFUND_FAILED)

# Names used by older clients, imports and the payment processor metadata.
LEGACY_STATUS_ALIASES = {
    "payment_pending": Booking.Status.PAYMENT_REQUIRED,
    "pending_payment": Booking.Status.PENDING,
    "requested": Booking.Status.PENDING,
    "approved": Booking.Status.PAYMENT_REQUIRED,
    "paid": Booking.Status.CONFIRMED,
    "picked_up": Booking.Status.IN_PROGRESS,
    "active": Booking.Status.IN_PROGRESS,
    "returned": Booking.Status.COMPLETED,
    "canceled": Booking.Status.CANCELLED,
    "declined": Booking.Status.REJECTED,
    "funds-released": Booking.Status.FUNDS_RELEASED,
}


class InvalidBookingTransition(ValidationError):
    """The booking is not in a status that allows the requested change."""

    def __init__(self, message: str, *, current_status: str | None = None):
        super().__init__({"status": [message]})
        self.current_status = current_status


class BookingConflict(InvalidBookingTransition):
    """Another request changed the booking's status first."""


class BookingPermissionDenied(PermissionDenied):
    """The acting user may not perform this action on the booking."""


@dataclass(frozen=True)
class Transition:
    name: str
    sources: tuple[str, ...]
    target: str | None
    error: str


TRANSITIONS: dict[str, Transition] = {
    "approve": Transition(
        "approve",
        (Booking.Status.PENDING,),
        Booking.Status.PAYMENT_REQUIRED,
        "Only pending bookings can be approved.",
    ),
    "reject": Transition(
        "reject",
        (Booking.Status.PENDING,),
        Booking.Status.REJECTED,
        "Only pending bookings can be rejected.",
    ),
    "cancel": Transition(
        "cancel",
        (Booking.Status.PENDING, Booking.Status.PAYMENT_REQUIRED),
        Booking.Status.CANCELLED,
        "Only pending or unpaid bookings can be cancelled.",
    ),
    "authorize_payment": Transition(
        "authorize_payment",
        (Booking.Status.PENDING, Booking.Status.PAYMENT_REQUIRED),
        None,
        "Payment can only be authorized before the booking is paid.",
    ),
    "capture_payment": Transition(
        "capture_payment",
        (Booking.Status.PAYMENT_REQUIRED,),
        Booking.Status.CONFIRMED,
        "Only bookings awaiting payment can be paid.",
    ),
    "confirm_pickup": Transition(
        "confirm_pickup",
        (Booking.Status.CONFIRMED,),
        Booking.Status.IN_PROGRESS,
        "Pickup can only be confirmed for paid, confirmed bookings.",
    ),
    "confirm_return": Transition(
        "confirm_return",
        PICKED_UP_STATUSES,
        Booking.Status.COMPLETED,
        "Return can only be confirmed after pickup.",
    ),
    "release_funds": Transition(
        "release_funds",
        (Booking.Status.COMPLETED,),
        Booking.Status.FUNDS_RELEASED,
        "Funds can only be released for completed bookings.",
    ),
}


def canonical_status(value: str | None) -> str:
    """Map any known status spelling onto Booking.Status."""
    if not value:
        raise ValidationError({"status": ["Status is required."]})
    normalized = str(value).strip().lower()
    if normalized in LEGACY_STATUS_ALIASES:
        return LEGACY_STATUS_ALIASES[normalized]
    if normalized in Booking.Status.values:
        return Booking.Status(normalized)
    raise ValidationError({"status": [f"Unknown booking status '{value}'."]})


def assert_transition(booking: Booking, name: str) -> Transition:
    """Return the named transition if the booking may take it, else raise."""
    transition = TRANSITIONS[name]
    if booking.status in transition.sources:
        return transition
    if booking.status in TERMINAL_STATUSES and name != "release_funds":
        raise InvalidBookingTransition(
            f"Booking is already {booking.status}. {transition.error}",
            current_status=booking.status,
        )
    raise InvalidBookingTransition(transition.error, current_status=booking.status)


def assert_can_approve(booking: Booking) -> None:
    assert_transition(booking, "approve")


def assert_can_reject(booking: Booking) -> None:
    assert_transition(booking, "reject")


def assert_can_cancel(booking: Booking, actor: CancelActor | None = None) -> None:
    """
    Ensure the booking can be cancelled given the actor.
    - Only pending or payment_required bookings may be cancelled.
    - Once paid, cancellation goes through the operator tooling.
    """
    assert_transition(booking, "cancel")
    if actor is not None and actor not in {"renter", "owner", "system", "operator"}:
        raise ValidationError({"non_field_errors": ["Invalid cancel actor."]})


def assert_can_authorize(booking: Booking) -> None:
    assert_transition(booking, "authorize_payment")


def assert_can_pay(booking: Booking) -> None:
    assert_transition(booking, "capture_payment")


def assert_can_confirm_pickup(booking: Booking) -> None:
    assert_transition(booking, "confirm_pickup")
    if not booking.payment_captured_at:
        raise InvalidBookingTransition(
            "Payment must be captured before pickup.", current_status=booking.status
        )


def assert_can_confirm_return(booking: Booking) -> None:
    assert_transition(booking, "confirm_return")


def assert_can_release_funds(booking: Booking) -> None:
    """Operator release settles a completed booking once; nothing left to settle is an error."""
    assert_transition(booking, "release_funds")
    settled = (
        booking.payout_status == Booking.PayoutStatus.RELEASED
        and booking.deposit_status not in DEPOSIT_UNSETTLED
    )
    if settled and not booking.requires_admin_review:
        raise InvalidBookingTransition(
            "Funds have already been released for this booking.",
            current_status=booking.status,
        )


def validate_booking_dates(start_date: date | None, end_date: date | None) -> None:
    """Validate that the provided dates exist and form a valid range."""
    if not start_date or not end_date:
        raise ValidationError({"non_field_errors": ["Start and end dates are required."]})
    if end_date < start_date:
        raise ValidationError({"end_date": ["End date cannot be before start date."]})
    if start_date < timezone.localdate():
        raise ValidationError({"start_date": ["Start date cannot be in the past."]})


def validate_rejection_reason(reason: str | None) -> str:
    cleaned = (reason or "").strip()
    if len(cleaned) < REJECTION_REASON_MIN_LENGTH:
        raise ValidationError(
            {
                "reason": [
                    f"Rejection reason must be at least {REJECTION_REASON_MIN_LENGTH} characters."
                ]
            }
        )
    if len(cleaned) > REJECTION_REASON_MAX_LENGTH:
        raise ValidationError(
            {
                "reason": [
                    f"Rejection reason must be at most {REJECTION_REASON_MAX_LENGTH} characters."
                ]
            }
        )
    return cleaned


def ensure_no_conflict(
    listing: Listing,
    start_date: date,
    end_date: date,
    *,
    exclude_booking_id: Optional[int] = None,
) -> None:
    """Ensure no date-blocking booking overlaps the inclusive range."""
    qs = Booking.objects.filter(listing=listing, status__in=ACTIVE_BOOKING_STATUSES)
    if exclude_booking_id is not None:
        qs = qs.exclude(pk=exclude_booking_id)
    conflicts = qs.filter(start_date__lte=end_date, end_date__gte=start_date)
    if conflicts.exists():
        raise ValidationError(
            {"non_field_errors": ["Requested dates are not available for this listing."]}
        )


def party_for(booking: Booking, user) -> Party | None:
    user_id = getattr(user, "id", None)
    if user_id is None:
        return None
    if user_id == booking.owner_id:
        return "owner"
    if user_id == booking.renter_id:
        return "renter"
    return None


def require_party(booking: Booking, user) -> Party:
    party = party_for(booking, user)
    if party is None:
        raise BookingPermissionDenied("Only the renter or the owner can act on this booking.")
    return party


def require_owner(booking: Booking, user, action: str) -> None:
    if party_for(booking, user) != "owner":
        raise BookingPermissionDenied(f"Only the listing owner can {action} this booking.")


def require_renter(booking: Booking, user, action: str) -> None:
    if party_for(booking, user) != "renter":
        raise BookingPermissionDenied(f"Only the renter can {action} this booking.")


def is_pre_payment(booking: Booking) -> bool:
    return booking.status in (Booking.Status.PENDING, Booking.Status.PAYMENT_REQUIRED)


def needs_points_restore(booking: Booking) -> bool:
    return booking.points_used > 0 and booking.points_restored_at is None
