"""
Booking notification events.

One frozen dataclass per event type. Each carries an `event_type` tag and
renders its own title and message, so the delivery task never has to
inspect loose payload dictionaries.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any, ClassVar


@dataclass(frozen=True, kw_only=True)
class NotificationEvent:
    event_type: ClassVar[str] = ""

    booking_id: int
    listing_title: str = "your listing"

    def title(self) -> str:
        raise NotImplementedError

    def message(self) -> str:
        raise NotImplementedError

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, kw_only=True)
class BookingRequested(NotificationEvent):
    event_type: ClassVar[str] = "booking_requested"

    renter_name: str = ""
    start_date: str = ""
    end_date: str = ""

    def title(self) -> str:
        return f"New booking request for {self.listing_title}"

    def message(self) -> str:
        who = self.renter_name or "A renter"
        return f"{who} wants to rent {self.listing_title} from {self.start_date} to {self.end_date}."


@dataclass(frozen=True, kw_only=True)
class BookingApproved(NotificationEvent):
    event_type: ClassVar[str] = "booking_approved"

    amount_due: str = ""
    payment_expires_at: str = ""

    def title(self) -> str:
        return f"Your booking for {self.listing_title} was approved"

    def message(self) -> str:
        text = f"Pay ${self.amount_due} to confirm your booking for {self.listing_title}."
        if self.payment_expires_at:
            text += f" Payment is due by {self.payment_expires_at}."
        return text


@dataclass(frozen=True, kw_only=True)
class BookingRejected(NotificationEvent):
    event_type: ClassVar[str] = "booking_rejected"

    reason: str = ""

    def title(self) -> str:
        return f"Booking for {self.listing_title} was declined"

    def message(self) -> str:
        return f"The booking request for {self.listing_title} was declined: {self.reason}"


@dataclass(frozen=True, kw_only=True)
class BookingCancelled(NotificationEvent):
    event_type: ClassVar[str] = "booking_cancelled"

    cancelled_by: str = ""
    reason: str = ""

    def title(self) -> str:
        return f"Booking for {self.listing_title} was cancelled"

    def message(self) -> str:
        if self.cancelled_by == "system":
            text = f"The booking for {self.listing_title} expired and was cancelled."
        else:
            text = f"The booking for {self.listing_title} was cancelled by the {self.cancelled_by}."
        if self.reason:
            text += f" Reason: {self.reason}"
        return text


@dataclass(frozen=True, kw_only=True)
class PaymentConfirmed(NotificationEvent):
    event_type: ClassVar[str] = "payment_confirmed"

    amount: str = ""
    start_date: str = ""

    def title(self) -> str:
        return f"Booking confirmed for {self.listing_title}"

    def message(self) -> str:
        return (
            f"Payment of ${self.amount} was received. "
            f"Pickup for {self.listing_title} is on {self.start_date}."
        )


@dataclass(frozen=True, kw_only=True)
class PickupReminder(NotificationEvent):
    event_type: ClassVar[str] = "pickup_reminder"

    start_date: str = ""

    def title(self) -> str:
        return f"Pickup today: {self.listing_title}"

    def message(self) -> str:
        return (
            f"{self.listing_title} is due for pickup on {self.start_date}. "
            "Remember to confirm the pickup in the app."
        )


@dataclass(frozen=True, kw_only=True)
class ConfirmationRecorded(NotificationEvent):
    event_type: ClassVar[str] = "confirmation_recorded"

    party: str = ""
    phase: str = ""

    def title(self) -> str:
        return f"The {self.party} confirmed {self.phase} of {self.listing_title}"

    def message(self) -> str:
        return f"The {self.party} confirmed the {self.phase}. Please confirm it too."


@dataclass(frozen=True, kw_only=True)
class PickupCompleted(NotificationEvent):
    event_type: ClassVar[str] = "pickup_completed"

    end_date: str = ""

    def title(self) -> str:
        return f"Rental started: {self.listing_title}"

    def message(self) -> str:
        return f"Both parties confirmed pickup. {self.listing_title} is due back on {self.end_date}."


@dataclass(frozen=True, kw_only=True)
class RentalCompleted(NotificationEvent):
    event_type: ClassVar[str] = "rental_completed"

    damage_reported: bool = False

    def title(self) -> str:
        return f"Rental completed: {self.listing_title}"

    def message(self) -> str:
        if self.damage_reported:
            return (
                f"The return of {self.listing_title} was confirmed with a damage report. "
                "The deposit is held until our team reviews it."
            )
        return f"The return of {self.listing_title} was confirmed. Thanks for renting!"


@dataclass(frozen=True, kw_only=True)
class DamageReviewRequired(NotificationEvent):
    event_type: ClassVar[str] = "damage_review_required"

    damage_report: str = ""
    deposit_amount: str = ""

    def title(self) -> str:
        return f"Damage review needed for booking #{self.booking_id}"

    def message(self) -> str:
        return (
            f"A ${self.deposit_amount} deposit is held for {self.listing_title}. "
            f"Report: {self.damage_report}"
        )


@dataclass(frozen=True, kw_only=True)
class FundsReleased(NotificationEvent):
    event_type: ClassVar[str] = "funds_released"

    amount: str = ""

    def title(self) -> str:
        return f"Payout sent for {self.listing_title}"

    def message(self) -> str:
        return f"${self.amount} for {self.listing_title} is on its way to your payout account."


@dataclass(frozen=True, kw_only=True)
class DepositRefunded(NotificationEvent):
    event_type: ClassVar[str] = "deposit_refunded"

    amount: str = ""

    def title(self) -> str:
        return f"Deposit refunded for {self.listing_title}"

    def message(self) -> str:
        return f"${self.amount} of your security deposit for {self.listing_title} was refunded."


EVENT_TYPES: dict[str, type[NotificationEvent]] = {
    cls.event_type: cls
    for cls in (
        BookingRequested,
        BookingApproved,
        BookingRejected,
        BookingCancelled,
        PaymentConfirmed,
        PickupReminder,
        ConfirmationRecorded,
        PickupCompleted,
        RentalCompleted,
        DamageReviewRequired,
        FundsReleased,
        DepositRefunded,
    )
}


def event_from_payload(event_type: str, payload: dict[str, Any]) -> NotificationEvent:
    """Rebuild an event from its tag and serialized fields; unknown tags raise ValueError."""
    try:
        cls = EVENT_TYPES[event_type]
    except KeyError:
        raise ValueError(f"Unknown notification event type '{event_type}'") from None
    known = {f.name for f in fields(cls)}
    return cls(**{key: value for key, value in (payload or {}).items() if key in known})
