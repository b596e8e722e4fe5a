"""
Booking lifecycle orchestration.

BookingWorkflow validates a transition with the domain guards, commits it
through the store's compare-and-swap write and then runs the side effects
(money movement, notifications). Side-effect failures after the commit are
collected as warnings and never undo the transition.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Iterable

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from notifications.dispatcher import CeleryNotificationDispatcher, NotificationDispatcher
from notifications.events import (
    BookingApproved,
    BookingCancelled,
    BookingRejected,
    BookingRequested,
    ConfirmationRecorded,
    DamageReviewRequired,
    DepositRefunded,
    FundsReleased,
    NotificationEvent,
    PaymentConfirmed,
    PickupCompleted,
    PickupReminder,
    RentalCompleted,
)
from operator_bookings.timeline import record_side_effect_warnings, record_status_change
from payments.orchestrator import PaymentOrchestrator, PaymentOutcome

from .confirmations import ConfirmationTracker, Evidence
from .domain import (
    PICKED_UP_STATUSES,
    TRANSITIONS,
    BookingConflict,
    CancelActor,
    InvalidBookingTransition,
    assert_can_approve,
    assert_can_authorize,
    assert_can_cancel,
    assert_can_pay,
    assert_can_reject,
    ensure_no_conflict,
    require_owner,
    require_party,
    require_renter,
    validate_rejection_reason,
)
from .models import Booking
from .pricing import quote_booking
from .store import BookingStore

logger = logging.getLogger(__name__)


class BookingPaymentFailed(Exception):
    """A primary money movement (authorize or capture) failed; the booking is unchanged."""

    def __init__(
        self, reason: str, *, code: str = "", retryable: bool = False, unavailable: bool = False
    ):
        super().__init__(reason)
        self.reason = reason
        self.code = code
        self.retryable = retryable
        self.unavailable = unavailable

    @classmethod
    def from_outcome(cls, outcome: PaymentOutcome) -> "BookingPaymentFailed":
        return cls(
            outcome.error,
            code=outcome.error_code,
            retryable=outcome.retryable,
            unavailable=outcome.unavailable,
        )


@dataclass
class WorkflowResult:
    booking: Booking
    warnings: list[str] = field(default_factory=list)
    client_secret: str = ""


def _listing_title(booking: Booking) -> str:
    return getattr(booking.listing, "title", "") or "your listing"


def _display_name(user) -> str:
    name = (user.get_full_name() or "").strip()
    return name or user.username


def _pickup_reminder_eta(start_date: date) -> datetime:
    hour = getattr(settings, "BOOKINGS_PICKUP_REMINDER_HOUR", 9)
    return timezone.make_aware(datetime.combine(start_date, time(hour=hour)))


class BookingWorkflow:
    def __init__(
        self,
        store: BookingStore | None = None,
        payments: PaymentOrchestrator | None = None,
        notifier: NotificationDispatcher | None = None,
        tracker: ConfirmationTracker | None = None,
    ):
        self.store = store or BookingStore()
        self.payments = payments or PaymentOrchestrator()
        self.notifier = notifier or CeleryNotificationDispatcher()
        self.tracker = tracker or ConfirmationTracker(self.store)

    # Side-effect helpers

    def notify_parties(self, user_ids: Iterable[int], event: NotificationEvent) -> None:
        for user_id in user_ids:
            if not self.notifier.notify(user_id, event):
                logger.info(
                    "bookings: notification not queued",
                    extra={"booking_id": event.booking_id, "user_id": user_id},
                )

    def _finish(
        self, booking: Booking, warnings: list[str], *, source: str, actor=None
    ) -> WorkflowResult:
        if warnings:
            record_side_effect_warnings(booking, warnings, source=source, actor=actor)
        return WorkflowResult(booking=booking, warnings=warnings)

    # Request and payment authorization

    def request_booking(
        self,
        renter,
        listing,
        start_date: date,
        end_date: date,
        *,
        include_insurance: bool = False,
        delivery_method: str = Booking.DeliveryMethod.PICKUP,
        delivery_address: str = "",
        points_to_redeem: int = 0,
        message: str = "",
    ) -> WorkflowResult:
        """Create a pending booking with a frozen pricing snapshot and take the redeemed points."""
        if listing.owner_id == renter.id:
            raise ValidationError({"listing": ["You cannot book your own listing."]})
        if not listing.is_active:
            raise ValidationError({"listing": ["This listing is not available for booking."]})
        if delivery_method == Booking.DeliveryMethod.DELIVERY and not (delivery_address or "").strip():
            raise ValidationError({"delivery_address": ["A delivery address is required."]})

        quote = quote_booking(
            listing,
            start_date,
            end_date,
            include_insurance=include_insurance,
            delivery_method=delivery_method,
            points_to_redeem=points_to_redeem,
        )
        ensure_no_conflict(listing, start_date, end_date)

        with transaction.atomic():
            if not self.store.deduct_points(renter.id, quote.points_used):
                raise ValidationError({"points_to_redeem": ["Not enough points available."]})
            booking = Booking.objects.create(
                listing=listing,
                owner_id=listing.owner_id,
                renter=renter,
                start_date=start_date,
                end_date=end_date,
                status=Booking.Status.PENDING,
                currency=getattr(settings, "PAYMENTS_CURRENCY", "aud"),
                delivery_address=(delivery_address or "").strip(),
                renter_message=(message or "").strip(),
                **quote.booking_fields(),
            )
        booking = self.store.get_booking(booking.id)
        record_status_change(booking, from_status=None, actor=renter)
        logger.info(
            "bookings: booking requested",
            extra={"booking_id": booking.id, "listing_id": listing.id, "user_id": renter.id},
        )
        self.notify_parties(
            [booking.owner_id],
            BookingRequested(
                booking_id=booking.id,
                listing_title=_listing_title(booking),
                renter_name=_display_name(renter),
                start_date=booking.start_date.isoformat(),
                end_date=booking.end_date.isoformat(),
            ),
        )
        return WorkflowResult(booking=booking)

    def _authorize(self, booking: Booking, *, payment_method_id: str | None) -> tuple[Booking, str]:
        outcome = self.payments.authorize(
            booking,
            customer_id=getattr(booking.renter, "stripe_customer_id", "") or None,
            payment_method_id=payment_method_id,
        )
        if not outcome.success:
            raise BookingPaymentFailed.from_outcome(outcome)
        authorization = outcome.value
        try:
            updated = self.store.update_booking(
                booking.id,
                {"payment_intent_id": authorization.id},
                TRANSITIONS["authorize_payment"].sources,
            )
        except BookingConflict:
            booking.payment_intent_id = authorization.id
            voided = self.payments.void(booking, reason="abandoned")
            if voided.warnings or not voided.success:
                record_side_effect_warnings(
                    booking, voided.warnings or [voided.error], source="authorize"
                )
            raise
        return updated, authorization.client_secret

    def authorize_payment(
        self, booking: Booking, user, *, payment_method_id: str | None = None
    ) -> WorkflowResult:
        """
        Place the payment hold. Calling it again once a hold exists is a
        no-op, as is a booking with nothing left to charge.
        """
        require_renter(booking, user, "pay for")
        assert_can_authorize(booking)
        if booking.payment_intent_id or booking.amount_due <= 0:
            return WorkflowResult(booking=booking)
        updated, client_secret = self._authorize(booking, payment_method_id=payment_method_id)
        return WorkflowResult(booking=updated, client_secret=client_secret)

    # Owner decisions

    def approve(self, booking: Booking, user) -> WorkflowResult:
        require_owner(booking, user, "approve")
        assert_can_approve(booking)
        ensure_no_conflict(
            booking.listing, booking.start_date, booking.end_date, exclude_booking_id=booking.id
        )

        window = timedelta(hours=getattr(settings, "BOOKINGS_PAYMENT_WINDOW_HOURS", 24))
        expires_at = timezone.now() + window
        updated = self.store.transition(
            booking,
            {"status": Booking.Status.PAYMENT_REQUIRED, "payment_expires_at": expires_at},
            TRANSITIONS["approve"].sources,
        )
        record_status_change(updated, from_status=booking.status, actor=user)
        self.notify_parties(
            [updated.renter_id],
            BookingApproved(
                booking_id=updated.id,
                listing_title=_listing_title(updated),
                amount_due=str(updated.amount_due),
                payment_expires_at=timezone.localtime(expires_at).strftime("%Y-%m-%d %H:%M"),
            ),
        )
        return WorkflowResult(booking=updated)

    def reject(self, booking: Booking, user, reason: str) -> WorkflowResult:
        require_owner(booking, user, "reject")
        assert_can_reject(booking)
        cleaned = validate_rejection_reason(reason)

        updated = self.store.transition(
            booking,
            {"status": Booking.Status.REJECTED, "rejection_reason": cleaned},
            TRANSITIONS["reject"].sources,
            restore_points=True,
        )
        record_status_change(updated, from_status=booking.status, reason=cleaned, actor=user)

        warnings = self.payments.void(updated).warnings
        self.notify_parties(
            [updated.renter_id, updated.owner_id],
            BookingRejected(
                booking_id=updated.id, listing_title=_listing_title(updated), reason=cleaned
            ),
        )
        return self._finish(updated, warnings, source="reject", actor=user)

    # Cancellation

    def cancel(self, booking: Booking, user, reason: str = "") -> WorkflowResult:
        """Renter or owner cancels before the booking is paid."""
        party = require_party(booking, user)
        return self.cancel_as(booking, actor=party, reason=reason, acting_user=user)

    def cancel_as(
        self,
        booking: Booking,
        *,
        actor: CancelActor,
        reason: str = "",
        acting_user=None,
    ) -> WorkflowResult:
        assert_can_cancel(booking, actor=actor)
        cleaned = (reason or "").strip()

        updated = self.store.transition(
            booking,
            {
                "status": Booking.Status.CANCELLED,
                "cancelled_by": actor,
                "cancellation_reason": cleaned,
            },
            TRANSITIONS["cancel"].sources,
            restore_points=True,
        )
        record_status_change(updated, from_status=booking.status, reason=cleaned, actor=acting_user)

        warnings = self.payments.void(updated).warnings
        if actor == "renter":
            recipients = [updated.owner_id]
        elif actor == "owner":
            recipients = [updated.renter_id]
        else:
            recipients = [updated.renter_id, updated.owner_id]
        self.notify_parties(
            recipients,
            BookingCancelled(
                booking_id=updated.id,
                listing_title=_listing_title(updated),
                cancelled_by=actor,
                reason=cleaned,
            ),
        )
        return self._finish(updated, warnings, source="cancel", actor=acting_user)

    # Payment

    def pay(self, booking: Booking, user, *, payment_method_id: str | None = None) -> WorkflowResult:
        """
        Capture the renter's payment and confirm the booking.

        A failed authorization or capture raises BookingPaymentFailed and
        leaves the booking in payment_required so the renter can retry.
        """
        require_renter(booking, user, "pay for")
        assert_can_pay(booking)
        if booking.payment_expires_at and booking.payment_expires_at < timezone.now():
            raise InvalidBookingTransition(
                "The payment window for this booking has expired.", current_status=booking.status
            )

        # Points can cover the whole amount due; nothing goes through the gateway then.
        charge_id, charged = "", Decimal("0.00")
        if booking.amount_due > 0:
            if not booking.payment_intent_id:
                booking, _ = self._authorize(booking, payment_method_id=payment_method_id)

            captured = self.payments.capture(booking)
            if not captured.success:
                raise BookingPaymentFailed.from_outcome(captured)
            charge_id, charged = captured.value.charge_id, captured.value.amount

        now = timezone.now()
        deposit_status = (
            Booking.DepositStatus.HELD if booking.deposit_amount > 0 else Booking.DepositStatus.NONE
        )
        try:
            updated = self.store.update_booking(
                booking.id,
                {
                    "status": Booking.Status.CONFIRMED,
                    "charge_id": charge_id,
                    "payment_captured_at": now,
                    "deposit_status": deposit_status,
                },
                TRANSITIONS["capture_payment"].sources,
            )
        except BookingConflict:
            current = self.store.get_booking(booking.id)
            if current.status == Booking.Status.CONFIRMED and current.charge_id == charge_id:
                # A repeated pay that captured the same charge: already confirmed.
                return WorkflowResult(booking=current)
            if not charge_id:
                raise
            booking.charge_id = charge_id
            refund = self.payments.refund_charge(booking)
            record_side_effect_warnings(
                booking,
                ["Payment captured after the booking changed; the charge was refunded."]
                + refund.warnings,
                source="pay",
                actor=user,
            )
            raise

        record_status_change(updated, from_status=booking.status, actor=user)
        event = PaymentConfirmed(
            booking_id=updated.id,
            listing_title=_listing_title(updated),
            amount=str(charged),
            start_date=updated.start_date.isoformat(),
        )
        self.notify_parties([updated.renter_id, updated.owner_id], event)

        eta = _pickup_reminder_eta(updated.start_date)
        if eta > now:
            reminder = PickupReminder(
                booking_id=updated.id,
                listing_title=_listing_title(updated),
                start_date=updated.start_date.isoformat(),
            )
            for user_id in (updated.renter_id, updated.owner_id):
                self.notifier.schedule(user_id, reminder, eta)
        return WorkflowResult(booking=updated)

    # Two-party confirmations

    def _complete_phase(self, booking: Booking, patch: dict, sources: tuple[str, ...]) -> Booking | None:
        """
        Apply the phase-completing transition. Returns None when a concurrent
        confirmation already applied it.
        """
        try:
            return self.store.update_booking(booking.id, patch, sources)
        except BookingConflict:
            current = self.store.get_booking(booking.id)
            if current.status == patch["status"]:
                return None
            raise

    def _confirmation_recorded(self, booking: Booking, party: str, phase: str) -> None:
        counterparty_id = booking.owner_id if party == "renter" else booking.renter_id
        self.notify_parties(
            [counterparty_id],
            ConfirmationRecorded(
                booking_id=booking.id,
                listing_title=_listing_title(booking),
                party=party,
                phase=phase,
            ),
        )

    def confirm_pickup(self, booking: Booking, user, evidence: Evidence | None = None) -> WorkflowResult:
        party = require_party(booking, user)
        result = self.tracker.confirm(booking, party, "pickup", evidence)
        if not result.newly_recorded:
            return WorkflowResult(booking=result.booking)
        if not result.phase_complete:
            self._confirmation_recorded(result.booking, party, "pickup")
            return WorkflowResult(booking=result.booking)

        updated = self._complete_phase(
            result.booking,
            {"status": Booking.Status.IN_PROGRESS},
            TRANSITIONS["confirm_pickup"].sources,
        )
        if updated is None:
            return WorkflowResult(booking=self.store.get_booking(booking.id))

        record_status_change(updated, from_status=result.booking.status, actor=user)
        self.notify_parties(
            [updated.renter_id, updated.owner_id],
            PickupCompleted(
                booking_id=updated.id,
                listing_title=_listing_title(updated),
                end_date=updated.end_date.isoformat(),
            ),
        )
        return WorkflowResult(booking=updated)

    def confirm_return(self, booking: Booking, user, evidence: Evidence | None = None) -> WorkflowResult:
        """
        Record a return confirmation. When both parties have confirmed, the
        booking completes: without a damage report the owner is paid and the
        deposit refunded straight away, with one the deposit stays held for
        operator review.
        """
        party = require_party(booking, user)
        result = self.tracker.confirm(booking, party, "return", evidence)
        if not result.newly_recorded:
            return WorkflowResult(booking=result.booking)
        if not result.phase_complete:
            self._confirmation_recorded(result.booking, party, "return")
            return WorkflowResult(booking=result.booking)

        confirmed = result.booking
        has_deposit = confirmed.deposit_amount > 0
        patch: dict = {"status": Booking.Status.COMPLETED}
        if confirmed.damage_reported:
            patch["requires_admin_review"] = True
            patch["deposit_status"] = (
                Booking.DepositStatus.HELD if has_deposit else Booking.DepositStatus.NONE
            )
        updated = self._complete_phase(confirmed, patch, PICKED_UP_STATUSES)
        if updated is None:
            return WorkflowResult(booking=self.store.get_booking(booking.id))
        record_status_change(updated, from_status=confirmed.status, actor=user)

        title = _listing_title(updated)
        self.notify_parties(
            [updated.renter_id, updated.owner_id],
            RentalCompleted(
                booking_id=updated.id,
                listing_title=title,
                damage_reported=updated.damage_reported,
            ),
        )
        if updated.damage_reported:
            self.notifier.notify_admins(
                DamageReviewRequired(
                    booking_id=updated.id,
                    listing_title=title,
                    damage_report=updated.damage_report,
                    deposit_amount=str(updated.deposit_amount),
                )
            )
            return WorkflowResult(booking=updated)

        return self._release(updated, actor=user)

    def _release(self, booking: Booking, *, actor=None) -> WorkflowResult:
        """Pay out and refund the deposit for a completed, damage-free booking."""
        outcome = self.payments.release(booking, refund_deposit=True)
        released = outcome.value
        now = timezone.now()
        patch: dict = {}
        if released is not None and released.transfer_id:
            patch.update(
                transfer_id=released.transfer_id,
                payout_status=Booking.PayoutStatus.RELEASED,
                payout_released_at=now,
            )
        elif not outcome.success:
            patch["payout_status"] = Booking.PayoutStatus.FAILED
        if booking.deposit_amount > 0 and released is not None:
            if released.deposit_refund_id:
                patch.update(
                    deposit_refund_id=released.deposit_refund_id,
                    deposit_status=Booking.DepositStatus.REFUNDED,
                )
            elif released.deposit_failed:
                patch["deposit_status"] = Booking.DepositStatus.REFUND_FAILED

        updated = booking
        if patch:
            updated = self.store.update_booking(booking.id, patch, (Booking.Status.COMPLETED,))

        title = _listing_title(updated)
        if released is not None and released.transfer_id:
            self.notify_parties(
                [updated.owner_id],
                FundsReleased(booking_id=updated.id, listing_title=title, amount=str(released.payout_amount)),
            )
        if released is not None and released.deposit_refund_id:
            self.notify_parties(
                [updated.renter_id],
                DepositRefunded(
                    booking_id=updated.id, listing_title=title, amount=str(released.deposit_refunded)
                ),
            )
        return self._finish(updated, outcome.warnings, source="release", actor=actor)

    # Background expiry

    def expire_unpaid(self, now: datetime | None = None) -> list[WorkflowResult]:
        """
        Cancel bookings approved but never paid within the payment window, and
        requests the owner never answered before the start date.
        """
        now = now or timezone.now()
        today = timezone.localdate(now)
        unpaid = Booking.objects.filter(
            status=Booking.Status.PAYMENT_REQUIRED, payment_expires_at__lt=now
        )
        unanswered = Booking.objects.filter(status=Booking.Status.PENDING, start_date__lt=today)

        results: list[WorkflowResult] = []
        for queryset, reason in (
            (unpaid, "Payment was not completed in time."),
            (unanswered, "The request was not answered before the start date."),
        ):
            for booking in queryset.select_related("listing", "owner", "renter").order_by("id"):
                try:
                    results.append(self.cancel_as(booking, actor="system", reason=reason))
                except InvalidBookingTransition as exc:
                    logger.info(
                        "bookings: skipped expiry, booking changed concurrently",
                        extra={"booking_id": booking.id, "current": exc.current_status},
                    )
        if results:
            logger.info("bookings: expired %s bookings", len(results))
        return results


def get_booking_workflow() -> BookingWorkflow:
    """Default wiring: Stripe gateway from settings and Celery notifications."""
    return BookingWorkflow()
