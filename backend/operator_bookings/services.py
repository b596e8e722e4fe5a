import logging
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.utils import timezone

from bookings.domain import (
    DEPOSIT_UNSETTLED,
    TRANSITIONS,
    InvalidBookingTransition,
    assert_can_release_funds,
    is_pre_payment,
)
from bookings.models import Booking
from bookings.workflow import (
    BookingPaymentFailed,
    BookingWorkflow,
    WorkflowResult,
    get_booking_workflow,
)
from notifications.events import BookingCancelled, DepositRefunded, FundsReleased
from operator_bookings.models import BookingEvent
from operator_bookings.timeline import (
    record_event,
    record_side_effect_warnings,
    record_status_change,
)
from operator_core.audit import audit
from operator_core.models import OperatorAuditEvent

logger = logging.getLogger(__name__)

SNAPSHOT_FIELDS = (
    "status",
    "deposit_status",
    "payout_status",
    "requires_admin_review",
    "needs_manual_followup",
    "transfer_id",
    "deposit_refund_id",
)


def _snapshot(booking: Booking) -> dict:
    return {name: getattr(booking, name) for name in SNAPSHOT_FIELDS}


def _deposit_status_after(deposit: Decimal, refunded: Decimal) -> str:
    if deposit <= 0:
        return Booking.DepositStatus.NONE
    if refunded <= 0:
        return Booking.DepositStatus.RETAINED
    if refunded < deposit:
        return Booking.DepositStatus.PARTIALLY_REFUNDED
    return Booking.DepositStatus.REFUNDED


def release_funds(
    booking: Booking,
    *,
    operator_user,
    reason: str,
    deposit_refund_amount: Decimal | None = None,
    workflow: BookingWorkflow | None = None,
    request=None,
) -> WorkflowResult:
    """
    Settle a completed booking: pay the owner if that has not happened yet,
    refund all or part of a held deposit and close the booking as
    funds_released.

    The part of a held deposit that is not refunded goes to the owner with
    the payout. A failed payout raises BookingPaymentFailed and leaves the
    booking untouched so the release can be retried; a failed deposit refund
    is only a warning.
    """
    assert_can_release_funds(booking)
    if not (reason or "").strip():
        raise ValidationError({"reason": ["A reason is required."]})
    workflow = workflow or get_booking_workflow()
    payments = workflow.payments

    deposit_held = (
        booking.deposit_amount
        if booking.deposit_status in DEPOSIT_UNSETTLED
        else Decimal("0.00")
    )
    refund_amount = deposit_held if deposit_refund_amount is None else deposit_refund_amount
    if refund_amount < 0 or refund_amount > deposit_held:
        raise ValidationError(
            {"deposit_refund_amount": [f"Refund must be between 0 and {deposit_held}."]}
        )
    retained = deposit_held - refund_amount

    before = _snapshot(booking)
    warnings: list[str] = []
    now = timezone.now()
    patch: dict = {
        "status": Booking.Status.FUNDS_RELEASED,
        "requires_admin_review": False,
    }

    payout_amount = Decimal("0.00")
    if booking.payout_status != Booking.PayoutStatus.RELEASED:
        payout = payments.transfer_payout(booking, extra_amount=retained)
        if not payout.success:
            raise BookingPaymentFailed.from_outcome(payout)
        warnings.extend(payout.warnings)
        if payout.value is not None:
            payout_amount = payout.value.amount
            patch.update(transfer_id=payout.value.id, payout_released_at=now)
        patch["payout_status"] = Booking.PayoutStatus.RELEASED

    refunded = Decimal("0.00")
    if deposit_held > 0:
        if refund_amount > 0:
            deposit = payments.refund_deposit(booking, refund_amount)
            warnings.extend(deposit.warnings)
            if deposit.success and deposit.value is not None:
                refunded = deposit.value.amount
                patch["deposit_refund_id"] = deposit.value.id
                patch["deposit_status"] = _deposit_status_after(deposit_held, refunded)
            elif not deposit.success:
                patch["deposit_status"] = Booking.DepositStatus.REFUND_FAILED
        else:
            patch["deposit_status"] = Booking.DepositStatus.RETAINED

    updated = workflow.store.update_booking(booking.id, patch, TRANSITIONS["release_funds"].sources)
    record_status_change(updated, from_status=booking.status, reason=reason, actor=operator_user)
    record_event(
        updated,
        type_value=BookingEvent.Type.OPERATOR_ACTION,
        payload={
            "action": "release_funds",
            "reason": reason,
            "payout_amount": str(payout_amount),
            "deposit_refunded": str(refunded),
            "deposit_retained": str(retained),
        },
        actor=operator_user,
    )
    audit(
        actor=operator_user,
        action="booking.release_funds",
        entity_type=OperatorAuditEvent.EntityType.BOOKING,
        entity_id=updated.id,
        reason=reason,
        before=before,
        after=_snapshot(updated),
        meta={"deposit_refund_amount": str(refund_amount)},
        request=request,
    )

    title = updated.listing.title
    if payout_amount > 0:
        workflow.notify_parties(
            [updated.owner_id],
            FundsReleased(booking_id=updated.id, listing_title=title, amount=str(payout_amount)),
        )
    if refunded > 0:
        workflow.notify_parties(
            [updated.renter_id],
            DepositRefunded(booking_id=updated.id, listing_title=title, amount=str(refunded)),
        )
    if warnings:
        record_side_effect_warnings(updated, warnings, source="release_funds", actor=operator_user)
    return WorkflowResult(booking=updated, warnings=warnings)


def force_cancel_booking(
    booking: Booking,
    *,
    operator_user,
    reason: str,
    workflow: BookingWorkflow | None = None,
    request=None,
) -> WorkflowResult:
    """
    Cancel a booking on behalf of the platform. Unpaid bookings follow the
    regular cancellation; a paid booking that has not been picked up is
    refunded in full first.
    """
    if not (reason or "").strip():
        raise ValidationError({"reason": ["A reason is required."]})
    workflow = workflow or get_booking_workflow()
    before = _snapshot(booking)

    if is_pre_payment(booking):
        result = workflow.cancel_as(
            booking, actor="operator", reason=reason, acting_user=operator_user
        )
    elif booking.status == Booking.Status.CONFIRMED:
        result = _cancel_paid_booking(booking, workflow, reason=reason, operator_user=operator_user)
    else:
        raise InvalidBookingTransition(
            "Only unpaid or paid-but-not-picked-up bookings can be force cancelled.",
            current_status=booking.status,
        )

    record_event(
        result.booking,
        type_value=BookingEvent.Type.OPERATOR_ACTION,
        payload={"action": "force_cancel", "reason": reason},
        actor=operator_user,
    )
    audit(
        actor=operator_user,
        action="booking.force_cancel",
        entity_type=OperatorAuditEvent.EntityType.BOOKING,
        entity_id=result.booking.id,
        reason=reason,
        before=before,
        after=_snapshot(result.booking),
        request=request,
    )
    return result


def _cancel_paid_booking(
    booking: Booking, workflow: BookingWorkflow, *, reason: str, operator_user
) -> WorkflowResult:
    refund = workflow.payments.refund_charge(booking)
    if not refund.success:
        raise BookingPaymentFailed.from_outcome(refund)

    patch = {
        "status": Booking.Status.CANCELLED,
        "cancelled_by": Booking.CancelledBy.OPERATOR,
        "cancellation_reason": reason,
    }
    if booking.deposit_amount > 0:
        patch["deposit_status"] = Booking.DepositStatus.REFUNDED
    updated = workflow.store.transition(
        booking, patch, (Booking.Status.CONFIRMED,), restore_points=True
    )
    record_status_change(updated, from_status=booking.status, reason=reason, actor=operator_user)
    workflow.notify_parties(
        [updated.renter_id, updated.owner_id],
        BookingCancelled(
            booking_id=updated.id,
            listing_title=updated.listing.title,
            cancelled_by="operator",
            reason=reason,
        ),
    )
    if refund.warnings:
        record_side_effect_warnings(updated, refund.warnings, source="force_cancel", actor=operator_user)
    return WorkflowResult(booking=updated, warnings=refund.warnings)
