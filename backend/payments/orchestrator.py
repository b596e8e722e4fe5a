"""
Money movement for booking transitions.

Each operation talks to the injected gateway, records ledger rows and returns
a PaymentOutcome. Gateway failures are caught here and reported in the
outcome instead of raised, so callers decide whether a failure blocks their
transition (authorize, capture) or is only a warning (void, refunds,
payouts).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from django.conf import settings

from bookings.models import Booking
from payments.ledger import has_transaction, log_transaction
from payments.models import Transaction
from payments.stripe_api import (
    PayeeNotOnboarded,
    PaymentGateway,
    PaymentGatewayError,
    StripeGateway,
    get_payout_destination,
    is_already_final,
)

logger = logging.getLogger(__name__)


@dataclass
class PaymentOutcome:
    success: bool
    value: Any = None
    error: str = ""
    error_code: str = ""
    retryable: bool = False
    unavailable: bool = False
    warnings: list[str] = field(default_factory=list)

    @classmethod
    def ok(cls, value: Any = None, warnings: list[str] | None = None) -> "PaymentOutcome":
        return cls(success=True, value=value, warnings=list(warnings or []))

    @classmethod
    def failed(cls, exc: PaymentGatewayError, warnings: list[str] | None = None) -> "PaymentOutcome":
        return cls(
            success=False,
            error=exc.reason,
            error_code=exc.code,
            retryable=exc.retryable,
            unavailable=exc.unavailable,
            warnings=list(warnings or []),
        )


@dataclass
class ReleaseResult:
    """What a release actually moved; either half may be missing."""

    transfer_id: str = ""
    payout_amount: Decimal = Decimal("0.00")
    payout_failed: bool = False
    deposit_refund_id: str = ""
    deposit_refunded: Decimal = Decimal("0.00")
    deposit_failed: bool = False


def _metadata(booking: Booking, **extra: str) -> dict[str, str]:
    return {
        "booking_id": str(booking.id),
        "listing_id": str(booking.listing_id),
        **{key: str(value) for key, value in extra.items() if value},
    }


class PaymentOrchestrator:
    def __init__(self, gateway: PaymentGateway | None = None):
        self.gateway = gateway or StripeGateway.from_settings()

    @property
    def currency(self) -> str:
        return getattr(settings, "PAYMENTS_CURRENCY", "aud")

    def authorize(
        self,
        booking: Booking,
        *,
        customer_id: str | None = None,
        payment_method_id: str | None = None,
    ) -> PaymentOutcome:
        """Hold the renter's amount due against the owner's payout destination."""
        try:
            destination = get_payout_destination(booking.owner)
            authorization = self.gateway.authorize(
                booking.amount_due,
                destination,
                _metadata(booking, renter_id=booking.renter_id, owner_id=booking.owner_id),
                customer_id=customer_id,
                payment_method_id=payment_method_id,
            )
        except PayeeNotOnboarded as exc:
            logger.info(
                "payments: owner has no payout destination",
                extra={"booking_id": booking.id, "owner_id": booking.owner_id},
            )
            return PaymentOutcome.failed(exc)
        except PaymentGatewayError as exc:
            logger.warning(
                "payments: authorization failed",
                extra={"booking_id": booking.id, "reason": exc.reason, "code": exc.code},
            )
            return PaymentOutcome.failed(exc)
        return PaymentOutcome.ok(authorization)

    def void(self, booking: Booking, reason: str = "requested_by_customer") -> PaymentOutcome:
        """
        Cancel the booking's authorization, if any. Never blocks the caller:
        an intent that is already cancelled, captured or missing is reported
        as a warning.
        """
        intent_id = (booking.payment_intent_id or "").strip()
        if not intent_id:
            return PaymentOutcome.ok()
        if booking.payment_captured_at:
            message = f"Authorization {intent_id} was already captured; nothing to void."
            logger.warning("payments: %s", message, extra={"booking_id": booking.id})
            return PaymentOutcome.ok(warnings=[message])

        try:
            final_status = self.gateway.void(intent_id, reason)
        except PaymentGatewayError as exc:
            if is_already_final(exc):
                message = f"Authorization {intent_id} could not be voided: {exc.reason}"
                logger.info("payments: %s", message, extra={"booking_id": booking.id})
                return PaymentOutcome.ok(warnings=[message])
            logger.warning(
                "payments: void failed",
                extra={"booking_id": booking.id, "reason": exc.reason, "code": exc.code},
            )
            return PaymentOutcome.failed(exc, warnings=[f"Void failed: {exc.reason}"])

        log_transaction(
            user=booking.renter,
            booking=booking,
            kind=Transaction.Kind.PAYMENT_VOID,
            amount=booking.amount_due,
            currency=self.currency,
            stripe_id=intent_id,
        )
        return PaymentOutcome.ok(final_status)

    def capture(self, booking: Booking, application_fee: Decimal | None = None) -> PaymentOutcome:
        """
        Capture the held amount. With `application_fee` the platform keeps
        that slice at capture time and Stripe routes the rest to the owner.
        """
        intent_id = (booking.payment_intent_id or "").strip()
        if not intent_id:
            return PaymentOutcome(
                success=False,
                error="No payment authorization exists for this booking.",
                error_code="missing_authorization",
            )
        try:
            charge = self.gateway.capture(intent_id, application_fee)
        except PaymentGatewayError as exc:
            logger.warning(
                "payments: capture failed",
                extra={"booking_id": booking.id, "reason": exc.reason, "code": exc.code},
            )
            return PaymentOutcome.failed(exc)

        stripe_id = charge.charge_id or charge.payment_intent_id
        # Stripe replays the same charge for a repeated capture; log it once.
        if not has_transaction(booking, Transaction.Kind.BOOKING_CHARGE, stripe_id=stripe_id):
            log_transaction(
                user=booking.renter,
                booking=booking,
                kind=Transaction.Kind.BOOKING_CHARGE,
                amount=charge.amount,
                currency=self.currency,
                stripe_id=stripe_id,
            )
        return PaymentOutcome.ok(charge)

    def _charge_ref(self, booking: Booking) -> str:
        return (booking.charge_id or booking.payment_intent_id or "").strip()

    def refund_deposit(
        self,
        booking: Booking,
        amount: Decimal | None = None,
        reason: str = "requested_by_customer",
    ) -> PaymentOutcome:
        """Refund the security deposit slice (or part of it) to the renter."""
        refund_amount = booking.deposit_amount if amount is None else amount
        if refund_amount <= 0:
            return PaymentOutcome.ok()
        if refund_amount > booking.deposit_amount:
            return PaymentOutcome(
                success=False,
                error="Refund exceeds the deposit held for this booking.",
                error_code="refund_exceeds_deposit",
            )
        if booking.deposit_refund_id or has_transaction(booking, Transaction.Kind.DEPOSIT_REFUND):
            return PaymentOutcome.ok(warnings=["Deposit was already refunded."])

        try:
            refund = self.gateway.refund(
                self._charge_ref(booking),
                refund_amount,
                reason,
                _metadata(booking, kind="deposit_refund"),
            )
        except PaymentGatewayError as exc:
            logger.warning(
                "payments: deposit refund failed",
                extra={"booking_id": booking.id, "reason": exc.reason, "code": exc.code},
            )
            return PaymentOutcome.failed(exc, warnings=[f"Deposit refund failed: {exc.reason}"])

        log_transaction(
            user=booking.renter,
            booking=booking,
            kind=Transaction.Kind.DEPOSIT_REFUND,
            amount=refund.amount,
            currency=self.currency,
            stripe_id=refund.id,
        )
        return PaymentOutcome.ok(refund)

    def refund_charge(self, booking: Booking, reason: str = "requested_by_customer") -> PaymentOutcome:
        """Refund the whole captured amount, e.g. when a paid booking is cancelled."""
        try:
            refund = self.gateway.refund(
                self._charge_ref(booking),
                booking.amount_due,
                reason,
                _metadata(booking, kind="full_refund"),
            )
        except PaymentGatewayError as exc:
            logger.warning(
                "payments: full refund failed",
                extra={"booking_id": booking.id, "reason": exc.reason, "code": exc.code},
            )
            return PaymentOutcome.failed(exc, warnings=[f"Refund failed: {exc.reason}"])

        log_transaction(
            user=booking.renter,
            booking=booking,
            kind=Transaction.Kind.REFUND,
            amount=refund.amount,
            currency=self.currency,
            stripe_id=refund.id,
        )
        return PaymentOutcome.ok(refund)

    def transfer_payout(self, booking: Booking, extra_amount: Decimal = Decimal("0")) -> PaymentOutcome:
        """Send the owner their net proceeds (subtotal less commission), plus `extra_amount`."""
        if booking.transfer_id or has_transaction(booking, Transaction.Kind.OWNER_PAYOUT):
            return PaymentOutcome.ok(warnings=["Owner payout was already transferred."])
        amount = booking.owner_payout + extra_amount
        if amount <= 0:
            return PaymentOutcome.ok()

        try:
            destination = get_payout_destination(booking.owner)
            transfer = self.gateway.transfer(
                amount,
                destination,
                _metadata(
                    booking,
                    charge_id=booking.charge_id,
                    platform_commission=booking.platform_commission,
                ),
            )
        except PaymentGatewayError as exc:
            logger.warning(
                "payments: owner payout failed",
                extra={"booking_id": booking.id, "reason": exc.reason, "code": exc.code},
            )
            return PaymentOutcome.failed(exc, warnings=[f"Owner payout failed: {exc.reason}"])

        log_transaction(
            user=booking.owner,
            booking=booking,
            kind=Transaction.Kind.OWNER_PAYOUT,
            amount=transfer.amount,
            currency=self.currency,
            stripe_id=transfer.id,
        )
        log_transaction(
            user=booking.owner,
            booking=booking,
            kind=Transaction.Kind.PLATFORM_FEE,
            amount=booking.platform_commission + booking.service_fee,
            currency=self.currency,
            stripe_id=transfer.id,
        )
        return PaymentOutcome.ok(transfer)

    def release(self, booking: Booking, *, refund_deposit: bool | None = None) -> PaymentOutcome:
        """
        Pay the owner and, unless damage was reported, refund the deposit.

        The transfer and the refund are independent: a failure in one is a
        warning and does not stop or undo the other. `success` reflects the
        owner payout.
        """
        if refund_deposit is None:
            refund_deposit = not booking.damage_reported
        result = ReleaseResult()
        warnings: list[str] = []

        payout = self.transfer_payout(booking)
        warnings.extend(payout.warnings)
        if payout.success and payout.value is not None:
            result.transfer_id = payout.value.id
            result.payout_amount = payout.value.amount
        elif not payout.success:
            result.payout_failed = True

        if refund_deposit:
            deposit = self.refund_deposit(booking)
            warnings.extend(deposit.warnings)
            if deposit.success and deposit.value is not None:
                result.deposit_refund_id = deposit.value.id
                result.deposit_refunded = deposit.value.amount
            elif not deposit.success:
                result.deposit_failed = True

        if result.payout_failed:
            return PaymentOutcome(
                success=False,
                value=result,
                error=payout.error,
                error_code=payout.error_code,
                retryable=payout.retryable,
                unavailable=payout.unavailable,
                warnings=warnings,
            )
        return PaymentOutcome.ok(result, warnings=warnings)
