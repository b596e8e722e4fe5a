"""Stripe payment gateway for booking money movement."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Protocol

import stripe
from django.conf import settings
from django.utils import timezone
from rest_framework import status
from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.response import Response

from bookings.pricing import from_cents, to_cents
from operator_bookings.timeline import record_gateway_event
from payments.models import OwnerPayoutAccount

logger = logging.getLogger(__name__)
IDEMPOTENCY_VERSION = "v1"
VOID_REASONS = ("duplicate", "fraudulent", "requested_by_customer", "abandoned")
REFUND_REASONS = ("duplicate", "fraudulent", "requested_by_customer")
ALREADY_FINAL_CODES = ("resource_missing", "payment_intent_unexpected_state")


class PaymentGatewayError(Exception):
    """Base class for failures reported by the payment gateway."""

    retryable = False
    # Gateway could not be reached or is misconfigured, as opposed to a declined payment.
    unavailable = False

    def __init__(self, reason: str, *, code: str = ""):
        super().__init__(reason)
        self.reason = reason
        self.code = code


class StripeConfigurationError(PaymentGatewayError):
    """Stripe is not configured correctly in the environment."""

    unavailable = True


class StripeTransientError(PaymentGatewayError):
    """Temporary Stripe/API issue that should be retried."""

    retryable = True
    unavailable = True


class StripePaymentError(PaymentGatewayError):
    """Permanent payment failure (declined card, invalid request)."""


class PayeeNotOnboarded(PaymentGatewayError):
    """The owner has no payout destination able to receive funds."""

    def __init__(self, reason: str = "The owner has not finished setting up payouts."):
        super().__init__(reason, code="payee_not_onboarded")


@dataclass(frozen=True)
class AuthorizationRef:
    id: str
    amount: Decimal
    status: str = ""
    client_secret: str = ""


@dataclass(frozen=True)
class ChargeRef:
    payment_intent_id: str
    charge_id: str
    amount: Decimal


@dataclass(frozen=True)
class TransferRef:
    id: str
    amount: Decimal


@dataclass(frozen=True)
class RefundRef:
    id: str
    amount: Decimal
    status: str = ""


class PaymentGateway(Protocol):
    def authorize(
        self,
        amount: Decimal,
        payout_destination: str,
        metadata: dict[str, str],
        *,
        customer_id: str | None = None,
        payment_method_id: str | None = None,
    ) -> AuthorizationRef: ...

    def void(self, authorization_id: str, reason: str = "requested_by_customer") -> str: ...

    def capture(self, authorization_id: str, application_fee: Decimal | None = None) -> ChargeRef: ...

    def transfer(
        self, amount: Decimal, payout_destination: str, metadata: dict[str, str]
    ) -> TransferRef: ...

    def refund(
        self, charge_id: str, amount: Decimal, reason: str, metadata: dict[str, str]
    ) -> RefundRef: ...


def _handle_stripe_error(exc: stripe.error.StripeError) -> None:
    """Map Stripe SDK errors onto internal exception types."""
    code = getattr(exc, "code", "") or ""
    if isinstance(exc, stripe.error.CardError):
        message = exc.user_message or "Your card was declined."
        raise StripePaymentError(message, code=code) from exc
    if isinstance(
        exc,
        (
            stripe.error.RateLimitError,
            stripe.error.APIConnectionError,
            stripe.error.APIError,
        ),
    ):
        raise StripeTransientError("Temporary Stripe error, please retry.", code=code) from exc
    if isinstance(exc, (stripe.error.AuthenticationError, stripe.error.PermissionError)):
        raise StripeConfigurationError(
            "Stripe credentials are invalid or unauthorized.", code=code
        ) from exc
    if isinstance(exc, stripe.error.InvalidRequestError):
        raise StripePaymentError(exc.user_message or "Invalid payment request.", code=code) from exc
    raise StripePaymentError(exc.user_message or "Stripe payment failure.", code=code) from exc


def _value(obj: Any, field: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(field, default)
    return getattr(obj, field, default)


def _idempotency_key(metadata: dict[str, str], suffix: str) -> str | None:
    booking_id = metadata.get("booking_id")
    if not booking_id:
        return None
    return f"booking:{booking_id}:{IDEMPOTENCY_VERSION}:{suffix}"


class StripeGateway:
    """
    Payment gateway backed by Stripe PaymentIntents (manual capture) and
    Connect transfers.

    Credentials are passed per call, so separate instances never share
    module-level client state.
    """

    def __init__(self, api_key: str | None = None, *, currency: str = "aud", env_label: str = "dev"):
        self.api_key = api_key or ""
        self.currency = currency
        self.env_label = env_label

    @classmethod
    def from_settings(cls) -> "StripeGateway":
        return cls(
            getattr(settings, "STRIPE_SECRET_KEY", ""),
            currency=getattr(settings, "PAYMENTS_CURRENCY", "aud"),
            env_label=getattr(settings, "STRIPE_ENV", "dev") or "dev",
        )

    def _key(self) -> str:
        if not self.api_key:
            raise StripeConfigurationError("Stripe secret key not configured.")
        return self.api_key

    def _metadata(self, metadata: dict[str, str]) -> dict[str, str]:
        return {**{k: str(v) for k, v in metadata.items()}, "env": self.env_label}

    def authorize(
        self,
        amount: Decimal,
        payout_destination: str,
        metadata: dict[str, str],
        *,
        customer_id: str | None = None,
        payment_method_id: str | None = None,
    ) -> AuthorizationRef:
        """Place a hold for `amount`; funds are only taken on capture."""
        if not payout_destination:
            raise PayeeNotOnboarded()
        cents = to_cents(amount)
        if cents <= 0:
            raise StripePaymentError("Authorization amount must be greater than zero.")

        booking_id = metadata.get("booking_id", "")
        # A retry with another card must not reuse the declined attempt's key.
        key_suffix = f"authorize:{cents}"
        if payment_method_id:
            key_suffix = f"{key_suffix}:{payment_method_id}"
        try:
            intent = stripe.PaymentIntent.create(
                api_key=self._key(),
                amount=cents,
                currency=self.currency,
                capture_method="manual",
                customer=customer_id or None,
                payment_method=payment_method_id or None,
                confirm=bool(payment_method_id),
                automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
                transfer_group=f"booking:{booking_id}" if booking_id else None,
                metadata=self._metadata(
                    {**metadata, "kind": "booking_authorization", "payee": payout_destination}
                ),
                idempotency_key=_idempotency_key(metadata, key_suffix),
            )
        except stripe.error.StripeError as exc:
            _handle_stripe_error(exc)

        return AuthorizationRef(
            id=_value(intent, "id", ""),
            amount=from_cents(_value(intent, "amount", cents)),
            status=_value(intent, "status", "") or "",
            client_secret=_value(intent, "client_secret", "") or "",
        )

    def void(self, authorization_id: str, reason: str = "requested_by_customer") -> str:
        """Cancel an uncaptured PaymentIntent and return its final status."""
        if reason not in VOID_REASONS:
            reason = "requested_by_customer"
        try:
            intent = stripe.PaymentIntent.cancel(
                authorization_id,
                api_key=self._key(),
                cancellation_reason=reason,
            )
        except stripe.error.StripeError as exc:
            _handle_stripe_error(exc)
        return _value(intent, "status", "canceled") or "canceled"

    def capture(self, authorization_id: str, application_fee: Decimal | None = None) -> ChargeRef:
        params: dict[str, Any] = {}
        if application_fee is not None and application_fee > 0:
            params["application_fee_amount"] = to_cents(application_fee)
        try:
            intent = stripe.PaymentIntent.capture(
                authorization_id,
                api_key=self._key(),
                idempotency_key=f"capture:{IDEMPOTENCY_VERSION}:{authorization_id}",
                **params,
            )
        except stripe.error.StripeError as exc:
            _handle_stripe_error(exc)

        amount_cents = _value(intent, "amount_received", None) or _value(intent, "amount", 0)
        charge = _value(intent, "latest_charge", "") or ""
        if not isinstance(charge, str):
            charge = _value(charge, "id", "") or ""
        return ChargeRef(
            payment_intent_id=_value(intent, "id", authorization_id),
            charge_id=charge,
            amount=from_cents(amount_cents),
        )

    def transfer(
        self, amount: Decimal, payout_destination: str, metadata: dict[str, str]
    ) -> TransferRef:
        if not payout_destination:
            raise PayeeNotOnboarded()
        cents = to_cents(amount)
        if cents <= 0:
            raise StripePaymentError("Transfer amount must be greater than zero.")
        booking_id = metadata.get("booking_id", "")
        params: dict[str, Any] = {}
        if metadata.get("charge_id"):
            params["source_transaction"] = metadata["charge_id"]
        try:
            transfer = stripe.Transfer.create(
                api_key=self._key(),
                amount=cents,
                currency=self.currency,
                destination=payout_destination,
                description=f"Owner payout for booking #{booking_id}",
                transfer_group=f"booking:{booking_id}" if booking_id else None,
                metadata=self._metadata({**metadata, "kind": "owner_payout"}),
                idempotency_key=_idempotency_key(metadata, "owner_payout"),
                **params,
            )
        except stripe.error.StripeError as exc:
            _handle_stripe_error(exc)
        return TransferRef(id=_value(transfer, "id", ""), amount=from_cents(cents))

    def refund(
        self, charge_id: str, amount: Decimal, reason: str, metadata: dict[str, str]
    ) -> RefundRef:
        cents = to_cents(amount)
        if cents <= 0:
            raise StripePaymentError("Refund amount must be greater than zero.")
        stripe_reason = reason if reason in REFUND_REASONS else "requested_by_customer"
        target = {"payment_intent": charge_id} if charge_id.startswith("pi_") else {"charge": charge_id}
        try:
            refund = stripe.Refund.create(
                api_key=self._key(),
                amount=cents,
                reason=stripe_reason,
                metadata=self._metadata({**metadata, "reason_detail": reason}),
                idempotency_key=_idempotency_key(metadata, f"refund:{metadata.get('kind', '')}:{cents}"),
                **target,
            )
        except stripe.error.StripeError as exc:
            _handle_stripe_error(exc)
        return RefundRef(
            id=_value(refund, "id", ""),
            amount=from_cents(_value(refund, "amount", cents)),
            status=_value(refund, "status", "") or "",
        )


def is_already_final(exc: PaymentGatewayError) -> bool:
    """True when Stripe reports the intent is gone or no longer cancellable."""
    return exc.code in ALREADY_FINAL_CODES


def get_payout_destination(user) -> str:
    """Return the owner's Connect account id, or raise PayeeNotOnboarded."""
    account = OwnerPayoutAccount.objects.filter(user=user).first()
    if account is None or not account.can_receive_payouts:
        raise PayeeNotOnboarded()
    return account.stripe_account_id


def _sync_payout_account_from_stripe(account_payload: Any) -> OwnerPayoutAccount | None:
    """Sync an OwnerPayoutAccount row from Stripe account.updated data."""
    stripe_account_id = _value(account_payload, "id", "")
    if not stripe_account_id:
        return None
    payout_account = OwnerPayoutAccount.objects.filter(stripe_account_id=stripe_account_id).first()
    if payout_account is None:
        logger.info("stripe_webhook: no payout account for %s", stripe_account_id)
        return None

    requirements = _value(account_payload, "requirements", {}) or {}
    disabled_reason = _value(requirements, "disabled_reason", "") or ""
    payout_account.payouts_enabled = bool(_value(account_payload, "payouts_enabled", False))
    payout_account.charges_enabled = bool(_value(account_payload, "charges_enabled", False))
    payout_account.requirements_due = {
        "currently_due": list(_value(requirements, "currently_due", []) or []),
        "past_due": list(_value(requirements, "past_due", []) or []),
        "disabled_reason": disabled_reason,
    }
    payout_account.is_fully_onboarded = (
        payout_account.payouts_enabled and payout_account.charges_enabled and not disabled_reason
    )
    payout_account.last_synced_at = timezone.now()
    payout_account.save()
    return payout_account


def _record_intent_event(event_type: str, data_object: Any) -> None:
    metadata = _value(data_object, "metadata", {}) or {}
    booking_id = metadata.get("booking_id")
    if not booking_id:
        return
    try:
        booking_pk = int(booking_id)
    except (TypeError, ValueError):
        return
    last_error = _value(data_object, "last_payment_error", {}) or {}
    record_gateway_event(
        booking_pk,
        event_type=event_type,
        payment_intent_id=_value(data_object, "id", ""),
        detail=_value(last_error, "message", "") or "",
    )


@api_view(["POST"])
@authentication_classes([])
@permission_classes([])
def stripe_webhook(request):
    """Handle Stripe webhook callbacks for payout accounts and booking PaymentIntents."""
    payload = request.body
    sig_header = request.META.get("HTTP_STRIPE_SIGNATURE", "")
    endpoint_secret = getattr(settings, "STRIPE_WEBHOOK_SECRET", "")

    try:
        event = stripe.Webhook.construct_event(
            payload=payload,
            sig_header=sig_header,
            secret=endpoint_secret,
        )
    except ValueError:
        return Response(status=status.HTTP_400_BAD_REQUEST)
    except stripe.error.SignatureVerificationError:
        return Response(status=status.HTTP_400_BAD_REQUEST)

    event_type = _value(event, "type", "")
    data_object = _value(_value(event, "data", {}) or {}, "object", {}) or {}

    if event_type == "account.updated":
        _sync_payout_account_from_stripe(data_object)
    elif event_type in ("payment_intent.canceled", "payment_intent.payment_failed"):
        _record_intent_event(event_type, data_object)
    else:
        logger.debug("stripe_webhook: ignoring %s", event_type)
    return Response(status=status.HTTP_200_OK)
