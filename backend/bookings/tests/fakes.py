"""In-memory stand-ins for the payment gateway and the notification queue."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from notifications.events import NotificationEvent
from payments.stripe_api import (
    AuthorizationRef,
    ChargeRef,
    PaymentGatewayError,
    RefundRef,
    StripePaymentError,
    TransferRef,
)


@dataclass
class FakeGateway:
    """
    Records every call. Set `fail_<operation>` to an exception instance to
    make the next calls to that operation raise it.
    """

    calls: list[tuple[str, dict]] = field(default_factory=list)
    authorized: dict[str, Decimal] = field(default_factory=dict)
    captured: dict[str, ChargeRef] = field(default_factory=dict)
    fail_authorize: PaymentGatewayError | None = None
    fail_void: PaymentGatewayError | None = None
    fail_capture: PaymentGatewayError | None = None
    fail_transfer: PaymentGatewayError | None = None
    fail_refund: PaymentGatewayError | None = None
    _counter: int = 0

    def _next_id(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}_fake_{self._counter}"

    def calls_to(self, operation: str) -> list[dict]:
        return [kwargs for name, kwargs in self.calls if name == operation]

    def authorize(
        self,
        amount,
        payout_destination,
        metadata,
        *,
        customer_id=None,
        payment_method_id=None,
    ) -> AuthorizationRef:
        self.calls.append(
            (
                "authorize",
                {
                    "amount": amount,
                    "destination": payout_destination,
                    "metadata": metadata,
                    "customer_id": customer_id,
                    "payment_method_id": payment_method_id,
                },
            )
        )
        if self.fail_authorize:
            raise self.fail_authorize
        intent_id = self._next_id("pi")
        self.authorized[intent_id] = Decimal(amount)
        return AuthorizationRef(
            id=intent_id,
            amount=Decimal(amount),
            status="requires_capture",
            client_secret=f"{intent_id}_secret",
        )

    def void(self, authorization_id, reason="requested_by_customer") -> str:
        self.calls.append(("void", {"authorization_id": authorization_id, "reason": reason}))
        if self.fail_void:
            raise self.fail_void
        return "canceled"

    def capture(self, authorization_id, application_fee=None) -> ChargeRef:
        self.calls.append(
            ("capture", {"authorization_id": authorization_id, "application_fee": application_fee})
        )
        if self.fail_capture:
            raise self.fail_capture
        # Stripe answers a repeated capture with the charge it already made.
        if authorization_id in self.captured:
            return self.captured[authorization_id]
        amount = self.authorized.get(authorization_id)
        if amount is None:
            raise StripePaymentError("No such payment intent.", code="resource_missing")
        charge = ChargeRef(
            payment_intent_id=authorization_id,
            charge_id=self._next_id("ch"),
            amount=amount,
        )
        self.captured[authorization_id] = charge
        return charge

    def transfer(self, amount, payout_destination, metadata) -> TransferRef:
        self.calls.append(
            ("transfer", {"amount": amount, "destination": payout_destination, "metadata": metadata})
        )
        if self.fail_transfer:
            raise self.fail_transfer
        return TransferRef(id=self._next_id("tr"), amount=Decimal(amount))

    def refund(self, charge_id, amount, reason, metadata) -> RefundRef:
        self.calls.append(
            ("refund", {"charge_id": charge_id, "amount": amount, "reason": reason, "metadata": metadata})
        )
        if self.fail_refund:
            raise self.fail_refund
        return RefundRef(id=self._next_id("re"), amount=Decimal(amount), status="succeeded")


@dataclass
class RecordingDispatcher:
    sent: list[tuple[int, NotificationEvent]] = field(default_factory=list)
    admin: list[NotificationEvent] = field(default_factory=list)
    scheduled: list[tuple[int, NotificationEvent, datetime]] = field(default_factory=list)
    accept: bool = True

    def notify(self, user_id: int, event: NotificationEvent) -> bool:
        self.sent.append((user_id, event))
        return self.accept

    def notify_admins(self, event: NotificationEvent) -> bool:
        self.admin.append(event)
        return self.accept

    def schedule(self, user_id: int, event: NotificationEvent, eta: datetime) -> bool:
        self.scheduled.append((user_id, event, eta))
        return self.accept

    def events_of(self, event_cls) -> list[tuple[int, NotificationEvent]]:
        return [(user_id, event) for user_id, event in self.sent if isinstance(event, event_cls)]

    def recipients_of(self, event_cls) -> set[int]:
        return {user_id for user_id, _ in self.events_of(event_cls)}
