"""Database models for the bookings domain."""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models import F, Q

from listings.models import Listing


def _money_field(**kwargs) -> models.DecimalField:
    kwargs.setdefault("default", Decimal("0.00"))
    return models.DecimalField(max_digits=10, decimal_places=2, **kwargs)


class Booking(models.Model):
    """A renter's request to rent a listing for a date range."""

    class Status(models.TextChoices):
        PENDING = "pending", "Pending owner approval"
        PAYMENT_REQUIRED = "payment_required", "Payment required"
        CONFIRMED = "confirmed", "Confirmed"
        # Legacy "picked up" rows; new writes use IN_PROGRESS.
        ACTIVE = "active", "Active"
        IN_PROGRESS = "in_progress", "In progress"
        REJECTED = "rejected", "Rejected"
        CANCELLED = "cancelled", "Cancelled"
        COMPLETED = "completed", "Completed"
        FUNDS_RELEASED = "funds_released", "Funds released"

    class DeliveryMethod(models.TextChoices):
        PICKUP = "pickup", "Pickup"
        DELIVERY = "delivery", "Delivery"

    class DepositStatus(models.TextChoices):
        NONE = "none", "No deposit"
        HELD = "held", "Held"
        REFUNDED = "refunded", "Refunded"
        PARTIALLY_REFUNDED = "partially_refunded", "Partially refunded"
        RETAINED = "retained", "Retained"
        REFUND_FAILED = "refund_failed", "Refund failed"

    class PayoutStatus(models.TextChoices):
        PENDING = "pending", "Pending"
        RELEASED = "released", "Released"
        FAILED = "failed", "Failed"

    class CancelledBy(models.TextChoices):
        RENTER = "renter", "Renter"
        OWNER = "owner", "Owner"
        SYSTEM = "system", "System"
        OPERATOR = "operator", "Operator"

    listing = models.ForeignKey(
        Listing,
        on_delete=models.PROTECT,
        related_name="bookings",
    )
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="bookings_as_owner",
    )
    renter = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="bookings_as_renter",
    )
    start_date = models.DateField()
    end_date = models.DateField()
    status = models.CharField(
        max_length=32,
        choices=Status.choices,
        default=Status.PENDING,
    )

    # Pricing snapshot, written once at creation.
    currency = models.CharField(max_length=8, default="aud")
    daily_rate = _money_field()
    days = models.PositiveIntegerField(default=1)
    include_insurance = models.BooleanField(default=False)
    delivery_method = models.CharField(
        max_length=16,
        choices=DeliveryMethod.choices,
        default=DeliveryMethod.PICKUP,
    )
    delivery_address = models.CharField(max_length=255, blank=True, default="")
    subtotal = _money_field()
    service_fee = _money_field()
    insurance_fee = _money_field()
    delivery_fee = _money_field()
    deposit_amount = _money_field()
    total_amount = _money_field()
    platform_commission = _money_field()
    owner_payout = _money_field()
    points_used = models.PositiveIntegerField(default=0)
    points_credit = _money_field()
    points_restored_at = models.DateTimeField(null=True, blank=True)
    renter_message = models.TextField(blank=True, default="")

    # Gateway references, blank until the matching operation succeeds.
    payment_intent_id = models.CharField(max_length=255, blank=True, default="")
    charge_id = models.CharField(max_length=255, blank=True, default="")
    transfer_id = models.CharField(max_length=255, blank=True, default="")
    deposit_refund_id = models.CharField(max_length=255, blank=True, default="")
    payment_expires_at = models.DateTimeField(null=True, blank=True)
    payment_captured_at = models.DateTimeField(null=True, blank=True)
    payout_released_at = models.DateTimeField(null=True, blank=True)
    deposit_status = models.CharField(
        max_length=32,
        choices=DepositStatus.choices,
        default=DepositStatus.NONE,
    )
    payout_status = models.CharField(
        max_length=16,
        choices=PayoutStatus.choices,
        default=PayoutStatus.PENDING,
    )

    # Two-party confirmations.
    pickup_confirmed_by_renter = models.BooleanField(default=False)
    pickup_confirmed_by_renter_at = models.DateTimeField(null=True, blank=True)
    pickup_confirmed_by_owner = models.BooleanField(default=False)
    pickup_confirmed_by_owner_at = models.DateTimeField(null=True, blank=True)
    return_confirmed_by_renter = models.BooleanField(default=False)
    return_confirmed_by_renter_at = models.DateTimeField(null=True, blank=True)
    return_confirmed_by_owner = models.BooleanField(default=False)
    return_confirmed_by_owner_at = models.DateTimeField(null=True, blank=True)

    damage_reported = models.BooleanField(default=False)
    damage_report = models.TextField(blank=True, default="")
    requires_admin_review = models.BooleanField(default=False)
    needs_manual_followup = models.BooleanField(default=False)

    rejection_reason = models.TextField(blank=True, default="")
    cancellation_reason = models.TextField(blank=True, default="")
    cancelled_by = models.CharField(
        max_length=16,
        choices=CancelledBy.choices,
        blank=True,
        default="",
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(
                fields=["listing", "start_date", "end_date"],
                name="bookings_bo_listing_4c1d2e_idx",
            ),
            models.Index(
                fields=["status", "payment_expires_at"],
                name="bookings_bo_status_9a7f31_idx",
            ),
            models.Index(fields=["owner", "status"], name="bookings_bo_owner_i_5be0a2_idx"),
            models.Index(fields=["renter", "status"], name="bookings_bo_renter__e81c47_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(end_date__gte=F("start_date")),
                name="booking_end_on_or_after_start",
            ),
        ]

    def __str__(self) -> str:
        return f"Booking #{self.pk} {self.listing_id} {self.start_date}->{self.end_date} ({self.status})"

    @property
    def amount_due(self) -> Decimal:
        """What the renter is charged: rental total plus deposit, less points credit."""
        return self.total_amount + self.deposit_amount - self.points_credit

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        Booking.Status.REJECTED,
        Booking.Status.CANCELLED,
        Booking.Status.COMPLETED,
        Booking.Status.FUNDS_RELEASED,
    }
)


class BookingEvidence(models.Model):
    """Photo evidence attached to a pickup or return confirmation."""

    class Party(models.TextChoices):
        RENTER = "renter", "Renter"
        OWNER = "owner", "Owner"

    class Phase(models.TextChoices):
        PICKUP = "pickup", "Pickup"
        RETURN = "return", "Return"

    booking = models.ForeignKey(
        Booking,
        on_delete=models.CASCADE,
        related_name="evidence",
    )
    party = models.CharField(max_length=8, choices=Party.choices)
    phase = models.CharField(max_length=8, choices=Phase.choices)
    url = models.URLField(max_length=1024)
    notes = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(
                fields=["booking", "phase", "party"],
                name="bookings_bo_booking_7d2e90_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.phase}/{self.party} evidence for booking {self.booking_id}"
