from django.conf import settings
from django.db import models


class Transaction(models.Model):
    """Ledger row for every money movement tied to a booking."""

    class Kind(models.TextChoices):
        BOOKING_CHARGE = "BOOKING_CHARGE", "Booking charge"
        PAYMENT_VOID = "PAYMENT_VOID", "Payment authorization voided"
        REFUND = "REFUND", "Refund"
        OWNER_PAYOUT = "OWNER_PAYOUT", "Owner payout"
        PLATFORM_FEE = "PLATFORM_FEE", "Platform fee"
        DEPOSIT_REFUND = "DEPOSIT_REFUND", "Security deposit refund"

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="transactions",
    )
    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.CASCADE,
        related_name="transactions",
    )
    kind = models.CharField(max_length=64, choices=Kind.choices)
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    currency = models.CharField(max_length=8, default="aud")
    stripe_id = models.CharField(
        max_length=255,
        blank=True,
        null=True,
        help_text="Related Stripe PaymentIntent / Charge / Transfer / Refund id.",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.user} {self.kind} {self.amount} {self.currency}"


class OwnerPayoutAccount(models.Model):
    """Stripe Connect account that receives an owner's payouts."""

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="payout_account",
    )
    stripe_account_id = models.CharField(max_length=255)
    payouts_enabled = models.BooleanField(default=False)
    charges_enabled = models.BooleanField(default=False)
    requirements_due = models.JSONField(default=dict, blank=True)
    is_fully_onboarded = models.BooleanField(
        default=False,
        help_text="Charges and payouts enabled, no disabled_reason.",
    )
    last_synced_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-last_synced_at", "user_id"]

    def __str__(self) -> str:
        return f"{self.user} - {self.stripe_account_id}"

    @property
    def can_receive_payouts(self) -> bool:
        return bool(self.stripe_account_id and self.payouts_enabled)
