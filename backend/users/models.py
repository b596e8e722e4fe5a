from __future__ import annotations

from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    """Marketplace user; the same account can rent and list items."""

    phone = models.CharField(
        max_length=32,
        unique=True,
        null=True,
        blank=True,
        help_text="Optional E.164 formatted phone number.",
    )
    email_verified = models.BooleanField(default=False)
    can_rent = models.BooleanField(default=True)
    can_list = models.BooleanField(default=True)
    stripe_customer_id = models.CharField(
        max_length=120,
        blank=True,
        default="",
        help_text="Stripe Customer ID for renter payments.",
    )
    points_balance = models.PositiveIntegerField(
        default=0,
        help_text="Loyalty points available to redeem against bookings.",
    )

    def is_owner(self) -> bool:
        return bool(self.can_list)

    def is_renter(self) -> bool:
        return bool(self.can_rent)
