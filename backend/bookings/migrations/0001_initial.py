import django.db.models.deletion
from decimal import Decimal

from django.conf import settings
from django.db import migrations, models


def money(**kwargs):
    kwargs.setdefault("default", Decimal("0.00"))
    return models.DecimalField(decimal_places=2, max_digits=10, **kwargs)


STATUS_CHOICES = [
    ("pending", "Pending owner approval"),
    ("payment_required", "Payment required"),
    ("confirmed", "Confirmed"),
    ("active", "Active"),
    ("in_progress", "In progress"),
    ("rejected", "Rejected"),
    ("cancelled", "Cancelled"),
    ("completed", "Completed"),
    ("funds_released", "Funds released"),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ("listings", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Booking",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("start_date", models.DateField()),
                ("end_date", models.DateField()),
                (
                    "status",
                    models.CharField(choices=STATUS_CHOICES, default="pending", max_length=32),
                ),
                ("currency", models.CharField(default="aud", max_length=8)),
                ("daily_rate", money()),
                ("days", models.PositiveIntegerField(default=1)),
                ("include_insurance", models.BooleanField(default=False)),
                (
                    "delivery_method",
                    models.CharField(
                        choices=[("pickup", "Pickup"), ("delivery", "Delivery")],
                        default="pickup",
                        max_length=16,
                    ),
                ),
                ("delivery_address", models.CharField(blank=True, default="", max_length=255)),
                ("subtotal", money()),
                ("service_fee", money()),
                ("insurance_fee", money()),
                ("delivery_fee", money()),
                ("deposit_amount", money()),
                ("total_amount", money()),
                ("platform_commission", money()),
                ("owner_payout", money()),
                ("points_used", models.PositiveIntegerField(default=0)),
                ("points_credit", money()),
                ("points_restored_at", models.DateTimeField(blank=True, null=True)),
                ("renter_message", models.TextField(blank=True, default="")),
                ("payment_intent_id", models.CharField(blank=True, default="", max_length=255)),
                ("charge_id", models.CharField(blank=True, default="", max_length=255)),
                ("transfer_id", models.CharField(blank=True, default="", max_length=255)),
                ("deposit_refund_id", models.CharField(blank=True, default="", max_length=255)),
                ("payment_expires_at", models.DateTimeField(blank=True, null=True)),
                ("payment_captured_at", models.DateTimeField(blank=True, null=True)),
                ("payout_released_at", models.DateTimeField(blank=True, null=True)),
                (
                    "deposit_status",
                    models.CharField(
                        choices=[
                            ("none", "No deposit"),
                            ("held", "Held"),
                            ("refunded", "Refunded"),
                            ("partially_refunded", "Partially refunded"),
                            ("retained", "Retained"),
                            ("refund_failed", "Refund failed"),
                        ],
                        default="none",
                        max_length=32,
                    ),
                ),
                (
                    "payout_status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("released", "Released"),
                            ("failed", "Failed"),
                        ],
                        default="pending",
                        max_length=16,
                    ),
                ),
                ("pickup_confirmed_by_renter", models.BooleanField(default=False)),
                ("pickup_confirmed_by_renter_at", models.DateTimeField(blank=True, null=True)),
                ("pickup_confirmed_by_owner", models.BooleanField(default=False)),
                ("pickup_confirmed_by_owner_at", models.DateTimeField(blank=True, null=True)),
                ("return_confirmed_by_renter", models.BooleanField(default=False)),
                ("return_confirmed_by_renter_at", models.DateTimeField(blank=True, null=True)),
                ("return_confirmed_by_owner", models.BooleanField(default=False)),
                ("return_confirmed_by_owner_at", models.DateTimeField(blank=True, null=True)),
                ("damage_reported", models.BooleanField(default=False)),
                ("damage_report", models.TextField(blank=True, default="")),
                ("requires_admin_review", models.BooleanField(default=False)),
                ("needs_manual_followup", models.BooleanField(default=False)),
                ("rejection_reason", models.TextField(blank=True, default="")),
                ("cancellation_reason", models.TextField(blank=True, default="")),
                (
                    "cancelled_by",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("renter", "Renter"),
                            ("owner", "Owner"),
                            ("system", "System"),
                            ("operator", "Operator"),
                        ],
                        default="",
                        max_length=16,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "listing",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="bookings",
                        to="listings.listing",
                    ),
                ),
                (
                    "owner",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="bookings_as_owner",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "renter",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="bookings_as_renter",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["listing", "start_date", "end_date"],
                        name="bookings_bo_listing_4c1d2e_idx",
                    ),
                    models.Index(
                        fields=["status", "payment_expires_at"],
                        name="bookings_bo_status_9a7f31_idx",
                    ),
                    models.Index(fields=["owner", "status"], name="bookings_bo_owner_i_5be0a2_idx"),
                    models.Index(
                        fields=["renter", "status"], name="bookings_bo_renter__e81c47_idx"
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("end_date__gte", models.F("start_date"))),
                        name="booking_end_on_or_after_start",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="BookingEvidence",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                (
                    "party",
                    models.CharField(
                        choices=[("renter", "Renter"), ("owner", "Owner")], max_length=8
                    ),
                ),
                (
                    "phase",
                    models.CharField(
                        choices=[("pickup", "Pickup"), ("return", "Return")], max_length=8
                    ),
                ),
                ("url", models.URLField(max_length=1024)),
                ("notes", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "booking",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="evidence",
                        to="bookings.booking",
                    ),
                ),
            ],
            options={
                "ordering": ["created_at", "id"],
                "indexes": [
                    models.Index(
                        fields=["booking", "phase", "party"],
                        name="bookings_bo_booking_7d2e90_idx",
                    ),
                ],
            },
        ),
    ]
