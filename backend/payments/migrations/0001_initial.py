import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ("bookings", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Transaction",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                (
                    "kind",
                    models.CharField(
                        choices=[
                            ("BOOKING_CHARGE", "Booking charge"),
                            ("PAYMENT_VOID", "Payment authorization voided"),
                            ("REFUND", "Refund"),
                            ("OWNER_PAYOUT", "Owner payout"),
                            ("PLATFORM_FEE", "Platform fee"),
                            ("DEPOSIT_REFUND", "Security deposit refund"),
                        ],
                        max_length=64,
                    ),
                ),
                ("amount", models.DecimalField(decimal_places=2, max_digits=10)),
                ("currency", models.CharField(default="aud", max_length=8)),
                (
                    "stripe_id",
                    models.CharField(
                        blank=True,
                        help_text="Related Stripe PaymentIntent / Charge / Transfer / Refund id.",
                        max_length=255,
                        null=True,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "booking",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="transactions",
                        to="bookings.booking",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="transactions",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="OwnerPayoutAccount",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("stripe_account_id", models.CharField(max_length=255)),
                ("payouts_enabled", models.BooleanField(default=False)),
                ("charges_enabled", models.BooleanField(default=False)),
                ("requirements_due", models.JSONField(blank=True, default=dict)),
                (
                    "is_fully_onboarded",
                    models.BooleanField(
                        default=False,
                        help_text="Charges and payouts enabled, no disabled_reason.",
                    ),
                ),
                ("last_synced_at", models.DateTimeField(blank=True, null=True)),
                (
                    "user",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="payout_account",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-last_synced_at", "user_id"],
            },
        ),
    ]
