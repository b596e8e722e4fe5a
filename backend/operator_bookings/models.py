from django.conf import settings
from django.db import models


class BookingEvent(models.Model):
    """Entry on a booking's timeline, as shown in the operator console."""

    class Type(models.TextChoices):
        STATUS_CHANGE = "status_change", "Status change"
        SIDE_EFFECT_FAILED = "side_effect_failed", "Side effect failed"
        GATEWAY_EVENT = "gateway_event", "Gateway event"
        NOTIFICATION_FAILED = "notification_failed", "Notification failed"
        OPERATOR_ACTION = "operator_action", "Operator action"

    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.CASCADE,
        related_name="events",
    )
    type = models.CharField(max_length=32, choices=Type.choices)
    payload = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="operator_booking_events",
    )

    class Meta:
        ordering = ["created_at"]
        indexes = [
            models.Index(fields=["booking", "created_at"], name="operator_bo_booking_2e6c1a_idx"),
            models.Index(fields=["type", "created_at"], name="operator_bo_type_cr_91d4f7_idx"),
        ]

    def __str__(self) -> str:
        return f"BookingEvent {self.pk} for booking {self.booking_id} ({self.type})"
