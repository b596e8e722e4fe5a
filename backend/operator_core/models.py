from django.conf import settings
from django.db import models


class OperatorAuditEvent(models.Model):
    """Who did what to which record, and why. Written for every operator mutation."""

    class EntityType(models.TextChoices):
        USER = "user", "User"
        LISTING = "listing", "Listing"
        BOOKING = "booking", "Booking"

    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="operator_audit_events",
    )
    action = models.CharField(max_length=128)
    entity_type = models.CharField(max_length=64, choices=EntityType.choices)
    entity_id = models.CharField(max_length=64)
    reason = models.TextField()
    before_json = models.JSONField(null=True, blank=True)
    after_json = models.JSONField(null=True, blank=True)
    meta_json = models.JSONField(null=True, blank=True)
    ip = models.CharField(max_length=45, blank=True)
    user_agent = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(
                fields=["entity_type", "entity_id", "created_at"],
                name="operator_co_entity__3b8d41_idx",
            ),
            models.Index(fields=["actor", "created_at"], name="operator_co_actor_i_c07e92_idx"),
        ]
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.action} on {self.entity_type}:{self.entity_id}"
