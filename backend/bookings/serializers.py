"""Serializers for booking-related API endpoints."""

from __future__ import annotations

from rest_framework import serializers

from listings.models import Listing

from .confirmations import Evidence
from .domain import REJECTION_REASON_MAX_LENGTH, REJECTION_REASON_MIN_LENGTH
from .models import Booking, BookingEvidence


class BookingEvidenceSerializer(serializers.ModelSerializer):
    class Meta:
        model = BookingEvidence
        fields = ("id", "party", "phase", "url", "notes", "created_at")
        read_only_fields = fields


class BookingSerializer(serializers.ModelSerializer):
    """Serialize Booking instances for participants."""

    listing_title = serializers.ReadOnlyField(source="listing.title")
    owner_username = serializers.ReadOnlyField(source="owner.username")
    renter_username = serializers.ReadOnlyField(source="renter.username")
    status_label = serializers.CharField(source="get_status_display", read_only=True)
    amount_due = serializers.DecimalField(max_digits=10, decimal_places=2, read_only=True)
    evidence = BookingEvidenceSerializer(many=True, read_only=True)

    class Meta:
        model = Booking
        fields = (
            "id",
            "status",
            "status_label",
            "listing",
            "listing_title",
            "owner",
            "owner_username",
            "renter",
            "renter_username",
            "start_date",
            "end_date",
            "days",
            "currency",
            "daily_rate",
            "include_insurance",
            "delivery_method",
            "delivery_address",
            "subtotal",
            "service_fee",
            "insurance_fee",
            "delivery_fee",
            "deposit_amount",
            "total_amount",
            "points_used",
            "points_credit",
            "amount_due",
            "renter_message",
            "payment_expires_at",
            "payment_captured_at",
            "deposit_status",
            "payout_status",
            "pickup_confirmed_by_renter",
            "pickup_confirmed_by_renter_at",
            "pickup_confirmed_by_owner",
            "pickup_confirmed_by_owner_at",
            "return_confirmed_by_renter",
            "return_confirmed_by_renter_at",
            "return_confirmed_by_owner",
            "return_confirmed_by_owner_at",
            "damage_reported",
            "damage_report",
            "rejection_reason",
            "cancellation_reason",
            "cancelled_by",
            "evidence",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields


class _BookingRequestFields(serializers.Serializer):
    listing = serializers.PrimaryKeyRelatedField(queryset=Listing.objects.filter(is_active=True))
    start_date = serializers.DateField()
    end_date = serializers.DateField()
    include_insurance = serializers.BooleanField(default=False)
    delivery_method = serializers.ChoiceField(
        choices=Booking.DeliveryMethod.choices, default=Booking.DeliveryMethod.PICKUP
    )
    points_to_redeem = serializers.IntegerField(min_value=0, default=0)


class QuoteSerializer(_BookingRequestFields):
    """Query parameters for a price preview."""

    # Accept the short query-string name used by the listing page.
    points = serializers.IntegerField(min_value=0, required=False, write_only=True)

    def validate(self, attrs):
        points = attrs.pop("points", None)
        if points is not None:
            attrs["points_to_redeem"] = points
        return attrs


class BookingCreateSerializer(_BookingRequestFields):
    delivery_address = serializers.CharField(
        required=False, allow_blank=True, max_length=255, default=""
    )
    message = serializers.CharField(required=False, allow_blank=True, max_length=2000, default="")


class RejectSerializer(serializers.Serializer):
    reason = serializers.CharField(
        min_length=REJECTION_REASON_MIN_LENGTH,
        max_length=REJECTION_REASON_MAX_LENGTH,
        trim_whitespace=True,
    )


class CancelSerializer(serializers.Serializer):
    reason = serializers.CharField(
        required=False, allow_blank=True, max_length=500, trim_whitespace=True, default=""
    )


class PaySerializer(serializers.Serializer):
    payment_method_id = serializers.CharField(
        required=False,
        allow_blank=True,
        help_text="Stripe PaymentMethod ID used to pay for this booking.",
    )


class ConfirmationSerializer(serializers.Serializer):
    photos = serializers.ListField(child=serializers.URLField(max_length=1024), default=list)
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    damage_report = serializers.CharField(
        required=False, allow_blank=True, max_length=2000, default=""
    )

    def to_evidence(self) -> Evidence:
        data = self.validated_data
        return Evidence(
            photos=tuple(data.get("photos") or ()),
            notes=data.get("notes", ""),
            damage_report=data.get("damage_report", ""),
        )
