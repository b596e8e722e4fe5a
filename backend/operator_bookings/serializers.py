from rest_framework import serializers

from bookings.models import Booking
from operator_bookings.models import BookingEvent
from payments.ledger import summarize_booking_ledger


def _display_name(user) -> str:
    if not user:
        return ""
    name = (user.get_full_name() or "").strip()
    if name:
        return name
    for attr in ("username", "email"):
        value = (getattr(user, attr, "") or "").strip()
        if value:
            return value
    return f"User {user.id}"


class OperatorBookingUserSerializer(serializers.Serializer):
    id = serializers.IntegerField(read_only=True)
    email = serializers.EmailField(read_only=True, allow_blank=True)
    name = serializers.SerializerMethodField()
    phone = serializers.CharField(read_only=True, allow_blank=True)

    def get_name(self, obj):
        return _display_name(obj)


class OperatorBookingEventSerializer(serializers.ModelSerializer):
    actor = OperatorBookingUserSerializer(read_only=True)

    class Meta:
        model = BookingEvent
        fields = ["id", "type", "payload", "actor", "created_at"]
        read_only_fields = fields


class OperatorBookingListSerializer(serializers.ModelSerializer):
    owner = OperatorBookingUserSerializer(read_only=True)
    renter = OperatorBookingUserSerializer(read_only=True)
    listing_id = serializers.IntegerField(source="listing.id", read_only=True)
    listing_title = serializers.CharField(source="listing.title", read_only=True)
    amount_due = serializers.DecimalField(max_digits=10, decimal_places=2, read_only=True)

    class Meta:
        model = Booking
        fields = [
            "id",
            "status",
            "listing_id",
            "listing_title",
            "owner",
            "renter",
            "start_date",
            "end_date",
            "amount_due",
            "deposit_status",
            "payout_status",
            "requires_admin_review",
            "needs_manual_followup",
            "created_at",
        ]
        read_only_fields = fields


class OperatorBookingDetailSerializer(OperatorBookingListSerializer):
    events = serializers.SerializerMethodField()
    ledger = serializers.SerializerMethodField()

    class Meta(OperatorBookingListSerializer.Meta):
        fields = OperatorBookingListSerializer.Meta.fields + [
            "days",
            "subtotal",
            "service_fee",
            "insurance_fee",
            "delivery_fee",
            "deposit_amount",
            "total_amount",
            "platform_commission",
            "owner_payout",
            "points_used",
            "points_credit",
            "points_restored_at",
            "payment_intent_id",
            "charge_id",
            "transfer_id",
            "deposit_refund_id",
            "payment_expires_at",
            "payment_captured_at",
            "payout_released_at",
            "pickup_confirmed_by_renter",
            "pickup_confirmed_by_owner",
            "return_confirmed_by_renter",
            "return_confirmed_by_owner",
            "damage_reported",
            "damage_report",
            "rejection_reason",
            "cancellation_reason",
            "cancelled_by",
            "events",
            "ledger",
        ]
        read_only_fields = fields

    def get_events(self, obj: Booking):
        events = getattr(obj, "prefetched_events", None)
        if events is None:
            events = list(obj.events.select_related("actor").order_by("created_at", "id"))
        return OperatorBookingEventSerializer(events, many=True).data

    def get_ledger(self, obj: Booking):
        return {kind: str(amount) for kind, amount in summarize_booking_ledger(obj).items()}


class ReleaseFundsSerializer(serializers.Serializer):
    reason = serializers.CharField(trim_whitespace=True, max_length=1000)
    deposit_refund_amount = serializers.DecimalField(
        max_digits=10, decimal_places=2, min_value=0, required=False, allow_null=True
    )


class ForceCancelBookingSerializer(serializers.Serializer):
    reason = serializers.CharField(trim_whitespace=True, max_length=1000)
