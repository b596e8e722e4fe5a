import django_filters as filters

from bookings.models import Booking


class OperatorBookingFilter(filters.FilterSet):
    status = filters.CharFilter(field_name="status", lookup_expr="iexact")
    created_at_after = filters.IsoDateTimeFilter(field_name="created_at", lookup_expr="gte")
    created_at_before = filters.IsoDateTimeFilter(field_name="created_at", lookup_expr="lte")
    owner = filters.NumberFilter(field_name="owner_id")
    renter = filters.NumberFilter(field_name="renter_id")
    listing = filters.NumberFilter(field_name="listing_id")
    requires_admin_review = filters.BooleanFilter(field_name="requires_admin_review")
    needs_manual_followup = filters.BooleanFilter(field_name="needs_manual_followup")

    class Meta:
        model = Booking
        fields = [
            "status",
            "owner",
            "renter",
            "listing",
            "requires_admin_review",
            "needs_manual_followup",
        ]
