from django.urls import path

from operator_bookings.api import (
    OperatorBookingDetailView,
    OperatorBookingForceCancelView,
    OperatorBookingListView,
    OperatorBookingReleaseFundsView,
)

app_name = "operator_bookings"

urlpatterns = [
    path("", OperatorBookingListView.as_view(), name="operator_booking_list"),
    path("<int:pk>/", OperatorBookingDetailView.as_view(), name="operator_booking_detail"),
    path(
        "<int:pk>/release-funds/",
        OperatorBookingReleaseFundsView.as_view(),
        name="operator_booking_release_funds",
    ),
    path(
        "<int:pk>/force-cancel/",
        OperatorBookingForceCancelView.as_view(),
        name="operator_booking_force_cancel",
    ),
]
