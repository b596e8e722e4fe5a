from django.core.exceptions import ValidationError
from django.db.models import Prefetch
from django.shortcuts import get_object_or_404
from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import generics, status
from rest_framework.filters import OrderingFilter
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response
from rest_framework.views import APIView

from bookings.api import workflow_error_response
from bookings.models import Booking
from bookings.workflow import BookingPaymentFailed
from operator_bookings.filters import OperatorBookingFilter
from operator_bookings.models import BookingEvent
from operator_bookings.serializers import (
    ForceCancelBookingSerializer,
    OperatorBookingDetailSerializer,
    OperatorBookingListSerializer,
    ReleaseFundsSerializer,
)
from operator_bookings.services import force_cancel_booking, release_funds
from operator_core.permissions import (
    FINANCE_ROLES,
    OPERATOR_ROLES,
    HasOperatorRole,
    IsOperator,
)


class OperatorBookingPagination(PageNumberPagination):
    page_size = 20
    page_size_query_param = "page_size"
    max_page_size = 200


def _detail_queryset():
    events_qs = BookingEvent.objects.select_related("actor").order_by("created_at", "id")
    return Booking.objects.select_related("listing", "owner", "renter").prefetch_related(
        Prefetch("events", queryset=events_qs, to_attr="prefetched_events")
    )


class OperatorBookingListView(generics.ListAPIView):
    serializer_class = OperatorBookingListSerializer
    permission_classes = [IsOperator, HasOperatorRole.with_roles(OPERATOR_ROLES)]
    filter_backends = [DjangoFilterBackend, OrderingFilter]
    filterset_class = OperatorBookingFilter
    pagination_class = OperatorBookingPagination
    ordering_fields = ["created_at", "start_date", "end_date"]
    http_method_names = ["get"]

    def get_queryset(self):
        return Booking.objects.select_related("listing", "owner", "renter").order_by("-created_at")


class OperatorBookingDetailView(generics.RetrieveAPIView):
    serializer_class = OperatorBookingDetailSerializer
    permission_classes = [IsOperator, HasOperatorRole.with_roles(OPERATOR_ROLES)]
    lookup_field = "pk"
    http_method_names = ["get"]

    def get_queryset(self):
        return _detail_queryset()


class _OperatorBookingActionView(APIView):
    """Money-moving operator actions; finance and admin roles only."""

    permission_classes = [IsOperator, HasOperatorRole.with_roles(FINANCE_ROLES)]
    input_serializer_class = None
    http_method_names = ["post"]

    def perform(self, booking: Booking, data: dict, request):
        raise NotImplementedError

    def post(self, request, pk: int):
        booking = get_object_or_404(Booking.objects.select_related("listing"), pk=pk)
        serializer = self.input_serializer_class(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            result = self.perform(booking, serializer.validated_data, request)
        except (ValidationError, BookingPaymentFailed) as exc:
            return workflow_error_response(exc, booking_id=pk)

        refreshed = _detail_queryset().get(pk=result.booking.pk)
        data = OperatorBookingDetailSerializer(refreshed).data
        return Response({**data, "warnings": result.warnings}, status=status.HTTP_200_OK)


class OperatorBookingReleaseFundsView(_OperatorBookingActionView):
    input_serializer_class = ReleaseFundsSerializer

    def perform(self, booking, data, request):
        return release_funds(
            booking,
            operator_user=request.user,
            reason=data["reason"],
            deposit_refund_amount=data.get("deposit_refund_amount"),
            request=request,
        )


class OperatorBookingForceCancelView(_OperatorBookingActionView):
    input_serializer_class = ForceCancelBookingSerializer

    def perform(self, booking, data, request):
        return force_cancel_booking(
            booking,
            operator_user=request.user,
            reason=data["reason"],
            request=request,
        )
