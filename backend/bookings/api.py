"""API viewsets and permissions for bookings."""

from __future__ import annotations

import logging

from django.core.exceptions import ValidationError
from django.db.models import Q
from django.shortcuts import get_object_or_404
from rest_framework import mixins, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from .domain import BookingConflict, BookingPermissionDenied, InvalidBookingTransition
from .models import Booking
from .pricing import quote_booking
from .serializers import (
    BookingCreateSerializer,
    BookingSerializer,
    CancelSerializer,
    ConfirmationSerializer,
    PaySerializer,
    QuoteSerializer,
    RejectSerializer,
)
from .workflow import BookingPaymentFailed, WorkflowResult, get_booking_workflow

logger = logging.getLogger(__name__)

PAYMENT_FAILED_MESSAGE = "Payment failed, please try again."
GATEWAY_UNAVAILABLE_MESSAGE = "Payment processor is temporarily unavailable; please try again later."


class IsBookingParticipant(permissions.BasePermission):
    """Allow access only to users tied to the booking."""

    def has_object_permission(self, request, view, obj: Booking) -> bool:
        user_id = getattr(request.user, "id", None)
        return user_id in (obj.owner_id, obj.renter_id)


def payment_failed_response(exc: BookingPaymentFailed) -> Response:
    if exc.code == "payee_not_onboarded":
        return Response(
            {"detail": exc.reason, "code": exc.code}, status=status.HTTP_400_BAD_REQUEST
        )
    if exc.unavailable:
        return Response(
            {"detail": GATEWAY_UNAVAILABLE_MESSAGE, "retryable": exc.retryable},
            status=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    return Response(
        {"detail": PAYMENT_FAILED_MESSAGE, "code": exc.code or "payment_failed"},
        status=status.HTTP_402_PAYMENT_REQUIRED,
    )


def workflow_error_response(exc: Exception, *, booking_id=None) -> Response:
    """Map a booking workflow error onto an HTTP response."""
    if isinstance(exc, BookingPermissionDenied):
        return Response({"detail": str(exc)}, status=status.HTTP_403_FORBIDDEN)
    if isinstance(exc, InvalidBookingTransition):
        payload = dict(exc.message_dict)
        if isinstance(exc, BookingConflict):
            payload["code"] = "conflict"
        return Response(payload, status=status.HTTP_409_CONFLICT)
    if isinstance(exc, ValidationError):
        payload = exc.message_dict if hasattr(exc, "error_dict") else {"detail": exc.messages}
        return Response(payload, status=status.HTTP_400_BAD_REQUEST)
    if isinstance(exc, BookingPaymentFailed):
        logger.info("bookings: payment failed", extra={"booking_id": booking_id, "code": exc.code})
        return payment_failed_response(exc)
    raise exc


class BookingViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    """Booking requests and their state transitions."""

    serializer_class = BookingSerializer
    permission_classes = (permissions.IsAuthenticated, IsBookingParticipant)

    def get_queryset(self):
        """Restrict bookings to the authenticated participant."""
        user = self.request.user
        qs = (
            Booking.objects.select_related("listing", "owner", "renter")
            .prefetch_related("evidence")
            .filter(Q(owner=user) | Q(renter=user))
            .order_by("-created_at")
        )
        status_filter = self.request.query_params.get("status")
        if status_filter:
            qs = qs.filter(status=status_filter)
        return qs

    def get_object(self):
        """Fetch a single booking and enforce participant permissions."""
        obj = get_object_or_404(
            Booking.objects.select_related("listing", "owner", "renter"),
            pk=self.kwargs["pk"],
        )
        self.check_object_permissions(self.request, obj)
        return obj

    def _respond(self, run, *, success_status=status.HTTP_200_OK) -> Response:
        """Run a workflow call and map its errors onto HTTP responses."""
        try:
            result: WorkflowResult = run()
        except (BookingPermissionDenied, ValidationError, BookingPaymentFailed) as exc:
            return workflow_error_response(exc, booking_id=self.kwargs.get("pk"))

        data = self.get_serializer(result.booking).data
        if result.client_secret:
            data = {**data, "client_secret": result.client_secret}
        return Response(data, status=success_status)

    def create(self, request, *args, **kwargs):
        """Request a booking; the listing owner is asked to approve it."""
        serializer = BookingCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        workflow = get_booking_workflow()
        return self._respond(
            lambda: workflow.request_booking(
                request.user,
                data["listing"],
                data["start_date"],
                data["end_date"],
                include_insurance=data["include_insurance"],
                delivery_method=data["delivery_method"],
                delivery_address=data["delivery_address"],
                points_to_redeem=data["points_to_redeem"],
                message=data["message"],
            ),
            success_status=status.HTTP_201_CREATED,
        )

    @action(detail=False, methods=["get"], url_path="quote")
    def quote(self, request, *args, **kwargs):
        """Price preview for a prospective booking."""
        serializer = QuoteSerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            quote = quote_booking(
                data["listing"],
                data["start_date"],
                data["end_date"],
                include_insurance=data["include_insurance"],
                delivery_method=data["delivery_method"],
                points_to_redeem=data["points_to_redeem"],
            )
        except ValidationError as exc:
            return workflow_error_response(exc)
        return Response(quote.as_dict())

    @action(detail=True, methods=["get"], url_path="payment-breakdown")
    def payment_breakdown(self, request, *args, **kwargs):
        """The pricing snapshot stored on the booking when it was requested."""
        booking: Booking = self.get_object()
        fields = (
            "daily_rate",
            "subtotal",
            "service_fee",
            "insurance_fee",
            "delivery_fee",
            "deposit_amount",
            "total_amount",
            "points_credit",
        )
        data = {name: str(getattr(booking, name)) for name in fields}
        data.update(
            days=booking.days,
            points_used=booking.points_used,
            amount_due=str(booking.amount_due),
            currency=booking.currency,
        )
        if request.user.id == booking.owner_id:
            data.update(
                platform_commission=str(booking.platform_commission),
                owner_payout=str(booking.owner_payout),
            )
        return Response(data)

    @action(detail=True, methods=["post"], url_path="approve")
    def approve(self, request, *args, **kwargs):
        booking: Booking = self.get_object()
        return self._respond(lambda: get_booking_workflow().approve(booking, request.user))

    @action(detail=True, methods=["post"], url_path="reject")
    def reject(self, request, *args, **kwargs):
        booking: Booking = self.get_object()
        serializer = RejectSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        reason = serializer.validated_data["reason"]
        return self._respond(lambda: get_booking_workflow().reject(booking, request.user, reason))

    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, *args, **kwargs):
        """Cancel a booking (owner or renter) before it is paid."""
        booking: Booking = self.get_object()
        serializer = CancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        reason = serializer.validated_data["reason"]
        return self._respond(lambda: get_booking_workflow().cancel(booking, request.user, reason))

    @action(detail=True, methods=["post"], url_path="authorize")
    def authorize(self, request, *args, **kwargs):
        """Place the payment hold and return the client secret for confirmation."""
        booking: Booking = self.get_object()
        serializer = PaySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        payment_method_id = serializer.validated_data.get("payment_method_id") or None
        return self._respond(
            lambda: get_booking_workflow().authorize_payment(
                booking, request.user, payment_method_id=payment_method_id
            )
        )

    @action(detail=True, methods=["post"], url_path="pay")
    def pay(self, request, *args, **kwargs):
        booking: Booking = self.get_object()
        serializer = PaySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        payment_method_id = serializer.validated_data.get("payment_method_id") or None
        return self._respond(
            lambda: get_booking_workflow().pay(
                booking, request.user, payment_method_id=payment_method_id
            )
        )

    @action(detail=True, methods=["post"], url_path="confirm-pickup")
    def confirm_pickup(self, request, *args, **kwargs):
        booking: Booking = self.get_object()
        serializer = ConfirmationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        evidence = serializer.to_evidence()
        return self._respond(
            lambda: get_booking_workflow().confirm_pickup(booking, request.user, evidence)
        )

    @action(detail=True, methods=["post"], url_path="confirm-return")
    def confirm_return(self, request, *args, **kwargs):
        booking: Booking = self.get_object()
        serializer = ConfirmationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        evidence = serializer.to_evidence()
        return self._respond(
            lambda: get_booking_workflow().confirm_return(booking, request.user, evidence)
        )
