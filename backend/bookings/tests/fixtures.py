"""Shared fixtures for bookings tests."""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from typing import Callable

import pytest
from django.contrib.auth import get_user_model
from django.contrib.auth.models import Group
from django.utils import timezone

from bookings.models import Booking
from bookings.pricing import quote_booking
from bookings.tests.fakes import FakeGateway, RecordingDispatcher
from bookings.workflow import BookingWorkflow
from listings.models import Listing
from operator_core.permissions import OPERATOR_FINANCE, OPERATOR_SUPPORT
from payments.models import OwnerPayoutAccount
from payments.orchestrator import PaymentOrchestrator

User = get_user_model()


def future(days: int) -> date:
    return timezone.localdate() + timedelta(days=days)


def _create_user(*, username: str, **extra) -> User:
    return User.objects.create_user(
        username=username,
        email=f"{username}@example.com",
        password="testpass",
        email_verified=True,
        **extra,
    )


def _create_payout_account(user: User, suffix: str) -> OwnerPayoutAccount:
    return OwnerPayoutAccount.objects.create(
        user=user,
        stripe_account_id=f"acct_test_{suffix}",
        payouts_enabled=True,
        charges_enabled=True,
        is_fully_onboarded=True,
        requirements_due={"currently_due": [], "past_due": [], "disabled_reason": ""},
        last_synced_at=timezone.now(),
    )


@pytest.fixture
def owner_user():
    user = _create_user(username="owner", first_name="Olive", last_name="Owner")
    _create_payout_account(user, "owner")
    return user


@pytest.fixture
def renter_user():
    return _create_user(
        username="renter",
        first_name="Rene",
        last_name="Renter",
        can_list=False,
        points_balance=500,
        stripe_customer_id="cus_renter",
    )


@pytest.fixture
def other_user():
    return _create_user(username="other")


@pytest.fixture
def operator_user():
    group, _ = Group.objects.get_or_create(name=OPERATOR_FINANCE)
    user = _create_user(username="finance-operator", is_staff=True)
    user.groups.add(group)
    return user


@pytest.fixture
def support_user():
    group, _ = Group.objects.get_or_create(name=OPERATOR_SUPPORT)
    user = _create_user(username="support-operator", is_staff=True)
    user.groups.add(group)
    return user


@pytest.fixture
def listing(owner_user):
    return Listing.objects.create(
        owner=owner_user,
        title="Pro Camera Kit",
        description="Mirrorless camera with two lenses.",
        daily_rate=Decimal("50.00"),
        security_deposit=Decimal("100.00"),
        delivery_available=True,
        delivery_fee=Decimal("15.00"),
        is_active=True,
    )


@pytest.fixture
def booking_factory(listing, renter_user) -> Callable[..., Booking]:
    """Create a booking row directly, with the pricing snapshot of a real quote."""

    def _create_booking(
        *,
        start_date: date | None = None,
        end_date: date | None = None,
        status=Booking.Status.PENDING,
        include_insurance: bool = False,
        renter=None,
        **extra_fields,
    ) -> Booking:
        start_date = start_date or future(3)
        end_date = end_date or start_date + timedelta(days=2)
        quote = quote_booking(
            listing,
            future(1),
            future(1) + (end_date - start_date),
            include_insurance=include_insurance,
        )
        fields = {**quote.booking_fields(), **extra_fields}
        return Booking.objects.create(
            listing=listing,
            owner=listing.owner,
            renter=renter or renter_user,
            start_date=start_date,
            end_date=end_date,
            status=status,
            **fields,
        )

    return _create_booking


@pytest.fixture
def paid_booking_factory(booking_factory):
    """Bookings that have gone through authorization and capture."""

    def _create(status=Booking.Status.CONFIRMED, **extra_fields) -> Booking:
        defaults = {
            "payment_intent_id": "pi_paid",
            "charge_id": "ch_paid",
            "payment_captured_at": timezone.now(),
            "deposit_status": Booking.DepositStatus.HELD,
        }
        defaults.update(extra_fields)
        return booking_factory(status=status, **defaults)

    return _create


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def workflow(fake_gateway, dispatcher):
    return BookingWorkflow(payments=PaymentOrchestrator(fake_gateway), notifier=dispatcher)


@pytest.fixture
def use_fake_workflow(monkeypatch, workflow):
    """Route API views and tasks through the fake-gateway workflow."""
    monkeypatch.setattr("bookings.api.get_booking_workflow", lambda: workflow)
    monkeypatch.setattr("bookings.tasks.get_booking_workflow", lambda: workflow)
    monkeypatch.setattr("operator_bookings.services.get_booking_workflow", lambda: workflow)
    return workflow
