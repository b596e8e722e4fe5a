"""Tests for the booking fee breakdown and quotes."""

from __future__ import annotations

from decimal import Decimal

import pytest
from django.core.exceptions import ValidationError

from bookings.pricing import (
    FeeRates,
    calculate_pricing,
    from_cents,
    q2,
    quote_booking,
    rental_days,
    to_cents,
)
from bookings.tests.fixtures import future


def test_three_day_rental_with_insurance_and_deposit():
    breakdown = calculate_pricing(Decimal("50"), 3, True, Decimal("100"))

    assert breakdown.base_price == Decimal("150.00")
    assert breakdown.service_fee == Decimal("22.50")
    assert breakdown.insurance == Decimal("15.00")
    assert breakdown.security_deposit == Decimal("100.00")
    assert breakdown.total_renter_pays == Decimal("287.50")
    assert breakdown.platform_commission == Decimal("30.00")
    assert breakdown.owner_receives == Decimal("120.00")


@pytest.mark.parametrize(
    "daily_rate,days,insurance,deposit",
    [
        (Decimal("19.99"), 1, False, Decimal("0")),
        (Decimal("33.33"), 7, True, Decimal("250")),
        (Decimal("0.07"), 13, True, Decimal("0.05")),
        (Decimal("1234.56"), 30, False, Decimal("999.99")),
    ],
)
def test_pricing_is_deterministic_and_totals_add_up(daily_rate, days, insurance, deposit):
    first = calculate_pricing(daily_rate, days, insurance, deposit)
    second = calculate_pricing(daily_rate, days, insurance, deposit)

    assert first == second
    assert first.total_renter_pays == (
        first.base_price + first.service_fee + first.insurance + first.security_deposit
    )
    assert first.owner_receives == first.base_price - first.platform_commission


def test_insurance_is_zero_when_not_requested():
    breakdown = calculate_pricing(Decimal("50"), 3, False)
    assert breakdown.insurance == Decimal("0.00")
    assert breakdown.total_renter_pays == Decimal("172.50")


def test_half_cent_rounds_up():
    # 0.15 * 0.10 = 0.015 -> 0.02
    breakdown = calculate_pricing(Decimal("0.10"), 1, False)
    assert breakdown.service_fee == Decimal("0.02")
    assert q2(Decimal("2.675")) == Decimal("2.68")


@pytest.mark.parametrize(
    "daily_rate,days,field",
    [
        (Decimal("0"), 3, "daily_rate"),
        (Decimal("-5"), 3, "daily_rate"),
        (Decimal("50"), 0, "days"),
        (Decimal("50"), -1, "days"),
    ],
)
def test_rejects_non_positive_inputs(daily_rate, days, field):
    with pytest.raises(ValidationError) as excinfo:
        calculate_pricing(daily_rate, days, False)
    assert field in excinfo.value.message_dict


def test_custom_rates_are_applied():
    rates = FeeRates(
        service_fee=Decimal("0.10"), insurance=Decimal("0.05"), commission=Decimal("0.25")
    )
    breakdown = calculate_pricing(Decimal("40"), 2, True, rates=rates)
    assert breakdown.service_fee == Decimal("8.00")
    assert breakdown.insurance == Decimal("4.00")
    assert breakdown.platform_commission == Decimal("20.00")
    assert breakdown.owner_receives == Decimal("60.00")


def test_cents_conversion():
    assert to_cents(Decimal("272.50")) == 27250
    assert to_cents(Decimal("0.005")) == 1
    assert from_cents(27250) == Decimal("272.50")


def test_rental_days_counts_both_ends():
    start = future(2)
    assert rental_days(start, start) == 1
    assert rental_days(start, future(4)) == 3


@pytest.mark.django_db
class TestQuoteBooking:
    def test_quote_matches_booking_snapshot(self, listing):
        quote = quote_booking(listing, future(2), future(4), include_insurance=True)

        assert quote.days == 3
        assert quote.subtotal == Decimal("150.00")
        assert quote.insurance_fee == Decimal("15.00")
        assert quote.deposit_amount == Decimal("100.00")
        assert quote.total_amount == Decimal("187.50")
        assert quote.owner_payout == Decimal("120.00")
        assert quote.amount_due == Decimal("287.50")

    def test_delivery_and_points_credit(self, listing):
        quote = quote_booking(
            listing, future(2), future(4), delivery_method="delivery", points_to_redeem=200
        )
        assert quote.delivery_fee == Decimal("15.00")
        assert quote.points_credit == Decimal("20.00")
        assert quote.total_amount == Decimal("187.50")
        assert quote.amount_due == Decimal("267.50")

    def test_default_delivery_fee_when_listing_has_none(self, listing, settings):
        settings.BOOKING_DEFAULT_DELIVERY_FEE = Decimal("12.00")
        listing.delivery_fee = None
        quote = quote_booking(listing, future(2), future(2), delivery_method="delivery")
        assert quote.delivery_fee == Decimal("12.00")

    def test_delivery_requires_listing_support(self, listing):
        listing.delivery_available = False
        with pytest.raises(ValidationError) as excinfo:
            quote_booking(listing, future(2), future(3), delivery_method="delivery")
        assert "delivery_method" in excinfo.value.message_dict

    def test_points_cannot_exceed_rental_total(self, listing):
        with pytest.raises(ValidationError) as excinfo:
            quote_booking(listing, future(2), future(2), points_to_redeem=10_000)
        assert "points_to_redeem" in excinfo.value.message_dict

    def test_past_start_date_is_rejected(self, listing):
        with pytest.raises(ValidationError) as excinfo:
            quote_booking(listing, future(-1), future(2))
        assert "start_date" in excinfo.value.message_dict

    def test_as_dict_serializes_money_as_strings(self, listing):
        data = quote_booking(listing, future(2), future(4)).as_dict()
        assert data["subtotal"] == "150.00"
        assert data["amount_due"] == "272.50"
        assert data["currency"] == "aud"
