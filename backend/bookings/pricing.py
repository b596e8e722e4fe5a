"""
Booking price calculation.

`calculate_pricing` is the pure fee breakdown for a rate, a duration and the
chosen options. `quote_booking` layers the listing-specific parts on top
(delivery, redeemed points) and produces the snapshot stored on a Booking.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from django.conf import settings
from django.core.exceptions import ValidationError

from .domain import validate_booking_dates

SERVICE_FEE_RATE = Decimal("0.15")
INSURANCE_RATE = Decimal("0.10")
COMMISSION_RATE = Decimal("0.20")
POINTS_TO_CREDIT_RATE = Decimal("0.10")
DEFAULT_DELIVERY_FEE = Decimal("20.00")

_CENT = Decimal("0.01")


def q2(value: Decimal) -> Decimal:
    """Round to whole cents, half-up."""
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def to_cents(amount: Decimal) -> int:
    """Convert Decimal dollars to integer cents, rounding to the nearest cent."""
    cents = (amount * Decimal("100")).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(cents)


def from_cents(cents: int) -> Decimal:
    return q2(Decimal(int(cents)) / Decimal("100"))


@dataclass(frozen=True)
class FeeRates:
    service_fee: Decimal = SERVICE_FEE_RATE
    insurance: Decimal = INSURANCE_RATE
    commission: Decimal = COMMISSION_RATE

    @classmethod
    def from_settings(cls) -> "FeeRates":
        return cls(
            service_fee=Decimal(
                str(getattr(settings, "BOOKING_SERVICE_FEE_RATE", SERVICE_FEE_RATE))
            ),
            insurance=Decimal(str(getattr(settings, "BOOKING_INSURANCE_RATE", INSURANCE_RATE))),
            commission=Decimal(
                str(getattr(settings, "BOOKING_COMMISSION_RATE", COMMISSION_RATE))
            ),
        )


@dataclass(frozen=True)
class PricingBreakdown:
    base_price: Decimal
    service_fee: Decimal
    insurance: Decimal
    security_deposit: Decimal
    total_renter_pays: Decimal
    platform_commission: Decimal
    owner_receives: Decimal

    def as_dict(self) -> dict[str, str]:
        return {key: str(value) for key, value in asdict(self).items()}


def calculate_pricing(
    daily_rate: Decimal,
    days: int,
    include_insurance: bool,
    security_deposit: Decimal = Decimal("0"),
    rates: FeeRates | None = None,
) -> PricingBreakdown:
    """
    Return the fee breakdown for renting at `daily_rate` for `days` days.

    - base price: daily_rate * days
    - service fee: renter-side surcharge on the base price
    - insurance: daily_rate * insurance rate * days, when requested
    - total the renter pays: base + service fee + insurance + deposit
    - platform commission: owner-side deduction from the base price
    - owner receives: base - commission

    The service fee and the commission are both taken from the base price and
    are not reconciled against each other.
    """
    daily_rate = Decimal(str(daily_rate))
    security_deposit = Decimal(str(security_deposit or 0))
    errors: dict[str, list[str]] = {}
    if daily_rate <= 0:
        errors["daily_rate"] = ["Daily rate must be greater than zero."]
    if not isinstance(days, int) or isinstance(days, bool) or days <= 0:
        errors["days"] = ["Rental must be at least one day."]
    if security_deposit < 0:
        errors["security_deposit"] = ["Security deposit cannot be negative."]
    if errors:
        raise ValidationError(errors)

    rates = rates or FeeRates()
    base_price = q2(daily_rate * days)
    service_fee = q2(base_price * rates.service_fee)
    insurance = q2(daily_rate * rates.insurance * days) if include_insurance else Decimal("0.00")
    deposit = q2(security_deposit)
    commission = q2(base_price * rates.commission)

    return PricingBreakdown(
        base_price=base_price,
        service_fee=service_fee,
        insurance=insurance,
        security_deposit=deposit,
        total_renter_pays=base_price + service_fee + insurance + deposit,
        platform_commission=commission,
        owner_receives=base_price - commission,
    )


def rental_days(start_date: date, end_date: date) -> int:
    """Both dates are rental days, so a same-day rental counts as one."""
    return (end_date - start_date).days + 1


@dataclass(frozen=True)
class BookingQuote:
    """Pricing snapshot for a prospective booking, shaped like the Booking fields."""

    daily_rate: Decimal
    days: int
    include_insurance: bool
    delivery_method: str
    subtotal: Decimal
    service_fee: Decimal
    insurance_fee: Decimal
    delivery_fee: Decimal
    deposit_amount: Decimal
    total_amount: Decimal
    platform_commission: Decimal
    owner_payout: Decimal
    points_used: int
    points_credit: Decimal

    @property
    def amount_due(self) -> Decimal:
        return self.total_amount + self.deposit_amount - self.points_credit

    def booking_fields(self) -> dict:
        return asdict(self)

    def as_dict(self) -> dict:
        data = {
            key: (str(value) if isinstance(value, Decimal) else value)
            for key, value in asdict(self).items()
        }
        data["amount_due"] = str(self.amount_due)
        data["currency"] = getattr(settings, "PAYMENTS_CURRENCY", "aud")
        return data


def _delivery_fee_for(listing) -> Decimal:
    fee = getattr(listing, "delivery_fee", None)
    if fee is None:
        fee = getattr(settings, "BOOKING_DEFAULT_DELIVERY_FEE", DEFAULT_DELIVERY_FEE)
    return q2(Decimal(str(fee)))


def quote_booking(
    listing,
    start_date: date,
    end_date: date,
    *,
    include_insurance: bool = False,
    delivery_method: str = "pickup",
    points_to_redeem: int = 0,
    rates: FeeRates | None = None,
) -> BookingQuote:
    """Build the immutable pricing snapshot for booking `listing` over the date range."""
    validate_booking_dates(start_date, end_date)

    if delivery_method not in ("pickup", "delivery"):
        raise ValidationError({"delivery_method": ["Choose pickup or delivery."]})
    if delivery_method == "delivery" and not listing.delivery_available:
        raise ValidationError({"delivery_method": ["This listing does not offer delivery."]})
    if points_to_redeem < 0:
        raise ValidationError({"points_to_redeem": ["Points cannot be negative."]})

    days = rental_days(start_date, end_date)
    breakdown = calculate_pricing(
        listing.daily_rate,
        days,
        include_insurance,
        listing.security_deposit,
        rates=rates or FeeRates.from_settings(),
    )
    delivery_fee = _delivery_fee_for(listing) if delivery_method == "delivery" else Decimal("0.00")
    total_amount = breakdown.base_price + breakdown.service_fee + breakdown.insurance + delivery_fee

    credit_rate = Decimal(
        str(getattr(settings, "POINTS_TO_CREDIT_RATE", POINTS_TO_CREDIT_RATE))
    )
    points_credit = q2(Decimal(points_to_redeem) * credit_rate)
    if points_credit > total_amount:
        raise ValidationError(
            {"points_to_redeem": ["Redeemed points cannot exceed the rental total."]}
        )

    return BookingQuote(
        daily_rate=q2(Decimal(str(listing.daily_rate))),
        days=days,
        include_insurance=bool(include_insurance),
        delivery_method=delivery_method,
        subtotal=breakdown.base_price,
        service_fee=breakdown.service_fee,
        insurance_fee=breakdown.insurance,
        delivery_fee=delivery_fee,
        deposit_amount=breakdown.security_deposit,
        total_amount=total_amount,
        platform_commission=breakdown.platform_commission,
        owner_payout=breakdown.owner_receives,
        points_used=points_to_redeem,
        points_credit=points_credit,
    )
