from decimal import Decimal
from typing import Optional

from django.contrib.auth import get_user_model

from .models import Transaction

User = get_user_model()
TWO_PLACES = Decimal("0.01")


def log_transaction(
    *,
    user: User,
    booking,
    kind: str,
    amount: Decimal,
    currency: str = "aud",
    stripe_id: Optional[str] = None,
) -> Transaction:
    """
    Create and return a Transaction row.

    This is a thin helper; no business logic here.
    """
    return Transaction.objects.create(
        user=user,
        booking=booking,
        kind=kind,
        amount=amount,
        currency=currency,
        stripe_id=stripe_id,
    )


def has_transaction(booking, kind: str, stripe_id: Optional[str] = None) -> bool:
    qs = Transaction.objects.filter(booking=booking, kind=kind)
    if stripe_id:
        qs = qs.filter(stripe_id=stripe_id)
    return qs.exists()


def summarize_booking_ledger(booking) -> dict[str, str]:
    """Total each transaction kind recorded for a booking."""
    totals = {kind: Decimal("0.00") for kind in Transaction.Kind.values}
    for tx in Transaction.objects.filter(booking=booking).only("kind", "amount"):
        totals[tx.kind] += Decimal(tx.amount)
    return {kind.lower(): f"{value.quantize(TWO_PLACES)}" for kind, value in totals.items()}
