"""Celery tasks for bookings."""

from __future__ import annotations

import logging

from celery import shared_task

from .workflow import get_booking_workflow

logger = logging.getLogger(__name__)


@shared_task(name="bookings.expire_unpaid_bookings")
def expire_unpaid_bookings() -> int:
    """
    Cancel approved bookings whose payment window lapsed and pending requests
    whose start date has passed.

    Returns the number of bookings cancelled.
    """
    results = get_booking_workflow().expire_unpaid()
    flagged = sum(1 for result in results if result.warnings)
    if flagged:
        logger.warning("expire_unpaid_bookings: %s bookings need manual follow-up", flagged)
    return len(results)
