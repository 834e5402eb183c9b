# hotelwatch/services/drop_detector.py

"""Pure price drop detection."""

import logging
import math

from hotelwatch.models.price_drop import DropSignal

logger = logging.getLogger("hotelwatch.drop_detector")


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positives."""
    return math.floor(value + 0.5)


def detect_price_drop(
    hotel_id: str,
    previous_price: float | None,
    new_price: float | None,
) -> DropSignal | None:
    """Compare two prices and return a signal when the new one is lower.

    Any decrease is a drop, even one whose percentage rounds to 0.
    Missing, zero or negative prices yield ``None``, as do equal or
    increased prices.  Never raises.
    """
    try:
        if not hotel_id or not previous_price or not new_price:
            return None
        if previous_price <= 0 or new_price <= 0:
            return None
        if new_price >= previous_price:
            return None

        drop_percent = round_half_up(
            (previous_price - new_price) / previous_price * 100
        )
        return DropSignal(
            hotel_id=hotel_id,
            previous_price=previous_price,
            new_price=new_price,
            drop_percent=drop_percent,
        )
    except Exception as exc:
        logger.debug(
            "Drop detection skipped for hotel %s: %s", hotel_id, exc,
        )
        return None
