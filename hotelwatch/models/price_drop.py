# hotelwatch/models/price_drop.py

"""Price drop signal and persisted drop event models."""

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class DropSignal:
    """An in-memory indication that a hotel's price went down."""

    hotel_id: str
    previous_price: float
    new_price: float
    drop_percent: int


@dataclass
class DropEvent:
    """A persisted, deduplicated price drop."""

    hotel_id: str
    previous_price: float
    new_price: float
    drop_percent: int
    created_at: datetime | None = None
