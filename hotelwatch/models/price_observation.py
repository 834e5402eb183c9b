# hotelwatch/models/price_observation.py

"""Observed hotel price model for the price history ledger."""

from dataclasses import dataclass
from datetime import datetime

from hotelwatch.config.settings import Settings


@dataclass(frozen=True)
class PriceObservation:
    """A single price sample for a hotel at a point in time.

    ``observed_at`` is assigned by the store on write and is ``None``
    for an observation that has not been persisted yet.
    """

    hotel_id: str
    price: float
    currency: str = Settings.DEFAULT_CURRENCY
    source: str = Settings.PRICE_SOURCE
    observed_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.price <= 0:
            msg = f"Price must be positive, got {self.price!r}"
            raise ValueError(msg)
