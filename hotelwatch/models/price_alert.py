# hotelwatch/models/price_alert.py

"""Models for price drop alert fan-out and delivery."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class AlertRecipient:
    """A user who should hear about drops for a saved hotel."""

    user_id: str
    frequency: str = "instant"  # "instant", "daily", "weekly"


@dataclass
class PriceDropAlertPayload:
    """A drop signal paired with the users eligible for an alert."""

    hotel_id: str
    previous_price: float
    new_price: float
    drop_percent: int
    recipients: list[AlertRecipient] = field(
        default_factory=lambda: list[AlertRecipient]()
    )


@dataclass
class QueuedAlert:
    """One row of the alert queue awaiting delivery."""

    id: int | str
    user_id: str
    hotel_id: str
    previous_price: float
    new_price: float
    drop_percent: int
    status: str = "pending"
    digest_group: str | None = None
    retry_count: int = 0
