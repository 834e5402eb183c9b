# hotelwatch/services/price_alerts.py

"""Fan-out of recorded price drops into the per-user alert queue."""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from hotelwatch.config.settings import Settings
from hotelwatch.models.price_alert import AlertRecipient, PriceDropAlertPayload
from hotelwatch.models.price_drop import DropSignal
from hotelwatch.storage.table_client import TableClient, format_timestamp

logger = logging.getLogger("hotelwatch.alerts")

_QUEUE_UNIQUE_KEY = "user_id,hotel_id,new_price"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_frequency(raw: object) -> str:
    """Map a stored alert frequency onto one of ``ALERT_FREQUENCIES``.

    Missing values mean ``instant``; unrecognised ones are logged and
    treated as ``instant`` too.
    """
    if not raw:
        return "instant"
    frequency = str(raw).strip().lower()
    if frequency not in Settings.ALERT_FREQUENCIES:
        logger.warning(
            "Unknown alert frequency %r, sending instantly", raw,
        )
        return "instant"
    return frequency


def schedule_for(
    frequency: str, now: datetime,
) -> tuple[datetime, str | None]:
    """Return when an alert is due and the digest group it joins.

    ``instant`` alerts are due now and stand alone.  ``daily`` alerts
    are due at the next midnight UTC, ``weekly`` ones at the next
    Monday midnight UTC (a full week out when today is Monday).
    """
    frequency = normalize_frequency(frequency)
    now = now.astimezone(timezone.utc)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)

    if frequency == "daily":
        due = midnight + timedelta(days=1)
        return due, f"daily_{due.date().isoformat()}"
    if frequency == "weekly":
        days_ahead = (7 - now.weekday()) % 7 or 7
        due = midnight + timedelta(days=days_ahead)
        return due, f"weekly_{due.date().isoformat()}"
    return now, None


class PriceAlertService:
    """Resolves who cares about a drop and queues their alerts."""

    def __init__(
        self,
        client: TableClient,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._client = client
        self._clock = clock or _utc_now

    async def eligible_recipients(
        self, hotel_id: str,
    ) -> list[AlertRecipient]:
        """Users who saved ``hotel_id`` and have drop alerts enabled."""
        if not hotel_id:
            return []
        try:
            saved = await asyncio.to_thread(
                self._client.select,
                Settings.SAVED_HOTELS_TABLE,
                columns="user_id",
                filters={"hotel_id": hotel_id},
            )
            user_ids = sorted({str(r["user_id"]) for r in saved})
            if not user_ids:
                return []

            prefs = await asyncio.to_thread(
                self._client.select,
                Settings.NOTIFICATION_SETTINGS_TABLE,
                columns="user_id,price_alert_frequency",
                filters={
                    "user_id": user_ids,
                    "price_drop_alerts": True,
                },
            )
        except Exception as exc:
            logger.warning(
                "Alert recipient lookup failed for hotel %s: %s",
                hotel_id,
                exc,
            )
            return []

        return [
            AlertRecipient(
                user_id=str(p["user_id"]),
                frequency=normalize_frequency(p.get("price_alert_frequency")),
            )
            for p in prefs
        ]

    async def build_payload(
        self, signal: DropSignal | None,
    ) -> PriceDropAlertPayload | None:
        """Pair a drop with its recipients; ``None`` when nobody qualifies."""
        if signal is None or not signal.hotel_id:
            return None
        recipients = await self.eligible_recipients(signal.hotel_id)
        if not recipients:
            return None
        return PriceDropAlertPayload(
            hotel_id=signal.hotel_id,
            previous_price=signal.previous_price,
            new_price=signal.new_price,
            drop_percent=signal.drop_percent,
            recipients=recipients,
        )

    async def enqueue(
        self, payload: PriceDropAlertPayload | None,
    ) -> int:
        """Queue one pending alert per recipient.

        A user is alerted at most once per (hotel, new price); rows
        that already exist are left alone.  Returns the number of rows
        written.
        """
        if payload is None or not payload.recipients:
            return 0

        now = self._clock()
        rows: list[dict[str, object]] = []
        for recipient in payload.recipients:
            if not recipient.user_id:
                continue
            due, digest_group = schedule_for(recipient.frequency, now)
            rows.append({
                "user_id": recipient.user_id,
                "hotel_id": payload.hotel_id,
                "previous_price": payload.previous_price,
                "new_price": payload.new_price,
                "drop_percent": payload.drop_percent,
                "status": "pending",
                "digest_group": digest_group,
                "scheduled_for": format_timestamp(due),
            })
        if not rows:
            return 0

        try:
            written = await asyncio.to_thread(
                self._client.upsert,
                Settings.ALERT_QUEUE_TABLE,
                rows,
                on_conflict=_QUEUE_UNIQUE_KEY,
                ignore_duplicates=True,
            )
        except Exception as exc:
            logger.warning(
                "Failed to enqueue alerts for hotel %s: %s",
                payload.hotel_id,
                exc,
            )
            return 0

        logger.info(
            "Queued %d price alerts for hotel %s",
            len(written),
            payload.hotel_id,
        )
        return len(written)

    async def dispatch(self, signal: DropSignal | None) -> int:
        """Build and enqueue alerts for a drop; never raises."""
        try:
            payload = await self.build_payload(signal)
            return await self.enqueue(payload)
        except Exception:
            logger.error("Alert dispatch failed", exc_info=True)
            return 0
