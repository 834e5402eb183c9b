# hotelwatch/services/drop_event_recorder.py

"""Deduplicating writer for confirmed price drop events."""

import asyncio
import logging
from typing import TYPE_CHECKING

from hotelwatch.config.settings import Settings
from hotelwatch.models.price_drop import DropEvent, DropSignal
from hotelwatch.storage.price_history_store import parse_timestamp
from hotelwatch.storage.table_client import TableClient

if TYPE_CHECKING:
    from hotelwatch.services.price_alerts import PriceAlertService

logger = logging.getLogger("hotelwatch.drop_events")

_UNIQUE_KEY = "hotel_id,previous_price,new_price"


class DropEventRecorder:
    """Persists each (hotel, previous price, new price) drop at most once.

    An existence check runs first so replays of a known drop cost a
    single read.  The insert itself is an ignore-duplicates upsert on
    the table's unique key, so two concurrent writers that both pass
    the check still leave one row behind.
    """

    def __init__(
        self,
        client: TableClient,
        table: str | None = None,
        alerts: "PriceAlertService | None" = None,
    ) -> None:
        self._client = client
        self._table = table or Settings.DROP_EVENTS_TABLE
        self._alerts = alerts

    async def record(self, signal: DropSignal | None) -> None:
        """Store a drop event for ``signal``; never raises."""
        if signal is None or not signal.hotel_id:
            return

        try:
            existing = await asyncio.to_thread(
                self._client.select,
                self._table,
                columns="id",
                filters={
                    "hotel_id": signal.hotel_id,
                    "previous_price": signal.previous_price,
                    "new_price": signal.new_price,
                },
                limit=1,
            )
            if existing:
                logger.debug(
                    "Drop %s -> %s for hotel %s already recorded",
                    signal.previous_price,
                    signal.new_price,
                    signal.hotel_id,
                )
                return

            written = await asyncio.to_thread(
                self._client.upsert,
                self._table,
                [{
                    "hotel_id": signal.hotel_id,
                    "previous_price": signal.previous_price,
                    "new_price": signal.new_price,
                    "drop_percent": signal.drop_percent,
                }],
                on_conflict=_UNIQUE_KEY,
                ignore_duplicates=True,
            )
        except Exception as exc:
            logger.warning(
                "Failed to record price drop for hotel %s: %s",
                signal.hotel_id,
                exc,
                exc_info=True,
            )
            return

        if not written:
            # A concurrent writer stored the same drop first
            return

        logger.info(
            "Price drop recorded for hotel %s: %s -> %s (-%d%%)",
            signal.hotel_id,
            signal.previous_price,
            signal.new_price,
            signal.drop_percent,
        )
        if self._alerts is not None:
            await self._alerts.dispatch(signal)

    async def recent(
        self,
        hotel_id: str | None = None,
        limit: int = 20,
    ) -> list[DropEvent]:
        """Return stored drop events, newest first."""
        rows = await asyncio.to_thread(
            self._client.select,
            self._table,
            filters={"hotel_id": hotel_id} if hotel_id else None,
            order_by="created_at",
            descending=True,
            limit=limit,
        )
        return [
            DropEvent(
                hotel_id=str(r["hotel_id"]),
                previous_price=float(r["previous_price"]),
                new_price=float(r["new_price"]),
                drop_percent=int(r["drop_percent"]),
                created_at=parse_timestamp(r.get("created_at")),
            )
            for r in rows
        ]
