# hotelwatch/storage/price_history_store.py

"""Append-only ledger of observed hotel prices."""

import asyncio
import logging
from datetime import datetime

from hotelwatch.config.settings import Settings
from hotelwatch.models.price_observation import PriceObservation
from hotelwatch.storage.table_client import Range, Row, TableClient

logger = logging.getLogger("hotelwatch.price_history")


def parse_timestamp(raw: object) -> datetime | None:
    """Parse a server timestamp (ISO 8601 text) into a datetime."""
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw
    return datetime.fromisoformat(str(raw).replace("Z", "+00:00"))


def _to_observation(row: Row) -> PriceObservation:
    return PriceObservation(
        hotel_id=str(row["hotel_id"]),
        price=float(row["price"]),
        currency=str(row.get("currency") or Settings.DEFAULT_CURRENCY),
        source=str(row.get("source") or ""),
        observed_at=parse_timestamp(row.get("created_at")),
    )


def _valid_rows(hotel_id: str) -> dict[str, object]:
    # Non-positive prices are not observations; skip any that reached
    # a table without a CHECK constraint
    return {"hotel_id": hotel_id, "price": Range("gt", 0)}


class PriceHistoryStore:
    """Reads and appends hotel price observations.

    The store never deduplicates: deciding whether an observation is
    worth appending is the caller's job.  Storage failures surface as
    :class:`~hotelwatch.storage.table_client.StorageError` and are not
    retried here.
    """

    def __init__(
        self,
        client: TableClient,
        table: str | None = None,
    ) -> None:
        self._client = client
        self._table = table or Settings.PRICE_HISTORY_TABLE

    async def get_latest(
        self, hotel_id: str,
    ) -> PriceObservation | None:
        """Return the most recent observation, or ``None`` for no history."""
        rows = await asyncio.to_thread(
            self._client.select,
            self._table,
            columns="hotel_id,price,currency,source,created_at",
            filters=_valid_rows(hotel_id),
            order_by="created_at",
            descending=True,
            limit=1,
        )
        if not rows:
            return None
        return _to_observation(rows[0])

    async def append(
        self, observation: PriceObservation,
    ) -> PriceObservation:
        """Insert a new observation row and return it as stored."""
        rows = await asyncio.to_thread(
            self._client.insert,
            self._table,
            [{
                "hotel_id": observation.hotel_id,
                "price": observation.price,
                "currency": observation.currency,
                "source": observation.source,
            }],
        )
        logger.debug(
            "Appended price %.2f %s for hotel %s",
            observation.price,
            observation.currency,
            observation.hotel_id,
        )
        return _to_observation(rows[0]) if rows else observation

    async def history(
        self,
        hotel_id: str,
        limit: int | None = None,
    ) -> list[PriceObservation]:
        """Return observations for a hotel, newest first."""
        rows = await asyncio.to_thread(
            self._client.select,
            self._table,
            columns="hotel_id,price,currency,source,created_at",
            filters=_valid_rows(hotel_id),
            order_by="created_at",
            descending=True,
            limit=limit,
        )
        return [_to_observation(r) for r in rows]
