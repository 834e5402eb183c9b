# hotelwatch/services/price_observer.py

"""Coordinates price history updates and drop detection per observation."""

import asyncio
import logging
import re
from collections.abc import Coroutine
from decimal import Decimal
from typing import Any

from hotelwatch.config.settings import Settings
from hotelwatch.models.price_observation import PriceObservation
from hotelwatch.services.drop_detector import detect_price_drop
from hotelwatch.services.drop_event_recorder import DropEventRecorder
from hotelwatch.storage.price_history_store import PriceHistoryStore

logger = logging.getLogger("hotelwatch.observer")

_NUMERIC_ID_RE = re.compile(r"^[0-9]+$")
_UUID_PREFIX_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}")


def is_storable_hotel_id(hotel_id: str) -> bool:
    """True for integer-like or UUID hotel ids.

    Provider-native ids (e.g. ``lp1a2b3c``) are rejected by the
    production history table, so observing them only produces errors.
    """
    return bool(
        _NUMERIC_ID_RE.match(hotel_id) or _UUID_PREFIX_RE.match(hotel_id)
    )


class PriceObservationCoordinator:
    """Records observed prices and emits drop events, best-effort.

    :meth:`observe` is triggered as a side effect of showing a price
    and must never affect that: it returns nothing and swallows every
    failure after logging it.
    """

    def __init__(
        self,
        history: PriceHistoryStore,
        recorder: DropEventRecorder,
        currency: str | None = None,
        source: str | None = None,
        strict_hotel_ids: bool | None = None,
    ) -> None:
        self._history = history
        self._recorder = recorder
        self._currency = currency or Settings.DEFAULT_CURRENCY
        self._source = source or Settings.PRICE_SOURCE
        self._strict_ids = (
            Settings.STRICT_HOTEL_IDS
            if strict_hotel_ids is None
            else strict_hotel_ids
        )
        self._background: set[asyncio.Task[None]] = set()

    # ── Private helpers ──────────────────────────────────

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        """Run ``coro`` as a detached task the caller does not await."""
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _accepts(self, hotel_id: object, price: object) -> bool:
        if not hotel_id or not price:
            return False
        if isinstance(price, bool) or not isinstance(
            price, (int, float, Decimal)
        ):
            logger.debug("Ignoring non-numeric price %r", price)
            return False
        if price <= 0:
            return False
        if self._strict_ids and not is_storable_hotel_id(str(hotel_id)):
            logger.debug("Ignoring non-storable hotel id %r", hotel_id)
            return False
        return True

    # ── Public API ───────────────────────────────────────

    async def observe(self, hotel_id: str, price: float) -> None:
        """Record ``price`` for ``hotel_id`` if it differs from the latest.

        A lower price than the latest one is dispatched to the drop
        event recorder without waiting for it; the history append is
        awaited.
        """
        if not self._accepts(hotel_id, price):
            return
        hotel_id = str(hotel_id)
        price = float(price)

        try:
            try:
                latest = await self._history.get_latest(hotel_id)
            except Exception as exc:
                logger.warning(
                    "Price history read failed for hotel %s: %s",
                    hotel_id,
                    exc,
                )
                return

            if latest is not None and latest.price == price:
                return

            previous_price = latest.price if latest is not None else None
            if previous_price is not None:
                signal = detect_price_drop(hotel_id, previous_price, price)
                if signal is not None:
                    self._spawn(self._recorder.record(signal))

            await self._history.append(
                PriceObservation(
                    hotel_id=hotel_id,
                    price=price,
                    currency=self._currency,
                    source=self._source,
                )
            )
        except Exception as exc:
            logger.warning(
                "Price observation failed for hotel %s: %s",
                hotel_id,
                exc,
                exc_info=True,
            )

    async def drain(self) -> None:
        """Wait for outstanding drop recordings to finish."""
        while self._background:
            await asyncio.gather(
                *list(self._background), return_exceptions=True,
            )

    @property
    def pending(self) -> int:
        """Number of drop recordings still in flight."""
        return len(self._background)
