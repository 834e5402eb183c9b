# tests/test_price_observer.py

"""Tests for the price observation coordinator."""

import asyncio
import tempfile
import unittest
from decimal import Decimal
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

from hotelwatch.config.settings import Settings
from hotelwatch.models.price_drop import DropSignal
from hotelwatch.models.price_observation import PriceObservation
from hotelwatch.services.drop_event_recorder import DropEventRecorder
from hotelwatch.services.price_observer import (
    PriceObservationCoordinator,
    is_storable_hotel_id,
)
from hotelwatch.storage.price_history_store import PriceHistoryStore
from hotelwatch.storage.table_client import SQLiteTableClient, StorageError


class TestIsStorableHotelId(unittest.TestCase):
    """Integer / UUID id detection."""

    def test_numeric(self) -> None:
        self.assertTrue(is_storable_hotel_id("12345"))

    def test_uuid(self) -> None:
        self.assertTrue(
            is_storable_hotel_id("3f2b8c1a-9d4e-4c2b-8a7f-1e2d3c4b5a69"),
        )

    def test_provider_native(self) -> None:
        self.assertFalse(is_storable_hotel_id("lp1a2b3c"))


class TestObserveScenarios(unittest.IsolatedAsyncioTestCase):
    """End-to-end behaviour against a SQLite database."""

    def setUp(self) -> None:
        self.tmp_dir = tempfile.mkdtemp()
        self.client = SQLiteTableClient(Path(self.tmp_dir) / "o.db")
        self.history = PriceHistoryStore(self.client)
        self.recorder = DropEventRecorder(self.client)
        self.coordinator = PriceObservationCoordinator(
            self.history, self.recorder, strict_hotel_ids=False,
        )

    def tearDown(self) -> None:
        self.client.close()

    def _prices(self, hotel_id: str = "H1") -> list[float]:
        rows = self.client.select(
            Settings.PRICE_HISTORY_TABLE,
            filters={"hotel_id": hotel_id},
            order_by="created_at",
        )
        return [r["price"] for r in rows]

    def _events(self) -> list[dict[str, object]]:
        return self.client.select(Settings.DROP_EVENTS_TABLE)

    async def _observe(self, hotel_id: str, price: float) -> None:
        await self.coordinator.observe(hotel_id, price)
        await self.coordinator.drain()

    async def test_first_observation_appends_without_event(self) -> None:
        """Empty history: one observation, no drop event."""
        await self._observe("H1", 200)
        self.assertEqual(self._prices(), [200.0])
        self.assertEqual(self._events(), [])

    async def test_drop_records_event_and_appends(self) -> None:
        """200 → 150 stores a 25% drop event and the new price."""
        await self._observe("H1", 200)
        await self._observe("H1", 150)
        self.assertEqual(self._prices(), [200.0, 150.0])
        events = self._events()
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0]["previous_price"], 200.0)
        self.assertEqual(events[0]["new_price"], 150.0)
        self.assertEqual(events[0]["drop_percent"], 25)

    async def test_repeat_of_same_price_is_noop(self) -> None:
        """Repeating 150 after 150 appends and emits nothing."""
        await self._observe("H1", 200)
        await self._observe("H1", 150)
        await self._observe("H1", 150)
        self.assertEqual(self._prices(), [200.0, 150.0])
        self.assertEqual(len(self._events()), 1)

    async def test_sub_percent_drop_is_recorded(self) -> None:
        """1000 → 999 still stores a drop event, with 0%."""
        await self._observe("H1", 1000)
        await self._observe("H1", 999)
        events = self._events()
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0]["drop_percent"], 0)

    async def test_increase_appends_without_event(self) -> None:
        """150 → 180 appends with no drop event."""
        await self.history.append(PriceObservation(hotel_id="H1", price=150))
        await self._observe("H1", 180)
        self.assertEqual(self._prices(), [150.0, 180.0])
        self.assertEqual(self._events(), [])

    async def test_unchanged_price_suppresses_second_append(self) -> None:
        await self._observe("H1", 150)
        await self._observe("H1", 150)
        self.assertEqual(self._prices(), [150.0])

    async def test_recurring_drop_pair_stored_once(self) -> None:
        """200 → 150 → 200 → 150 records the 200→150 drop once."""
        for price in (200, 150, 200, 150):
            await self._observe("H1", price)
        self.assertEqual(self._prices(), [200.0, 150.0, 200.0, 150.0])
        self.assertEqual(len(self._events()), 1)

    async def test_hotels_are_independent(self) -> None:
        await self._observe("H1", 200)
        await self._observe("H2", 100)
        await self._observe("H2", 50)
        self.assertEqual(self._prices("H1"), [200.0])
        self.assertEqual(self._prices("H2"), [100.0, 50.0])

    async def test_observation_tagged_with_defaults(self) -> None:
        await self._observe("H1", 99)
        latest = await self.history.get_latest("H1")
        assert latest is not None
        self.assertEqual(latest.currency, Settings.DEFAULT_CURRENCY)
        self.assertEqual(latest.source, Settings.PRICE_SOURCE)

    async def test_decimal_price_accepted(self) -> None:
        await self._observe("H1", Decimal("120.50"))  # type: ignore[arg-type]
        self.assertEqual(self._prices(), [120.5])

    async def test_invalid_inputs_are_noops(self) -> None:
        """Missing ids and non-positive or non-numeric prices do nothing."""
        cases: list[tuple[object, object]] = [
            ("", 100), (None, 100), ("H1", 0), ("H1", None),
            ("H1", -10), ("H1", "abc"), ("H1", True),
        ]
        for hotel_id, price in cases:
            with self.subTest(hotel_id=hotel_id, price=price):
                await self.coordinator.observe(
                    hotel_id, price,  # type: ignore[arg-type]
                )
        self.assertEqual(self._prices(), [])

    async def test_strict_ids_skip_provider_native(self) -> None:
        strict = PriceObservationCoordinator(
            self.history, self.recorder, strict_hotel_ids=True,
        )
        await strict.observe("lp1a2b3c", 100)
        await strict.observe("101", 100)
        self.assertEqual(self._prices("lp1a2b3c"), [])
        self.assertEqual(self._prices("101"), [100.0])


class TestObserveFailures(unittest.IsolatedAsyncioTestCase):
    """observe() never raises and stops at the failing step."""

    def _coordinator(
        self, history: MagicMock, recorder: MagicMock,
    ) -> PriceObservationCoordinator:
        return PriceObservationCoordinator(
            history, recorder, strict_hotel_ids=False,  # type: ignore[arg-type]
        )

    async def test_read_failure_aborts_silently(self) -> None:
        history = MagicMock()
        history.get_latest = AsyncMock(side_effect=StorageError("down"))
        history.append = AsyncMock()
        recorder = MagicMock()
        recorder.record = AsyncMock()

        result = await self._coordinator(history, recorder).observe("H1", 100)

        self.assertIsNone(result)
        history.append.assert_not_awaited()
        recorder.record.assert_not_called()

    async def test_append_failure_swallowed(self) -> None:
        history = MagicMock()
        history.get_latest = AsyncMock(return_value=None)
        history.append = AsyncMock(side_effect=StorageError("down"))
        recorder = MagicMock()

        await self._coordinator(history, recorder).observe("H1", 100)
        history.append.assert_awaited_once()

    async def test_unexpected_error_swallowed(self) -> None:
        history = MagicMock()
        history.get_latest = AsyncMock(side_effect=RuntimeError("bug"))
        await self._coordinator(history, MagicMock()).observe("H1", 100)

    async def test_recorder_not_awaited_before_append(self) -> None:
        """The append completes while the drop recording is still blocked."""
        release = asyncio.Event()
        recorded: list[DropSignal] = []

        async def slow_record(signal: DropSignal) -> None:
            await release.wait()
            recorded.append(signal)

        history = MagicMock()
        history.get_latest = AsyncMock(
            return_value=PriceObservation(hotel_id="H1", price=200.0),
        )
        history.append = AsyncMock()
        recorder = MagicMock()
        recorder.record = slow_record
        coordinator = self._coordinator(history, recorder)

        await coordinator.observe("H1", 150)

        history.append.assert_awaited_once()
        self.assertEqual(recorded, [])
        self.assertEqual(coordinator.pending, 1)

        release.set()
        await coordinator.drain()
        self.assertEqual(coordinator.pending, 0)
        self.assertEqual(
            recorded,
            [DropSignal("H1", 200.0, 150.0, 25)],
        )

    async def test_recorder_failure_does_not_affect_observe(self) -> None:
        history = MagicMock()
        history.get_latest = AsyncMock(
            return_value=PriceObservation(hotel_id="H1", price=200.0),
        )
        history.append = AsyncMock()
        recorder = MagicMock()
        recorder.record = AsyncMock(side_effect=RuntimeError("boom"))
        coordinator = self._coordinator(history, recorder)

        await coordinator.observe("H1", 150)
        await coordinator.drain()
        history.append.assert_awaited_once()


if __name__ == "__main__":
    unittest.main()
