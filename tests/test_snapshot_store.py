"""Test snapshot persistence over the key/value backends."""

import sys
from pathlib import Path

# Add parent directory to path to import project modules
sys.path.insert(0, str(Path(__file__).parent.parent))

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from models.change import ChangeEvent
from models.errors import MissingListingIdError
from models.image import ImageRecord
from models.listing import Listing
from storage.kv import FileKeyValueStore, InMemoryKeyValueStore
from storage.snapshots import SnapshotStore

NOW = datetime(2025, 10, 19, 12, 0, tzinfo=timezone.utc)


class TickingClock:
    """Clock that advances one second per call."""

    def __init__(self, start: datetime = NOW):
        self.current = start

    def __call__(self) -> datetime:
        value = self.current
        self.current += timedelta(seconds=1)
        return value


def make_change(index: int) -> ChangeEvent:
    return ChangeEvent(
        listing_id="1",
        listing_title="Villa",
        change_type="price",
        old_value=str(index),
        new_value=str(index + 1),
        description=f"change {index}",
    )


class TestSnapshotStore:
    """Test SnapshotStore on the in-memory backend."""

    def setup_method(self):
        """Setup store with a ticking clock."""
        self.store = SnapshotStore(InMemoryKeyValueStore(), clock=TickingClock())

    def test_put_and_get(self):
        listing = Listing(id="4521337", title="Villa", price=850000, created_at=NOW, last_updated_at=NOW)

        async def run():
            key = await self.store.put(listing)
            return key, await self.store.get("4521337")

        key, stored = asyncio.run(run())

        assert key == "listing:4521337:history:2025-10-19T12-00-00-000000Z"
        assert stored.title == "Villa"
        assert stored.price == 850000
        assert stored.created_at == NOW

    def test_get_unknown_listing(self):
        assert asyncio.run(self.store.get("missing")) is None

    def test_put_without_id_fails(self):
        with pytest.raises(MissingListingIdError):
            asyncio.run(self.store.put(Listing(id="")))

    def test_history_newest_first_and_limited(self):
        async def run():
            for price in (100, 200, 300):
                await self.store.put(Listing(id="1", price=price))
            return await self.store.history("1", limit=2)

        history = asyncio.run(run())

        assert [snapshot.price for snapshot in history] == [300, 200]

    def test_history_keys_never_collide(self):
        store = SnapshotStore(InMemoryKeyValueStore(), clock=lambda: NOW)

        async def run():
            first = await store.put(Listing(id="1", price=1))
            second = await store.put(Listing(id="1", price=2))
            return first, second, await store.history("1")

        first, second, history = asyncio.run(run())

        assert first != second
        assert second == first + "-1"
        assert len(history) == 2

    def test_history_of_other_listing_is_separate(self):
        async def run():
            await self.store.put(Listing(id="1"))
            await self.store.put(Listing(id="2"))
            return await self.store.history("1")

        assert len(asyncio.run(run())) == 1

    def test_recent_changes_newest_first_and_capped(self):
        async def run():
            for index in range(105):
                await self.store.append_changes([make_change(index)])
            stored = await self.store.kv.get("recent_changes")
            return stored, await self.store.recent_changes(limit=3)

        stored, recent = asyncio.run(run())

        assert len(stored) == 100
        assert [change.description for change in recent] == ["change 104", "change 103", "change 102"]

    def test_append_empty_changes_is_noop(self):
        async def run():
            await self.store.append_changes([])
            return await self.store.kv.get("recent_changes")

        assert asyncio.run(run()) is None

    def test_last_run(self):
        async def run():
            before = await self.store.get_last_run()
            await self.store.set_last_run(NOW)
            return before, await self.store.get_last_run()

        before, after = asyncio.run(run())

        assert before is None
        assert after == NOW

    def test_images(self):
        record = ImageRecord(id="a", listing_id="1", url="https://img.example/1.jpg", hash="abc")

        async def run():
            await self.store.put_images("1", [record])
            return await self.store.get_images("1")

        images = asyncio.run(run())

        assert images == [record]
        assert images[0].is_archived


class TestFileKeyValueStore:
    """Test the file-backed key/value store."""

    def test_round_trip_and_prefix_listing(self, tmp_path):
        kv = FileKeyValueStore(str(tmp_path / "kv"))

        async def run():
            await kv.put("listing:1", {"id": "1"})
            await kv.put("listing:1:history:2025-10-19T12-00-00-000000Z", {"id": "1"})
            await kv.put("listing:2", {"id": "2"})
            return (
                await kv.get("listing:1"),
                await kv.get("missing"),
                await kv.list("listing:1:"),
            )

        value, missing, keys = asyncio.run(run())

        assert value == {"id": "1"}
        assert missing is None
        assert keys == ["listing:1:history:2025-10-19T12-00-00-000000Z"]
        assert not list((tmp_path / "kv").glob("*.tmp"))

    def test_snapshot_store_on_files(self, tmp_path):
        store = SnapshotStore(FileKeyValueStore(str(tmp_path)), clock=TickingClock())

        async def run():
            await store.put(Listing(id="7", price=1))
            await store.put(Listing(id="7", price=2))
            return await store.get("7"), await store.history("7")

        current, history = asyncio.run(run())

        assert current.price == 2
        assert [snapshot.price for snapshot in history] == [2, 1]
