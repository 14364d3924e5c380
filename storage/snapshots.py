"""Current listing state, immutable history and the recent-changes log."""

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from models.change import ChangeEvent
from models.constants import MAX_RECENT_CHANGES
from models.image import ImageRecord
from models.listing import Listing, parse_datetime

from .kv import KeyValueStore

logger = logging.getLogger(__name__)

RECENT_CHANGES_KEY = "recent_changes"
LAST_RUN_KEY = "lastRun"

# Fixed-width timestamp with ':' and '.' replaced so key order is chronological
HISTORY_TIMESTAMP_FORMAT = "%Y-%m-%dT%H-%M-%S-%fZ"


def current_key(listing_id: str) -> str:
    return f"listing:{listing_id}"


def history_prefix(listing_id: str) -> str:
    return f"listing:{listing_id}:history:"


def images_key(listing_id: str) -> str:
    return f"listing:{listing_id}:images"


class SnapshotStore:
    """Listing persistence on top of a key/value backend."""

    def __init__(self, kv: KeyValueStore, clock: Optional[Callable[[], datetime]] = None):
        self.kv = kv
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def get(self, listing_id: str) -> Optional[Listing]:
        """Current state of a listing, or None if never observed."""
        data = await self.kv.get(current_key(listing_id))
        return Listing.from_dict(data) if data else None

    async def put(self, listing: Listing) -> str:
        """
        Store a listing as current, then append an immutable history entry.

        The current pointer is written first so a failure in between leaves
        history one entry behind rather than the current state stale.

        Returns:
            Key of the new history entry

        Raises:
            MissingListingIdError: If the listing has no id
        """
        listing_id = listing.require_id()
        data = listing.to_dict()

        await self.kv.put(current_key(listing_id), data)

        stamp = self.clock().astimezone(timezone.utc).strftime(HISTORY_TIMESTAMP_FORMAT)
        key = f"{history_prefix(listing_id)}{stamp}"
        suffix = 1
        while await self.kv.get(key) is not None:
            key = f"{history_prefix(listing_id)}{stamp}-{suffix}"
            suffix += 1

        await self.kv.put(key, data)
        logger.debug(f"Stored snapshot {key}")
        return key

    async def history(self, listing_id: str, limit: int = 10) -> List[Listing]:
        """Historical snapshots, most recent first."""
        keys = await self.kv.list(history_prefix(listing_id))
        snapshots = []
        for key in sorted(keys, reverse=True)[:limit]:
            data = await self.kv.get(key)
            if data:
                snapshots.append(Listing.from_dict(data))
        return snapshots

    async def append_changes(self, changes: List[ChangeEvent]) -> None:
        """Prepend changes to the recent-changes log, keeping it capped."""
        if not changes:
            return
        existing = await self.kv.get(RECENT_CHANGES_KEY) or []
        combined = [change.to_dict() for change in changes] + existing
        await self.kv.put(RECENT_CHANGES_KEY, combined[:MAX_RECENT_CHANGES])

    async def recent_changes(self, limit: int = 20) -> List[ChangeEvent]:
        data = await self.kv.get(RECENT_CHANGES_KEY) or []
        return [ChangeEvent.from_dict(item) for item in data[:limit]]

    async def get_images(self, listing_id: str) -> List[ImageRecord]:
        data = await self.kv.get(images_key(listing_id)) or []
        return [ImageRecord.from_dict(item) for item in data]

    async def put_images(self, listing_id: str, records: List[ImageRecord]) -> None:
        await self.kv.put(images_key(listing_id), [record.to_dict() for record in records])

    async def get_last_run(self) -> Optional[datetime]:
        value = await self.kv.get(LAST_RUN_KEY)
        return parse_datetime(value) if value else None

    async def set_last_run(self, when: datetime) -> None:
        await self.kv.put(LAST_RUN_KEY, when.isoformat())
