"""Listing watch pipeline: watchlist sync, URL import and change tracking."""

import argparse
import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse

from marketplace.client import MarketplaceClient, MarketplaceRequestError
from models.errors import FetchError, MissingListingIdError
from models.listing import Listing
from models.result import ITEM_FAILED, ITEM_PARTIAL, ITEM_SUCCESS, ItemResult, RunAnalytics
from storage.blob import create_blob_store
from storage.images import ImageArchiver
from storage.kv import FileKeyValueStore, InMemoryKeyValueStore
from storage.snapshots import SnapshotStore
from tracking.change_detector import ChangeDetector
from utils.extractors import PageExtractor, listing_from_fields
from utils.markdown_generator import MarkdownGenerator

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Keep per-request client logs out of run output
logging.getLogger("httpx").setLevel(logging.WARNING)

IMPORT_FAILURE_MESSAGE = "Could not extract data from this URL"
INVALID_URL_MESSAGE = "Invalid URL format. Please provide a valid HTTP or HTTPS URL."


class ListingPipeline:
    """Runs scheduled watchlist syncs and on-demand URL imports."""

    def __init__(
        self,
        config: Dict[str, Any],
        snapshots: Optional[SnapshotStore] = None,
        marketplace: Optional[MarketplaceClient] = None,
        archiver: Optional[ImageArchiver] = None,
        fetcher: Optional[Any] = None,
        extractor: Optional[PageExtractor] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the pipeline with configuration.

        Collaborators default to the ones described by ``config``; tests
        inject in-memory stores, mock transports and a fixed clock.

        Args:
            config: Configuration dictionary from config.json
            snapshots: Listing persistence
            marketplace: Marketplace API client (created on first use)
            archiver: Image archiver
            fetcher: Object with ``async fetch(url) -> str`` for URL imports
            extractor: Page extractor for URL imports
            clock: Returns the current UTC time
        """
        self.config = config
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        schedule_config = config.get("schedule", {})
        self.min_interval = timedelta(minutes=float(schedule_config.get("min_interval_minutes", 60)))

        rate_config = config.get("rate_limiting", {})
        self.delay_listing = float(rate_config.get("delay_listing", 0.5))

        output_config = config.get("output", {})
        self.generate_report = output_config.get("generate_report", True)
        output_folder = Path(output_config.get("output_folder", "output"))
        self.md_generator = MarkdownGenerator(str(output_folder / "runs"))

        if snapshots is None:
            kv_path = config.get("storage", {}).get("kv_path")
            if kv_path:
                kv = FileKeyValueStore(kv_path)
            else:
                logger.warning("No 'storage.kv_path' configured - snapshots are kept in memory")
                kv = InMemoryKeyValueStore()
            snapshots = SnapshotStore(kv, clock=self.clock)
        self.snapshots = snapshots

        if archiver is None:
            archiver = ImageArchiver(
                config, create_blob_store(config), self.snapshots, clock=self.clock
            )
        self.archiver = archiver

        self._marketplace = marketplace
        self._fetcher = fetcher
        self.extractor = extractor or PageExtractor(config)
        self.detector = ChangeDetector(clock=self.clock)

    @property
    def marketplace(self) -> MarketplaceClient:
        if self._marketplace is None:
            self._marketplace = MarketplaceClient(self.config, clock=self.clock)
        return self._marketplace

    @property
    def fetcher(self) -> Any:
        if self._fetcher is None:
            from utils.fetcher import PageFetcher

            self._fetcher = PageFetcher(self.config)
        return self._fetcher

    async def aclose(self) -> None:
        if self._marketplace is not None:
            await self._marketplace.aclose()
        await self.archiver.aclose()
        await self.archiver.blob_store.aclose()

    async def process_listing(
        self, listing: Listing, warnings: Optional[List[str]] = None
    ) -> ItemResult:
        """
        Archive images, detect changes and persist one listing.

        Storage failures downgrade the result to ``partial``; the listing is
        still returned.

        Args:
            listing: Freshly observed listing
            warnings: Notes collected before this step (e.g. during extraction)

        Returns:
            ItemResult for the listing
        """
        warnings = list(warnings or [])
        degraded = False

        try:
            listing_id = listing.require_id()
        except MissingListingIdError as e:
            return ItemResult.failed(str(e))

        try:
            previous = await self.snapshots.get(listing_id)
        except Exception as e:
            return ItemResult(
                outcome=ITEM_FAILED,
                listing=listing,
                listing_id=listing_id,
                reason=f"Could not read stored listing: {e}",
            )

        if listing.image_urls:
            try:
                listing.images = await self.archiver.archive(listing_id, listing.image_urls)
            except Exception as e:
                degraded = True
                warnings.append(f"Image archiving failed: {e}")
            else:
                not_downloaded = [r for r in listing.images if not r.is_archived]
                not_stored = [r for r in listing.images if r.is_archived and not r.storage_path]
                if not_downloaded:
                    warnings.append(f"{len(not_downloaded)} image(s) could not be downloaded")
                if not_stored:
                    degraded = True
                    warnings.append(f"{len(not_stored)} image(s) could not be stored")
                primary = next((r for r in listing.images if r.is_primary), None)
                if primary:
                    listing.primary_image_url = primary.url

        detection = self.detector.detect(previous, listing)

        try:
            await self.snapshots.put(detection.listing)
            await self.snapshots.append_changes(detection.changes)
        except Exception as e:
            degraded = True
            warnings.append(f"Persistence failed: {e}")

        return ItemResult(
            outcome=ITEM_PARTIAL if degraded else ITEM_SUCCESS,
            listing=detection.listing,
            listing_id=listing_id,
            changes=detection.changes,
            is_new=detection.is_new,
            warnings=warnings,
        )

    def _log_result(self, result: ItemResult) -> None:
        listing_id = result.listing_id or "?"
        if result.outcome == ITEM_FAILED:
            logger.error(f"[FAILED] {listing_id}: {result.reason}")
        elif result.outcome == ITEM_PARTIAL:
            logger.warning(f"[PARTIAL] {listing_id}: {'; '.join(result.warnings)}")
        else:
            state = "new" if result.is_new else f"{len(result.changes)} change(s)"
            logger.info(f"[OK] {listing_id}: {state}")

    async def run_scheduled(self) -> RunAnalytics:
        """
        Sync the watchlist if the minimum interval since the last run elapsed.

        Returns:
            RunAnalytics; ``skipped`` is set when the schedule gate is closed
        """
        started_at = self.clock()
        analytics = RunAnalytics(started_at=started_at)

        last_run = await self.snapshots.get_last_run()
        if last_run is not None and started_at - last_run < self.min_interval:
            next_run = last_run + self.min_interval
            analytics.skipped = True
            analytics.skip_reason = (
                f"Last run at {last_run.isoformat()}, next run allowed after {next_run.isoformat()}"
            )
            analytics.finish(started_at)
            logger.info(f"Skipping run: {analytics.skip_reason}")
            return analytics

        try:
            summaries = await self.marketplace.fetch_all_watchlist()
        except MarketplaceRequestError as e:
            logger.error(f"Watchlist fetch failed: {e}")
            analytics.record(ItemResult.failed(f"Watchlist fetch failed: {e}"))
            analytics.finish(self.clock())
            return analytics

        logger.info(f"Starting sync of {len(summaries)} watchlist listings")

        for i, summary in enumerate(summaries, 1):
            logger.info(f"  [{i}/{len(summaries)}] Processing listing {summary.id}")
            try:
                listing = await self.marketplace.fetch_detail(summary.id)
                result = await self.process_listing(listing)
            except MarketplaceRequestError as e:
                result = ItemResult.failed(str(e), listing_id=summary.id)
            except Exception as e:
                result = ItemResult.failed(f"Unexpected error: {e}", listing_id=summary.id)

            self._log_result(result)
            analytics.record(result)

            # Rate limiting
            if i < len(summaries) and self.delay_listing > 0:
                await asyncio.sleep(self.delay_listing)

        analytics.finish(self.clock())

        try:
            await self.snapshots.set_last_run(started_at)
        except Exception as e:
            logger.warning(f"Failed to store last run marker: {e}")

        logger.info(
            f"Sync complete: {analytics.total_listings} listings, "
            f"{analytics.new_listings} new, {analytics.updated_listings} updated, "
            f"{analytics.failed_listings} failed, {analytics.total_changes} change(s)"
        )

        if self.generate_report:
            try:
                recent = await self.snapshots.recent_changes(limit=20)
                self.md_generator.write_report(analytics, recent)
            except Exception as e:
                logger.warning(f"Failed to write run report: {e}")

        return analytics

    async def import_url(self, url: str) -> ItemResult:
        """
        Import one listing page on demand; bypasses the schedule gate.

        Args:
            url: Listing page URL

        Returns:
            ItemResult; failed with "Could not extract data from this URL"
            when no title can be determined
        """
        parsed = urlparse(url or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            result = ItemResult.failed(INVALID_URL_MESSAGE)
            self._log_result(result)
            return result

        try:
            html = await self.fetcher.fetch(url)
        except FetchError as e:
            result = ItemResult.failed(str(e))
            self._log_result(result)
            return result

        fields = self.extractor.extract(url, html)
        if not fields.get("title"):
            result = ItemResult.failed(IMPORT_FAILURE_MESSAGE, listing_id=fields.get("id"))
            self._log_result(result)
            return result

        warnings = []
        if not fields.get("days_on_market_known", True):
            warnings.append("Listed date unknown; days on market defaulted to 0")

        listing = listing_from_fields(fields, now=self.clock())
        result = await self.process_listing(listing, warnings=warnings)
        self._log_result(result)
        return result


async def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from config.json"""
    config_path = Path(path) if path else Path(__file__).parent / "config.json"
    with open(config_path, "r", encoding="utf-8") as f:
        config = json.load(f)

    # Validate required fields
    if not isinstance(config, dict):
        raise ValueError("config.json must contain a JSON object")

    storage = config.get("storage", {})
    if not isinstance(storage, dict):
        raise ValueError("Field 'storage' in config.json must be an object")

    blob = storage.get("blob", {})
    if blob.get("backend") == "supabase" and not (blob.get("url") and blob.get("key")):
        raise ValueError("Missing required fields 'storage.blob.url' and 'storage.blob.key' for supabase backend")

    # Ensure output folder exists
    output_folder = Path(config.get("output", {}).get("output_folder", "output"))
    output_folder.mkdir(parents=True, exist_ok=True)

    return config


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Track real-estate listings and their changes.")
    parser.add_argument("--config", help="Path to config.json (default: next to main.py)")
    parser.add_argument("--import-url", dest="import_url", help="Import a single listing page and exit")
    return parser.parse_args(argv)


async def main(argv: Optional[List[str]] = None):
    """Main entry point for the listing pipeline."""
    args = parse_args(argv)

    try:
        config = await load_config(args.config)
    except FileNotFoundError:
        logger.error("config.json not found")
        return
    except (ValueError, json.JSONDecodeError) as e:
        logger.error(f"Invalid configuration: {e}")
        return

    try:
        pipeline = ListingPipeline(config)
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return

    try:
        if args.import_url:
            result = await pipeline.import_url(args.import_url)
            print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
        else:
            analytics = await pipeline.run_scheduled()
            if analytics.skipped:
                logger.info("Nothing to do")
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
    finally:
        await pipeline.aclose()


if __name__ == "__main__":
    asyncio.run(main())
