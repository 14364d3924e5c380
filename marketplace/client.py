"""Signed, retrying client for the TradeMe marketplace API."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import httpx

from models.errors import MissingListingIdError
from models.listing import Listing

from .mapping import is_property_item, map_listing
from .signer import ROLE_API, sign

logger = logging.getLogger(__name__)


class MarketplaceRequestError(Exception):
    """A marketplace request still failed after every retry attempt."""

    def __init__(self, message: str, attempts: int, last_error: Optional[BaseException] = None):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


@dataclass
class WatchlistPage:
    """One page of the user's watchlist, filtered to property listings."""

    total_count: int
    page: int
    page_size: int
    listings: List[Listing] = field(default_factory=list)
    skipped: int = 0

    @property
    def has_more(self) -> bool:
        return self.page * self.page_size < self.total_count


class MarketplaceClient:
    """Read-only access to watchlist, listing details and property search."""

    PRODUCTION_BASE_URL = "https://api.trademe.co.nz"
    SANDBOX_BASE_URL = "https://api.tmsandbox.co.nz"

    WATCHLIST_PATH = "/v1/MyTradeMe/Watchlist/All.json"
    DETAIL_PATH = "/v1/Listings/{listing_id}.json"
    SEARCH_PATH = "/v1/Search/Property/Residential.json"

    WATCHLIST_CATEGORY = "5"
    SEARCH_DEFAULTS: Dict[str, Any] = {
        "rows": 20,
        "sort_order": "Default",
    }

    DEFAULT_TIMEOUT = 30.0
    MAX_RETRIES = 3
    RETRY_DELAY = 1.0

    def __init__(
        self,
        config: Dict[str, Any],
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize client from the ``marketplace`` config section.

        Args:
            config: Full configuration dictionary
            http_client: Preconfigured client (tests inject a MockTransport)
            clock: Returns the current UTC time; used for days on market

        Raises:
            ValueError: If consumer credentials are missing
        """
        settings = config.get("marketplace", {})

        self.consumer_key = settings.get("consumer_key")
        self.consumer_secret = settings.get("consumer_secret")
        if not self.consumer_key or not self.consumer_secret:
            raise ValueError(
                "Missing required fields 'marketplace.consumer_key' and "
                "'marketplace.consumer_secret' in config"
            )
        self.token = settings.get("token")
        self.token_secret = settings.get("token_secret")

        self.base_url = (
            self.SANDBOX_BASE_URL if settings.get("sandbox", False) else self.PRODUCTION_BASE_URL
        )
        self.timeout = float(settings.get("timeout", self.DEFAULT_TIMEOUT))
        self.max_retries = max(1, int(settings.get("max_retries", self.MAX_RETRIES)))
        self.retry_delay = float(settings.get("retry_delay", self.RETRY_DELAY))
        self.watchlist_rows = int(settings.get("watchlist_rows", 100))
        self.max_pages = int(settings.get("max_pages", 10))

        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._owns_client = http_client is None
        self.http = http_client or httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http.aclose()

    async def __aenter__(self) -> "MarketplaceClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def _authorization(self) -> str:
        return sign(
            ROLE_API,
            self.consumer_key,
            self.consumer_secret,
            token=self.token,
            token_secret=self.token_secret,
        )

    async def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Signed GET with bounded retries.

        Transport errors, timeouts, non-2xx responses and undecodable bodies
        are retried with a fixed delay.

        Raises:
            MarketplaceRequestError: After ``max_retries`` failed attempts
        """
        url = f"{self.base_url}{path}"
        last_error: Optional[BaseException] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                response = await self.http.get(
                    url,
                    params=params,
                    headers={
                        "Authorization": self._authorization(),
                        "Accept": "application/json",
                    },
                    timeout=self.timeout,
                )
                response.raise_for_status()
                return response.json()

            except httpx.TimeoutException as e:
                last_error = e
                logger.warning(
                    f"Marketplace timeout on attempt {attempt}/{self.max_retries} "
                    f"(timeout: {self.timeout}s): {path}"
                )
            except httpx.HTTPStatusError as e:
                last_error = e
                logger.warning(
                    f"Marketplace request failed (attempt {attempt}/{self.max_retries}): "
                    f"{path} status={e.response.status_code}"
                )
            except (httpx.HTTPError, ValueError) as e:
                last_error = e
                logger.warning(
                    f"Marketplace error on attempt {attempt}/{self.max_retries}: {path}: {e}"
                )

            if attempt < self.max_retries and self.retry_delay > 0:
                await asyncio.sleep(self.retry_delay)

        raise MarketplaceRequestError(
            f"Marketplace request {path} failed after {self.max_retries} attempts: {last_error}",
            attempts=self.max_retries,
            last_error=last_error,
        )

    def _map_items(self, items: List[Dict[str, Any]]) -> List[Listing]:
        now = self.clock()
        listings = []
        for item in items:
            try:
                listings.append(map_listing(item, now=now))
            except MissingListingIdError as e:
                logger.warning(f"Skipping marketplace item: {e}")
        return listings

    async def fetch_watchlist(self, page: int = 1) -> WatchlistPage:
        """
        Fetch one watchlist page, keeping only real-estate listings.

        Args:
            page: Page number (1-indexed)

        Returns:
            WatchlistPage with mapped listings and the unfiltered paging totals
        """
        data = await self.get_json(
            self.WATCHLIST_PATH,
            params={
                "category": self.WATCHLIST_CATEGORY,
                "rows": self.watchlist_rows,
                "page": page,
            },
        )

        items = data.get("List") or []
        property_items = [item for item in items if is_property_item(item)]

        return WatchlistPage(
            total_count=int(data.get("TotalCount") or 0),
            page=int(data.get("Page") or page),
            page_size=int(data.get("PageSize") or self.watchlist_rows),
            listings=self._map_items(property_items),
            skipped=len(items) - len(property_items),
        )

    async def fetch_all_watchlist(self) -> List[Listing]:
        """Walk watchlist pages until exhausted or ``max_pages`` reached."""
        listings: List[Listing] = []
        for page_number in range(1, self.max_pages + 1):
            page = await self.fetch_watchlist(page_number)
            listings.extend(page.listings)
            logger.info(
                f"Watchlist page {page_number}: {len(page.listings)} property listings "
                f"({page.skipped} other items skipped)"
            )
            if not page.has_more:
                break
        return listings

    async def fetch_detail(self, listing_id: str) -> Listing:
        """
        Fetch full details for one listing.

        Falls back to scanning watchlist pages for the same id when the
        detail endpoint keeps failing.

        Raises:
            MarketplaceRequestError: If neither source yields the listing
        """
        try:
            data = await self.get_json(self.DETAIL_PATH.format(listing_id=listing_id))
            return map_listing(data, now=self.clock())

        except MarketplaceRequestError as detail_error:
            logger.warning(
                f"Detail fetch failed for {listing_id}, scanning watchlist instead"
            )
            try:
                for page_number in range(1, self.max_pages + 1):
                    page = await self.fetch_watchlist(page_number)
                    for listing in page.listings:
                        if listing.id == str(listing_id):
                            return listing
                    if not page.has_more:
                        break
            except MarketplaceRequestError as scan_error:
                logger.warning(f"Watchlist scan failed for {listing_id}: {scan_error}")
            raise detail_error

    async def search(self, params: Optional[Dict[str, Any]] = None) -> List[Listing]:
        """Residential property search; caller params override the defaults."""
        query = dict(self.SEARCH_DEFAULTS)
        query.update(params or {})
        data = await self.get_json(self.SEARCH_PATH, params=query)
        return self._map_items(data.get("List") or [])
