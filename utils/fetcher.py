"""HTML page fetching with crawl4ai."""

import logging
from typing import Any, Dict, Optional

from crawl4ai import AsyncWebCrawler, BrowserConfig, CacheMode, CrawlerRunConfig

from models.constants import BROWSER_USER_AGENT
from models.errors import FetchError
from portals import get_adapter

logger = logging.getLogger(__name__)


class PageFetcher:
    """Fetches listing pages through a headless browser."""

    DEFAULT_TIMEOUT = 30.0

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize fetcher from the ``fetch`` config section.

        Args:
            config: Full configuration dictionary
        """
        self.config = config
        fetch_config = config.get("fetch", {})
        self.timeout = float(fetch_config.get("timeout", self.DEFAULT_TIMEOUT))
        self.user_agent = fetch_config.get("user_agent", BROWSER_USER_AGENT)

    def _run_config(self, url: str) -> CrawlerRunConfig:
        adapter = get_adapter(url, self.config)
        crawler_options = adapter.get_crawler_config() if adapter else {}
        return CrawlerRunConfig(
            cache_mode=CacheMode.BYPASS,
            page_timeout=int(self.timeout * 1000),
            **crawler_options,
        )

    async def fetch(self, url: str, crawler: Optional[AsyncWebCrawler] = None) -> str:
        """
        Fetch the rendered HTML of one page.

        Args:
            url: Page URL
            crawler: Open crawler to reuse; a short-lived one is started otherwise

        Returns:
            Page HTML

        Raises:
            FetchError: If the crawl fails or returns no content
        """
        if crawler is None:
            browser_config = BrowserConfig(
                headless=True,
                verbose=False,
                user_agent=self.user_agent,
            )
            try:
                async with AsyncWebCrawler(config=browser_config) as own_crawler:
                    return await self._crawl(own_crawler, url)
            except FetchError:
                raise
            except Exception as e:
                # Browser start-up or teardown failed
                raise FetchError(f"Failed to fetch {url}: {e}") from e
        return await self._crawl(crawler, url)

    async def _crawl(self, crawler: AsyncWebCrawler, url: str) -> str:
        logger.info(f"Fetching page: {url}")
        try:
            result = await crawler.arun(url=url, config=self._run_config(url))
        except Exception as e:
            raise FetchError(f"Failed to fetch {url}: {e}") from e

        if not result.success:
            raise FetchError(f"Failed to fetch {url}: {result.error_message}")
        if not result.html:
            raise FetchError(f"Empty page returned for {url}")

        return result.html
