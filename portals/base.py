"""Abstract base class for site-specific listing page rules."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlparse

from bs4 import BeautifulSoup


class PortalAdapter(ABC):
    """
    Abstract base class for real estate portal adapters.

    Each portal (TradeMe, ...) implements this interface to contribute the
    rules that only make sense on its own pages: listing ids embedded in the
    URL, portal-specific CSS classes, URL path conventions for listing and
    property type.

    Portal-agnostic extraction (JSON-LD, Open Graph, meta tags, content
    heuristics) remains in utils/extractors.py.
    """

    # Host suffixes this adapter is responsible for
    HOSTS: Tuple[str, ...] = ()

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize adapter with configuration.

        Args:
            config: Full configuration dictionary from config.json
        """
        self.config = config or {}

    @abstractmethod
    def get_portal_name(self) -> str:
        """
        Return portal identifier.

        Returns:
            Portal name (e.g., "trademe")
        """
        pass

    @classmethod
    def matches(cls, url: str) -> bool:
        """Whether ``url`` is hosted on one of this portal's domains."""
        host = (urlparse(url).hostname or "").lower()
        return any(host == suffix or host.endswith("." + suffix) for suffix in cls.HOSTS)

    @abstractmethod
    def extract_listing_id(self, url: str) -> Optional[str]:
        """
        Extract unique listing ID from a listing URL.

        Args:
            url: Listing page URL

        Returns:
            Listing id, or None when the URL does not carry one

        Example:
            URL: https://www.trademe.co.nz/a/property/residential/sale/.../listing/4521337
            Returns: "4521337"
        """
        pass

    @abstractmethod
    def extract_fields(self, soup: BeautifulSoup, html: str, url: str) -> Dict[str, Any]:
        """
        Apply site-specific rules to a listing page.

        Args:
            soup: Parsed page
            html: Raw page HTML (for regexes spanning markup)
            url: Listing page URL

        Returns:
            Partial listing fields; keys the rules cannot determine are omitted
        """
        pass

    def get_crawler_config(self) -> Dict[str, Any]:
        """
        Get portal-specific crawler configuration for detail pages.

        Returns:
            Dict with crawl4ai CrawlerRunConfig parameters

        Default implementation:
            {"wait_for": "css:body", "delay_before_return_html": 1.0}
        """
        return {
            "wait_for": "css:body",
            "delay_before_return_html": 1.0,
        }

    def preprocess_html(self, html: str) -> str:
        """
        Preprocess HTML to remove sections that cause false positive extractions.

        Default implementation returns HTML unchanged. Override in portal-specific
        adapters to remove problematic sections (e.g., mortgage calculators,
        "similar listings" carousels).

        Args:
            html: Raw HTML content

        Returns:
            Cleaned HTML (default: unchanged)
        """
        return html
