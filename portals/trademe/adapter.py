"""TradeMe.co.nz portal adapter."""

import logging
import re
from datetime import date, datetime
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from portals.base import PortalAdapter
from portals.trademe.constants import (
    ADDRESS_SELECTORS,
    BATHROOMS_PATTERN,
    BEDROOMS_PATTERN,
    DAYS_AGO_PATTERN,
    DESCRIPTION_SELECTORS,
    GALLERY_SELECTORS,
    LISTED_DATE_FORMATS_WITH_YEAR,
    LISTED_DATE_FORMATS_WITHOUT_YEAR,
    LISTED_PATTERN,
    LISTING_ID_PATTERNS,
    PRICE_PATTERN,
    PRICE_SELECTORS,
    THUMBNAIL_REPLACEMENTS,
    TITLE_SELECTORS,
    TRADEME_HOSTS,
    URL_PATH_TYPES,
)

logger = logging.getLogger(__name__)


def parse_listed_date(text: str, today: date) -> Optional[int]:
    """
    Convert a "Listed ..." phrase to days on market.

    Args:
        text: Phrase after "Listed", e.g. "Today", "5 days ago", "Mon, 3 Jun"
        today: Reference date

    Returns:
        Whole days since listing, or None when the phrase is not understood
    """
    cleaned = " ".join(text.split()).strip().rstrip(".")
    lowered = cleaned.lower()

    if not lowered:
        return None
    if "today" in lowered:
        return 0
    if "yesterday" in lowered:
        return 1

    match = DAYS_AGO_PATTERN.search(lowered)
    if match:
        return int(match.group(1))

    for fmt in LISTED_DATE_FORMATS_WITH_YEAR:
        try:
            listed = datetime.strptime(cleaned, fmt).date()
        except ValueError:
            continue
        return max(0, (today - listed).days)

    for fmt in LISTED_DATE_FORMATS_WITHOUT_YEAR:
        try:
            parsed = datetime.strptime(f"{cleaned} {today.year}", f"{fmt} %Y").date()
        except ValueError:
            continue
        if parsed > today:
            try:
                parsed = parsed.replace(year=today.year - 1)
            except ValueError:
                # 29 Feb without a leap year before it
                return None
        return (today - parsed).days

    return None


class TradeMeAdapter(PortalAdapter):
    """Adapter for TradeMe.co.nz New Zealand property listings."""

    HOSTS = TRADEME_HOSTS

    def __init__(self, config: Optional[Dict[str, Any]] = None, today: Optional[date] = None):
        """
        Initialize TradeMe adapter.

        Args:
            config: Configuration dictionary
            today: Reference date for "Listed ..." phrases (defaults to today)
        """
        super().__init__(config)
        self.today = today

    def get_portal_name(self) -> str:
        """Return portal identifier."""
        return "trademe"

    def extract_listing_id(self, url: str) -> Optional[str]:
        """Extract listing ID from URL."""
        for pattern in LISTING_ID_PATTERNS:
            match = pattern.search(url)
            if match:
                return match.group(1)
        return None

    def get_crawler_config(self) -> Dict[str, Any]:
        """TradeMe renders listing bodies client-side."""
        return {
            "wait_for": "css:h1",
            "delay_before_return_html": 2.0,
        }

    def preprocess_html(self, html: str) -> str:
        """Drop "similar listings" carousels whose prices would leak into heuristics."""
        return re.sub(
            r"<tm-similar-listings.*?</tm-similar-listings>",
            "",
            html,
            flags=re.IGNORECASE | re.DOTALL,
        )

    @staticmethod
    def _select_text(soup: BeautifulSoup, selectors: List[str]) -> Optional[str]:
        for selector in selectors:
            element = soup.select_one(selector)
            if element:
                text = element.get_text(" ", strip=True)
                if text:
                    return " ".join(text.split())
        return None

    def _extract_images(self, soup: BeautifulSoup, url: str) -> List[str]:
        image_urls: List[str] = []
        for selector in GALLERY_SELECTORS:
            for img in soup.select(selector):
                src = img.get("data-src") or img.get("src")
                if not src:
                    continue
                for thumbnail, full_size in THUMBNAIL_REPLACEMENTS:
                    src = src.replace(thumbnail, full_size)
                full = urljoin(url, src)
                if full not in image_urls:
                    image_urls.append(full)
            if image_urls:
                break
        return image_urls

    def extract_fields(self, soup: BeautifulSoup, html: str, url: str) -> Dict[str, Any]:
        """
        Extract TradeMe listing fields from page elements and the URL.

        Args:
            soup: Parsed page
            html: Raw page HTML
            url: Listing URL

        Returns:
            Partial listing fields
        """
        fields: Dict[str, Any] = {}

        listing_id = self.extract_listing_id(url)
        if listing_id:
            fields["id"] = listing_id

        title = self._select_text(soup, TITLE_SELECTORS)
        if title:
            fields["title"] = title

        price_text = self._select_text(soup, PRICE_SELECTORS)
        if price_text:
            match = PRICE_PATTERN.search(price_text)
            if match:
                fields["price"] = int(match.group(1).replace(",", ""))

        address = self._select_text(soup, ADDRESS_SELECTORS)
        if address:
            fields["address"] = address

        description = self._select_text(soup, DESCRIPTION_SELECTORS)
        if description:
            fields["description"] = description

        rooms_text = " ".join(
            element.get_text(" ", strip=True)
            for element in soup.select(".o-property-listing-rooms, .tm-property-listing-attributes")
        )
        for field_name, pattern in (("bedrooms", BEDROOMS_PATTERN), ("bathrooms", BATHROOMS_PATTERN)):
            match = pattern.search(rooms_text)
            if match:
                fields[field_name] = int(match.group(1))

        image_urls = self._extract_images(soup, url)
        if image_urls:
            fields["image_urls"] = image_urls
            fields["primary_image_url"] = image_urls[0]

        lowered_url = url.lower()
        for fragment, property_type, listing_type in URL_PATH_TYPES:
            if fragment in lowered_url:
                fields["property_type"] = property_type
                fields["listing_type"] = listing_type
                break

        listed_match = LISTED_PATTERN.search(html)
        if listed_match:
            phrase = listed_match.group(1)
            days = parse_listed_date(phrase, self.today or date.today())
            if days is None:
                logger.info(f"Unrecognized listed date '{phrase.strip()}' on {url}")
            else:
                fields["days_on_market"] = days

        return fields
