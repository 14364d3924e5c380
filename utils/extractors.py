"""Listing page extraction: an ordered cascade of field strategies."""

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Pattern
from urllib.parse import unquote, urljoin, urlparse

from bs4 import BeautifulSoup

from models.constants import STATUS_ACTIVE
from models.listing import Listing, synthesize_listing_id
from portals import PortalAdapter, get_adapter

logger = logging.getLogger(__name__)

JSON_LD_TYPES = {"Product", "Residence", "RealEstateListing", "SingleFamilyResidence", "Apartment", "House"}

EMPTY_VALUES = (None, "", [], {})

NON_VISIBLE_TAGS = ("script", "style", "noscript", "template")


@dataclass
class PageContext:
    """Everything a strategy may look at for one page."""

    url: str
    html: str
    soup: BeautifulSoup
    adapter: Optional[PortalAdapter] = None

    @property
    def text(self) -> str:
        """Visible text, one line per text node; script and style bodies excluded."""
        return "\n".join(
            str(node)
            for node in self.soup.find_all(string=True)
            if node.parent is not None and node.parent.name not in NON_VISIBLE_TAGS
        )


class ExtractionStrategy:
    """One source of listing fields; returns whatever it can find."""

    name = "base"

    def extract(self, page: PageContext) -> Dict[str, Any]:
        raise NotImplementedError


class SiteRulesStrategy(ExtractionStrategy):
    """Delegates to the portal adapter matching the page host."""

    name = "site_rules"

    def extract(self, page: PageContext) -> Dict[str, Any]:
        if page.adapter is None:
            return {}
        return page.adapter.extract_fields(page.soup, page.html, page.url)


class JsonLdStrategy(ExtractionStrategy):
    """schema.org structured data in ``application/ld+json`` scripts."""

    name = "json_ld"

    def _candidates(self, page: PageContext) -> Iterable[Dict[str, Any]]:
        for script in page.soup.find_all("script", type="application/ld+json"):
            raw = script.string or script.get_text()
            if not raw or not raw.strip():
                continue
            try:
                data = json.loads(raw.strip())
            except json.JSONDecodeError as e:
                logger.debug(f"Skipping malformed JSON-LD block: {e}")
                continue

            stack = data if isinstance(data, list) else [data]
            for entry in stack:
                if not isinstance(entry, dict):
                    continue
                yield entry
                for nested in entry.get("@graph") or []:
                    if isinstance(nested, dict):
                        yield nested

    @staticmethod
    def _is_listing_type(entry: Dict[str, Any]) -> bool:
        types = entry.get("@type")
        if isinstance(types, str):
            types = [types]
        return any(t in JSON_LD_TYPES for t in types or [])

    @staticmethod
    def _format_address(address: Any) -> Optional[str]:
        if isinstance(address, str):
            return address.strip() or None
        if isinstance(address, dict):
            parts = [
                address.get(key)
                for key in (
                    "streetAddress",
                    "addressLocality",
                    "addressRegion",
                    "postalCode",
                    "addressCountry",
                )
            ]
            parts = [str(part) for part in parts if part and isinstance(part, (str, int))]
            return ", ".join(parts) or None
        return None

    def extract(self, page: PageContext) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}

        for entry in self._candidates(page):
            if not self._is_listing_type(entry):
                continue

            if entry.get("name"):
                fields["title"] = str(entry["name"]).strip()
            if entry.get("description"):
                fields["description"] = str(entry["description"]).strip()

            offers = entry.get("offers")
            if isinstance(offers, list):
                offers = offers[0] if offers else None
            if isinstance(offers, dict) and offers.get("price") not in EMPTY_VALUES:
                price = parse_price(str(offers["price"]))
                if price:
                    fields["price"] = price

            image = entry.get("image")
            images: List[str] = []
            if isinstance(image, str):
                images = [image]
            elif isinstance(image, list):
                images = [
                    item if isinstance(item, str) else item.get("url")
                    for item in image
                    if isinstance(item, (str, dict))
                ]
            elif isinstance(image, dict) and image.get("url"):
                images = [image["url"]]
            images = [urljoin(page.url, item) for item in images if item]
            if images:
                fields["image_urls"] = images
                fields["primary_image_url"] = images[0]

            address = self._format_address(entry.get("address"))
            if address:
                fields["address"] = address

            # First matching entity is authoritative
            break

        return fields


class OpenGraphStrategy(ExtractionStrategy):
    """``og:*`` meta properties."""

    name = "open_graph"

    def extract(self, page: PageContext) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}

        def og(prop: str) -> Optional[str]:
            tag = page.soup.find("meta", attrs={"property": f"og:{prop}"})
            content = tag.get("content") if tag else None
            return content.strip() if content and content.strip() else None

        title = og("title")
        if title:
            fields["title"] = title
        description = og("description")
        if description:
            fields["description"] = description
        image = og("image")
        if image:
            image = urljoin(page.url, image)
            fields["primary_image_url"] = image
            fields["image_urls"] = [image]
        canonical = og("url")
        if canonical:
            fields["source_url"] = canonical

        return fields


class MetaTagStrategy(ExtractionStrategy):
    """Document ``<title>`` and ``meta[name=description]``."""

    name = "meta_tags"

    def extract(self, page: PageContext) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}

        if page.soup.title and page.soup.title.string:
            title = " ".join(page.soup.title.string.split())
            if title:
                fields["title"] = title

        tag = page.soup.find("meta", attrs={"name": "description"})
        content = tag.get("content") if tag else None
        if content and content.strip():
            fields["description"] = content.strip()

        return fields


class ContentHeuristicsStrategy(ExtractionStrategy):
    """Regexes and element scans over visible page content."""

    name = "content_heuristics"

    # Symbol-first before digits-first; labelled forms last
    PRICE_PATTERNS: List[Pattern] = [
        re.compile(r"[\$£€]\s?([0-9][0-9,]*(?:\.[0-9]{2})?)"),
        re.compile(r"([0-9][0-9,]*(?:\.[0-9]{2})?)\s?[\$£€]"),
        re.compile(r"price[:\s]+[\$£€]?\s?([0-9][0-9,]*)", re.IGNORECASE),
        re.compile(r"asking[:\s]+[\$£€]?\s?([0-9][0-9,]*)", re.IGNORECASE),
    ]

    BEDROOM_PATTERNS: List[Pattern] = [
        re.compile(r"(\d+)\s*bed", re.IGNORECASE),
        re.compile(r"bedrooms?[:\s]+(\d+)", re.IGNORECASE),
    ]

    BATHROOM_PATTERNS: List[Pattern] = [
        re.compile(r"(\d+)\s*bath", re.IGNORECASE),
        re.compile(r"bathrooms?[:\s]+(\d+)", re.IGNORECASE),
    ]

    ADDRESS_PATTERNS: List[Pattern] = [
        re.compile(r"\bproperty\s+address\s*:\s*([^\n]{3,120})", re.IGNORECASE),
        re.compile(r"\baddress\s*:\s*([^\n]{3,120})", re.IGNORECASE),
        re.compile(r"\blocation\s*:\s*([^\n]{3,120})", re.IGNORECASE),
    ]

    SKIPPED_IMAGE_MARKERS = ("icon", "logo", "sprite", "avatar", "data:")

    @staticmethod
    def _first_int(text: str, patterns: List[Pattern]) -> Optional[int]:
        for pattern in patterns:
            match = pattern.search(text)
            if match:
                return int(match.group(1))
        return None

    def _images(self, page: PageContext) -> List[str]:
        image_urls: List[str] = []
        for img in page.soup.find_all("img"):
            src = img.get("src") or img.get("data-src")
            if not src:
                continue
            lowered = src.lower()
            if any(marker in lowered for marker in self.SKIPPED_IMAGE_MARKERS):
                continue
            full = urljoin(page.url, src)
            if full not in image_urls:
                image_urls.append(full)
        return image_urls

    def extract(self, page: PageContext) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}
        text = page.text

        h1 = page.soup.find("h1")
        if h1:
            title = " ".join(h1.get_text(" ", strip=True).split())
            if title:
                fields["title"] = title

        for pattern in self.PRICE_PATTERNS:
            match = pattern.search(text)
            if match:
                price = parse_price(match.group(1))
                if price:
                    fields["price"] = price
                    break

        bedrooms = self._first_int(text, self.BEDROOM_PATTERNS)
        if bedrooms is not None:
            fields["bedrooms"] = bedrooms
        bathrooms = self._first_int(text, self.BATHROOM_PATTERNS)
        if bathrooms is not None:
            fields["bathrooms"] = bathrooms

        image_urls = self._images(page)
        if image_urls:
            fields["image_urls"] = image_urls
            fields["primary_image_url"] = image_urls[0]

        for pattern in self.ADDRESS_PATTERNS:
            match = pattern.search(text)
            if match:
                address = match.group(1).strip()
                if address:
                    fields["address"] = address
                    break

        return fields


def parse_price(value: str) -> Optional[int]:
    """Parse "850,000" / "850000.00" to whole currency units."""
    if not value:
        return None
    cleaned = value.replace(",", "").replace(" ", "").strip()
    try:
        price = int(float(cleaned))
    except ValueError:
        return None
    return price if price > 0 else None


def title_from_url(url: str) -> Optional[str]:
    """
    Build a readable title from the last URL path segment.

    Examples:
        ".../auckland-sunny-villa-4521" -> "Auckland Sunny Villa"
        ".../harbour-view.html" -> "Harbour View"
    """
    segments = [segment for segment in urlparse(url).path.split("/") if segment]
    if not segments:
        return None

    segment = unquote(segments[-1])
    if "." in segment:
        segment = segment[: segment.rindex(".")]

    title = segment.replace("-", " ").replace("_", " ")
    title = re.sub(r"\d+$", "", title).strip()
    words = title.split()
    if not words:
        return None
    return " ".join(word[0].upper() + word[1:] for word in words)


class PageExtractor:
    """
    Extract listing fields from an arbitrary listing page.

    Strategies run in order and the first strategy to produce a value for a
    field wins; later strategies only fill remaining fields. A strategy that
    raises is logged and contributes nothing.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None, strategies: Optional[List[ExtractionStrategy]] = None):
        self.config = config or {}
        self.strategies = strategies or [
            SiteRulesStrategy(),
            JsonLdStrategy(),
            OpenGraphStrategy(),
            MetaTagStrategy(),
            ContentHeuristicsStrategy(),
        ]

    def extract(self, url: str, html: str) -> Dict[str, Any]:
        """
        Run the strategy cascade over one page.

        Args:
            url: Page URL (used for site rules, relative URLs, title fallback)
            html: Page HTML

        Returns:
            Partial listing fields. ``title`` is absent only when nothing,
            including the URL, yields one; callers treat that as failure.
        """
        adapter = get_adapter(url, self.config)
        if adapter:
            html = adapter.preprocess_html(html or "")

        page = PageContext(
            url=url,
            html=html or "",
            soup=BeautifulSoup(html or "", "html.parser"),
            adapter=adapter,
        )

        fields: Dict[str, Any] = {}
        for strategy in self.strategies:
            try:
                found = strategy.extract(page)
            except Exception as e:
                logger.debug(f"Extraction strategy {strategy.name} failed for {url}: {e}")
                continue

            for key, value in found.items():
                if value in EMPTY_VALUES or key in fields:
                    continue
                fields[key] = value
                logger.debug(f"{strategy.name} -> {key}")

        return self._apply_defaults(fields, url, adapter)

    def _apply_defaults(
        self, fields: Dict[str, Any], url: str, adapter: Optional[PortalAdapter]
    ) -> Dict[str, Any]:
        fields.setdefault("source_url", url)
        fields.setdefault("status", STATUS_ACTIVE)

        if "days_on_market" not in fields:
            fields["days_on_market"] = 0
            fields["days_on_market_known"] = False
        else:
            fields["days_on_market_known"] = True

        if fields.get("primary_image_url") and not fields.get("image_urls"):
            fields["image_urls"] = [fields["primary_image_url"]]

        if not fields.get("id"):
            listing_id = adapter.extract_listing_id(url) if adapter else None
            fields["id"] = listing_id or synthesize_listing_id(url)

        if not fields.get("title"):
            title = title_from_url(url)
            if title:
                fields["title"] = title
            else:
                fields.pop("title", None)

        return fields


def listing_from_fields(fields: Dict[str, Any], now: Optional[datetime] = None) -> Listing:
    """
    Build a Listing from extracted fields.

    ``created_at`` is back-dated by ``days_on_market`` so later runs keep
    counting from the original listing date.
    """
    now = now or datetime.now(timezone.utc)
    days = int(fields.get("days_on_market") or 0)

    data = dict(fields)
    data["created_at"] = now - timedelta(days=days)
    data["last_updated_at"] = now
    return Listing.from_dict(data)
