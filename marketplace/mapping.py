"""Map TradeMe API listing payloads to the canonical Listing model."""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from models.constants import (
    DEFAULT_TITLE,
    LISTING_FOR_SALE,
    LISTING_RENTAL,
    STATUS_ACTIVE,
    STATUS_SOLD,
    STATUS_UNDER_OFFER,
    normalize_property_type,
)
from models.errors import MissingListingIdError
from models.listing import Listing, parse_datetime

logger = logging.getLogger(__name__)

LISTING_URL_TEMPLATE = "https://www.trademe.co.nz/a/property/residential/{kind}/listing/{id}"

# Ordered attribute table: (substring of lower-cased Name/DisplayName, target field).
# First matching attribute wins per field.
ATTRIBUTE_FIELD_TABLE: List[Tuple[str, str]] = [
    ("bedroom", "bedrooms"),
    ("bathroom", "bathrooms"),
    ("floor area", "floor_area"),
    ("floorarea", "floor_area"),
    ("land area", "land_area"),
    ("landarea", "land_area"),
    ("property type", "property_type"),
    ("propertytype", "property_type"),
    ("address", "address"),
    ("location", "address"),
]

# Status attribute value phrases, checked in order
STATUS_VALUE_TABLE: List[Tuple[str, str]] = [
    ("under offer", STATUS_UNDER_OFFER),
    ("sold", STATUS_SOLD),
]

MARKETPLACE_DATE_PATTERN = re.compile(r"/Date\((-?\d+)(?:[+-]\d{4})?\)/")
PRICE_DISPLAY_PATTERN = re.compile(r"\$([0-9,]+)")
NUMBER_PATTERN = re.compile(r"(\d+)")


def parse_marketplace_date(value: Any) -> Optional[datetime]:
    """Parse ``/Date(ms)/`` or ISO-8601 into an aware UTC datetime."""
    if not value:
        return None
    match = MARKETPLACE_DATE_PATTERN.search(str(value))
    if match:
        return datetime.fromtimestamp(int(match.group(1)) / 1000, tz=timezone.utc)
    return parse_datetime(value)


def parse_int(value: Any) -> Optional[int]:
    """First integer in a value such as "3" or "3 bedrooms"."""
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    match = NUMBER_PATTERN.search(str(value))
    return int(match.group(1)) if match else None


def extract_price(item: Dict[str, Any]) -> int:
    """Price from ``PriceDisplay`` ("$850,000"), else StartPrice/BuyNowPrice."""
    display = item.get("PriceDisplay")
    if display:
        match = PRICE_DISPLAY_PATTERN.search(str(display))
        if match:
            return int(match.group(1).replace(",", ""))

    for key in ("StartPrice", "BuyNowPrice"):
        value = item.get(key)
        if isinstance(value, (int, float)) and value > 0:
            return int(value)
    return 0


def days_since(start: Optional[datetime], now: datetime) -> int:
    """Whole days elapsed since ``start``, never negative."""
    if start is None:
        return 0
    return max(0, int((now - start).total_seconds() // 86400))


def extract_image_urls(item: Dict[str, Any]) -> List[str]:
    """Ordered, de-duplicated photo URLs."""
    urls: List[str] = []
    for photo in item.get("Photos") or []:
        value = photo.get("Value", photo) if isinstance(photo, dict) else {}
        url = value.get("FullSize") or value.get("Large") or value.get("Medium")
        if url and url not in urls:
            urls.append(url)

    picture = item.get("PictureHref")
    if picture and picture not in urls:
        urls.append(picture)
    return urls


def map_attributes(attributes: Any) -> Dict[str, Any]:
    """
    Apply the attribute table to a raw ``Attributes`` array.

    Returns raw values keyed by target field, plus ``status`` when a status
    attribute names a known state.
    """
    mapped: Dict[str, Any] = {}
    if not isinstance(attributes, list):
        return mapped

    for attribute in attributes:
        if not isinstance(attribute, dict):
            continue
        names = " ".join(
            str(attribute.get(key) or "")
            for key in ("Name", "DisplayName", "name", "displayName")
        ).lower()
        value = attribute.get("Value", attribute.get("value"))
        if value in (None, ""):
            continue

        if "status" in names and "status" not in mapped:
            lowered = str(value).lower()
            for phrase, status in STATUS_VALUE_TABLE:
                if phrase in lowered:
                    mapped["status"] = status
                    break
            continue

        for pattern, target in ATTRIBUTE_FIELD_TABLE:
            if pattern in names and target not in mapped:
                mapped[target] = value
                break

    return mapped


def _compose_address(item: Dict[str, Any]) -> Optional[str]:
    if item.get("Address"):
        return str(item["Address"])
    parts = [item.get(key) for key in ("Suburb", "District", "Region")]
    parts = [str(part) for part in parts if part]
    return ", ".join(parts) if parts else None


def _listing_type(item: Dict[str, Any]) -> str:
    category_path = str(item.get("CategoryPath") or "").lower()
    if "rent" in category_path or "rental" in category_path:
        return LISTING_RENTAL
    return LISTING_FOR_SALE


# Direct payload fields, filled before the attribute table
DIRECT_FIELDS: Dict[str, Callable[[Dict[str, Any]], Any]] = {
    "address": _compose_address,
    "bedrooms": lambda item: parse_int(item.get("Bedrooms")),
    "bathrooms": lambda item: parse_int(item.get("Bathrooms")),
    "property_type": lambda item: item.get("PropertyType"),
    "land_area": lambda item: item.get("LandArea"),
    "floor_area": lambda item: item.get("FloorArea"),
}


def map_listing(item: Dict[str, Any], now: Optional[datetime] = None) -> Listing:
    """
    Convert one marketplace listing payload to a Listing.

    Args:
        item: Entry of a watchlist ``List`` or a detail response
        now: Reference time for days on market (defaults to current UTC)

    Returns:
        Normalized Listing

    Raises:
        MissingListingIdError: If the payload carries no ListingId
    """
    now = now or datetime.now(timezone.utc)

    listing_id = item.get("ListingId")
    if listing_id in (None, ""):
        raise MissingListingIdError("Marketplace item without ListingId")
    listing_id = str(listing_id)

    fields: Dict[str, Any] = {}
    for name, getter in DIRECT_FIELDS.items():
        value = getter(item)
        if value not in (None, ""):
            fields[name] = value

    attributes = map_attributes(item.get("Attributes"))
    for name, value in attributes.items():
        fields.setdefault(name, value)

    start_date = parse_marketplace_date(item.get("StartDate"))
    listing_type = _listing_type(item)
    image_urls = extract_image_urls(item)

    listing = Listing(
        id=listing_id,
        title=item.get("Title") or DEFAULT_TITLE,
        address=fields.get("address"),
        price=extract_price(item),
        bedrooms=parse_int(fields.get("bedrooms")),
        bathrooms=parse_int(fields.get("bathrooms")),
        property_type=normalize_property_type(fields.get("property_type")),
        listing_type=listing_type,
        land_area=str(fields["land_area"]) if "land_area" in fields else None,
        floor_area=str(fields["floor_area"]) if "floor_area" in fields else None,
        status=fields.get("status", STATUS_ACTIVE),
        days_on_market=days_since(start_date, now),
        description=item.get("Body") or None,
        primary_image_url=image_urls[0] if image_urls else None,
        image_urls=image_urls,
        source_url=LISTING_URL_TEMPLATE.format(
            kind="rent" if listing_type == LISTING_RENTAL else "sale", id=listing_id
        ),
        created_at=start_date or now,
        last_updated_at=now,
    )

    logger.debug(
        f"Mapped listing {listing_id}: price={listing.price}, status={listing.status}, "
        f"images={len(image_urls)}"
    )
    return listing


def is_property_item(item: Dict[str, Any]) -> bool:
    """Whether a watchlist entry belongs to the real-estate category."""
    category_path = str(item.get("CategoryPath") or "").lower()
    category = str(item.get("Category") or "")
    return "property" in category_path or category.startswith("0350")
