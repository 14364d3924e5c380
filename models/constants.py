"""Listing vocabulary and marketplace constants."""

from typing import Dict, List, Tuple

# Listing status values
STATUS_ACTIVE = "active"
STATUS_UNDER_OFFER = "under_offer"
STATUS_SOLD = "sold"
STATUS_ARCHIVED = "archived"

LISTING_STATUSES: List[str] = [
    STATUS_ACTIVE,
    STATUS_UNDER_OFFER,
    STATUS_SOLD,
    STATUS_ARCHIVED,
]

# Listing types
LISTING_FOR_SALE = "for_sale"
LISTING_RENTAL = "rental"

LISTING_TYPES: List[str] = [LISTING_FOR_SALE, LISTING_RENTAL]

# Property types
PROPERTY_TYPES: Dict[str, str] = {
    "house": "House",
    "apartment": "Apartment",
    "townhouse": "Townhouse",
    "section": "Section / land",
    "lifestyle": "Lifestyle property",
    "commercial": "Commercial",
    "other": "Other",
}

# Keyword -> property type, checked in order against free text
PROPERTY_TYPE_KEYWORDS: List[Tuple[str, str]] = [
    ("townhouse", "townhouse"),
    ("town house", "townhouse"),
    ("apartment", "apartment"),
    ("lifestyle", "lifestyle"),
    ("commercial", "commercial"),
    ("section", "section"),
    ("land", "section"),
    ("house", "house"),
]

# Change types
CHANGE_PRICE = "price"
CHANGE_STATUS = "status"
CHANGE_DESCRIPTION = "description"
CHANGE_IMAGE_COUNT = "image_count"

CHANGE_TYPES: List[str] = [
    CHANGE_PRICE,
    CHANGE_STATUS,
    CHANGE_DESCRIPTION,
    CHANGE_IMAGE_COUNT,
]

# Price moves at or above this percentage are described as significant
SIGNIFICANT_PRICE_CHANGE_PERCENT = 10

# Canned phrases for known status transitions; (old, new), None matches any
STATUS_TRANSITION_PHRASES: List[Tuple[object, str, str]] = [
    (STATUS_ACTIVE, STATUS_UNDER_OFFER, "Property is now under offer"),
    (STATUS_ACTIVE, STATUS_SOLD, "Property has been sold"),
    (STATUS_UNDER_OFFER, STATUS_SOLD, "Property sale has been completed"),
    (None, STATUS_ARCHIVED, "Property listing has been archived"),
]

# Recent-changes log is capped; full history lives in snapshots
MAX_RECENT_CHANGES = 100

DEFAULT_TITLE = "Property Listing"

# Browser user agent for unauthenticated page fetches
BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/129.0.0.0 Safari/537.36"
)


def normalize_property_type(text: object) -> str:
    """Map free text (attribute value, URL fragment) to a property type."""
    if not text:
        return "other"
    lowered = str(text).lower()
    for keyword, property_type in PROPERTY_TYPE_KEYWORDS:
        if keyword in lowered:
            return property_type
    return "other"
