"""TradeMe portal-specific constants."""

import re
from typing import List, Pattern, Tuple

from models.constants import LISTING_FOR_SALE, LISTING_RENTAL

TRADEME_HOSTS = ("trademe.co.nz", "tmsandbox.co.nz")

# URL path fragment -> (property type, listing type), checked in order
URL_PATH_TYPES: List[Tuple[str, str, str]] = [
    ("residential/lifestyle-property", "lifestyle", LISTING_FOR_SALE),
    ("residential/rent", "house", LISTING_RENTAL),
    ("residential/sale", "house", LISTING_FOR_SALE),
    ("commercial", "commercial", LISTING_FOR_SALE),
    ("rural", "lifestyle", LISTING_FOR_SALE),
]

LISTING_ID_PATTERNS: List[Pattern] = [
    re.compile(r"/listing/(\d+)"),
    re.compile(r"[?&]id=(\d+)"),
    re.compile(r"/(\d{6,})/?(?:[?#].*)?$"),
]

# Page elements, most specific first
TITLE_SELECTORS = [
    "h1.o-property-listing__title",
    "h1.tm-property-listing-body__title",
    "h2.tm-property-listing-body__title",
]
PRICE_SELECTORS = [
    ".tm-property-listing-body__price",
    ".o-property-listing__price",
]
ADDRESS_SELECTORS = [
    ".tm-property-listing-body__address",
    ".o-property-listing__address",
]
DESCRIPTION_SELECTORS = [
    ".tm-property-listing-body__description",
    "#ListingDescription",
]
GALLERY_SELECTORS = [
    "img.o-gallery__thumbnail",
    ".tm-progressive-image-loader img",
]

PRICE_PATTERN = re.compile(r"\$\s?([0-9][0-9,]*)")
BEDROOMS_PATTERN = re.compile(r"(\d+)\s*(?:bedrooms?|beds?)\b", re.IGNORECASE)
BATHROOMS_PATTERN = re.compile(r"(\d+)\s*(?:bathrooms?|baths?)\b", re.IGNORECASE)

LISTED_PATTERN = re.compile(r"\bListed\b(?:\s+on)?\s*:?\s*([^<:]{2,60})<", re.IGNORECASE)
DAYS_AGO_PATTERN = re.compile(r"(\d+)\s*days?\s*ago", re.IGNORECASE)

# Absolute "Listed" dates; formats without a year assume the most recent past date
LISTED_DATE_FORMATS_WITH_YEAR = [
    "%a, %d %b %Y",
    "%a %d %b %Y",
    "%d %b %Y",
    "%d %B %Y",
    "%d/%m/%Y",
    "%Y-%m-%d",
]
LISTED_DATE_FORMATS_WITHOUT_YEAR = [
    "%a, %d %b",
    "%a %d %b",
    "%d %b",
    "%d %B",
]

# Gallery thumbnail URL fragments and their full-size counterparts
THUMBNAIL_REPLACEMENTS: List[Tuple[str, str]] = [
    ("/photoserver/thumb/", "/photoserver/full/"),
    ("/photoserver/tq/", "/photoserver/full/"),
    ("thumbnail.", "."),
]
