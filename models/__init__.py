"""Data models for real-estate listings."""

from .change import ChangeEvent
from .constants import (
    CHANGE_TYPES,
    LISTING_STATUSES,
    LISTING_TYPES,
    PROPERTY_TYPES,
)
from .errors import FetchError, MissingListingIdError
from .image import ImageRecord
from .listing import Listing
from .result import ItemResult, RunAnalytics

__all__ = [
    "Listing",
    "ImageRecord",
    "ChangeEvent",
    "ItemResult",
    "RunAnalytics",
    "MissingListingIdError",
    "FetchError",
    "LISTING_STATUSES",
    "LISTING_TYPES",
    "PROPERTY_TYPES",
    "CHANGE_TYPES",
]
