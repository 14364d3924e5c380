"""Canonical listing data model."""

import hashlib
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit, urlunsplit

from .constants import DEFAULT_TITLE, LISTING_FOR_SALE, LISTING_TYPES, STATUS_ACTIVE
from .errors import MissingListingIdError
from .image import ImageRecord


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (or pass through a datetime) as aware UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def synthesize_listing_id(url: str) -> str:
    """
    Derive a stable id from a URL for sources that expose none.

    Scheme and host are lower-cased, query string, fragment and trailing
    slash are dropped so repeated observations map to the same id.
    """
    parts = urlsplit(url.strip())
    path = parts.path.rstrip("/") or "/"
    normalized = urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, "", ""))
    digest = hashlib.sha1(normalized.encode("utf-8")).hexdigest()
    return f"url-{digest[:16]}"


@dataclass
class Listing:
    """One real-estate advertisement, normalized across sources."""

    # Identity
    id: str
    title: str = DEFAULT_TITLE
    source_url: Optional[str] = None

    # Location and price
    address: Optional[str] = None
    price: int = 0

    # Property specifications
    bedrooms: Optional[int] = None
    bathrooms: Optional[int] = None
    property_type: str = "other"
    listing_type: str = LISTING_FOR_SALE
    land_area: Optional[str] = None
    floor_area: Optional[str] = None

    # Market state
    status: str = STATUS_ACTIVE
    days_on_market: int = 0
    description: Optional[str] = None

    # Photos
    primary_image_url: Optional[str] = None
    image_urls: List[str] = field(default_factory=list)
    images: List[ImageRecord] = field(default_factory=list)

    # Timestamps
    created_at: datetime = field(default_factory=utcnow)
    last_updated_at: datetime = field(default_factory=utcnow)

    @property
    def image_count(self) -> int:
        """Archived images when present, otherwise referenced image URLs."""
        if self.images:
            return len(self.images)
        return len(self.image_urls)

    def require_id(self) -> str:
        """Return the id or fail fast when it is missing."""
        if not self.id:
            raise MissingListingIdError(
                f"Listing without id (source: {self.source_url or 'unknown'})"
            )
        return self.id

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        result: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, datetime):
                result[f.name] = value.isoformat()
            elif f.name == "images":
                result[f.name] = [image.to_dict() for image in value]
            elif isinstance(value, list):
                result[f.name] = list(value)
            else:
                result[f.name] = value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Listing":
        """Create instance from dictionary."""
        data = dict(data)

        for key in ("created_at", "last_updated_at"):
            if key in data:
                parsed = parse_datetime(data[key])
                if parsed is None:
                    data.pop(key)
                else:
                    data[key] = parsed

        if data.get("listing_type") not in LISTING_TYPES:
            data["listing_type"] = LISTING_FOR_SALE

        if "images" in data:
            data["images"] = [
                image if isinstance(image, ImageRecord) else ImageRecord.from_dict(image)
                for image in data.get("images") or []
            ]

        # Filter to only valid fields
        valid_fields = {f.name for f in fields(cls)}
        filtered_data = {k: v for k, v in data.items() if k in valid_fields}

        return cls(**filtered_data)
