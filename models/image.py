"""Archived listing photo metadata."""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


@dataclass
class ImageRecord:
    """
    Metadata for one listing photo.

    A record without ``hash`` was referenced but never downloaded
    successfully. ``storage_path`` is only set once the bytes are in blob
    storage; objects at that path are never rewritten. Records missing
    either are downloaded again on the next archive run.
    """

    id: str
    listing_id: str
    url: str
    is_primary: bool = False
    created_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    # Filled after a successful download
    hash: Optional[str] = None
    size: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    format: Optional[str] = None
    storage_path: Optional[str] = None

    @property
    def is_archived(self) -> bool:
        return self.hash is not None

    @property
    def is_stored(self) -> bool:
        """Downloaded and written to blob storage."""
        return self.hash is not None and self.storage_path is not None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ImageRecord":
        valid_fields = set(cls.__dataclass_fields__)
        return cls(**{k: v for k, v in data.items() if k in valid_fields})
