"""Per-item and per-run outcome types returned by the pipeline."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .change import ChangeEvent
from .constants import CHANGE_TYPES, LISTING_STATUSES
from .listing import Listing

ITEM_SUCCESS = "success"
ITEM_PARTIAL = "partial"
ITEM_FAILED = "failed"


@dataclass
class ItemResult:
    """
    Outcome of processing one listing.

    ``partial`` means the listing was normalized but something after it
    (image archiving, persistence) failed; ``listing`` is still populated so
    callers can render a preview.
    """

    outcome: str
    listing: Optional[Listing] = None
    changes: List[ChangeEvent] = field(default_factory=list)
    is_new: bool = False
    reason: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    listing_id: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome != ITEM_FAILED

    @classmethod
    def failed(cls, reason: str, listing_id: Optional[str] = None) -> "ItemResult":
        return cls(outcome=ITEM_FAILED, reason=reason, listing_id=listing_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome,
            "listing_id": self.listing_id or (self.listing.id if self.listing else None),
            "is_new": self.is_new,
            "reason": self.reason,
            "warnings": list(self.warnings),
            "changes": [change.to_dict() for change in self.changes],
            "listing": self.listing.to_dict() if self.listing else None,
        }


@dataclass
class RunAnalytics:
    """Aggregate figures for one pipeline run."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    skipped: bool = False
    skip_reason: Optional[str] = None

    total_listings: int = 0
    new_listings: int = 0
    updated_listings: int = 0
    partial_listings: int = 0
    failed_listings: int = 0

    by_status: Dict[str, int] = field(
        default_factory=lambda: {status: 0 for status in LISTING_STATUSES}
    )
    changes_by_type: Dict[str, int] = field(
        default_factory=lambda: {change_type: 0 for change_type in CHANGE_TYPES}
    )
    average_price: Optional[float] = None
    average_days_on_market: Optional[float] = None

    results: List[ItemResult] = field(default_factory=list)

    def record(self, result: ItemResult) -> None:
        """Fold one item outcome into the totals."""
        self.results.append(result)

        if not result.ok:
            self.failed_listings += 1
            return

        if result.outcome == ITEM_PARTIAL:
            self.partial_listings += 1

        listing = result.listing
        if listing is not None:
            self.total_listings += 1
            self.by_status[listing.status] = self.by_status.get(listing.status, 0) + 1

        if result.is_new:
            self.new_listings += 1
        elif result.changes:
            self.updated_listings += 1

        for change in result.changes:
            self.changes_by_type[change.change_type] = (
                self.changes_by_type.get(change.change_type, 0) + 1
            )

    def finish(self, finished_at: datetime) -> None:
        """Close the run and compute averages over successfully processed listings."""
        self.finished_at = finished_at

        listings = [r.listing for r in self.results if r.ok and r.listing is not None]
        priced = [listing.price for listing in listings if listing.price > 0]
        if priced:
            self.average_price = round(sum(priced) / len(priced), 2)
        if listings:
            self.average_days_on_market = round(
                sum(listing.days_on_market for listing in listings) / len(listings), 1
            )

    @property
    def total_changes(self) -> int:
        return sum(self.changes_by_type.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "skipped": self.skipped,
            "skip_reason": self.skip_reason,
            "total_listings": self.total_listings,
            "new_listings": self.new_listings,
            "updated_listings": self.updated_listings,
            "partial_listings": self.partial_listings,
            "failed_listings": self.failed_listings,
            "by_status": dict(self.by_status),
            "changes_by_type": dict(self.changes_by_type),
            "total_changes": self.total_changes,
            "average_price": self.average_price,
            "average_days_on_market": self.average_days_on_market,
        }
