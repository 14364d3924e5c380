"""Detect meaningful differences between consecutive listing observations."""

import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, List, Optional

from models.change import ChangeEvent
from models.constants import (
    CHANGE_DESCRIPTION,
    CHANGE_IMAGE_COUNT,
    CHANGE_PRICE,
    CHANGE_STATUS,
    SIGNIFICANT_PRICE_CHANGE_PERCENT,
    STATUS_ACTIVE,
    STATUS_TRANSITION_PHRASES,
)
from models.listing import Listing

logger = logging.getLogger(__name__)


@dataclass
class DetectionResult:
    """Listing as it should be stored, plus the changes that led there."""

    listing: Listing
    changes: List[ChangeEvent] = field(default_factory=list)
    is_new: bool = False


def format_percent(old: int, new: int) -> str:
    """Absolute percentage change with one decimal, rounded half-up."""
    percent = (Decimal(new) - Decimal(old)) / Decimal(old) * Decimal(100)
    return str(abs(percent).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def describe_price_change(old: Optional[int], new: Optional[int]) -> str:
    """
    Describe a price move.

    Examples:
        800000 -> 750000: "Price decreased by 6.3%"
        500000 -> 600000: "Price increased significantly by 20.0%"
    """
    if not old:
        return f"Price changed from {old or 0} to {new or 0}"

    direction = "increased" if (new or 0) > old else "decreased"
    percent = format_percent(old, new or 0)
    if Decimal(percent) >= SIGNIFICANT_PRICE_CHANGE_PERCENT:
        return f"Price {direction} significantly by {percent}%"
    return f"Price {direction} by {percent}%"


def describe_status_change(old: str, new: str) -> str:
    for from_status, to_status, phrase in STATUS_TRANSITION_PHRASES:
        if to_status == new and from_status in (None, old):
            return phrase
    return f"Status changed from {old} to {new}"


def describe_image_change(old: int, new: int) -> str:
    delta = new - old
    if delta > 0:
        return f"{delta} new image{'s' if delta != 1 else ''} added"
    return f"{-delta} image{'s' if delta != -1 else ''} removed"


class ChangeDetector:
    """
    Compare the stored listing with a fresh observation.

    Pure with respect to persistence: callers store the returned listing and
    changes.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def detect(self, previous: Optional[Listing], current: Listing) -> DetectionResult:
        """
        Detect changes between two observations of the same listing.

        Args:
            previous: Stored state, or None on first observation
            current: Freshly fetched state

        Returns:
            DetectionResult; ``listing`` is a copy of ``current`` with
            ``days_on_market`` recomputed where it applies
        """
        if previous is None:
            return DetectionResult(listing=current, changes=[], is_new=True)

        now = self.clock()
        listing = dataclasses.replace(current)
        changes: List[ChangeEvent] = []

        def emit(change_type: str, old_value: object, new_value: object, description: str) -> None:
            changes.append(
                ChangeEvent(
                    listing_id=listing.id,
                    listing_title=listing.title,
                    change_type=change_type,
                    old_value=str(old_value),
                    new_value=str(new_value),
                    description=description,
                    change_date=now.isoformat(),
                )
            )

        if previous.price != current.price:
            emit(
                CHANGE_PRICE,
                previous.price,
                current.price,
                describe_price_change(previous.price, current.price),
            )

        if previous.status != current.status:
            emit(
                CHANGE_STATUS,
                previous.status,
                current.status,
                describe_status_change(previous.status, current.status),
            )

        if previous.description and current.description and previous.description != current.description:
            emit(
                CHANGE_DESCRIPTION,
                "previous_version",
                "updated_version",
                "Property description has been updated",
            )

        if previous.image_count != current.image_count:
            emit(
                CHANGE_IMAGE_COUNT,
                previous.image_count,
                current.image_count,
                describe_image_change(previous.image_count, current.image_count),
            )

        if listing.status == STATUS_ACTIVE:
            # Keep the original listing date across observations
            listing.created_at = min(previous.created_at, current.created_at)
            listing.days_on_market = max(
                0, int((now - listing.created_at).total_seconds() // 86400)
            )

        if changes:
            logger.info(
                f"Detected {len(changes)} change(s) for {listing.id}: "
                + ", ".join(change.change_type for change in changes)
            )

        return DetectionResult(listing=listing, changes=changes, is_new=False)
