"""Portal adapter factory and exports."""

import logging
from typing import Any, Dict, Optional

from portals.base import PortalAdapter

logger = logging.getLogger(__name__)


def get_adapter(url: str, config: Optional[Dict[str, Any]] = None) -> Optional[PortalAdapter]:
    """
    Factory function to get the portal adapter responsible for a URL.

    Args:
        url: Listing page URL
        config: Configuration dictionary from config.json

    Returns:
        Portal adapter instance (TradeMeAdapter), or None for sites without
        dedicated rules

    Example:
        >>> adapter = get_adapter("https://www.trademe.co.nz/a/property/.../listing/123")
        >>> print(adapter.get_portal_name())
        "trademe"
    """
    from portals.trademe.adapter import TradeMeAdapter

    if TradeMeAdapter.matches(url):
        logger.debug("Using TradeMe adapter")
        return TradeMeAdapter(config)

    return None


__all__ = ["get_adapter", "PortalAdapter"]
