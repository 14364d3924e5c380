"""Typed errors raised at module boundaries."""


class MissingListingIdError(ValueError):
    """A listing reached a persistence or archive boundary without an id."""


class FetchError(Exception):
    """A listing page could not be retrieved."""
