"""
Errors raised by the address search engine.

Provider failures never leave the adapter layer; only permission and
not-found conditions reach callers.
"""


class AddressSearchError(Exception):
    """Base class for engine errors."""


class ProviderUnavailable(AddressSearchError):
    """Network, HTTP or payload failure at a geocoding provider."""

    def __init__(self, provider: str, reason: str):
        super().__init__(f"{provider} unavailable: {reason}")
        self.provider = provider
        self.reason = reason


class PermissionDenied(AddressSearchError):
    """Device location permission was refused."""


class GeocodeNotFound(AddressSearchError):
    """Every provider returned zero results for an explicit submit."""

    def __init__(self, query: str):
        super().__init__(f"address not found: {query!r}")
        self.query = query


class StaleResponse(AddressSearchError):
    """A query was superseded before it resolved; callers drop it silently."""
