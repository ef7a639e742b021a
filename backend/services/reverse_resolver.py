"""
Coordinates -> display label.

Reverse adapters are tried in order (Google Geocoding when a key is
configured, then Nominatim); the first placemark wins and is formatted by
services.query_normalizer.format_reverse_address. Total failure yields the
sentinel label, never None.
"""
from __future__ import annotations

import logging
from typing import Awaitable, Optional, Protocol, Sequence

from domain.models import GeocodeResult, Placemark
from services.debounce import CancelToken
from services.providers import get_default_nominatim_client, get_default_places_client
from services.query_normalizer import format_reverse_address
from settings import settings

logger = logging.getLogger(__name__)


class ReverseGeocoder(Protocol):
    def fetch_reverse(
        self, lat: float, lon: float, token: Optional[CancelToken] = None
    ) -> Awaitable[Optional[Placemark]]:
        ...


class ReverseResolver:
    def __init__(
        self,
        providers: Optional[Sequence[ReverseGeocoder]] = None,
        default_locality: Optional[str] = None,
        sentinel: Optional[str] = None,
    ):
        if providers is None:
            providers = [get_default_places_client(), get_default_nominatim_client()]
        self.providers = list(providers)
        self.default_locality = default_locality or settings.DEFAULT_LOCALITY
        self.sentinel = sentinel or settings.REVERSE_SENTINEL_LABEL

    async def lookup_placemark(
        self, lat: float, lon: float, token: Optional[CancelToken] = None
    ) -> Optional[Placemark]:
        for provider in self.providers:
            if token is not None and token.aborted:
                return None
            placemark = await provider.fetch_reverse(lat, lon, token)
            if placemark is not None:
                return placemark
        logger.info("Reverse geocode found nothing for lat=%.6f lon=%.6f", lat, lon)
        return None

    async def resolve(self, lat: float, lon: float, token: Optional[CancelToken] = None) -> str:
        placemark = await self.lookup_placemark(lat, lon, token)
        return format_reverse_address(placemark, self.default_locality, self.sentinel)

    async def resolve_result(
        self, lat: float, lon: float, token: Optional[CancelToken] = None
    ) -> GeocodeResult:
        label = await self.resolve(lat, lon, token)
        return GeocodeResult(lat=lat, lon=lon, formatted=label)


_default_reverse_resolver: Optional[ReverseResolver] = None


def get_default_reverse_resolver() -> ReverseResolver:
    global _default_reverse_resolver
    if _default_reverse_resolver is None:
        _default_reverse_resolver = ReverseResolver()
    return _default_reverse_resolver
