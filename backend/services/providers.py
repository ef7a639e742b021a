"""
Adapters for the two geocoding backends.

Primary:  Google Places Autocomplete / Details (plus Geocoding for one-shot
          forward and reverse lookups). Requires an API key.
Fallback: OpenStreetMap Nominatim search / reverse. Free, but requires a
          descriptive User-Agent and at most ~1 request per second.

Every public coroutine resolves to an empty result on network failure,
timeout, bad payload or cancellation; nothing provider-specific escapes this
module.
"""
from __future__ import annotations

import asyncio
import logging
import os
import re
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, List, Optional, Tuple, TypeVar

import requests

from domain.errors import ProviderUnavailable
from domain.models import Candidate, GeocodeResult, Placemark, ProviderTag
from services.candidate_scorer import text_score
from services.query_normalizer import (
    ensure_locality,
    has_street_type,
    sanitize_short,
    tokenize,
)
from settings import REGION_BBOX, settings

if TYPE_CHECKING:
    from services.debounce import CancelToken

T = TypeVar("T")

logger = logging.getLogger(__name__)
_session = requests.Session()
_last_request_ts: float = 0.0
_lock = threading.Lock()
_MIN_INTERVAL_SEC = float(os.getenv("NOMINATIM_MIN_INTERVAL", "1.1"))
_logged_ua = False

GOOGLE_AUTOCOMPLETE_URL = "https://maps.googleapis.com/maps/api/place/autocomplete/json"
GOOGLE_DETAILS_URL = "https://maps.googleapis.com/maps/api/place/details/json"
GOOGLE_GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
NOMINATIM_BASE_URL = settings.NOMINATIM_BASE_URL.rstrip("/")

NOMINATIM_USER_AGENT = os.getenv("NOMINATIM_USER_AGENT")
NOMINATIM_REFERER = os.getenv("NOMINATIM_REFERER")
FALLBACK_UA = "citizen-report-geocoder/0.1 (contact: example@example.com)"
if NOMINATIM_USER_AGENT is None:
    logger.warning(
        "NOMINATIM_USER_AGENT not set in environment; using fallback UA. "
        "This may violate Nominatim usage policy."
    )

_ua_value = NOMINATIM_USER_AGENT or FALLBACK_UA
NOMINATIM_HEADERS = {
    "User-Agent": _ua_value,
    "Accept-Language": "es-CL,es;q=0.9",
}
if NOMINATIM_REFERER:
    NOMINATIM_HEADERS["Referer"] = NOMINATIM_REFERER

_STRUCTURED_RE = re.compile(r"^(.+?)\s+(\d+)\s*(?:,\s*(.+))?$")
_GOOGLE_EMPTY_STATUSES = {"ZERO_RESULTS", "NOT_FOUND"}
_PAYLOAD_ERRORS = (TypeError, ValueError, AttributeError, KeyError)


def _redact_email(ua: str) -> str:
    if "@" not in ua:
        return ua
    return re.sub(r"\S+@\S+", "<redacted>", ua)


def _throttled_get(
    url: str,
    *,
    params: dict[str, Any],
    headers: dict[str, str],
    timeout: float,
) -> requests.Response:
    """Perform a GET request with a simple global rate limit."""
    global _last_request_ts, _logged_ua
    if not _logged_ua:
        logger.debug("Nominatim User-Agent: %s", _redact_email(_ua_value))
        _logged_ua = True
    with _lock:
        now = time.time()
        delta = now - _last_request_ts
        if delta < _MIN_INTERVAL_SEC:
            time.sleep(_MIN_INTERVAL_SEC - delta)
        _last_request_ts = time.time()
    return _session.get(url, params=params, headers=headers, timeout=timeout)


def _decode(resp: requests.Response, provider: str) -> Any:
    try:
        resp.raise_for_status()
        return resp.json()
    except requests.RequestException as exc:
        raise ProviderUnavailable(provider, str(exc)) from exc
    except ValueError as exc:
        raise ProviderUnavailable(provider, f"invalid JSON: {exc}") from exc


@contextmanager
def _parsing(provider: str):
    """Report a payload with the wrong shape as ProviderUnavailable."""
    try:
        yield
    except _PAYLOAD_ERRORS as exc:
        raise ProviderUnavailable(provider, f"malformed payload: {exc!r}") from exc


def _google_get(url: str, params: dict[str, Any], timeout: float) -> dict:
    try:
        resp = _session.get(url, params=params, timeout=timeout)
    except requests.RequestException as exc:
        raise ProviderUnavailable("google", str(exc)) from exc
    data = _decode(resp, "google")
    if not isinstance(data, dict):
        raise ProviderUnavailable("google", "unexpected payload")
    status = data.get("status", "")
    if status != "OK" and status not in _GOOGLE_EMPTY_STATUSES:
        raise ProviderUnavailable("google", f"status {status or 'missing'}")
    return data


def _nominatim_get(path: str, params: dict[str, Any], timeout: float) -> Any:
    try:
        resp = _throttled_get(
            f"{NOMINATIM_BASE_URL}/{path}",
            params=params,
            headers=NOMINATIM_HEADERS,
            timeout=timeout,
        )
    except requests.RequestException as exc:
        raise ProviderUnavailable("nominatim", str(exc)) from exc
    return _decode(resp, "nominatim")


@dataclass(frozen=True)
class ProviderReply:
    """
    Candidates from one provider call.

    `complete` is False when the call failed, timed out or was cancelled, so
    callers can tell "provider answered nothing" from "provider never answered".
    """
    candidates: Tuple[Candidate, ...] = ()
    complete: bool = False


async def call_provider(
    name: str,
    fn: Callable[..., T],
    *args: Any,
    token: Optional["CancelToken"] = None,
    timeout: Optional[float] = None,
    bounded: bool = True,
) -> Optional[T]:
    """
    Run a blocking provider call off the event loop.

    Returns None on ProviderUnavailable, timeout or cancellation. With
    bounded=False `fn` enforces its own time limits and is never abandoned
    mid-flight.
    """
    if token is not None and token.aborted:
        return None
    limit = timeout if timeout is not None else settings.PROVIDER_TIMEOUT_SECONDS
    try:
        if bounded:
            result = await asyncio.wait_for(asyncio.to_thread(fn, *args), limit)
        else:
            result = await asyncio.to_thread(fn, *args)
    except asyncio.TimeoutError:
        logger.warning("%s: no answer within %.1fs", name, limit)
        return None
    except ProviderUnavailable as exc:
        logger.warning("%s", exc)
        return None
    if token is not None and token.aborted:
        logger.debug("%s: dropping result of cancelled request #%s", name, token.seq)
        return None
    return result


async def _reply(name: str, fn: Callable[..., Tuple[Candidate, ...]], *args: Any,
                 token: Optional["CancelToken"] = None, timeout: Optional[float] = None,
                 bounded: bool = True) -> ProviderReply:
    candidates = await call_provider(name, fn, *args, token=token, timeout=timeout, bounded=bounded)
    if candidates is None:
        return ProviderReply()
    return ProviderReply(candidates=tuple(candidates), complete=True)


def _dedupe_by_label(candidates: List[Candidate], limit: int) -> Tuple[Candidate, ...]:
    seen: set[str] = set()
    out: List[Candidate] = []
    for cand in candidates:
        if cand.label in seen:
            continue
        seen.add(cand.label)
        out.append(cand)
        if len(out) >= limit:
            break
    return tuple(out)


def _google_result(entry: dict, external_id: Optional[str] = None) -> Optional[GeocodeResult]:
    """GeocodeResult from a Details `result` or Geocoding `results[i]` entry."""
    loc = (entry.get("geometry") or {}).get("location") or {}
    if loc.get("lat") is None or loc.get("lng") is None:
        return None
    formatted = str(entry.get("formatted_address") or "")
    return GeocodeResult(
        lat=float(loc["lat"]),
        lon=float(loc["lng"]),
        formatted=sanitize_short(formatted) or formatted,
        external_id=entry.get("place_id") or external_id,
    )


class PlacesClient:
    """Google Places / Geocoding adapter, scoped to one country and language."""

    tag = ProviderTag.PRIMARY

    def __init__(
        self,
        api_key: Optional[str] = None,
        country: Optional[str] = None,
        language: Optional[str] = None,
        timeout: Optional[float] = None,
        max_results: Optional[int] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.GOOGLE_PLACES_API_KEY
        self.country = country or settings.GEOCODE_COUNTRY
        self.language = language or settings.GEOCODE_LANGUAGE
        self.timeout = timeout if timeout is not None else settings.PROVIDER_TIMEOUT_SECONDS
        self.max_results = max_results or settings.MAX_CANDIDATES

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def _autocomplete(self, text: str) -> Tuple[Candidate, ...]:
        data = _google_get(
            GOOGLE_AUTOCOMPLETE_URL,
            {
                "input": text,
                "key": self.api_key,
                "components": f"country:{self.country}",
                "language": self.language,
            },
            self.timeout,
        )
        with _parsing("google"):
            candidates: List[Candidate] = []
            for pred in data.get("predictions") or []:
                description = str(pred.get("description") or "").strip()
                if not description:
                    continue
                candidates.append(
                    Candidate(
                        label=sanitize_short(description) or description,
                        source=self.tag,
                        external_id=pred.get("place_id"),
                    )
                )
        return _dedupe_by_label(candidates, self.max_results)

    def _details(self, external_id: str) -> Optional[GeocodeResult]:
        data = _google_get(
            GOOGLE_DETAILS_URL,
            {
                "place_id": external_id,
                "key": self.api_key,
                "fields": "geometry,formatted_address,place_id",
                "language": self.language,
            },
            self.timeout,
        )
        with _parsing("google"):
            return _google_result(data.get("result") or {}, external_id)

    def _geocode(self, address: str) -> Optional[GeocodeResult]:
        data = _google_get(
            GOOGLE_GEOCODE_URL,
            {
                "address": address,
                "key": self.api_key,
                "components": f"country:{self.country}",
                "language": self.language,
            },
            self.timeout,
        )
        with _parsing("google"):
            results = data.get("results") or []
            if not results:
                return None
            return _google_result(results[0])

    def _reverse(self, lat: float, lon: float) -> Optional[Placemark]:
        data = _google_get(
            GOOGLE_GEOCODE_URL,
            {
                "latlng": f"{lat},{lon}",
                "key": self.api_key,
                "language": self.language,
                "result_type": "street_address",
            },
            self.timeout,
        )
        with _parsing("google"):
            results = data.get("results") or []
            if not results:
                return None
            components: dict[str, str] = {}
            for comp in results[0].get("address_components") or []:
                for t in comp.get("types") or []:
                    components.setdefault(t, comp.get("long_name") or "")
        return Placemark(
            street=components.get("route") or None,
            street_number=components.get("street_number") or None,
            city=components.get("locality") or None,
            municipality=components.get("administrative_area_level_3") or None,
            subregion=components.get("administrative_area_level_2") or None,
            region=components.get("administrative_area_level_1") or None,
            postal_code=components.get("postal_code") or None,
            country=components.get("country") or None,
        )

    async def fetch_primary_autocomplete(
        self, text: str, token: Optional["CancelToken"] = None
    ) -> ProviderReply:
        if not self.enabled or not text:
            return ProviderReply()
        return await _reply("places-autocomplete", self._autocomplete, text,
                            token=token, timeout=self.timeout)

    async def fetch_primary_details(
        self, external_id: str, token: Optional["CancelToken"] = None
    ) -> Optional[GeocodeResult]:
        if not self.enabled or not external_id:
            return None
        return await call_provider("places-details", self._details, external_id,
                                   token=token, timeout=self.timeout)

    async def fetch_geocode(
        self, address: str, token: Optional["CancelToken"] = None
    ) -> Optional[GeocodeResult]:
        if not self.enabled or not address:
            return None
        return await call_provider("google-geocode", self._geocode, address,
                                   token=token, timeout=self.timeout)

    async def fetch_reverse(
        self, lat: float, lon: float, token: Optional["CancelToken"] = None
    ) -> Optional[Placemark]:
        if not self.enabled:
            return None
        return await call_provider("google-reverse", self._reverse, lat, lon,
                                   token=token, timeout=self.timeout)


def fallback_query_params(query: str, default_locality: Optional[str] = None) -> List[dict[str, str]]:
    """
    Build the Nominatim query variants for one search, most specific first:
    structured street+city (when the text looks like "<street> <number>[, <city>]"),
    free text bounded to the regional box, then unbounded free text.
    """
    minlon, minlat, maxlon, maxlat = REGION_BBOX
    variants: List[dict[str, str]] = []
    m = _STRUCTURED_RE.match(query)
    if m:
        variants.append({
            "street": f"{m.group(1)} {m.group(2)}",
            "city": (m.group(3) or default_locality or settings.DEFAULT_LOCALITY).strip(),
        })
    variants.append({
        "q": query,
        "viewbox": f"{minlon},{minlat},{maxlon},{maxlat}",
        "bounded": "1",
    })
    variants.append({"q": query})
    return variants[:3]


def _nominatim_label(item: dict, default_locality: str) -> Optional[Tuple[str, str]]:
    """Return (label, locality) for one Nominatim search hit."""
    addr = item.get("address") or {}
    display_parts = [
        p for p in (s.strip() for s in str(item.get("display_name") or "").split(","))
        if p and sanitize_short(p)
    ]
    first = display_parts[0] if display_parts else ""
    road = (
        addr.get("road")
        or addr.get("residential")
        or addr.get("pedestrian")
        or addr.get("cycleway")
        or addr.get("path")
        or ""
    )
    number = addr.get("house_number") or addr.get("housenumber") or ""
    locality = (
        addr.get("city")
        or addr.get("town")
        or addr.get("village")
        or addr.get("municipality")
        or addr.get("county")
        or ""
    )
    if not locality:
        locality = display_parts[1] if len(display_parts) > 1 else default_locality

    street_from_addr = f"{road} {number}".strip() if road else ""
    street = first if has_street_type(first) else (street_from_addr or first)
    if not street:
        return None
    label = sanitize_short(", ".join(p for p in (street, locality) if p))
    if not label:
        return None
    return ensure_locality(label, locality), locality


class NominatimClient:
    """Nominatim search / reverse adapter sharing the global rate limit."""

    tag = ProviderTag.FALLBACK

    def __init__(
        self,
        country: Optional[str] = None,
        timeout: Optional[float] = None,
        max_results: Optional[int] = None,
        default_locality: Optional[str] = None,
    ):
        self.country = country or settings.GEOCODE_COUNTRY
        self.timeout = timeout if timeout is not None else settings.PROVIDER_TIMEOUT_SECONDS
        self.max_results = max_results or settings.MAX_CANDIDATES
        self.default_locality = default_locality or settings.DEFAULT_LOCALITY

    def _candidate(self, item: Any, tokens: Tuple[str, ...]) -> Optional[Candidate]:
        with _parsing("nominatim"):
            labelled = _nominatim_label(item, self.default_locality)
            if labelled is None:
                return None
            label, _ = labelled
            return Candidate(
                label=label,
                source=self.tag,
                lat=float(item["lat"]),
                lon=float(item["lon"]),
                score=float(text_score(label, tokens)),
                external_id=str(item.get("place_id")) if item.get("place_id") else None,
            )

    def _search(self, query: str, token: Optional["CancelToken"] = None) -> Tuple[Candidate, ...]:
        """
        Try the query variants in order. Each request carries its own timeout;
        once the overall budget of one timeout period is spent, no further
        variant is started and whatever was found so far is returned.
        """
        tokens = tokenize(query)
        common = {
            "format": "json",
            "addressdetails": "1",
            "limit": str(self.max_results),
            "countrycodes": self.country,
        }
        results: List[Candidate] = []
        answered = 0
        deadline = time.monotonic() + self.timeout
        for i, variant in enumerate(fallback_query_params(query, self.default_locality)):
            if token is not None and token.aborted:
                break
            if i and time.monotonic() >= deadline:
                logger.info("Nominatim search %r: out of time after %d variants", query, i)
                break
            try:
                data = _nominatim_get("search", {**common, **variant}, self.timeout)
            except ProviderUnavailable as exc:
                logger.warning("%s (variant %s)", exc, sorted(variant))
                continue
            answered += 1
            for item in data if isinstance(data, list) else []:
                try:
                    cand = self._candidate(item, tokens)
                except ProviderUnavailable as exc:
                    logger.debug("skipping hit: %s", exc)
                    continue
                if cand is not None:
                    results.append(cand)
            results = list(_dedupe_by_label(results, self.max_results))
            if len(results) >= self.max_results:
                break
        if not answered:
            raise ProviderUnavailable("nominatim", "no query variant answered")
        logger.debug("Nominatim search %r: %d candidates", query, len(results))
        return tuple(results)

    def _reverse(self, lat: float, lon: float) -> Optional[Placemark]:
        data = _nominatim_get(
            "reverse",
            {
                "format": "jsonv2",
                "lat": str(lat),
                "lon": str(lon),
                "zoom": "18",
                "addressdetails": "1",
            },
            self.timeout,
        )
        address = (data or {}).get("address") if isinstance(data, dict) else None
        if not address:
            return None
        with _parsing("nominatim"):
            return Placemark(
                street=address.get("road") or address.get("pedestrian") or address.get("residential"),
                name=data.get("name") or None,
                street_number=address.get("house_number"),
                district=address.get("suburb"),
                city=address.get("city"),
                town=address.get("town"),
                village=address.get("village"),
                municipality=address.get("municipality"),
                county=address.get("county"),
                postal_code=address.get("postcode"),
                region=address.get("state"),
                country=address.get("country"),
            )

    async def fetch_fallback_search(
        self, query: str, token: Optional["CancelToken"] = None
    ) -> ProviderReply:
        if not query:
            return ProviderReply()
        # per-request timeouts and the variant deadline bound this call
        return await _reply("nominatim-search", self._search, query, token,
                            token=token, timeout=self.timeout, bounded=False)

    async def fetch_reverse(
        self, lat: float, lon: float, token: Optional["CancelToken"] = None
    ) -> Optional[Placemark]:
        return await call_provider("nominatim-reverse", self._reverse, lat, lon,
                                   token=token, timeout=self.timeout)


_default_places_client: Optional[PlacesClient] = None
_default_nominatim_client: Optional[NominatimClient] = None


def get_default_places_client() -> PlacesClient:
    global _default_places_client
    if _default_places_client is None:
        _default_places_client = PlacesClient()
    return _default_places_client


def get_default_nominatim_client() -> NominatimClient:
    global _default_nominatim_client
    if _default_nominatim_client is None:
        _default_nominatim_client = NominatimClient()
    return _default_nominatim_client
