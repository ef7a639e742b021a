"""
One visit to the location-edit screen.

Wires the search box and the map to the engine: keystrokes go through a
debounced search, map pan-settle events through a debounced reverse
resolve, and the visit ends with exactly one confirm or cancel on the
LocationHandoff it was given.
"""
from __future__ import annotations

import inspect
import logging
from typing import Awaitable, List, Optional, Protocol, Tuple, Union

from domain.errors import GeocodeNotFound, PermissionDenied, StaleResponse
from domain.models import Candidate, ConfirmedLocation, GeocodeResult, ReferencePoint
from services.address_search import AddressSearchEngine
from services.debounce import CancelToken, DebouncedQuery
from services.location_handoff import LocationHandoff
from services.query_normalizer import sanitize_short
from services.reverse_resolver import ReverseResolver
from settings import DEFAULT_CENTER, settings

logger = logging.getLogger(__name__)

DEFAULT_ZOOM = 18
Coords = Tuple[float, float]


class LocationService(Protocol):
    """Device location (permission prompt + GPS fix)."""

    def request_permission(self) -> Union[bool, Awaitable[bool]]:
        ...

    def get_current_position(self) -> Union[ReferencePoint, Awaitable[ReferencePoint]]:
        ...


class MapView(Protocol):
    """The only thing the engine asks of the map widget."""

    def animate_to(self, lat: float, lon: float, zoom: int) -> Union[None, Awaitable[None]]:
        ...


async def _maybe_await(value):
    if inspect.isawaitable(value):
        return await value
    return value


class LocationEditSession:
    def __init__(
        self,
        engine: AddressSearchEngine,
        resolver: ReverseResolver,
        location_service: LocationService,
        map_view: MapView,
        handoff: LocationHandoff,
        search_quiet_period: Optional[float] = None,
        reverse_quiet_period: Optional[float] = None,
    ):
        self.engine = engine
        self.resolver = resolver
        self.location_service = location_service
        self.map_view = map_view
        self.handoff = handoff

        self.text = ""
        self.suggestions: List[Candidate] = []
        self.center: Optional[ReferencePoint] = None
        self.is_typing = False
        self.enabled = False
        self.permission_denied = False

        self._search: DebouncedQuery[str, List[Candidate]] = DebouncedQuery(
            self._run_search,
            self._apply_suggestions,
            quiet_period=settings.SEARCH_DEBOUNCE_SECONDS if search_quiet_period is None else search_quiet_period,
            name="search",
        )
        self._reverse: DebouncedQuery[Coords, str] = DebouncedQuery(
            self._run_reverse,
            self._apply_reverse_label,
            quiet_period=settings.REVERSE_DEBOUNCE_SECONDS if reverse_quiet_period is None else reverse_quiet_period,
            name="reverse",
        )
        self._selection: Optional[CancelToken] = None  # in-flight select/submit
        self._closed = False

    # ----- query runners / result sinks -----

    async def _run_search(self, text: str, token: CancelToken) -> List[Candidate]:
        return await self.engine.search(text, self.center, token)

    def _apply_suggestions(self, text: str, candidates: List[Candidate]) -> None:
        if self.is_typing:
            self.suggestions = candidates

    async def _run_reverse(self, coords: Coords, token: CancelToken) -> str:
        return await self.resolver.resolve(coords[0], coords[1], token)

    def _apply_reverse_label(self, coords: Coords, label: str) -> None:
        # never clobber what the user is typing
        if not self.is_typing:
            self.text = label

    def _ensure_enabled(self) -> None:
        if self._closed:
            raise RuntimeError("location edit session is closed")
        if not self.enabled:
            raise PermissionDenied("location permission is required")

    async def _animate(self, lat: float, lon: float, zoom: int = DEFAULT_ZOOM) -> None:
        await _maybe_await(self.map_view.animate_to(lat, lon, zoom))
        self.center = ReferencePoint(lat=lat, lon=lon)

    # ----- lifecycle -----

    async def start(
        self,
        initial_center: Optional[ReferencePoint] = None,
        initial_label: Optional[str] = None,
    ) -> None:
        """
        Open the screen. With an initial center (editing an existing pin) no
        permission is needed; otherwise the device position is used.
        """
        if initial_label:
            self.text = sanitize_short(initial_label)
        if initial_center is not None:
            self.center = initial_center
            self.enabled = True
            await self._animate(initial_center.lat, initial_center.lon)
            return
        # map shows the city center while the permission prompt is up
        self.center = ReferencePoint(lat=DEFAULT_CENTER[0], lon=DEFAULT_CENTER[1])
        await self.center_on_device()

    async def retry_permission(self) -> None:
        await self.center_on_device()

    async def center_on_device(self) -> None:
        granted = await _maybe_await(self.location_service.request_permission())
        if not granted:
            self.permission_denied = True
            logger.info("location permission denied")
            raise PermissionDenied("permission denied to access location")
        self.permission_denied = False
        self.enabled = True
        position = await _maybe_await(self.location_service.get_current_position())
        await self._animate(position.lat, position.lon)
        await self._reverse.fire_now((position.lat, position.lon))

    def close(self) -> None:
        """Screen teardown: cancel every outstanding query. Leaving without confirming counts as cancel."""
        self._closed = True
        self._cancel_selection()
        if not self.handoff.resolved:
            self.handoff.cancel()
        self._search.close()
        self._reverse.close()

    # ----- search box -----

    def on_text_changed(self, text: str) -> None:
        self._ensure_enabled()
        self._cancel_selection()
        self.text = text
        self.is_typing = True
        self._reverse.cancel()
        if not text.strip():
            self._search.cancel()
            self.suggestions = []
            return
        self._search.push(text)

    def on_focus_lost(self) -> None:
        self.is_typing = False

    async def submit(self, text: str) -> Optional[GeocodeResult]:
        """
        Explicit search. Raises GeocodeNotFound ("address not found") when no
        provider knows the address; returns None if a newer query superseded it.
        """
        self._ensure_enabled()
        token = self._begin_selection()
        self.is_typing = True
        candidates = await self._search.fire_now(text)
        if candidates is None or self._superseded(token):
            return None
        try:
            result = None
            if candidates:
                result = await self.engine.resolve_candidate(candidates[0], token)
            if result is None and not self._superseded(token):
                result = await self.engine.geocode_text(text, token)
        except StaleResponse:
            return None
        except GeocodeNotFound:
            if self._superseded(token):
                return None
            self.is_typing = False
            self.suggestions = []
            raise
        if result is None or self._superseded(token):
            return None
        await self._finish_selection(result.formatted, result)
        return result

    async def select(self, candidate: Candidate) -> Optional[GeocodeResult]:
        """Pick a suggestion; looks up exact coordinates when the candidate has none."""
        self._ensure_enabled()
        token = self._begin_selection()
        self._search.cancel()
        self.is_typing = False
        self.suggestions = []
        self.text = candidate.label
        result = await self.engine.resolve_candidate(candidate, token)
        if self._superseded(token):
            return None
        if result is None:
            logger.info("no coordinates for candidate %r", candidate.label)
            return None
        await self._finish_selection(candidate.label, result)
        return result

    def _begin_selection(self) -> CancelToken:
        """One select/submit at a time; starting another aborts the previous one."""
        self._cancel_selection()
        self._selection = CancelToken()
        return self._selection

    def _cancel_selection(self) -> None:
        if self._selection is not None:
            self._selection.cancel()
            self._selection = None

    def _superseded(self, token: CancelToken) -> bool:
        return token.aborted or self._closed

    async def _finish_selection(self, label: str, result: GeocodeResult) -> None:
        self.is_typing = False
        self.suggestions = []
        self.text = label
        await self._animate(result.lat, result.lon)

    # ----- map -----

    def on_region_settled(self, center: ReferencePoint) -> None:
        if self._closed:
            return
        self.center = center
        if self.is_typing or not self.enabled:
            return
        self._reverse.push((center.lat, center.lon))

    # ----- exit -----

    async def confirm(self) -> ConfirmedLocation:
        """
        Save: re-resolve the current center right before handing it back so a
        stale debounced label is never persisted.
        """
        self._ensure_enabled()
        self._cancel_selection()
        label = self.text
        if self.center is not None:
            self._search.cancel()
            fresh = await self._reverse.fire_now((self.center.lat, self.center.lon))
            if fresh and fresh != self.resolver.sentinel:
                label = fresh
        location = ConfirmedLocation(
            label=label or self.resolver.sentinel,
            lat=self.center.lat if self.center else None,
            lon=self.center.lon if self.center else None,
        )
        self.handoff.confirm(location)
        self.close()
        return location

    def cancel(self) -> None:
        self.close()
