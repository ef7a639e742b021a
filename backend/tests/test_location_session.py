import asyncio

import pytest

from domain.errors import GeocodeNotFound, PermissionDenied
from domain.models import Candidate, GeocodeResult, HandoffStatus, ProviderTag, ReferencePoint
from services.location_handoff import LocationHandoff
from services.location_session import LocationEditSession

SANTIAGO = ReferencePoint(lat=-33.45, lon=-70.6667)


class FakeEngine:
    def __init__(self, candidates=None, geocode_result=None, details=None, details_delay=0.0):
        self.candidates = candidates or []
        self.geocode_result = geocode_result
        self.details = details or {}
        self.details_delay = details_delay
        self.resolve_calls = []
        self.search_calls = []
        self.geocode_calls = []

    async def search(self, text, reference_point=None, token=None):
        self.search_calls.append((text, reference_point))
        return list(self.candidates)

    async def resolve_candidate(self, candidate, token=None):
        self.resolve_calls.append(candidate.label)
        await asyncio.sleep(self.details_delay)
        if candidate.has_coordinates:
            return GeocodeResult(lat=candidate.lat, lon=candidate.lon, formatted=candidate.label)
        return self.details.get(candidate.external_id)

    async def geocode_text(self, text, token=None):
        self.geocode_calls.append(text)
        if self.geocode_result is None:
            raise GeocodeNotFound(text)
        return self.geocode_result


class FakeResolver:
    sentinel = "Mi ubicación"

    def __init__(self, labels=None):
        self.labels = list(labels or [])
        self.calls = []

    async def resolve(self, lat, lon, token=None):
        self.calls.append((lat, lon))
        if self.labels:
            return self.labels.pop(0)
        return self.sentinel


class FakeLocationService:
    def __init__(self, granted=True, position=SANTIAGO):
        self.granted = granted
        self.position = position
        self.requests = 0

    def request_permission(self):
        self.requests += 1
        return self.granted

    async def get_current_position(self):
        return self.position


class FakeMap:
    def __init__(self):
        self.moves = []

    def animate_to(self, lat, lon, zoom):
        self.moves.append((lat, lon, zoom))


def _session(engine=None, resolver=None, location=None, handoff=None):
    return LocationEditSession(
        engine=engine or FakeEngine(),
        resolver=resolver or FakeResolver(),
        location_service=location or FakeLocationService(),
        map_view=FakeMap(),
        handoff=handoff or LocationHandoff(),
        search_quiet_period=0.01,
        reverse_quiet_period=0.01,
    )


def test_permission_denied_disables_input_until_retry():
    location = FakeLocationService(granted=False)
    resolver = FakeResolver(["Merced 22, Santiago"])
    session = _session(resolver=resolver, location=location)

    async def scenario():
        with pytest.raises(PermissionDenied):
            await session.start()
        assert session.permission_denied
        with pytest.raises(PermissionDenied):
            session.on_text_changed("Merced")
        location.granted = True
        await session.retry_permission()

    asyncio.run(scenario())
    assert session.enabled
    assert not session.permission_denied
    assert session.center == SANTIAGO
    assert session.text == "Merced 22, Santiago"
    assert session.map_view.moves == [(SANTIAGO.lat, SANTIAGO.lon, 18)]
    assert location.requests == 2


def test_existing_pin_needs_no_permission():
    location = FakeLocationService(granted=False)
    session = _session(location=location)
    pin = ReferencePoint(lat=-33.43, lon=-70.64)

    asyncio.run(session.start(initial_center=pin, initial_label="Merced 22, 8320000, Santiago, Chile"))

    assert location.requests == 0
    assert session.enabled
    assert session.text == "Merced 22, Santiago"
    assert session.map_view.moves == [(-33.43, -70.64, 18)]


def test_typing_suppresses_reverse_and_shows_suggestions():
    cand = Candidate(label="Merced 22, Santiago", source=ProviderTag.PRIMARY, external_id="p1")
    engine = FakeEngine(candidates=[cand])
    resolver = FakeResolver(["Otra 1, Santiago"])
    session = _session(engine=engine, resolver=resolver)
    moved = ReferencePoint(lat=-33.44, lon=-70.65)

    async def scenario():
        await session.start(initial_center=SANTIAGO)
        session.on_text_changed("Mer")
        session.on_text_changed("Merced")
        session.on_region_settled(moved)
        await asyncio.sleep(0.06)

    asyncio.run(scenario())
    assert resolver.calls == []
    assert engine.search_calls == [("Merced", moved)]
    assert session.suggestions == [cand]
    assert session.text == "Merced"


def test_clearing_the_box_clears_suggestions():
    engine = FakeEngine(candidates=[Candidate(label="x", source=ProviderTag.PRIMARY)])
    session = _session(engine=engine)

    async def scenario():
        await session.start(initial_center=SANTIAGO)
        session.on_text_changed("Mer")
        session.on_text_changed("")
        await asyncio.sleep(0.05)

    asyncio.run(scenario())
    assert engine.search_calls == []
    assert session.suggestions == []


def test_map_settle_updates_label_when_not_typing():
    resolver = FakeResolver(["Lastarria 90, Santiago"])
    session = _session(resolver=resolver)

    async def scenario():
        await session.start(initial_center=SANTIAGO)
        session.on_region_settled(ReferencePoint(lat=-33.437, lon=-70.639))
        await asyncio.sleep(0.05)

    asyncio.run(scenario())
    assert resolver.calls == [(-33.437, -70.639)]
    assert session.text == "Lastarria 90, Santiago"


def test_select_candidate_moves_map_and_sets_label():
    cand = Candidate(label="Merced 22, Santiago", source=ProviderTag.PRIMARY, external_id="p1")
    engine = FakeEngine(details={"p1": GeocodeResult(lat=-33.437, lon=-70.641, formatted="Merced 22")})
    session = _session(engine=engine)

    async def scenario():
        await session.start(initial_center=SANTIAGO)
        session.on_text_changed("Merced")
        return await session.select(cand)

    result = asyncio.run(scenario())
    assert result.lat == -33.437
    assert session.text == "Merced 22, Santiago"
    assert not session.is_typing
    assert session.suggestions == []
    assert session.center == ReferencePoint(lat=-33.437, lon=-70.641)


def test_submit_without_matches_raises_not_found():
    session = _session(engine=FakeEngine())

    async def scenario():
        await session.start(initial_center=SANTIAGO)
        await session.submit("zzzz qqqq")

    with pytest.raises(GeocodeNotFound):
        asyncio.run(scenario())
    assert session.suggestions == []
    assert not session.is_typing


def test_submit_uses_top_candidate():
    cand = Candidate(label="Merced 22, Santiago", source=ProviderTag.FALLBACK, lat=-33.437, lon=-70.641)
    engine = FakeEngine(candidates=[cand])
    session = _session(engine=engine)

    async def scenario():
        await session.start(initial_center=SANTIAGO)
        return await session.submit("Merced 22")

    result = asyncio.run(scenario())
    assert result.formatted == "Merced 22, Santiago"
    assert engine.geocode_calls == []
    assert session.center == ReferencePoint(lat=-33.437, lon=-70.641)


def test_confirm_re_resolves_center_and_hands_off_once():
    resolver = FakeResolver(["Merced 20, Santiago", "Merced 22, Santiago"])
    handoff = LocationHandoff()
    session = _session(resolver=resolver, handoff=handoff)
    pin = ReferencePoint(lat=-33.437, lon=-70.641)

    async def scenario():
        await session.start(initial_center=SANTIAGO)
        session.on_region_settled(pin)
        await asyncio.sleep(0.05)
        assert session.text == "Merced 20, Santiago"
        return await session.confirm()

    location = asyncio.run(scenario())
    assert location.label == "Merced 22, Santiago"
    assert (location.lat, location.lon) == (pin.lat, pin.lon)
    assert resolver.calls == [(pin.lat, pin.lon), (pin.lat, pin.lon)]

    session.cancel()
    outcome = handoff.consume()
    assert outcome.status is HandoffStatus.CONFIRMED
    assert outcome.location == location


def test_confirm_keeps_typed_label_when_reverse_fails():
    session = _session(resolver=FakeResolver())

    async def scenario():
        await session.start(initial_center=SANTIAGO, initial_label="Plaza de Armas, Santiago")
        return await session.confirm()

    assert asyncio.run(scenario()).label == "Plaza de Armas, Santiago"


def test_leaving_without_confirm_cancels():
    handoff = LocationHandoff()
    session = _session(handoff=handoff)

    async def scenario():
        await session.start(initial_center=SANTIAGO)
        session.on_text_changed("Merced")
        session.close()
        await asyncio.sleep(0.05)

    asyncio.run(scenario())
    assert session.engine.search_calls == []
    assert handoff.consume().status is HandoffStatus.CANCELLED
    with pytest.raises(RuntimeError):
        session.on_text_changed("again")


def _slow_engine(**kwargs):
    return FakeEngine(
        details={"p1": GeocodeResult(lat=-33.0, lon=-70.0, formatted="Providencia 1234")},
        details_delay=0.05,
        **kwargs,
    )


PROVIDENCIA = Candidate(label="Providencia 1234, Santiago", source=ProviderTag.PRIMARY, external_id="p1")


def test_close_during_details_lookup_leaves_map_alone():
    session = _session(engine=_slow_engine())

    async def scenario():
        await session.start(initial_center=SANTIAGO)
        pending = asyncio.ensure_future(session.select(PROVIDENCIA))
        await asyncio.sleep(0.01)
        session.close()
        return await pending

    assert asyncio.run(scenario()) is None
    assert session.map_view.moves == [(SANTIAGO.lat, SANTIAGO.lon, 18)]
    assert session.center == SANTIAGO


def test_typing_during_details_lookup_keeps_new_text():
    session = _session(engine=_slow_engine())

    async def scenario():
        await session.start(initial_center=SANTIAGO)
        pending = asyncio.ensure_future(session.select(PROVIDENCIA))
        await asyncio.sleep(0.01)
        session.on_text_changed("Los Leones 50")
        result = await pending
        await asyncio.sleep(0.03)
        return result

    assert asyncio.run(scenario()) is None
    assert session.text == "Los Leones 50"
    assert session.center == SANTIAGO
    assert session.map_view.moves == [(SANTIAGO.lat, SANTIAGO.lon, 18)]


def test_newer_select_wins_over_pending_submit():
    engine = _slow_engine(candidates=[PROVIDENCIA])
    session = _session(engine=engine)
    lastarria = Candidate(label="Lastarria 90, Santiago", source=ProviderTag.FALLBACK, lat=-33.437, lon=-70.639)

    async def scenario():
        await session.start(initial_center=SANTIAGO)
        submitted = asyncio.ensure_future(session.submit("Providencia 1234"))
        await asyncio.sleep(0.01)
        selected = await session.select(lastarria)
        return await submitted, selected

    submitted, selected = asyncio.run(scenario())
    assert submitted is None
    assert selected.lat == -33.437
    assert session.text == "Lastarria 90, Santiago"
    assert session.map_view.moves == [(SANTIAGO.lat, SANTIAGO.lon, 18), (-33.437, -70.639, 18)]


def test_submit_without_coordinates_goes_straight_to_one_shot_geocode():
    target = GeocodeResult(lat=-33.43, lon=-70.61, formatted="Providencia 1234, Providencia")
    unresolvable = Candidate(label="Providencia 1234, Santiago", source=ProviderTag.PRIMARY, external_id="gone")
    engine = FakeEngine(candidates=[unresolvable], geocode_result=target)
    session = _session(engine=engine)

    async def scenario():
        await session.start(initial_center=SANTIAGO)
        return await session.submit("Providencia 1234")

    assert asyncio.run(scenario()) == target
    assert engine.resolve_calls == ["Providencia 1234, Santiago"]
    assert engine.geocode_calls == ["Providencia 1234"]
    assert session.text == "Providencia 1234, Providencia"
