from domain.models import ConfirmedLocation, HandoffStatus
from services.location_handoff import HandoffSlot, LocationHandoff


def test_slot_set_peek_consume_clear():
    slot = HandoffSlot()
    assert not slot.is_set
    slot.set({"title": "Bache"})
    assert slot.is_set
    assert slot.peek() == {"title": "Bache"}
    assert slot.consume() == {"title": "Bache"}
    assert slot.consume() is None
    slot.set(1)
    slot.clear()
    assert slot.peek() is None


def test_confirm_is_read_once():
    handoff = LocationHandoff()
    location = ConfirmedLocation(label="Merced 22, Santiago", lat=-33.43, lon=-70.64)
    assert handoff.confirm(location)
    assert handoff.resolved

    outcome = handoff.consume()
    assert outcome.status is HandoffStatus.CONFIRMED
    assert outcome.location == location
    assert handoff.consume() is None


def test_first_outcome_wins():
    handoff = LocationHandoff()
    assert handoff.cancel()
    assert not handoff.confirm(ConfirmedLocation(label="late"))
    assert not handoff.cancel()
    outcome = handoff.consume()
    assert outcome.status is HandoffStatus.CANCELLED
    assert outcome.location is None


def test_form_snapshot_survives_until_cleared():
    form = {"title": "Luminaria apagada", "category": "alumbrado"}
    handoff = LocationHandoff(form_snapshot=form)
    form["title"] = "changed"
    assert handoff.form_snapshot.peek()["title"] == "Luminaria apagada"
    handoff.confirm(ConfirmedLocation(label="Merced 22, Santiago"))
    handoff.clear()
    assert handoff.form_snapshot.peek() is None
    assert handoff.consume() is None
