import pytest

from domain.models import Candidate, ProviderTag, ReferencePoint
from services.candidate_scorer import (
    proximity_score,
    rank_candidates,
    score_candidate,
    text_score,
)


def _fb(label, lat=None, lon=None):
    return Candidate(label=label, source=ProviderTag.FALLBACK, lat=lat, lon=lon)


def test_text_score_counts_case_insensitive_token_hits():
    assert text_score("Avenida Providencia 1234, Providencia", ("providencia", "1234")) == 6
    assert text_score("Merced 22, Santiago", ("PROVIDENCIA",)) == 0


def test_proximity_score_linear_decay():
    ref = ReferencePoint(lat=-33.45, lon=-70.65)
    assert proximity_score(_fb("x", -33.45, -70.65), ref) == pytest.approx(2.5)
    assert proximity_score(_fb("x", -33.46, -70.65), ref) == pytest.approx(2.0)
    assert proximity_score(_fb("x", -33.50, -70.70), ref) == 0.0
    assert proximity_score(_fb("x"), ref) == 0.0
    assert proximity_score(_fb("x", -33.45, -70.65), None) == 0.0


def test_proximity_boost_ranks_nearby_candidate_first():
    ref = ReferencePoint(lat=-33.45, lon=-70.65)
    far = _fb("Serrano 1234, Santiago", lat=-34.45, lon=-70.65)
    near = _fb("Serrano 1234, San Miguel", lat=-33.455, lon=-70.654)
    ranked = rank_candidates([far, near], ("serrano", "1234"), ref)
    assert [c.label for c in ranked] == [near.label, far.label]
    assert ranked[0].score > ranked[1].score


def test_ranking_is_non_increasing_and_stable_on_ties():
    cands = [
        _fb("Merced 22, Santiago"),
        _fb("Lastarria 90, Santiago"),
        _fb("Merced 100, Santiago"),
        _fb("Huérfanos 10, Santiago"),
    ]
    ranked = rank_candidates(cands, ("merced",), None)
    scores = [c.score for c in ranked]
    assert scores == sorted(scores, reverse=True)
    assert [c.label for c in ranked] == [
        "Merced 22, Santiago",
        "Merced 100, Santiago",
        "Lastarria 90, Santiago",
        "Huérfanos 10, Santiago",
    ]


def test_primary_candidates_keep_provider_order_unless_scored():
    cands = [
        Candidate(label="Lastarria 90, Santiago", source=ProviderTag.PRIMARY, external_id="a"),
        Candidate(label="Merced 22, Santiago", source=ProviderTag.PRIMARY, external_id="b"),
    ]
    ranked = rank_candidates(cands, ("merced",), None)
    assert [c.external_id for c in ranked] == ["a", "b"]
    assert all(c.score is None for c in ranked)

    rescored = rank_candidates(cands, ("merced",), None, score_primary=True)
    assert [c.external_id for c in rescored] == ["b", "a"]


def test_ties_prefer_primary_provider():
    cands = [
        _fb("Merced 22, Santiago"),
        Candidate(label="Merced 22, Santiago", source=ProviderTag.PRIMARY),
    ]
    ranked = rank_candidates(cands, ("merced",), None, score_primary=True)
    assert [c.source for c in ranked] == [ProviderTag.PRIMARY, ProviderTag.FALLBACK]


def test_score_candidate_combines_text_and_proximity():
    ref = ReferencePoint(lat=0.0, lon=0.0)
    cand = _fb("Merced 22", lat=0.0, lon=0.0)
    assert score_candidate(cand, ("merced", "22"), ref) == pytest.approx(8.5)
