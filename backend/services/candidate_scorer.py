"""
Ranking of address candidates.

Score = text match (+3 per query token found in the label) plus a proximity
bonus that decays linearly from 2.5 at the reference point to 0 once the
rectilinear coordinate gap reaches 0.05 degrees.
"""
from __future__ import annotations

from dataclasses import replace
from typing import Iterable, List, Optional, Sequence

from domain.models import Candidate, ProviderTag, ReferencePoint

TOKEN_MATCH_POINTS = 3.0
PROXIMITY_MAX = 2.5
PROXIMITY_DECAY = 50.0


def text_score(label: str, tokens: Iterable[str]) -> float:
    lower = (label or "").lower()
    return sum(TOKEN_MATCH_POINTS for t in tokens if t and t.lower() in lower)


def proximity_score(candidate: Candidate, reference_point: Optional[ReferencePoint]) -> float:
    if reference_point is None or not candidate.has_coordinates:
        return 0.0
    gap = abs(reference_point.lat - candidate.lat) + abs(reference_point.lon - candidate.lon)  # type: ignore[operator]
    return max(0.0, PROXIMITY_MAX - PROXIMITY_DECAY * gap)


def score_candidate(
    candidate: Candidate,
    tokens: Sequence[str],
    reference_point: Optional[ReferencePoint] = None,
) -> float:
    return text_score(candidate.label, tokens) + proximity_score(candidate, reference_point)


def rank_candidates(
    candidates: Sequence[Candidate],
    tokens: Sequence[str],
    reference_point: Optional[ReferencePoint] = None,
    score_primary: bool = False,
) -> List[Candidate]:
    """
    Return candidates sorted by descending score.

    Fallback candidates are always rescored against the current reference
    point. Primary candidates keep the provider's own ranking (score None)
    unless `score_primary` is set. Ties fall back to provider priority, then
    to the original order.
    """
    scored: List[Candidate] = []
    for cand in candidates:
        if cand.source is ProviderTag.FALLBACK or score_primary:
            cand = replace(cand, score=score_candidate(cand, tokens, reference_point))
        scored.append(cand)

    if not any(c.score is not None for c in scored):
        return scored

    indexed = list(enumerate(scored))
    indexed.sort(
        key=lambda pair: (
            -(pair[1].score or 0.0),
            pair[1].source.priority,
            pair[0],
        )
    )
    return [cand for _, cand in indexed]
