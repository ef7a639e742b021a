"""
Forward address search: cache lookup, provider waterfall, ranking.

The waterfall is strict either/or: the fallback provider is only asked when
the primary provider produced zero candidates, and the two lists are never
merged.
"""
from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from domain.errors import GeocodeNotFound, StaleResponse
from domain.models import Candidate, GeocodeResult, ProviderTag, ReferencePoint, SearchQuery
from services.candidate_scorer import rank_candidates
from services.debounce import CancelToken
from services.providers import (
    NominatimClient,
    PlacesClient,
    ProviderReply,
    get_default_nominatim_client,
    get_default_places_client,
)
from services.query_normalizer import apply_synonyms, build_search_query
from services.result_cache import ResultCache, get_default_result_cache
from settings import settings

logger = logging.getLogger(__name__)


class AddressSearchEngine:
    def __init__(
        self,
        primary: Optional[PlacesClient] = None,
        fallback: Optional[NominatimClient] = None,
        cache: Optional[ResultCache] = None,
        score_primary: Optional[bool] = None,
        max_results: Optional[int] = None,
    ):
        self.primary = primary or get_default_places_client()
        self.fallback = fallback or get_default_nominatim_client()
        self.cache = cache if cache is not None else get_default_result_cache()
        self.score_primary = (
            settings.SCORE_PRIMARY_CANDIDATES if score_primary is None else score_primary
        )
        self.max_results = max_results or settings.MAX_CANDIDATES

    async def _primary_reply(self, query: SearchQuery, token: CancelToken) -> ProviderReply:
        """Send every synonym variant to the primary provider and merge by label."""
        variants = apply_synonyms(query.normalized)
        replies = await asyncio.gather(
            *(self.primary.fetch_primary_autocomplete(v, token) for v in variants)
        )
        merged: List[Candidate] = []
        seen: set[str] = set()
        for reply in replies:
            for cand in reply.candidates:
                if cand.label not in seen:
                    seen.add(cand.label)
                    merged.append(cand)
        # one failed variant is enough to keep the merged list out of the cache
        complete = all(r.complete for r in replies)
        return ProviderReply(candidates=tuple(merged[: self.max_results]), complete=complete)

    async def _provider_candidates(
        self, query: SearchQuery, provider: ProviderTag, token: CancelToken
    ) -> tuple[Candidate, ...]:
        cached = self.cache.get(query.normalized, provider)
        if cached is not None:
            return cached
        if provider is ProviderTag.PRIMARY:
            reply = await self._primary_reply(query, token)
        else:
            reply = await self.fallback.fetch_fallback_search(query.normalized, token)
        if reply.complete and not token.aborted:
            self.cache.put(query.normalized, provider, reply.candidates)
        return reply.candidates

    async def run_query(
        self,
        query: SearchQuery,
        reference_point: Optional[ReferencePoint] = None,
        token: Optional[CancelToken] = None,
    ) -> List[Candidate]:
        token = token or CancelToken()
        if not query.normalized:
            return []
        for provider in (ProviderTag.PRIMARY, ProviderTag.FALLBACK):
            candidates = await self._provider_candidates(query, provider, token)
            if token.aborted:
                return []
            if candidates:
                logger.debug(
                    "search %r answered by %s with %d candidates",
                    query.normalized,
                    provider.value,
                    len(candidates),
                )
                return rank_candidates(
                    candidates, query.tokens, reference_point, score_primary=self.score_primary
                )
        logger.info("search %r: no candidates from any provider", query.normalized)
        return []

    async def search(
        self,
        text: str,
        reference_point: Optional[ReferencePoint] = None,
        token: Optional[CancelToken] = None,
    ) -> List[Candidate]:
        """Free text -> ranked candidates. Never raises on provider trouble."""
        return await self.run_query(build_search_query(text), reference_point, token)

    async def details(
        self, external_id: str, token: Optional[CancelToken] = None
    ) -> Optional[GeocodeResult]:
        return await self.primary.fetch_primary_details(external_id, token)

    async def resolve_candidate(
        self, candidate: Candidate, token: Optional[CancelToken] = None
    ) -> Optional[GeocodeResult]:
        """Exact coordinates for a candidate; a details lookup only when they are missing."""
        if candidate.has_coordinates:
            return GeocodeResult(
                lat=candidate.lat,  # type: ignore[arg-type]
                lon=candidate.lon,  # type: ignore[arg-type]
                formatted=candidate.label,
                external_id=candidate.external_id,
            )
        if not candidate.external_id:
            return None
        result = await self.details(candidate.external_id, token)
        if result is None:
            return None
        return GeocodeResult(
            lat=result.lat,
            lon=result.lon,
            formatted=candidate.label,
            external_id=result.external_id,
        )

    async def geocode(
        self,
        text: str,
        reference_point: Optional[ReferencePoint] = None,
        token: Optional[CancelToken] = None,
    ) -> GeocodeResult:
        """
        Explicit submit: top candidate with coordinates, else a one-shot
        geocode. Raises GeocodeNotFound when nothing matches and
        StaleResponse when the token was cancelled on the way.
        """
        token = token or CancelToken()
        candidates = await self.run_query(build_search_query(text), reference_point, token)
        if candidates:
            result = await self.resolve_candidate(candidates[0], token)
            if result is not None:
                return result
        return await self.geocode_text(text, token)

    async def geocode_text(self, text: str, token: Optional[CancelToken] = None) -> GeocodeResult:
        """One-shot primary geocode of free text, without a candidate search."""
        token = token or CancelToken()
        normalized = build_search_query(text).normalized
        if normalized and not token.aborted:
            result = await self.primary.fetch_geocode(normalized, token)
            if result is not None:
                return result
        if token.aborted:
            raise StaleResponse(f"geocode for {text!r} was superseded")
        raise GeocodeNotFound(text)


_default_engine: Optional[AddressSearchEngine] = None


def get_default_engine() -> AddressSearchEngine:
    global _default_engine
    if _default_engine is None:
        _default_engine = AddressSearchEngine()
    return _default_engine
