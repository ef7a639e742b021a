"""
Session cache for provider replies, keyed by (normalized query, provider).

Entries are write-once: the first complete reply for a key wins and later
writes are ignored, so a reader never observes an entry being replaced.
"""
from __future__ import annotations

import logging
import threading
from typing import Dict, Iterable, Optional, Tuple

from domain.models import Candidate, ProviderTag

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, ProviderTag]


def make_cache_key(normalized_query: str, provider: ProviderTag) -> CacheKey:
    """Keys depend on the query text only, never on map position."""
    return (" ".join(normalized_query.split()).lower(), provider)


class ResultCache:
    def __init__(self) -> None:
        self._entries: Dict[CacheKey, Tuple[Candidate, ...]] = {}
        self._lock = threading.Lock()

    def get(self, normalized_query: str, provider: ProviderTag) -> Optional[Tuple[Candidate, ...]]:
        """Return the cached candidates, or None on a miss (an empty tuple is a hit)."""
        key = make_cache_key(normalized_query, provider)
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            logger.debug("result cache miss %r/%s", key[0], provider.value)
        else:
            logger.debug("result cache hit %r/%s (%d)", key[0], provider.value, len(entry))
        return entry

    def put(
        self,
        normalized_query: str,
        provider: ProviderTag,
        candidates: Iterable[Candidate],
    ) -> bool:
        """Store candidates unless the key already has an entry. Returns True if stored."""
        key = make_cache_key(normalized_query, provider)
        frozen = tuple(candidates)
        with self._lock:
            if key in self._entries:
                return False
            self._entries[key] = frozen
        logger.debug("result cache store %r/%s (%d)", key[0], provider.value, len(frozen))
        return True

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, tuple) or len(key) != 2:
            return False
        query, provider = key
        if not isinstance(query, str) or not isinstance(provider, ProviderTag):
            return False
        with self._lock:
            return make_cache_key(query, provider) in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


_default_result_cache: Optional[ResultCache] = None


def get_default_result_cache() -> ResultCache:
    global _default_result_cache
    if _default_result_cache is None:
        _default_result_cache = ResultCache()
    return _default_result_cache
