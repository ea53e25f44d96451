"""
Per-session result cache with single-flight restart and staleness eviction.

Rules:
- at most one entry per session id
- start() discards the entry and issues a fresh generation token; writes carrying
  an older token are rejected (a superseded run's late result never lands)
- get() evicts entries that are too old or recorded for a different URL
- clear()/clear_all() also invalidate in-flight generations
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Callable

from .models import AnalysisResult, CacheEntry, now_ms

logger = logging.getLogger("pageperf.store")

DEFAULT_TTL_MS = 30_000


class SessionStore:
    def __init__(self, *, ttl_ms: int = DEFAULT_TTL_MS, clock: Callable[[], int] = now_ms) -> None:
        self.ttl_ms = int(ttl_ms)
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._generations: dict[str, int] = {}
        # Tokens are never reused, even across clear() / teardown.
        self._tokens = itertools.count(1)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._entries

    def start(self, session_id: str) -> int:
        """Discard any entry for session_id and return the new generation token."""
        if self._entries.pop(session_id, None) is not None:
            logger.info("store_discard_on_start session=%s", session_id)
        token = next(self._tokens)
        self._generations[session_id] = token
        return token

    def current_generation(self, session_id: str) -> int | None:
        return self._generations.get(session_id)

    def is_current(self, session_id: str, generation: int) -> bool:
        return self._generations.get(session_id) == generation

    def write(
        self,
        session_id: str,
        generation: int,
        resource_identifier: str,
        *,
        result: AnalysisResult | None = None,
        error: str | None = None,
    ) -> bool:
        """Store the outcome of a run; rejected unless generation is current."""
        if (result is None) == (error is None):
            raise ValueError("exactly one of result/error is required")
        current = self._generations.get(session_id)
        if current != generation:
            logger.info(
                "store_write_rejected session=%s generation=%s current=%s", session_id, generation, current
            )
            return False
        self._entries[session_id] = CacheEntry(
            session_id=session_id,
            resource_identifier=resource_identifier,
            generation=generation,
            written_at=self._clock(),
            result=result,
            error=error,
        )
        return True

    def get(self, session_id: str, current_resource_identifier: str | None) -> CacheEntry | None:
        """Return the entry unless stale by time or by navigation (stale entries are evicted)."""
        entry = self._entries.get(session_id)
        if entry is None:
            return None
        age = self._clock() - entry.written_at
        if age > self.ttl_ms:
            logger.info("store_evict_stale_time session=%s age_ms=%s", session_id, age)
            del self._entries[session_id]
            return None
        if current_resource_identifier is not None and current_resource_identifier != entry.resource_identifier:
            logger.info("store_evict_stale_navigation session=%s", session_id)
            del self._entries[session_id]
            return None
        return entry

    def peek(self, session_id: str) -> CacheEntry | None:
        return self._entries.get(session_id)

    def clear(self, session_id: str) -> bool:
        self._generations.pop(session_id, None)
        removed = self._entries.pop(session_id, None) is not None
        if removed:
            logger.info("store_clear session=%s", session_id)
        return removed

    def clear_all(self) -> int:
        n = len(self._entries)
        self._entries.clear()
        self._generations.clear()
        return n
