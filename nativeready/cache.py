"""
nativeready.cache
=================

Memoises readiness reports per :class:`~nativeready.ir.AnalysisTarget`.

Entries live for ``ttl`` seconds measured from their creation; a hit
refreshes ``last_access_at`` but never extends the lifetime.  Reports that
record an analysis failure are returned but not stored, and an exception
raised while scoring is never cached, so the next call retries.

Concurrency
-----------
All bookkeeping happens under one lock, which is never held while a report
is being computed.  Concurrent misses on the same target collapse onto one
computation: the first caller computes, later callers wait on its
:class:`~concurrent.futures.Future` and count as hits.  Different targets
never wait for each other.

Usage::

    from nativeready.cache import CacheService

    with CacheService() as cache:
        report = cache.get_or_compute(AnalysisTarget(f, (int,)))
        print(cache.stats())
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from .config import DEFAULT_CONFIG, EngineConfig
from .ir import AnalysisTarget
from .reports import ReadinessReport
from .scorer import ReadinessScorer

logger = logging.getLogger(__name__)

__all__ = ["CacheEntry", "CacheService"]


@dataclass
class CacheEntry:
    target: AnalysisTarget
    report: ReadinessReport
    created_at: float
    last_access_at: float

    def age(self, now: float) -> float:
        return now - self.created_at


class CacheService:
    """
    Process-lifetime report cache.

    Parameters
    ----------
    scorer : ReadinessScorer, optional
        Computes reports on a miss.  Defaults to a scorer built from *config*.
    config : EngineConfig, optional
        Supplies the default ``cache_ttl``.
    clock : callable, optional
        Monotonic time source in seconds (injectable for tests).
    """

    def __init__(
        self,
        scorer: Optional[ReadinessScorer] = None,
        config: EngineConfig = DEFAULT_CONFIG,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.scorer = scorer or ReadinessScorer(config)
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[AnalysisTarget, CacheEntry] = {}
        self._inflight: Dict[AnalysisTarget, Future] = {}
        self._hits = 0
        self._misses = 0

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_or_compute(self, target: AnalysisTarget, ttl: Optional[float] = None) -> ReadinessReport:
        """Return the cached report for *target*, computing it on a miss."""
        ttl = self.config.cache_ttl if ttl is None else ttl
        with self._lock:
            now = self._clock()
            entry = self._entries.get(target)
            if entry is not None:
                if entry.age(now) < ttl:
                    entry.last_access_at = now
                    self._hits += 1
                    logger.debug("cache hit for %s", target.label)
                    return entry.report
                del self._entries[target]
                logger.debug("cache entry for %s expired", target.label)
            future = self._inflight.get(target)
            owner = future is None
            if owner:
                future = Future()
                self._inflight[target] = future
                self._misses += 1
            else:
                self._hits += 1

        if not owner:
            logger.debug("waiting for in-flight computation of %s", target.label)
            return future.result()

        logger.debug("cache miss for %s", target.label)
        try:
            report = self.scorer.score(target)
        except BaseException as exc:
            with self._lock:
                self._inflight.pop(target, None)
            future.set_exception(exc)
            raise
        with self._lock:
            self._inflight.pop(target, None)
            if report.has_failures:
                logger.debug("not caching %s: report records failures", target.label)
            else:
                now = self._clock()
                self._entries[target] = CacheEntry(target, report, now, now)
        future.set_result(report)
        return report

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def invalidate(self, target: AnalysisTarget) -> bool:
        with self._lock:
            return self._entries.pop(target, None) is not None

    def clear(self) -> None:
        """Evict every entry.  Counters are kept."""
        with self._lock:
            self._entries.clear()

    def prune(self, max_age: Optional[float] = None) -> int:
        """Evict entries at least *max_age* seconds old (default: the TTL).

        Returns the number of evicted entries.
        """
        max_age = self.config.cache_ttl if max_age is None else max_age
        with self._lock:
            now = self._clock()
            stale = [t for t, e in self._entries.items() if e.age(now) >= max_age]
            for t in stale:
                del self._entries[t]
        if stale:
            logger.debug("pruned %d cache entr%s", len(stale), "y" if len(stale) == 1 else "ies")
        return len(stale)

    def stats(self) -> Dict[str, Optional[float]]:
        """``{entries, hits, misses, oldest_age, newest_age}``; ages are ``None`` when empty."""
        with self._lock:
            now = self._clock()
            ages = [e.age(now) for e in self._entries.values()]
            return {
                "entries": len(self._entries),
                "hits": self._hits,
                "misses": self._misses,
                "oldest_age": max(ages) if ages else None,
                "newest_age": min(ages) if ages else None,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, target: object) -> bool:
        with self._lock:
            return target in self._entries

    def __enter__(self) -> "CacheService":
        return self

    def __exit__(self, *exc_info) -> None:
        self.clear()
