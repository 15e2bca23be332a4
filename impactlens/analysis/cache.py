"""Analysis cache: fingerprinted, TTL-bounded, LRU-evicted, single-flight."""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field, replace

from impactlens.core.config import ANALYSIS_CACHE_MAX_ENTRIES, ANALYSIS_CACHE_TTL_SECONDS
from impactlens.core.models import AnalysisOptions, AnalysisResult

logger = logging.getLogger(__name__)


def fingerprint(ticket_key: str, options: AnalysisOptions) -> str:
    payload = {"ticket_key": ticket_key, "options": options.normalized()}
    return hashlib.sha256(json.dumps(payload, sort_keys=True).encode()).hexdigest()


@dataclass(slots=True)
class _Entry:
    stored_at: float
    result: AnalysisResult


@dataclass(slots=True)
class _Flight:
    done: threading.Event = field(default_factory=threading.Event)
    result: AnalysisResult | None = None
    error: BaseException | None = None


class AnalysisCache:
    """Memoizes pipeline results per fingerprint.

    At most one computation per fingerprint runs at a time: the first caller
    becomes the leader and computes, concurrent callers wait on its in-flight
    record. In-flight records live apart from stored entries, so an entry
    expiring or being evicted mid-computation cannot start a second run.
    Failures are handed to the waiters of that flight and never stored.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = ANALYSIS_CACHE_TTL_SECONDS,
        max_entries: int = ANALYSIS_CACHE_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.clock = clock
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        self._inflight: dict[str, _Flight] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _expired(self, entry: _Entry, now: float) -> bool:
        return now - entry.stored_at >= self.ttl_seconds

    def _served(self, result: AnalysisResult, started: float) -> AnalysisResult:
        elapsed_ms = (self.clock() - started) * 1000.0
        metadata = replace(result.metadata, cache_hit=True, processing_time_ms=elapsed_ms)
        return replace(result, metadata=metadata)

    def get_or_compute(self, key: str, compute: Callable[[], AnalysisResult]) -> AnalysisResult:
        started = self.clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                if not self._expired(entry, started):
                    self._entries.move_to_end(key)
                    logger.debug("Analysis cache hit %s", key[:12])
                    return self._served(entry.result, started)
                del self._entries[key]
            flight = self._inflight.get(key)
            leader = flight is None
            if leader:
                flight = _Flight()
                self._inflight[key] = flight

        if not leader:
            logger.debug("Joining in-flight analysis %s", key[:12])
            flight.done.wait()
            if flight.error is not None:
                raise flight.error
            return self._served(flight.result, started)

        try:
            result = compute()
        except BaseException as exc:
            with self._lock:
                self._inflight.pop(key, None)
            flight.error = exc
            flight.done.set()
            raise

        with self._lock:
            self._entries[key] = _Entry(stored_at=self.clock(), result=result)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Evicted analysis %s", evicted[:12])
            self._inflight.pop(key, None)
        flight.result = result
        flight.done.set()
        return result

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def purge_expired(self) -> int:
        now = self.clock()
        with self._lock:
            keys = [k for k, e in self._entries.items() if self._expired(e, now)]
            for k in keys:
                del self._entries[k]
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
