"""Process-wide embedding cache, failure circuit breaker and generation service.

`EmbeddingCache` and `CircuitBreaker` are the only state shared between
concurrent requests. Both are built once per process and injected into the
`EmbeddingService`, which every search request uses.
"""

from __future__ import annotations

import asyncio
import threading
import time
from collections import OrderedDict, deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

import structlog

from hybrid_qa.config import EmbeddingConfig
from hybrid_qa.providers.embeddings import EmbeddingProvider
from hybrid_qa.search.budget import SearchBudget

logger = structlog.get_logger(__name__)


def normalize_query(text: str) -> str:
    return text.strip().casefold()


class EmbeddingStore(Protocol):
    def get(self, key: str) -> list[float] | None:
        """Return a live vector for `key`, or None."""

    def put(self, key: str, vector: list[float]) -> None:
        """Store `vector` under `key`."""


class FailureGuard(Protocol):
    def is_open(self) -> bool:
        """True while calls to the guarded dependency should be skipped."""

    def record_failure(self) -> None:
        """Record one failed call."""


@dataclass(slots=True)
class _CacheEntry:
    vector: list[float]
    cached_at: float


class EmbeddingCache:
    """TTL cache keyed by normalized query text.

    Expired entries are treated as absent and dropped on read. When full, the
    oldest insertion is evicted.
    """

    def __init__(
        self,
        ttl_ms: int = 180_000,
        *,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_ms = ttl_ms
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, _CacheEntry] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> list[float] | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if (self._clock() - entry.cached_at) * 1000.0 >= self.ttl_ms:
                del self._entries[key]
                return None
            return entry.vector

    def put(self, key: str, vector: list[float]) -> None:
        with self._lock:
            self._entries.pop(key, None)
            while len(self._entries) >= self.max_entries:
                self._entries.popitem(last=False)
            self._entries[key] = _CacheEntry(vector=vector, cached_at=self._clock())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class CircuitBreaker:
    """Sliding-window failure counter.

    Open while at least `threshold` failures fall inside the trailing window.
    Old failures are pruned lazily on read, so the breaker closes by itself.
    Only open/closed transitions are logged.
    """

    def __init__(
        self,
        threshold: int = 3,
        window_ms: int = 300_000,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.threshold = threshold
        self.window_ms = window_ms
        self._clock = clock
        self._failures: deque[float] = deque()
        self._lock = threading.Lock()
        self._open = False

    def failure_count(self) -> int:
        with self._lock:
            self._prune(self._clock())
            return len(self._failures)

    def is_open(self) -> bool:
        with self._lock:
            self._prune(self._clock())
            is_open = len(self._failures) >= self.threshold
            changed = is_open != self._open
            self._open = is_open
        if changed and is_open:
            logger.warning("embedding circuit breaker opened", threshold=self.threshold)
        elif changed:
            logger.info("embedding circuit breaker closed")
        return is_open

    def record_failure(self) -> None:
        with self._lock:
            now = self._clock()
            self._failures.append(now)
            self._prune(now)
            count = len(self._failures)
        logger.warning("recorded embedding failure", recent_failures=count)

    def _prune(self, now: float) -> None:
        cutoff = now - self.window_ms / 1000.0
        while self._failures and self._failures[0] <= cutoff:
            self._failures.popleft()


class EmbeddingService:
    """Cache-first embedding generation guarded by budget and circuit breaker."""

    def __init__(
        self,
        provider: EmbeddingProvider | None,
        *,
        cache: EmbeddingStore,
        breaker: FailureGuard,
        config: EmbeddingConfig | None = None,
    ) -> None:
        self.provider = provider
        self.cache = cache
        self.breaker = breaker
        self.config = config or EmbeddingConfig()
        self._background: set[asyncio.Task[list[float] | None]] = set()

    def cached(self, query: str) -> list[float] | None:
        return self.cache.get(normalize_query(query))

    def can_generate(self, budget: SearchBudget) -> bool:
        if self.provider is None:
            return False
        if not budget.allows(self.config.min_remaining_ms):
            logger.info(
                "insufficient budget for embedding",
                remaining_ms=budget.remaining_ms(),
                required_ms=self.config.min_remaining_ms,
            )
            return False
        if self.breaker.is_open():
            logger.debug("breaker open, skipping embedding")
            return False
        return True

    async def get_or_create(self, query: str, budget: SearchBudget) -> list[float] | None:
        """Return the cached vector, or generate one if budget and breaker allow.

        Never raises: timeouts and provider errors are recorded as breaker
        failures and reported as None.
        """

        key = normalize_query(query)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("using cached embedding")
            return cached
        provider = self.provider
        if provider is None or not self.can_generate(budget):
            return None

        try:
            vector = await asyncio.wait_for(
                provider.embed(query), timeout=self.config.timeout_ms / 1000.0
            )
        except asyncio.TimeoutError:
            logger.warning("embedding timed out", timeout_ms=self.config.timeout_ms)
            self.breaker.record_failure()
            return None
        except Exception as exc:
            logger.error("embedding failed", error=str(exc))
            self.breaker.record_failure()
            return None

        if not vector:
            logger.error("embedding provider returned an empty vector")
            self.breaker.record_failure()
            return None

        logger.debug("embedding generated", dims=len(vector))
        self.cache.put(key, vector)
        return vector

    def start_background(
        self, query: str, budget: SearchBudget
    ) -> asyncio.Task[list[float] | None]:
        """Schedule `get_or_create` without awaiting it.

        The task stays referenced until it finishes so a late vector still
        lands in the cache for the next request.
        """

        task = asyncio.create_task(self.get_or_create(query, budget))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task
