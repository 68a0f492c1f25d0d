"""Budget-aware sequential hybrid search across scopes."""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass

import structlog

from hybrid_qa.config import SearchConfig
from hybrid_qa.search.budget import SearchBudget
from hybrid_qa.search.embedding_cache import EmbeddingService
from hybrid_qa.search.executors import KeywordExecutor, VectorExecutor
from hybrid_qa.search.fusion import Reranker
from hybrid_qa.types import NormalizedResult, ScopeOutcome

logger = structlog.get_logger(__name__)


def dedupe_by_id(results: Iterable[NormalizedResult]) -> list[NormalizedResult]:
    """Keep the first occurrence of each id, preserving order."""
    seen: set[str] = set()
    deduped: list[NormalizedResult] = []
    for result in results:
        if result.id in seen:
            continue
        seen.add(result.id)
        deduped.append(result)
    return deduped


def _rank(results: list[NormalizedResult]) -> list[NormalizedResult]:
    return sorted(results, key=lambda item: item.ranking_score, reverse=True)


@dataclass(slots=True)
class EmbeddingState:
    """Query embedding shared by the scopes of one search.

    `task` is the background generation started by the controller. Scopes only
    ever wait on it with a bound; a late result is picked up by later scopes.
    """

    value: list[float] | None = None
    task: asyncio.Task[list[float] | None] | None = None

    async def wait(self, timeout_ms: int) -> list[float] | None:
        if self.value is not None:
            return self.value
        task = self.task
        if task is None:
            return None
        if not task.done() and timeout_ms > 0:
            await asyncio.wait({task}, timeout=timeout_ms / 1000.0)
        if task.done() and not task.cancelled() and task.exception() is None:
            self.value = task.result()
        return self.value


class ScopeSearcher:
    """Keyword-then-vector search over a single scope."""

    def __init__(
        self,
        keyword_executor: KeywordExecutor,
        vector_executor: VectorExecutor,
        config: SearchConfig | None = None,
        reranker: Reranker | None = None,
    ) -> None:
        self.keyword_executor = keyword_executor
        self.vector_executor = vector_executor
        self.config = config or SearchConfig()
        self.reranker = reranker

    @property
    def vector_enabled(self) -> bool:
        return self.vector_executor.available

    async def search_scope(
        self,
        query: str,
        scope_id: str,
        embedding_state: EmbeddingState,
        budget: SearchBudget,
        *,
        limit: int | None = None,
        user_id: str | None = None,
    ) -> ScopeOutcome:
        """Search one scope and report its merged results and top score.

        Keyword search always runs first. Vector search runs only when an
        embedding is available and the remaining budget still covers the vector
        timeout plus margin; the wait for a pending embedding is capped so that
        this condition can still hold afterwards.
        """

        limit = limit or self.config.per_scope_limit
        started = time.perf_counter()

        keyword_results = await self.keyword_executor.search(query, scope_id, budget, limit)
        keyword_ms = (time.perf_counter() - started) * 1000.0

        vector_reserve_ms = self.config.vector_timeout_ms + self.config.vector_margin_ms
        vector_results: list[NormalizedResult] = []
        vector_ms = 0.0
        if self.vector_enabled:
            embedding = embedding_state.value
            if embedding is None and embedding_state.task is not None:
                wait_budget = budget.remaining_ms() - vector_reserve_ms
                if wait_budget > 0:
                    wait_ms = min(self.config.embedding_wait_cap_ms, wait_budget)
                    logger.debug("waiting for embedding", scope_id=scope_id, wait_ms=wait_ms)
                    embedding = await embedding_state.wait(wait_ms)

            if embedding is not None and budget.remaining_ms() > vector_reserve_ms:
                vector_started = time.perf_counter()
                vector_results = await self.vector_executor.search(
                    embedding, scope_id, budget, limit, user_id=user_id
                )
                vector_ms = (time.perf_counter() - vector_started) * 1000.0
            else:
                logger.debug(
                    "skipping vector search",
                    scope_id=scope_id,
                    has_embedding=embedding is not None,
                    remaining_ms=budget.remaining_ms(),
                )

        if self.reranker is not None:
            merged = self.reranker.rerank(query, keyword_results, vector_results)
        else:
            merged = _rank(dedupe_by_id([*keyword_results, *vector_results]))
        top_score = max((item.normalized_score for item in merged), default=0.0)

        logger.info(
            "scope search complete",
            scope_id=scope_id,
            keyword_ms=round(keyword_ms, 1),
            vector_ms=round(vector_ms, 1),
            results=len(merged),
            top_score=round(top_score, 3),
        )
        return ScopeOutcome(
            scope_id=scope_id,
            results=merged,
            keyword_elapsed_ms=keyword_ms,
            vector_elapsed_ms=vector_ms,
            top_score=top_score,
        )


class HybridSearchController:
    """Searches scopes in caller order under one shared budget.

    Embedding generation starts in the background before the first scope. The
    loop stops when the budget drops below `scope_floor_ms` or when a scope's top
    score reaches the high-confidence threshold. Results from all searched scopes
    are deduplicated by id and the best `top_k` are returned.
    """

    def __init__(
        self,
        scope_searcher: ScopeSearcher,
        embeddings: EmbeddingService,
        config: SearchConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.scope_searcher = scope_searcher
        self.embeddings = embeddings
        self.config = config or SearchConfig()
        self._clock = clock

    def new_budget(self, budget_ms: int | None = None) -> SearchBudget:
        """Start a request budget on this controller's clock."""
        return SearchBudget.create(
            self.config.budget_ms if budget_ms is None else budget_ms, clock=self._clock
        )

    async def search(
        self,
        query: str,
        scope_ids: list[str],
        *,
        budget_ms: int | None = None,
        budget: SearchBudget | None = None,
        high_confidence_threshold: float | None = None,
        top_k: int | None = None,
        limit: int | None = None,
        user_id: str | None = None,
    ) -> list[NormalizedResult]:
        """Search `scope_ids` in order.

        `budget` continues an existing request budget; otherwise a new one of
        `budget_ms` (default `SearchConfig.budget_ms`) starts now.
        """

        if budget is None:
            budget = self.new_budget(budget_ms)
        threshold = (
            self.config.high_confidence_threshold
            if high_confidence_threshold is None
            else high_confidence_threshold
        )
        top_k = top_k or self.config.top_k
        log = logger.bind(search_id=uuid.uuid4().hex[:8])

        if not query.strip() or not scope_ids:
            log.info("nothing to search", scopes=len(scope_ids))
            return []
        log.info("starting hybrid search", query=query, scopes=len(scope_ids), budget_ms=budget.total_ms)

        state = EmbeddingState()
        if self.scope_searcher.vector_enabled:
            state.value = self.embeddings.cached(query)
            if state.value is not None:
                log.debug("embedding cache hit")
            elif self.embeddings.can_generate(budget):
                state.task = self.embeddings.start_background(query, budget)

        outcomes: list[ScopeOutcome] = []
        for scope_id in scope_ids:
            if budget.remaining_ms() < self.config.scope_floor_ms:
                log.info(
                    "budget exhausted",
                    searched=len(outcomes),
                    scopes=len(scope_ids),
                    remaining_ms=budget.remaining_ms(),
                )
                break

            outcome = await self.scope_searcher.search_scope(
                query, scope_id, state, budget, limit=limit, user_id=user_id
            )
            outcomes.append(outcome)

            if outcome.top_score >= threshold:
                log.info("high-confidence result, stopping", scope_id=scope_id, top_score=outcome.top_score)
                break

        merged = _rank(dedupe_by_id(item for outcome in outcomes for item in outcome.results))
        log.info(
            "hybrid search complete",
            elapsed_ms=budget.elapsed_ms(),
            results=len(merged),
            searched=len(outcomes),
        )
        return merged[:top_k]
