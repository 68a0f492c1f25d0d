"""Timeout-bounded executors around the keyword and vector backends."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any, TypeVar

import structlog

from hybrid_qa.config import ScoreScalingConfig, SearchConfig
from hybrid_qa.search.backends import KeywordBackend, KeywordHit, VectorBackend, VectorHit
from hybrid_qa.search.budget import SearchBudget
from hybrid_qa.types import NormalizedResult

logger = structlog.get_logger(__name__)

_Row = TypeVar("_Row")


class ScoreScaler:
    """Normalization policy mapping backend-native scores onto [0, max_score].

    Keyword rank is boosted (`rank * scale + offset`, capped) because full-text
    ranks are small; vector similarity is passed through and clamped.
    """

    def __init__(self, config: ScoreScalingConfig | None = None) -> None:
        self.config = config or ScoreScalingConfig()

    def keyword(self, rank: float) -> float:
        scaled = rank * self.config.keyword_scale + self.config.keyword_offset
        return min(self.config.max_score, max(0.0, scaled))

    def vector(self, similarity: float) -> float:
        return min(self.config.max_score, max(0.0, similarity))


async def _call_with_deadline(
    call: Callable[[], Awaitable[Sequence[_Row]]],
    *,
    kind: str,
    scope_id: str,
    budget: SearchBudget,
    soft_timeout_ms: int,
    hard_timeout_ms: int,
    min_call_ms: int,
) -> Sequence[_Row]:
    timeout_ms = min(soft_timeout_ms, budget.remaining_ms())
    if timeout_ms < min_call_ms:
        logger.info("insufficient budget, skipping backend", kind=kind, scope_id=scope_id)
        return []

    deadline_ms = min(timeout_ms, hard_timeout_ms)
    try:
        rows = await asyncio.wait_for(call(), timeout=deadline_ms / 1000.0)
    except asyncio.TimeoutError:
        logger.warning(
            "backend hard timeout reached", kind=kind, scope_id=scope_id, timeout_ms=deadline_ms
        )
        return []
    except Exception as exc:
        logger.error("backend search failed", kind=kind, scope_id=scope_id, error=str(exc))
        return []
    return rows or []


class KeywordExecutor:
    """Runs full-text search for one scope. Never raises."""

    def __init__(
        self,
        backend: KeywordBackend | None,
        config: SearchConfig | None = None,
        scaler: ScoreScaler | None = None,
    ) -> None:
        self.backend = backend
        self.config = config or SearchConfig()
        self.scaler = scaler or ScoreScaler()

    async def search(
        self, query: str, scope_id: str, budget: SearchBudget, limit: int
    ) -> list[NormalizedResult]:
        backend = self.backend
        if backend is None:
            return []

        rows: Sequence[KeywordHit | Mapping[str, Any]] = await _call_with_deadline(
            lambda: backend.search(query, scope_id, limit, 0),
            kind="keyword",
            scope_id=scope_id,
            budget=budget,
            soft_timeout_ms=self.config.keyword_timeout_ms,
            hard_timeout_ms=self.config.keyword_hard_timeout_ms,
            min_call_ms=self.config.min_call_ms,
        )
        results = []
        for row in rows:
            try:
                hit = KeywordHit.from_row(row)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("dropping malformed keyword row", scope_id=scope_id, error=str(exc))
                continue
            results.append(
                NormalizedResult(
                    id=hit.id,
                    title=hit.title,
                    body_snippet=hit.body,
                    source_kind="keyword",
                    raw_score=hit.rank,
                    normalized_score=self.scaler.keyword(hit.rank),
                    scope_id=scope_id,
                    metadata=hit.metadata,
                )
            )
        logger.debug(
            "keyword search complete",
            scope_id=scope_id,
            results=len(results),
            top_score=results[0].normalized_score if results else None,
        )
        return results


class VectorExecutor:
    """Runs vector similarity search for one scope. Never raises."""

    def __init__(
        self,
        backend: VectorBackend | None,
        config: SearchConfig | None = None,
        scaler: ScoreScaler | None = None,
    ) -> None:
        self.backend = backend
        self.config = config or SearchConfig()
        self.scaler = scaler or ScoreScaler()

    @property
    def available(self) -> bool:
        return self.backend is not None

    async def search(
        self,
        embedding: list[float],
        scope_id: str,
        budget: SearchBudget,
        limit: int,
        *,
        user_id: str | None = None,
    ) -> list[NormalizedResult]:
        backend = self.backend
        if backend is None:
            return []

        rows: Sequence[VectorHit | Mapping[str, Any]] = await _call_with_deadline(
            lambda: backend.search(embedding, scope_id, limit, 0, user_id),
            kind="vector",
            scope_id=scope_id,
            budget=budget,
            soft_timeout_ms=self.config.vector_timeout_ms,
            hard_timeout_ms=self.config.vector_hard_timeout_ms,
            min_call_ms=self.config.min_call_ms,
        )
        results = []
        for row in rows:
            try:
                hit = VectorHit.from_row(row)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("dropping malformed vector row", scope_id=scope_id, error=str(exc))
                continue
            results.append(
                NormalizedResult(
                    id=hit.id,
                    title=hit.title,
                    body_snippet=hit.body,
                    source_kind="vector",
                    raw_score=hit.similarity,
                    normalized_score=self.scaler.vector(hit.similarity),
                    scope_id=scope_id,
                    metadata=hit.metadata,
                )
            )
        logger.debug("vector search complete", scope_id=scope_id, results=len(results))
        return results
