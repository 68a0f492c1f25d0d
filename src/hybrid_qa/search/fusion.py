"""Score fusion and reranking for keyword + vector results."""

from __future__ import annotations

import dataclasses
import re
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, timezone
from math import exp

import structlog

from hybrid_qa.config import RerankConfig
from hybrid_qa.types import NormalizedResult

logger = structlog.get_logger(__name__)

_TEMPORAL_PATTERN = re.compile(r"\b(when|where|what time)\b", flags=re.IGNORECASE)


class Reranker(ABC):
    """Reranker interface applied to one scope's keyword and vector hits."""

    @abstractmethod
    def rerank(
        self,
        query: str,
        keyword_results: list[NormalizedResult],
        vector_results: list[NormalizedResult],
    ) -> list[NormalizedResult]:
        """Return merged, deduplicated results with `final_score` set, best first."""


class WeightedScoreReranker(Reranker):
    """Weighted keyword/vector fusion with recency decay and authority boosts.

    Scoring per unique result id:
    1. `fused = keyword_weight * keyword_score + vector_weight * vector_score`,
       where keyword scores are divided by the list maximum (floored at 1.0) and
       a result missing from one list scores 0 there.
    2. `fused *= exp(-age_days / half_life_days)` when `metadata["updated_at"]`
       is present and a half-life is configured.
    3. Additive boosts: source authority (`metadata["source_type"]`), channel
       authority (`metadata["channel"]`) and an event boost when the query is a
       temporal interrogative ("when", "where", "what time").
    """

    def __init__(
        self,
        config: RerankConfig | None = None,
        *,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config or RerankConfig()
        self._now = now or (lambda: datetime.now(timezone.utc))

    def rerank(
        self,
        query: str,
        keyword_results: list[NormalizedResult],
        vector_results: list[NormalizedResult],
    ) -> list[NormalizedResult]:
        keyword_scores = self._normalize(keyword_results)
        vector_scores = {item.id: item.normalized_score for item in vector_results}

        merged: dict[str, NormalizedResult] = {}
        for item in [*keyword_results, *vector_results]:
            merged.setdefault(item.id, item)

        temporal = bool(_TEMPORAL_PATTERN.search(query))
        now = self._now()
        reranked: list[NormalizedResult] = []
        for result_id, item in merged.items():
            score = (
                self.config.keyword_weight * keyword_scores.get(result_id, 0.0)
                + self.config.vector_weight * vector_scores.get(result_id, 0.0)
            )
            score *= self._recency_factor(item, now)
            score += self._authority_boost(item)
            if temporal and _is_event(item):
                score += self.config.event_intent_boost
            reranked.append(dataclasses.replace(item, final_score=score))

        reranked.sort(key=lambda item: item.ranking_score, reverse=True)
        if reranked:
            logger.debug(
                "reranked results",
                keyword=len(keyword_results),
                vector=len(vector_results),
                top_score=round(reranked[0].ranking_score, 3),
            )
        return reranked

    @staticmethod
    def _normalize(items: list[NormalizedResult]) -> dict[str, float]:
        if not items:
            return {}
        high = max(max(item.normalized_score for item in items), 1.0)
        return {item.id: item.normalized_score / high for item in items}

    def _recency_factor(self, item: NormalizedResult, now: datetime) -> float:
        half_life = self.config.half_life_days
        updated_at = _parse_timestamp(item.metadata.get("updated_at"))
        if half_life is None or updated_at is None:
            return 1.0
        age_days = max(0.0, (now - updated_at).total_seconds() / 86400.0)
        return exp(-age_days / half_life)

    def _authority_boost(self, item: NormalizedResult) -> float:
        boost = self.config.source_authority.get(str(item.metadata.get("source_type", "")), 0.0)
        channel = item.metadata.get("channel")
        if channel:
            boost += self.config.channel_authority.get(str(channel), 0.0)
        return boost


def _is_event(item: NormalizedResult) -> bool:
    return item.metadata.get("type") == "event" or item.metadata.get("source_type") == "gcal"


def _parse_timestamp(value: object) -> datetime | None:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
