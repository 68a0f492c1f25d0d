from datetime import datetime, timedelta, timezone
from math import exp

from hybrid_qa.config import RerankConfig, SearchConfig
from hybrid_qa.search.backends import KeywordHit
from hybrid_qa.search.budget import SearchBudget
from hybrid_qa.search.executors import KeywordExecutor, VectorExecutor
from hybrid_qa.search.fusion import WeightedScoreReranker
from hybrid_qa.search.orchestrator import EmbeddingState, ScopeSearcher
from hybrid_qa.types import NormalizedResult

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _item(result_id: str, score: float, kind: str = "keyword", **metadata) -> NormalizedResult:
    return NormalizedResult(
        id=result_id,
        title=result_id,
        body_snippet="",
        source_kind=kind,
        raw_score=score,
        normalized_score=score,
        scope_id="s",
        metadata=metadata,
    )


def _reranker(**config) -> WeightedScoreReranker:
    config.setdefault("half_life_days", None)
    config.setdefault("source_authority", {})
    config.setdefault("channel_authority", {})
    return WeightedScoreReranker(RerankConfig(enabled=True, **config), now=lambda: NOW)


def test_weighted_fusion_combines_both_lists() -> None:
    reranked = _reranker().rerank(
        "dues",
        [_item("a", 0.8), _item("b", 0.4)],
        [_item("a", 0.5, "vector"), _item("c", 0.9, "vector")],
    )

    assert [item.id for item in reranked] == ["a", "c", "b"]
    scores = {item.id: item.final_score for item in reranked}
    assert abs(scores["a"] - (0.4 * 0.8 + 0.6 * 0.5)) < 1e-9
    assert abs(scores["b"] - 0.4 * 0.4) < 1e-9
    assert abs(scores["c"] - 0.6 * 0.9) < 1e-9
    assert reranked[0].source_kind == "keyword"


def test_recency_decay_uses_half_life() -> None:
    old = (NOW - timedelta(days=90)).isoformat()
    reranked = _reranker(half_life_days=90.0).rerank(
        "dues",
        [_item("old", 1.0, updated_at=old), _item("fresh", 1.0, updated_at=NOW)],
        [],
    )

    scores = {item.id: item.final_score for item in reranked}
    assert reranked[0].id == "fresh"
    assert abs(scores["fresh"] - 0.4) < 1e-9
    assert abs(scores["old"] - 0.4 * exp(-1.0)) < 1e-9


def test_authority_and_event_boosts() -> None:
    reranker = _reranker(
        source_authority={"gcal": 0.12},
        channel_authority={"announcements": 0.10},
        event_intent_boost=0.1,
    )
    keyword = [
        _item("doc", 0.5),
        _item("event", 0.5, source_type="gcal"),
        _item("notice", 0.5, channel="announcements"),
    ]

    temporal = {item.id: item.final_score for item in reranker.rerank("when is formal", keyword, [])}
    plain = {item.id: item.final_score for item in reranker.rerank("formal dress code", keyword, [])}

    assert abs(temporal["event"] - (0.2 + 0.12 + 0.1)) < 1e-9
    assert abs(plain["event"] - (0.2 + 0.12)) < 1e-9
    assert abs(plain["notice"] - (0.2 + 0.10)) < 1e-9
    assert abs(plain["doc"] - 0.2) < 1e-9


def test_input_results_are_not_mutated() -> None:
    original = _item("a", 0.6)

    _reranker().rerank("dues", [original], [])

    assert original.final_score is None


async def test_scope_searcher_orders_by_final_score_when_enabled() -> None:
    class Backend:
        async def search(self, text, scope_id, limit, offset=0):
            return [
                KeywordHit(id="doc", title="Doc", body="", rank=0.05),
                KeywordHit(id="event", title="Event", body="", rank=0.04, metadata={"type": "event"}),
            ]

    config = SearchConfig()
    searcher = ScopeSearcher(
        KeywordExecutor(Backend(), config),
        VectorExecutor(None, config),
        config,
        reranker=_reranker(event_intent_boost=0.5),
    )

    outcome = await searcher.search_scope(
        "when is the formal", "s", EmbeddingState(), SearchBudget.create(8000)
    )

    assert [item.id for item in outcome.results] == ["event", "doc"]
    assert outcome.results[0].final_score is not None
    assert outcome.top_score == max(item.normalized_score for item in outcome.results)
