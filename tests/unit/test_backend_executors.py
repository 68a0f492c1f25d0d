import asyncio

from hybrid_qa.config import ScoreScalingConfig, SearchConfig
from hybrid_qa.errors import BackendError
from hybrid_qa.search.backends import (
    InMemoryDocumentStore,
    InMemoryKeywordBackend,
    InMemoryVectorBackend,
    KeywordHit,
    SourceDocument,
)
from hybrid_qa.search.budget import SearchBudget
from hybrid_qa.search.executors import KeywordExecutor, ScoreScaler, VectorExecutor


class StaticKeywordBackend:
    def __init__(self, rows, delay_s: float = 0.0) -> None:
        self.rows = rows
        self.delay_s = delay_s
        self.calls: list[tuple[str, str, int, int]] = []

    async def search(self, text, scope_id, limit, offset=0):
        self.calls.append((text, scope_id, limit, offset))
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        return self.rows


class FailingBackend:
    async def search(self, *args, **kwargs):
        raise BackendError("relation does not exist")


def test_score_scaler_boosts_and_caps_keyword_rank() -> None:
    scaler = ScoreScaler()

    assert scaler.keyword(0.0) == 0.3
    assert abs(scaler.keyword(0.03) - 0.6) < 1e-9
    assert scaler.keyword(0.08) == 1.0
    assert scaler.vector(1.4) == 1.0
    assert scaler.vector(-0.2) == 0.0


def test_score_scaler_is_configurable() -> None:
    scaler = ScoreScaler(ScoreScalingConfig(keyword_scale=1.0, keyword_offset=0.0))

    assert scaler.keyword(0.08) == 0.08


async def test_keyword_executor_normalizes_rows() -> None:
    backend = StaticKeywordBackend(
        [
            KeywordHit(id="r1", title="Active Meeting", body="Weekly meeting", rank=0.02),
            {"id": "r2", "title": "Dues", "body": "Pay by Friday", "rank": 0.01},
        ]
    )
    executor = KeywordExecutor(backend, SearchConfig())

    results = await executor.search("meeting", "space-1", SearchBudget.create(8000), limit=5)

    assert [item.id for item in results] == ["r1", "r2"]
    assert results[0].source_kind == "keyword"
    assert results[0].raw_score == 0.02
    assert abs(results[0].normalized_score - 0.5) < 1e-9
    assert results[1].scope_id == "space-1"
    assert backend.calls == [("meeting", "space-1", 5, 0)]


async def test_keyword_executor_drops_malformed_rows() -> None:
    backend = StaticKeywordBackend([{"title": "no id"}, {"id": "ok", "rank": 0.01}])
    executor = KeywordExecutor(backend)

    results = await executor.search("q", "s", SearchBudget.create(8000), limit=5)

    assert [item.id for item in results] == ["ok"]


async def test_keyword_timeout_returns_empty() -> None:
    backend = StaticKeywordBackend([{"id": "late", "rank": 0.05}], delay_s=0.3)
    executor = KeywordExecutor(backend, SearchConfig(keyword_hard_timeout_ms=50))

    results = await executor.search("q", "s", SearchBudget.create(8000), limit=5)

    assert results == []


async def test_backend_error_returns_empty() -> None:
    executor = KeywordExecutor(FailingBackend())

    assert await executor.search("q", "s", SearchBudget.create(8000), limit=5) == []


async def test_call_skipped_when_budget_below_minimum() -> None:
    backend = StaticKeywordBackend([{"id": "r1", "rank": 0.05}])
    executor = KeywordExecutor(backend, SearchConfig(min_call_ms=100))

    results = await executor.search("q", "s", SearchBudget.create(50), limit=5)

    assert results == []
    assert backend.calls == []


async def test_vector_executor_without_backend() -> None:
    executor = VectorExecutor(None)

    assert not executor.available
    assert await executor.search([1.0], "s", SearchBudget.create(8000), limit=5) == []


async def test_in_memory_backends_search_by_scope() -> None:
    store = InMemoryDocumentStore()
    store.upsert(
        "space-1",
        [
            SourceDocument(id="d1", title="Active Meeting", body="Meeting in the chapter room."),
            SourceDocument(id="d2", title="Dues", body="Dues are due Friday."),
        ],
        [[1.0, 0.0], [0.0, 1.0]],
    )
    store.upsert("space-2", [SourceDocument(id="d3", title="Meeting", body="Other")], [[1.0, 0.0]])

    keyword = await InMemoryKeywordBackend(store).search("active meeting?", "space-1", 5)
    vector = await InMemoryVectorBackend(store).search([1.0, 0.0], "space-1", 5)

    assert [hit.id for hit in keyword] == ["d1"]
    assert keyword[0].rank == 0.1
    assert [hit.id for hit in vector] == ["d1", "d2"]
    assert vector[0].similarity > vector[1].similarity


async def test_vector_executor_maps_similarity() -> None:
    store = InMemoryDocumentStore()
    store.upsert("s", [SourceDocument(id="d1", title="Doc", body="x")], [[0.6, 0.8]])
    executor = VectorExecutor(InMemoryVectorBackend(store))

    results = await executor.search([0.6, 0.8], "s", SearchBudget.create(8000), limit=5)

    assert results[0].source_kind == "vector"
    assert abs(results[0].normalized_score - 1.0) < 1e-9
