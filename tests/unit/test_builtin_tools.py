import asyncio
from datetime import datetime, timezone

from hybrid_qa.agent.registry import ToolRegistry
from hybrid_qa.agent.tools import register_builtin_tools
from hybrid_qa.config import SearchConfig
from hybrid_qa.errors import BackendError
from hybrid_qa.knowledge.announcements import InMemoryAnnouncementSource
from hybrid_qa.knowledge.graph import Event, InMemoryKnowledgeGraph, Policy
from hybrid_qa.search.budget import SearchBudget
from hybrid_qa.types import NormalizedResult


class FakeSearch:
    def __init__(self, results: list[NormalizedResult]) -> None:
        self.results = results
        self.calls: list[tuple[str, list[str], int | None]] = []

    async def search(self, query, scope_ids, *, top_k=None, **kwargs):
        self.calls.append((query, scope_ids, top_k))
        return self.results[:top_k]

    def new_budget(self, budget_ms=None):
        return SearchBudget.create(8000 if budget_ms is None else budget_ms)


def _doc(doc_id: str, score: float, **metadata) -> NormalizedResult:
    return NormalizedResult(
        id=doc_id,
        title=doc_id.title(),
        body_snippet="body",
        source_kind="keyword",
        raw_score=score,
        normalized_score=score,
        scope_id="s1",
        metadata=metadata,
    )


def _registry(search=None, **kwargs) -> ToolRegistry:
    registry = ToolRegistry()
    register_builtin_tools(registry, search or FakeSearch([]), **kwargs)
    return registry


def test_builtin_tool_names() -> None:
    names = [spec.name for spec in _registry().specs()]

    assert names == ["search_docs", "search_knowledge", "search_announcements", "calendar_find"]


async def test_search_docs_uses_limit_and_top_score() -> None:
    search = FakeSearch([_doc("dues", 0.8), _doc("minutes", 0.4)])
    registry = _registry(search)

    result = await registry.execute("search_docs", {"query": "dues", "limit": 1}, ["s1", "s2"])

    assert search.calls == [("dues", ["s1", "s2"], 1)]
    assert result.success
    assert [item.id for item in result.data["results"]] == ["dues"]
    assert result.confidence == 0.8


async def test_search_docs_without_hits_fails() -> None:
    result = await _registry().execute("search_docs", {"query": "dues"}, ["s1"])

    assert not result.success
    assert result.confidence == 0.0


async def test_search_knowledge_returns_first_scope_with_hit() -> None:
    graph = InMemoryKnowledgeGraph()
    graph.add_event(
        "s2",
        Event(id="e1", name="Active Meeting", aliases=["chapter"]),
        sources=["Spring Calendar"],
    )
    graph.add_policy("s2", Policy(id="p1", title="Guest Policy"))
    registry = _registry(knowledge_graph=graph)

    result = await registry.execute(
        "search_knowledge", {"type": "event", "query": "chapter"}, ["s1", "s2"]
    )

    assert result.success
    assert result.confidence == 0.9
    assert result.data["events"][0].name == "Active Meeting"
    assert result.data["sources"] == ["Spring Calendar"]
    assert result.data["scope_id"] == "s2"


async def test_search_knowledge_miss_and_missing_graph() -> None:
    graph = InMemoryKnowledgeGraph()
    graph.add_policy("s1", Policy(id="p1", title="Guest Policy"))

    miss = await _registry(knowledge_graph=graph).execute(
        "search_knowledge", {"type": "policy", "query": "parking"}, ["s1"]
    )
    no_graph = await _registry().execute(
        "search_knowledge", {"type": "policy", "query": "guest policy"}, ["s1"]
    )
    bad_type = await _registry(knowledge_graph=graph).execute(
        "search_knowledge", {"type": "weather", "query": "rain"}, ["s1"]
    )

    assert not miss.success
    assert not no_graph.success
    assert not bad_type.success


async def test_slow_knowledge_lookup_times_out() -> None:
    class SlowGraph(InMemoryKnowledgeGraph):
        async def find_events(self, name, scope_id):
            await asyncio.sleep(0.3)
            return await super().find_events(name, scope_id)

    graph = SlowGraph()
    graph.add_event("s1", Event(id="e1", name="Formal"))
    registry = _registry(knowledge_graph=graph, config=SearchConfig(knowledge_timeout_ms=20))

    result = await registry.execute("search_knowledge", {"type": "event", "query": "formal"}, ["s1"])

    assert not result.success


async def test_knowledge_lookup_stops_when_request_budget_runs_out() -> None:
    now = [0.0]
    visited: list[str] = []

    class SlowGraph(InMemoryKnowledgeGraph):
        async def find_events(self, name, scope_id):
            visited.append(scope_id)
            now[0] += 0.4
            return []

    budget = SearchBudget.create(1000, clock=lambda: now[0])
    registry = _registry(knowledge_graph=SlowGraph(), config=SearchConfig(min_call_ms=100))

    result = await registry.execute(
        "search_knowledge",
        {"type": "event", "query": "formal"},
        [f"s{index}" for index in range(6)],
        budget=budget,
    )

    assert not result.success
    assert visited == ["s0", "s1", "s2"]


async def test_knowledge_lookup_skips_failing_scope() -> None:
    class FlakyGraph(InMemoryKnowledgeGraph):
        async def find_events(self, name, scope_id):
            if scope_id == "s1":
                raise BackendError("graph unavailable")
            return await super().find_events(name, scope_id)

        async def get_linkbacks(self, entity_type, entity_id):
            raise BackendError("linkbacks unavailable")

    graph = FlakyGraph()
    graph.add_event("s2", Event(id="e2", name="Formal"))

    result = await _registry(knowledge_graph=graph).execute(
        "search_knowledge", {"type": "event", "query": "formal"}, ["s1", "s2"]
    )

    assert result.success
    assert result.data["scope_id"] == "s2"
    assert result.data["sources"] == []


async def test_announcement_search_skips_failing_scope() -> None:
    class FlakyAnnouncements(InMemoryAnnouncementSource):
        async def search(self, text, scope_id, limit):
            if scope_id == "s1":
                raise BackendError("announcements unavailable")
            return await super().search(text, scope_id, limit)

    announcements = FlakyAnnouncements()
    announcements.add("s2", "a3", "Dues update", "Late fee for dues starts Monday")

    result = await _registry(announcements=announcements).execute(
        "search_announcements", {"query": "dues"}, ["s1", "s2"]
    )

    assert result.success
    assert [item.id for item in result.data["results"]] == ["announcement:a3"]


async def test_search_announcements_maps_hits() -> None:
    sent = datetime(2025, 2, 1, tzinfo=timezone.utc)
    announcements = InMemoryAnnouncementSource()
    announcements.add("s1", "a1", "Dues reminder", "Dues are due Friday", sent_at=sent)
    announcements.add("s1", "a2", "Formal tickets", "Tickets on sale now")
    announcements.add("s2", "a3", "Dues update", "Late fee for dues starts Monday")
    registry = _registry(announcements=announcements)

    result = await registry.execute("search_announcements", {"query": "dues friday"}, ["s1", "s2"])

    items = result.data["results"]
    assert result.success
    assert [item.id for item in items] == ["announcement:a1", "announcement:a3"]
    assert items[0].source_kind == "announcement"
    assert items[0].metadata == {"channel": "announcements", "updated_at": sent}
    assert abs(items[0].normalized_score - 1.0) < 1e-9
    assert abs(items[1].normalized_score - 0.8) < 1e-9


async def test_calendar_find_prefers_event_results() -> None:
    search = FakeSearch([_doc("minutes", 0.9), _doc("formal", 0.5, type="event")])

    result = await _registry(search).execute("calendar_find", {"query": "formal"}, ["s1"])

    assert [item.id for item in result.data["results"]] == ["formal"]
    assert result.confidence == 0.5
