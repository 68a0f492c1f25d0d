"""Query-to-answer pipeline: plan, execute tools, compose."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from hybrid_qa.agent.composer import NOT_FOUND_TEXT, ResponseComposer
from hybrid_qa.agent.executor import ToolExecutor
from hybrid_qa.agent.planner import LlmQueryClassifier, QueryPlanner
from hybrid_qa.agent.registry import ToolRegistry
from hybrid_qa.agent.tools import register_builtin_tools
from hybrid_qa.config import EngineSettings
from hybrid_qa.knowledge.announcements import AnnouncementSource
from hybrid_qa.knowledge.graph import KnowledgeGraph
from hybrid_qa.obs.tracing import Timer, TraceRecord, TraceStore
from hybrid_qa.providers.embeddings import EmbeddingProvider
from hybrid_qa.search.backends import KeywordBackend, VectorBackend
from hybrid_qa.search.embedding_cache import CircuitBreaker, EmbeddingCache, EmbeddingService
from hybrid_qa.search.executors import KeywordExecutor, ScoreScaler, VectorExecutor
from hybrid_qa.search.fusion import WeightedScoreReranker
from hybrid_qa.search.orchestrator import HybridSearchController, ScopeSearcher
from hybrid_qa.types import ComposedResponse, QueryPlan, ToolResult, ToolTrace

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class AnswerOutcome:
    """Everything produced while answering one query."""

    plan: QueryPlan
    response: ComposedResponse
    tool_results: list[ToolResult] = field(default_factory=list)
    tool_traces: list[ToolTrace] = field(default_factory=list)
    latency_ms: float = 0.0
    trace: TraceRecord | None = None


class AnswerEngine:
    """Entry point used by conversational channels.

    `plan_and_answer` never raises; an unexpected failure anywhere in the
    pipeline becomes a "couldn't find" response. One search budget, started when
    the query arrives, bounds planning and every tool call.
    """

    def __init__(
        self,
        planner: QueryPlanner,
        executor: ToolExecutor,
        composer: ResponseComposer,
        *,
        trace_store: TraceStore | None = None,
        search: HybridSearchController | None = None,
    ) -> None:
        self.planner = planner
        self.executor = executor
        self.composer = composer
        self.trace_store = trace_store
        self.search = search

    async def plan_and_answer(self, query: str, scope_ids: list[str]) -> ComposedResponse:
        outcome = await self.answer(query, scope_ids)
        return outcome.response

    async def answer(self, query: str, scope_ids: list[str]) -> AnswerOutcome:
        traces: list[ToolTrace] = []
        results: list[ToolResult] = []
        plan = QueryPlan(intent="doc_search", confidence=0.0)
        log = logger.bind(scopes=len(scope_ids))
        budget = self.search.new_budget() if self.search is not None else None

        with Timer() as timer:
            try:
                plan = await self.planner.plan(query)
                results = await self.executor.execute(
                    plan, scope_ids, budget=budget, observer=traces.append
                )
                response = self.composer.compose(query, plan, results)
            except Exception as exc:
                log.error("answer pipeline failed", error=str(exc))
                response = ComposedResponse(text=NOT_FOUND_TEXT, sources=[], confidence=0.0)

        log.info(
            "answered query",
            intent=plan.intent,
            tools=[trace.name for trace in traces],
            confidence=response.confidence,
            needs_clarification=response.needs_clarification,
            latency_ms=round(timer.elapsed_ms, 1),
        )

        record = None
        if self.trace_store is not None:
            record = self.trace_store.create_record(
                query=query,
                scope_ids=scope_ids,
                intent=plan.intent,
                plan_confidence=plan.confidence,
                answer=response.text,
                sources=response.sources,
                confidence=response.confidence,
                needs_clarification=response.needs_clarification,
                tool_traces=traces,
                latency_ms=timer.elapsed_ms,
            )
        return AnswerOutcome(
            plan=plan,
            response=response,
            tool_results=results,
            tool_traces=traces,
            latency_ms=timer.elapsed_ms,
            trace=record,
        )


def build_engine(
    settings: EngineSettings | None = None,
    *,
    keyword_backend: KeywordBackend | None,
    vector_backend: VectorBackend | None = None,
    embedding_provider: EmbeddingProvider | None = None,
    knowledge_graph: KnowledgeGraph | None = None,
    announcements: AnnouncementSource | None = None,
    llm: Any | None = None,
    trace_store: TraceStore | None = None,
    registry: ToolRegistry | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> AnswerEngine:
    """Wire search, tools, planner and composer from one settings object.

    The embedding cache and circuit breaker are created here once and shared by
    every request the returned engine serves.
    """

    settings = settings or EngineSettings()
    scaler = ScoreScaler(settings.scoring)

    embeddings = EmbeddingService(
        embedding_provider,
        cache=EmbeddingCache(
            settings.embedding.cache_ttl_ms,
            max_entries=settings.embedding.cache_max_entries,
            clock=clock,
        ),
        breaker=CircuitBreaker(
            settings.embedding.breaker_threshold,
            settings.embedding.breaker_window_ms,
            clock=clock,
        ),
        config=settings.embedding,
    )
    scope_searcher = ScopeSearcher(
        KeywordExecutor(keyword_backend, settings.search, scaler),
        VectorExecutor(vector_backend, settings.search, scaler),
        settings.search,
        reranker=WeightedScoreReranker(settings.rerank) if settings.rerank.enabled else None,
    )
    search = HybridSearchController(scope_searcher, embeddings, settings.search, clock=clock)

    registry = registry or ToolRegistry()
    register_builtin_tools(
        registry,
        search,
        knowledge_graph=knowledge_graph,
        announcements=announcements,
        config=settings.search,
        scaler=scaler,
    )

    classifier = LlmQueryClassifier(llm, settings.agent) if llm is not None else None
    return AnswerEngine(
        QueryPlanner(classifier=classifier, config=settings.agent),
        ToolExecutor(registry, settings.agent),
        ResponseComposer(settings.agent),
        trace_store=trace_store,
        search=search,
    )
