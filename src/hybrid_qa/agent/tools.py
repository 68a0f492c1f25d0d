"""Built-in retrieval tools used by the tool executor."""

from __future__ import annotations

import asyncio
from typing import Any, Literal

import structlog
from pydantic import BaseModel, Field

from hybrid_qa.agent.registry import ToolRegistry, ToolSpec
from hybrid_qa.config import SearchConfig
from hybrid_qa.knowledge.announcements import AnnouncementSource
from hybrid_qa.knowledge.graph import KnowledgeGraph
from hybrid_qa.search.budget import SearchBudget
from hybrid_qa.search.executors import ScoreScaler
from hybrid_qa.search.orchestrator import HybridSearchController
from hybrid_qa.types import NormalizedResult, ToolResult

logger = structlog.get_logger(__name__)

_KNOWLEDGE_CONFIDENCE = 0.9


class SearchDocsInput(BaseModel):
    query: str = Field(min_length=1)
    limit: int = Field(default=5, ge=1, le=20)


class SearchKnowledgeInput(BaseModel):
    type: Literal["event", "policy", "person"]
    query: str = Field(min_length=1)


class SearchAnnouncementsInput(BaseModel):
    query: str = Field(min_length=1)
    limit: int = Field(default=5, ge=1, le=20)


def register_builtin_tools(
    registry: ToolRegistry,
    search: HybridSearchController,
    *,
    knowledge_graph: KnowledgeGraph | None = None,
    announcements: AnnouncementSource | None = None,
    config: SearchConfig | None = None,
    scaler: ScoreScaler | None = None,
) -> None:
    """Register the default tool set used by the planner.

    Tools:
    - `search_docs`: budgeted keyword + vector search across scopes.
    - `search_knowledge`: event/policy/person lookup in the knowledge graph.
    - `search_announcements`: keyword search over sent announcements.
    - `calendar_find`: document search that prefers event-typed results.
    """

    config = config or SearchConfig()
    scaler = scaler or ScoreScaler()

    async def _search_docs(
        input_data: SearchDocsInput, scope_ids: list[str], budget: SearchBudget | None
    ) -> ToolResult:
        results = await search.search(
            input_data.query, scope_ids, budget=budget, top_k=input_data.limit
        )
        return _results_tool_result("search_docs", results)

    async def _search_knowledge(
        input_data: SearchKnowledgeInput, scope_ids: list[str], budget: SearchBudget | None
    ) -> ToolResult:
        if knowledge_graph is None:
            return ToolResult.failure("search_knowledge")
        if budget is None:
            budget = search.new_budget()

        lookups = {
            "event": ("events", knowledge_graph.find_events),
            "policy": ("policies", knowledge_graph.find_policies),
            "person": ("people", knowledge_graph.find_people),
        }
        key, lookup = lookups[input_data.type]
        for scope_id in scope_ids:
            timeout_ms = _call_timeout_ms(budget, config.knowledge_timeout_ms, config.min_call_ms)
            if timeout_ms is None:
                logger.info("insufficient budget, stopping knowledge lookup", scope_id=scope_id)
                break
            try:
                records = await asyncio.wait_for(
                    lookup(input_data.query, scope_id), timeout=timeout_ms / 1000.0
                )
            except asyncio.TimeoutError:
                logger.warning("knowledge lookup timed out", kind=input_data.type, scope_id=scope_id)
                continue
            except Exception as exc:
                logger.error(
                    "knowledge lookup failed", kind=input_data.type, scope_id=scope_id, error=str(exc)
                )
                continue
            if not records:
                continue
            sources = await _linkbacks(input_data.type, records[0].id, budget)
            return ToolResult(
                tool_name="search_knowledge",
                success=True,
                data={key: records, "sources": sources, "scope_id": scope_id},
                confidence=_KNOWLEDGE_CONFIDENCE,
            )
        return ToolResult.failure("search_knowledge")

    async def _search_announcements(
        input_data: SearchAnnouncementsInput, scope_ids: list[str], budget: SearchBudget | None
    ) -> ToolResult:
        if announcements is None:
            return ToolResult.failure("search_announcements")
        if budget is None:
            budget = search.new_budget()

        results: list[NormalizedResult] = []
        for scope_id in scope_ids:
            timeout_ms = _call_timeout_ms(budget, config.keyword_timeout_ms, config.min_call_ms)
            if timeout_ms is None:
                logger.info("insufficient budget, stopping announcement search", scope_id=scope_id)
                break
            try:
                hits = await asyncio.wait_for(
                    announcements.search(input_data.query, scope_id, input_data.limit),
                    timeout=timeout_ms / 1000.0,
                )
            except asyncio.TimeoutError:
                logger.warning("announcement search timed out", scope_id=scope_id)
                continue
            except Exception as exc:
                logger.error("announcement search failed", scope_id=scope_id, error=str(exc))
                continue
            for hit in hits:
                metadata: dict[str, Any] = {"channel": "announcements"}
                if hit.sent_at is not None:
                    metadata["updated_at"] = hit.sent_at
                results.append(
                    NormalizedResult(
                        id=f"announcement:{hit.id}",
                        title=hit.title,
                        body_snippet=hit.body,
                        source_kind="announcement",
                        raw_score=hit.rank,
                        normalized_score=scaler.keyword(hit.rank),
                        scope_id=scope_id,
                        metadata=metadata,
                    )
                )
        results.sort(key=lambda item: item.normalized_score, reverse=True)
        return _results_tool_result("search_announcements", results[: input_data.limit])

    async def _calendar_find(
        input_data: SearchDocsInput, scope_ids: list[str], budget: SearchBudget | None
    ) -> ToolResult:
        results = await search.search(
            input_data.query, scope_ids, budget=budget, top_k=input_data.limit
        )
        events = [
            item
            for item in results
            if item.metadata.get("type") == "event" or item.metadata.get("source_type") == "gcal"
        ]
        return _results_tool_result("calendar_find", events or results)

    async def _linkbacks(entity_type: str, entity_id: str, budget: SearchBudget) -> list[str]:
        timeout_ms = _call_timeout_ms(budget, config.knowledge_timeout_ms, config.min_call_ms)
        if timeout_ms is None:
            return []
        try:
            return await asyncio.wait_for(
                knowledge_graph.get_linkbacks(entity_type, entity_id), timeout=timeout_ms / 1000.0
            )
        except Exception as exc:
            logger.warning("linkback lookup failed", entity_id=entity_id, error=str(exc))
            return []

    registry.register(
        ToolSpec(
            name="search_docs",
            description="Keyword + vector search across documents in the caller's scopes.",
            args_schema=SearchDocsInput,
            handler=_search_docs,
            tags=["retrieval", "hybrid"],
        )
    )
    registry.register(
        ToolSpec(
            name="search_knowledge",
            description="Look up an event, policy or person by name in the knowledge graph.",
            args_schema=SearchKnowledgeInput,
            handler=_search_knowledge,
            tags=["knowledge"],
        )
    )
    registry.register(
        ToolSpec(
            name="search_announcements",
            description="Keyword search over announcements sent to the scope.",
            args_schema=SearchAnnouncementsInput,
            handler=_search_announcements,
            tags=["retrieval", "announcements"],
        )
    )
    registry.register(
        ToolSpec(
            name="calendar_find",
            description="Find calendar events; falls back to general document hits.",
            args_schema=SearchDocsInput,
            handler=_calendar_find,
            tags=["retrieval", "calendar"],
        )
    )


def _call_timeout_ms(budget: SearchBudget, soft_timeout_ms: int, min_call_ms: int) -> int | None:
    """Per-call timeout bounded by the remaining budget, or None below `min_call_ms`."""
    timeout_ms = min(soft_timeout_ms, budget.remaining_ms())
    if timeout_ms < min_call_ms:
        return None
    return timeout_ms


def _results_tool_result(tool_name: str, results: list[NormalizedResult]) -> ToolResult:
    if not results:
        return ToolResult.failure(tool_name)
    return ToolResult(
        tool_name=tool_name,
        success=True,
        data={"results": results},
        confidence=min(1.0, results[0].ranking_score),
    )
