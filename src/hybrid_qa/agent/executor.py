"""Runs the tool calls of a query plan in priority order."""

from __future__ import annotations

import json
from collections.abc import Callable

import structlog

from hybrid_qa.agent.registry import ToolRegistry
from hybrid_qa.config import AgentConfig
from hybrid_qa.search.budget import SearchBudget
from hybrid_qa.types import QueryPlan, ToolCall, ToolResult, ToolTrace

logger = structlog.get_logger(__name__)


def call_signature(call: ToolCall) -> tuple[str, str]:
    """Identity of a tool call: its name plus canonical JSON of its params."""
    return call.tool_name, json.dumps(call.params, sort_keys=True, default=str)


class ToolExecutor:
    """Executes plan tools until one answers confidently.

    Duplicate `(name, params)` calls run once. Execution stops after the first
    successful result whose confidence exceeds `early_exit_confidence`, or once
    the request budget is spent.
    """

    def __init__(self, registry: ToolRegistry, config: AgentConfig | None = None) -> None:
        self.registry = registry
        self.config = config or AgentConfig()

    async def execute(
        self,
        plan: QueryPlan,
        scope_ids: list[str],
        *,
        budget: SearchBudget | None = None,
        observer: Callable[[ToolTrace], None] | None = None,
    ) -> list[ToolResult]:
        results: list[ToolResult] = []
        seen: set[tuple[str, str]] = set()

        for call in sorted(plan.tools, key=lambda item: item.priority):
            signature = call_signature(call)
            if signature in seen:
                logger.debug("skipping duplicate tool call", tool=call.tool_name)
                continue
            seen.add(signature)

            if budget is not None and budget.remaining_ms() <= 0:
                logger.info("request budget exhausted", skipped_tool=call.tool_name)
                break

            if not self.registry.has(call.tool_name):
                logger.warning("unknown tool in plan", tool=call.tool_name)
                results.append(ToolResult.failure(call.tool_name))
                continue

            result = await self.registry.execute(
                call.tool_name, dict(call.params), scope_ids, budget=budget, observer=observer
            )
            results.append(result)
            logger.info(
                "tool executed",
                tool=call.tool_name,
                success=result.success,
                confidence=result.confidence,
            )

            if result.success and result.confidence > self.config.early_exit_confidence:
                break

        return results
