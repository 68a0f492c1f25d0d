"""Tool registry built on Pydantic v2 models."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from time import perf_counter
from typing import Any

import structlog
from langchain_core.tools import StructuredTool
from pydantic import BaseModel, ConfigDict, Field

from hybrid_qa.search.budget import SearchBudget
from hybrid_qa.types import ToolResult, ToolTrace

logger = structlog.get_logger(__name__)

ToolHandler = Callable[[Any, list[str], SearchBudget | None], Awaitable[ToolResult]]


class ToolSpec(BaseModel):
    """Declarative tool specification for registration and validation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str
    args_schema: type[BaseModel]
    handler: ToolHandler
    tags: list[str] = Field(default_factory=list)

    async def invoke(
        self, payload: dict[str, Any], scope_ids: list[str], budget: SearchBudget | None = None
    ) -> ToolResult:
        data = self.args_schema.model_validate(payload)
        return await self.handler(data, scope_ids, budget)


class ToolRegistry:
    """Stores tool specs, runs them safely and exports LangChain tool objects."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}
        self._observer: Callable[[ToolTrace], None] | None = None

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec

    def set_observer(self, observer: Callable[[ToolTrace], None] | None) -> None:
        """Set an optional callback invoked after each tool execution."""
        self._observer = observer

    def has(self, name: str) -> bool:
        return name in self._tools

    def specs(self) -> list[ToolSpec]:
        return list(self._tools.values())

    async def execute(
        self,
        name: str,
        payload: dict[str, Any],
        scope_ids: list[str],
        *,
        budget: SearchBudget | None = None,
        observer: Callable[[ToolTrace], None] | None = None,
    ) -> ToolResult:
        """Run a registered tool.

        Raises `KeyError` for unknown names only. Invalid parameters and any
        error raised by the handler come back as a failed `ToolResult`.
        `observer` receives this call's trace in addition to the registry observer.
        `budget` is the request budget handed to the handler; None lets the
        handler start its own.
        """

        spec = self._tools.get(name)
        if spec is None:
            raise KeyError(f"Unknown tool: {name}")
        return await self._execute_spec(spec, payload, scope_ids, budget, observer)

    def as_langchain_tools(self, scope_ids: list[str]) -> list[StructuredTool]:
        tools: list[StructuredTool] = []
        for spec in self._tools.values():
            tools.append(
                StructuredTool.from_function(
                    name=spec.name,
                    description=spec.description,
                    args_schema=spec.args_schema,
                    coroutine=self._build_coroutine(spec, scope_ids),
                )
            )
        return tools

    def _build_coroutine(
        self, spec: ToolSpec, scope_ids: list[str]
    ) -> Callable[..., Awaitable[str]]:
        async def _callable(**kwargs: Any) -> str:
            result = await self._execute_spec(spec, kwargs, scope_ids)
            return preview_result(result)

        return _callable

    async def _execute_spec(
        self,
        spec: ToolSpec,
        payload: dict[str, Any],
        scope_ids: list[str],
        budget: SearchBudget | None = None,
        observer: Callable[[ToolTrace], None] | None = None,
    ) -> ToolResult:
        start = perf_counter()
        try:
            result = await spec.invoke(payload, scope_ids, budget)
        except Exception as exc:
            logger.error("tool execution failed", tool=spec.name, error=str(exc))
            result = ToolResult.failure(spec.name)
        latency_ms = (perf_counter() - start) * 1000.0

        trace = ToolTrace(
            name=spec.name,
            input_payload=payload,
            output_preview=preview_result(result),
            latency_ms=latency_ms,
            success=result.success,
            confidence=result.confidence,
        )
        for callback in (self._observer, observer):
            if callback is not None:
                callback(trace)
        return result


def preview_result(result: ToolResult, max_length: int = 320) -> str:
    """Short human-readable summary of a tool result."""
    if not result.success or not result.data:
        return "NO_RESULTS"
    lines: list[str] = []
    for key, items in result.data.items():
        if not isinstance(items, list):
            continue
        for item in items:
            if isinstance(item, str):
                label = item
            else:
                label = getattr(item, "title", None) or getattr(item, "name", None) or str(item)
            lines.append(f"[{key}] {label}")
    text = "\n".join(lines) or "OK"
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."
