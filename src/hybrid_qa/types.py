"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

Intent = Literal[
    "event_lookup",
    "policy_lookup",
    "person_lookup",
    "doc_search",
    "content_summary",
    "chat",
    "clarify",
]


@dataclass(slots=True)
class NormalizedResult:
    """A backend hit mapped onto the common result shape."""

    id: str
    title: str
    body_snippet: str
    source_kind: str
    raw_score: float
    normalized_score: float
    scope_id: str
    metadata: dict[str, Any] = field(default_factory=dict)
    final_score: float | None = None

    @property
    def ranking_score(self) -> float:
        """Reranked score when fusion ran, otherwise the normalized score."""
        return self.normalized_score if self.final_score is None else self.final_score


@dataclass(slots=True)
class ScopeOutcome:
    """Merged output of one scope search."""

    scope_id: str
    results: list[NormalizedResult]
    keyword_elapsed_ms: float
    vector_elapsed_ms: float
    top_score: float


class ToolCall(BaseModel):
    """One planned invocation of a retrieval tool."""

    model_config = ConfigDict(frozen=True)

    tool_name: str = Field(validation_alias=AliasChoices("tool_name", "tool", "name"))
    params: dict[str, Any] = Field(default_factory=dict)
    priority: int = 1


class QueryPlan(BaseModel):
    """Classified intent plus the ordered tool calls that should answer it."""

    model_config = ConfigDict(frozen=True)

    intent: Intent
    confidence: float = Field(ge=0.0, le=1.0)
    entities: dict[str, list[str]] = Field(default_factory=dict)
    tools: list[ToolCall] = Field(default_factory=list)
    reasoning: str | None = None

    @field_validator("tools")
    @classmethod
    def _order_by_priority(cls, tools: list[ToolCall]) -> list[ToolCall]:
        return sorted(tools, key=lambda call: call.priority)


@dataclass(slots=True)
class ToolResult:
    """Outcome of one executed tool call."""

    tool_name: str
    success: bool
    data: dict[str, Any] | None = None
    confidence: float = 0.0

    @classmethod
    def failure(cls, tool_name: str) -> "ToolResult":
        return cls(tool_name=tool_name, success=False, data=None, confidence=0.0)


@dataclass(slots=True)
class ComposedResponse:
    """Final answer handed back to the conversational channel."""

    text: str
    sources: list[str]
    confidence: float
    needs_clarification: bool = False
    clarification_question: str | None = None


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an executed tool call."""

    name: str
    input_payload: dict[str, Any]
    output_preview: str
    latency_ms: float
    success: bool = False
    confidence: float = 0.0
