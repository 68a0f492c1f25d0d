"""Turns tool results into a user-facing answer."""

from __future__ import annotations

from datetime import datetime
from typing import Any

import structlog

from hybrid_qa.config import AgentConfig
from hybrid_qa.knowledge.graph import Event, Person, Policy
from hybrid_qa.types import ComposedResponse, NormalizedResult, QueryPlan, ToolResult

logger = structlog.get_logger(__name__)

CLARIFY_TEXT = "I'm not sure what you're asking. Could you rephrase that?"
CLARIFY_QUESTION = "Could you be more specific about what you're looking for?"
NOT_FOUND_TEXT = (
    "I couldn't find any information about that. "
    "Want me to search the docs for the latest mention?"
)
NO_DETAILS_TEXT = "I couldn't find specific information about that."
CHAT_TEXT = "Hi! Ask me about upcoming events, policies, people, or anything in your docs."

_MERGED_INTENTS = {"doc_search", "content_summary"}


class ResponseComposer:
    """Formats the best tool result according to the plan intent.

    Knowledge results use per-record templates. Document intents merge up to
    `max_documents` unique documents from every successful result. Any other
    intent answered by documents cites the single top document.
    """

    def __init__(self, config: AgentConfig | None = None) -> None:
        self.config = config or AgentConfig()

    def compose(
        self, query: str, plan: QueryPlan, results: list[ToolResult]
    ) -> ComposedResponse:
        if plan.intent == "chat":
            return ComposedResponse(text=CHAT_TEXT, sources=[], confidence=plan.confidence)

        successful = sorted(
            (result for result in results if result.success),
            key=lambda result: result.confidence,
            reverse=True,
        )
        if not successful:
            logger.info("no successful tool results", intent=plan.intent, plan_confidence=plan.confidence)
            if plan.confidence < self.config.clarify_below_confidence:
                return ComposedResponse(
                    text=CLARIFY_TEXT,
                    sources=[],
                    confidence=0.0,
                    needs_clarification=True,
                    clarification_question=CLARIFY_QUESTION,
                )
            return ComposedResponse(text=NOT_FOUND_TEXT, sources=[], confidence=0.0)

        best = successful[0]
        data = best.data or {}
        if data.get("events"):
            return _event_response(data["events"][0], data, best.confidence)
        if data.get("policies"):
            return _policy_response(data["policies"][0], data, best.confidence)
        if data.get("people"):
            return _person_response(data["people"][0], data, best.confidence)

        if plan.intent in _MERGED_INTENTS:
            return self._merged_response(successful, best.confidence)
        return self._single_document_response(best)

    def _merged_response(self, successful: list[ToolResult], confidence: float) -> ComposedResponse:
        documents: list[NormalizedResult] = []
        seen: set[str] = set()
        for result in successful:
            for item in _documents(result):
                if item.id in seen:
                    continue
                seen.add(item.id)
                documents.append(item)
                if len(documents) >= self.config.max_documents:
                    break
            if len(documents) >= self.config.max_documents:
                break

        if not documents:
            return ComposedResponse(text=NO_DETAILS_TEXT, sources=[], confidence=0.0)

        lines = [f"• {item.title}: {self._snippet(item)}" for item in documents]
        return ComposedResponse(
            text="\n".join(lines),
            sources=_unique([item.title for item in documents]),
            confidence=confidence,
        )

    def _single_document_response(self, result: ToolResult) -> ComposedResponse:
        documents = _documents(result)
        if not documents:
            return ComposedResponse(text=NO_DETAILS_TEXT, sources=[], confidence=0.0)
        top = documents[0]
        return ComposedResponse(
            text=self._snippet(top),
            sources=[top.title],
            confidence=result.confidence,
        )

    def _snippet(self, item: NormalizedResult) -> str:
        body = " ".join(item.body_snippet.split())
        return body[: self.config.snippet_chars] or item.title


def format_event_time(start_at: datetime) -> str:
    """'Friday, Mar 7 at 6:30 PM' style rendering."""
    hour = int(start_at.strftime("%I"))
    return f"{start_at:%A, %b} {start_at.day} at {hour}:{start_at:%M %p}"


def _event_response(event: Event, data: dict[str, Any], confidence: float) -> ComposedResponse:
    text = event.name
    if event.start_at is not None:
        text += f" is {format_event_time(event.start_at)}"
    if event.location:
        text += f" at {event.location}"
    text += "."
    return _with_source(text, data, confidence)


def _policy_response(policy: Policy, data: dict[str, Any], confidence: float) -> ComposedResponse:
    text = policy.title
    if policy.summary:
        text += f"\n\n{policy.summary}"
    if policy.bullets:
        text += "\n\nKey points:\n" + "\n".join(f"• {bullet}" for bullet in policy.bullets)
    return _with_source(text, data, confidence)


def _person_response(person: Person, data: dict[str, Any], confidence: float) -> ComposedResponse:
    text = person.name
    if person.role:
        text += f" is the {person.role}"
    text += "."
    contact = [value for value in (person.email, person.phone) if value]
    if contact:
        text += f" Contact: {', '.join(contact)}."
    return _with_source(text, data, confidence)


def _with_source(text: str, data: dict[str, Any], confidence: float) -> ComposedResponse:
    sources = list(data.get("sources") or [])
    if sources:
        text += f"\n\nSource: {sources[0]}"
    return ComposedResponse(text=text, sources=sources, confidence=confidence)


def _documents(result: ToolResult) -> list[NormalizedResult]:
    if not result.data:
        return []
    return [item for item in result.data.get("results", []) if isinstance(item, NormalizedResult)]


def _unique(values: list[str]) -> list[str]:
    return list(dict.fromkeys(values))
