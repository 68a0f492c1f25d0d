"""Query planning: rule-based intent classification with an optional LLM layer."""

from __future__ import annotations

import asyncio
import re
from typing import Any, Protocol

import structlog
from langchain_core.output_parsers import JsonOutputParser
from langchain_core.prompts import ChatPromptTemplate
from pydantic import ValidationError

from hybrid_qa.config import AgentConfig
from hybrid_qa.errors import PlanningError
from hybrid_qa.types import Intent, QueryPlan, ToolCall

logger = structlog.get_logger(__name__)

_SYSTEM_PROMPT = """
You are a query planner for a workspace assistant. Analyze the user's query and
create an execution plan.

INTENTS:
- event_lookup: "when is X", "where is X", "what time is X"
- policy_lookup: "what is the policy on X", "how does X work"
- person_lookup: "who is X", "what's X's role"
- doc_search: general questions requiring document search
- content_summary: requests to summarize or recap documents or announcements
- clarify: ambiguous query needing clarification
- chat: casual conversation with no information request

TOOLS AVAILABLE:
1. search_knowledge: params type (event, policy or person) and query
2. search_docs: params query and optional limit
3. search_announcements: params query and optional limit
4. calendar_find: params query and optional limit

RULES:
- Prefer the knowledge graph (high confidence, fast).
- Fall back to search_docs if the graph may not have the answer.
- Lower priority numbers run first.
- Confidence > 0.7 = execute, < 0.5 = clarify.

Return only a JSON object with keys: intent, confidence, entities, tools
(each tool has tool, params and priority) and reasoning.
""".strip()

_HUMAN_PROMPT = 'Query: "{query}"\n\nCreate execution plan (JSON only):'

_GREETING = re.compile(
    r"^(?:hi|hiya|hello|hey|yo|sup|howdy|thanks|thank you|thx|ty|ok|okay|cool|"
    r"good (?:morning|afternoon|evening|night))"
    r"(?: (?:there|all|everyone|team|so much))?$"
)
_EVENT = re.compile(
    r"\b(?:(?:when|where)(?: is| are| was|'s)|what time(?: is| are| does| do)?)\b"
    r"(?: (?:the|our|my|a|an)\b)?(?P<subject>.{0,60})$"
)
_PERSON = re.compile(
    r"\bwho(?: is| are| was|'s)\b(?: (?:the|our)\b)?(?P<subject>.{0,60})$"
)
_SUMMARY = re.compile(r"\b(?:summari[sz]e|summary|recap|tl;?dr|overview)\b")
_POLICY = re.compile(
    r"\b(?:what is|what are|how does|how do)\b(?: (?:the|our)\b)?(?P<subject>.{0,80})$"
    r"|\bpolic(?:y|ies)\b|\brules?\b"
)


class QueryClassifier(Protocol):
    async def classify(self, text: str) -> QueryPlan | None:
        """Return a plan, or None when the classifier cannot decide."""


class RuleBasedClassifier:
    """Deterministic pattern rules; always produces a plan."""

    async def classify(self, text: str) -> QueryPlan:
        return self.classify_sync(text)

    def classify_sync(self, text: str) -> QueryPlan:
        query = " ".join(text.split())
        lowered = query.lower().rstrip("?!. ")

        if not re.search(r"\w", lowered):
            return QueryPlan(intent="clarify", confidence=0.3, reasoning="no informational content")

        if _GREETING.match(re.sub(r"[!.,]+", "", lowered).strip()):
            return QueryPlan(intent="chat", confidence=0.9, reasoning="greeting")

        match = _EVENT.search(lowered)
        if match:
            return _knowledge_plan("event_lookup", "event", "events", query, match)

        match = _PERSON.search(lowered)
        if match:
            return _knowledge_plan("person_lookup", "person", "people", query, match)

        if _SUMMARY.search(lowered):
            return QueryPlan(
                intent="content_summary",
                confidence=0.65,
                tools=[
                    ToolCall(tool_name="search_docs", params={"query": query, "limit": 10}, priority=1),
                    ToolCall(tool_name="search_announcements", params={"query": query}, priority=2),
                ],
                reasoning="summary request",
            )

        match = _POLICY.search(lowered)
        if match:
            return _knowledge_plan("policy_lookup", "policy", "policies", query, match)

        return QueryPlan(
            intent="doc_search",
            confidence=0.6,
            tools=[
                ToolCall(tool_name="search_docs", params={"query": query}, priority=1),
                ToolCall(tool_name="search_announcements", params={"query": query}, priority=2),
            ],
            reasoning="default document search",
        )


def _knowledge_plan(
    intent: Intent, kind: str, entity_key: str, query: str, match: re.Match[str]
) -> QueryPlan:
    subject = (match.group("subject") or "").strip(" ?!.'\"")
    if not subject:
        subject = query
    return QueryPlan(
        intent=intent,
        confidence=0.7,
        entities={entity_key: [subject]},
        tools=[
            ToolCall(tool_name="search_knowledge", params={"type": kind, "query": subject}, priority=1),
            ToolCall(tool_name="search_docs", params={"query": query}, priority=2),
        ],
        reasoning=f"{kind} pattern",
    )


class LlmQueryClassifier:
    """LangChain chat-model classifier returning a JSON plan.

    Any failure (timeout, provider error, unparseable or invalid JSON) is
    logged and reported as None so the caller falls back to the rules.
    """

    def __init__(self, llm: Any, config: AgentConfig | None = None) -> None:
        self.config = config or AgentConfig()
        prompt = ChatPromptTemplate.from_messages(
            [("system", _SYSTEM_PROMPT), ("human", _HUMAN_PROMPT)]
        )
        self._chain = prompt | llm | JsonOutputParser()

    async def classify(self, text: str) -> QueryPlan | None:
        try:
            raw = await asyncio.wait_for(
                self._chain.ainvoke({"query": text}),
                timeout=self.config.classifier_timeout_ms / 1000.0,
            )
            plan = _parse_plan(raw)
        except asyncio.TimeoutError:
            logger.warning("llm classifier timed out", timeout_ms=self.config.classifier_timeout_ms)
            return None
        except Exception as exc:
            logger.warning("llm classifier failed", error=str(exc))
            return None

        logger.info(
            "llm plan",
            intent=plan.intent,
            confidence=plan.confidence,
            tools=[call.tool_name for call in plan.tools],
        )
        return plan


def _parse_plan(raw: Any) -> QueryPlan:
    if not isinstance(raw, dict):
        raise PlanningError(f"expected a JSON object, got {type(raw).__name__}")
    try:
        return QueryPlan.model_validate(raw)
    except ValidationError as exc:
        raise PlanningError(str(exc)) from exc


class QueryPlanner:
    """Tries the optional classifier first, then the deterministic rules.

    A classifier plan is accepted only when its confidence is above
    `AgentConfig.llm_min_confidence`. `plan` never raises.
    """

    def __init__(
        self,
        *,
        classifier: QueryClassifier | None = None,
        rules: RuleBasedClassifier | None = None,
        config: AgentConfig | None = None,
    ) -> None:
        self.classifier = classifier
        self.rules = rules or RuleBasedClassifier()
        self.config = config or AgentConfig()

    @property
    def mode(self) -> str:
        return "llm" if self.classifier is not None else "rules"

    async def plan(self, text: str) -> QueryPlan:
        if self.classifier is not None:
            try:
                plan = await self.classifier.classify(text)
            except Exception as exc:
                logger.warning("classifier raised, using rules", error=str(exc))
                plan = None
            if plan is not None and plan.confidence > self.config.llm_min_confidence:
                return plan
            if plan is not None:
                logger.info("classifier plan rejected", confidence=plan.confidence)

        plan = self.rules.classify_sync(text)
        logger.info("rule plan", intent=plan.intent, confidence=plan.confidence)
        return plan
