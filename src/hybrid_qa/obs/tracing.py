"""In-memory answer traces and latency metrics."""

from __future__ import annotations

import threading
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone

from hybrid_qa.types import ToolTrace


@dataclass(slots=True)
class TraceRecord:
    trace_id: str
    timestamp_utc: str
    query: str
    scope_ids: list[str]
    intent: str
    plan_confidence: float
    answer: str
    sources: list[str]
    confidence: float
    needs_clarification: bool
    tool_traces: list[ToolTrace]
    latency_ms: float
    latency_target_met: bool


class TraceStore:
    """Keeps the most recent answer traces for API-level observability."""

    def __init__(self, *, max_records: int = 1000, target_latency_ms: float = 8000.0) -> None:
        self._records: OrderedDict[str, TraceRecord] = OrderedDict()
        self._lock = threading.Lock()
        self.max_records = max_records
        self.target_latency_ms = target_latency_ms

    def create_record(
        self,
        *,
        query: str,
        scope_ids: list[str],
        intent: str,
        plan_confidence: float,
        answer: str,
        sources: list[str],
        confidence: float,
        needs_clarification: bool,
        tool_traces: list[ToolTrace],
        latency_ms: float,
    ) -> TraceRecord:
        record = TraceRecord(
            trace_id=str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            query=query,
            scope_ids=list(scope_ids),
            intent=intent,
            plan_confidence=plan_confidence,
            answer=answer,
            sources=list(sources),
            confidence=confidence,
            needs_clarification=needs_clarification,
            tool_traces=tool_traces,
            latency_ms=latency_ms,
            latency_target_met=latency_ms <= self.target_latency_ms,
        )
        with self._lock:
            self._records[record.trace_id] = record
            while len(self._records) > self.max_records:
                self._records.popitem(last=False)
        return record

    def get(self, trace_id: str) -> TraceRecord:
        record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[TraceRecord]:
        with self._lock:
            records = list(self._records.values())
        return records[-limit:] if limit > 0 else []

    def __len__(self) -> int:
        return len(self._records)

    def summary(self) -> dict[str, float | int]:
        """Aggregate request count, latency and answer-quality rates."""
        with self._lock:
            records = list(self._records.values())
        total = len(records)
        if total == 0:
            return {
                "total_requests": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "latency_target_rate": 0.0,
                "clarification_rate": 0.0,
                "no_answer_rate": 0.0,
                "avg_tool_calls": 0.0,
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        on_target = sum(1 for record in records if record.latency_target_met)
        clarifications = sum(1 for record in records if record.needs_clarification)
        unanswered = sum(
            1
            for record in records
            if not record.sources and not record.needs_clarification and record.intent != "chat"
        )
        tool_calls = sum(len(record.tool_traces) for record in records)

        return {
            "total_requests": total,
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "latency_target_rate": on_target / total,
            "clarification_rate": clarifications / total,
            "no_answer_rate": unanswered / total,
            "avg_tool_calls": tool_calls / total,
        }


class Timer:
    """Context timer for end-to-end answer latency."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0
