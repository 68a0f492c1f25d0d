"""FastAPI entrypoint for document indexing, question answering and traces."""

from __future__ import annotations

import os
from dataclasses import asdict
from datetime import datetime
from typing import Any

import structlog
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from hybrid_qa.config import EngineSettings
from hybrid_qa.engine import build_engine
from hybrid_qa.errors import ProviderError
from hybrid_qa.knowledge.announcements import InMemoryAnnouncementSource
from hybrid_qa.knowledge.graph import InMemoryKnowledgeGraph
from hybrid_qa.obs.tracing import TraceStore
from hybrid_qa.providers.embeddings import (
    EmbeddingProvider,
    HashingEmbeddingProvider,
    HttpEmbeddingProvider,
)
from hybrid_qa.search.backends import (
    InMemoryDocumentStore,
    InMemoryKeywordBackend,
    InMemoryVectorBackend,
    SourceDocument,
)

logger = structlog.get_logger(__name__)


def _create_llm() -> Any:
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        return None

    from langchain_openai import ChatOpenAI

    return ChatOpenAI(model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"), temperature=0)


def _create_embedder(settings: EngineSettings) -> EmbeddingProvider:
    if not settings.provider.api_key:
        return HashingEmbeddingProvider()
    return HttpEmbeddingProvider(settings.provider)


class DocumentPayload(BaseModel):
    id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    body: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)


class IndexRequest(BaseModel):
    scope_id: str = Field(min_length=1)
    documents: list[DocumentPayload] = Field(min_length=1)


class AnnouncementPayload(BaseModel):
    scope_id: str = Field(min_length=1)
    id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    body: str = ""
    sent_at: datetime | None = None


class AskRequest(BaseModel):
    query: str = Field(min_length=1)
    scope_ids: list[str] = Field(min_length=1)


class SearchRequest(BaseModel):
    query: str = Field(min_length=1)
    scope_ids: list[str] = Field(min_length=1)
    top_k: int = Field(default=10, ge=1, le=50)
    budget_ms: int | None = Field(default=None, ge=0)


app = FastAPI(title="Hybrid QA Engine", version="0.1.0")

_settings = EngineSettings()
_embedder = _create_embedder(_settings)
_document_store = InMemoryDocumentStore()
_knowledge_graph = InMemoryKnowledgeGraph()
_announcements = InMemoryAnnouncementSource()
_trace_store = TraceStore(target_latency_ms=_settings.agent.target_latency_seconds * 1000.0)
_llm = _create_llm()
_engine = build_engine(
    _settings,
    keyword_backend=InMemoryKeywordBackend(_document_store),
    vector_backend=InMemoryVectorBackend(_document_store),
    embedding_provider=_embedder,
    knowledge_graph=_knowledge_graph,
    announcements=_announcements,
    llm=_llm,
    trace_store=_trace_store,
)


@app.get("/health")
def health() -> dict[str, Any]:
    return {
        "status": "ok",
        "llm_configured": _llm is not None,
        "embedder": type(_embedder).__name__,
        "planner_mode": _engine.planner.mode,
        "documents": len(_document_store),
        "trace_count": len(_trace_store),
    }


@app.post("/documents")
async def index_documents(request: IndexRequest) -> dict[str, Any]:
    documents = [
        SourceDocument(id=doc.id, title=doc.title, body=doc.body, metadata=doc.metadata)
        for doc in request.documents
    ]
    try:
        embeddings = [await _embedder.embed(f"{doc.title}\n{doc.body}") for doc in documents]
    except ProviderError as exc:
        logger.error("document embedding failed", scope_id=request.scope_id, error=str(exc))
        raise HTTPException(status_code=502, detail="embedding provider unavailable") from exc
    _document_store.upsert(request.scope_id, documents, embeddings)
    logger.info("indexed documents", scope_id=request.scope_id, count=len(documents))
    return {"indexed": len(documents), "document_ids": [doc.id for doc in documents]}


@app.post("/announcements")
def add_announcement(request: AnnouncementPayload) -> dict[str, Any]:
    _announcements.add(
        request.scope_id, request.id, request.title, request.body, sent_at=request.sent_at
    )
    return {"added": request.id}


@app.post("/ask")
async def ask(request: AskRequest) -> dict[str, Any]:
    outcome = await _engine.answer(request.query, request.scope_ids)
    response = outcome.response
    return {
        "answer": response.text,
        "sources": response.sources,
        "confidence": response.confidence,
        "needs_clarification": response.needs_clarification,
        "clarification_question": response.clarification_question,
        "intent": outcome.plan.intent,
        "trace_id": outcome.trace.trace_id if outcome.trace else None,
        "latency_ms": outcome.latency_ms,
    }


@app.post("/search")
async def search(request: SearchRequest) -> dict[str, Any]:
    if _engine.search is None:
        raise HTTPException(status_code=503, detail="search is not configured")
    results = await _engine.search.search(
        request.query, request.scope_ids, budget_ms=request.budget_ms, top_k=request.top_k
    )
    return {
        "items": [
            {
                "id": item.id,
                "title": item.title,
                "snippet": item.body_snippet,
                "source_kind": item.source_kind,
                "scope_id": item.scope_id,
                "score": item.ranking_score,
                "metadata": item.metadata,
            }
            for item in results
        ]
    }


@app.get("/traces")
def traces(limit: int = 20) -> dict[str, Any]:
    records = [asdict(record) for record in _trace_store.list_recent(limit=limit)]
    return {"items": records}


@app.get("/traces/{trace_id}")
def trace_detail(trace_id: str) -> dict[str, Any]:
    try:
        record = _trace_store.get(trace_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return asdict(record)


@app.get("/metrics")
def metrics() -> dict[str, Any]:
    return _trace_store.summary()
