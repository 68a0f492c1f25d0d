"""Search backend contracts, boundary result shapes and in-memory adapters."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from math import sqrt
from typing import Any, Protocol

from hybrid_qa.errors import BackendError


@dataclass(slots=True)
class KeywordHit:
    """Row returned by a full-text backend. `rank` is the backend's own rank value."""

    id: str
    title: str
    body: str
    rank: float
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: "KeywordHit | Mapping[str, Any]") -> "KeywordHit":
        if isinstance(row, KeywordHit):
            return row
        return cls(
            id=str(row["id"]),
            title=str(row.get("title") or ""),
            body=str(row.get("body") or ""),
            rank=float(row.get("rank") or 0.0),
            metadata=dict(row.get("metadata") or {}),
        )


@dataclass(slots=True)
class VectorHit:
    """Row returned by a vector backend. `similarity` is usually in [0, 1]."""

    id: str
    title: str
    body: str
    similarity: float
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: "VectorHit | Mapping[str, Any]") -> "VectorHit":
        if isinstance(row, VectorHit):
            return row
        similarity = row.get("similarity")
        return cls(
            id=str(row["id"]),
            title=str(row.get("title") or ""),
            body=str(row.get("body") or ""),
            similarity=float(similarity) if isinstance(similarity, (int, float)) else 0.0,
            metadata=dict(row.get("metadata") or {}),
        )


class KeywordBackend(Protocol):
    """Full-text search over one scope."""

    async def search(
        self, text: str, scope_id: str, limit: int, offset: int = 0
    ) -> Sequence[KeywordHit | Mapping[str, Any]]:
        """Return ranked keyword hits."""


class VectorBackend(Protocol):
    """Vector similarity search over one scope."""

    async def search(
        self,
        embedding: list[float],
        scope_id: str,
        limit: int,
        offset: int = 0,
        user_id: str | None = None,
    ) -> Sequence[VectorHit | Mapping[str, Any]]:
        """Return hits ordered by similarity."""


@dataclass(slots=True)
class SourceDocument:
    """A searchable record as handed to the in-memory store."""

    id: str
    title: str
    body: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class _StoredDocument:
    document: SourceDocument
    scope_id: str
    embedding: list[float]


class InMemoryDocumentStore:
    """Deterministic scoped document store used for tests and local prototyping."""

    def __init__(self) -> None:
        self._store: dict[tuple[str, str], _StoredDocument] = {}

    def upsert(
        self,
        scope_id: str,
        documents: list[SourceDocument],
        embeddings: list[list[float]],
    ) -> None:
        if len(documents) != len(embeddings):
            raise ValueError("documents and embeddings must have the same length")
        for document, embedding in zip(documents, embeddings, strict=True):
            self._store[(scope_id, document.id)] = _StoredDocument(
                document=document, scope_id=scope_id, embedding=embedding
            )

    def scope_documents(self, scope_id: str) -> list[_StoredDocument]:
        return [rec for rec in self._store.values() if rec.scope_id == scope_id]

    def __len__(self) -> int:
        return len(self._store)


class InMemoryKeywordBackend:
    """Token-overlap keyword search with ranks in the usual full-text range (0-0.1)."""

    def __init__(self, store: InMemoryDocumentStore) -> None:
        self._store = store

    async def search(
        self, text: str, scope_id: str, limit: int, offset: int = 0
    ) -> list[KeywordHit]:
        query_tokens = set(_tokens(text))
        if not query_tokens:
            return []

        scored: list[KeywordHit] = []
        for rec in self._store.scope_documents(scope_id):
            doc = rec.document
            doc_tokens = set(_tokens(f"{doc.title} {doc.body}"))
            overlap = len(query_tokens & doc_tokens) / len(query_tokens)
            if overlap == 0:
                continue
            scored.append(
                KeywordHit(
                    id=doc.id,
                    title=doc.title,
                    body=doc.body,
                    rank=overlap * 0.1,
                    metadata=dict(doc.metadata),
                )
            )

        ranked = sorted(scored, key=lambda hit: hit.rank, reverse=True)
        return ranked[offset : offset + limit]


class InMemoryVectorBackend:
    """Cosine-similarity search over stored document embeddings."""

    def __init__(self, store: InMemoryDocumentStore) -> None:
        self._store = store

    async def search(
        self,
        embedding: list[float],
        scope_id: str,
        limit: int,
        offset: int = 0,
        user_id: str | None = None,
    ) -> list[VectorHit]:
        if not embedding:
            raise BackendError("query embedding is empty")
        candidates = [
            rec
            for rec in self._store.scope_documents(scope_id)
            if user_id is None or rec.document.metadata.get("user_id") in (None, user_id)
        ]
        ranked = sorted(
            (
                VectorHit(
                    id=rec.document.id,
                    title=rec.document.title,
                    body=rec.document.body,
                    similarity=_cosine_similarity(embedding, rec.embedding),
                    metadata=dict(rec.document.metadata),
                )
                for rec in candidates
            ),
            key=lambda hit: hit.similarity,
            reverse=True,
        )
        return ranked[offset : offset + limit]


def _tokens(text: str) -> list[str]:
    cleaned = (token.strip(".,;:!?\"'()[]").lower() for token in text.split())
    return [token for token in cleaned if token]


def _cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)
