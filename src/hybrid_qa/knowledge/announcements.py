"""Announcement keyword search contract and in-memory source."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol


@dataclass(slots=True)
class AnnouncementHit:
    id: str
    title: str
    body: str
    rank: float
    sent_at: datetime | None = None


class AnnouncementSource(Protocol):
    async def search(self, text: str, scope_id: str, limit: int) -> list[AnnouncementHit]:
        """Keyword search over announcements sent in a scope."""


class InMemoryAnnouncementSource:
    """Keeps announcements per scope; rank is the share of query terms matched (x0.1)."""

    def __init__(self) -> None:
        self._items: dict[str, list[AnnouncementHit]] = {}

    def add(
        self,
        scope_id: str,
        announcement_id: str,
        title: str,
        body: str,
        *,
        sent_at: datetime | None = None,
    ) -> None:
        self._items.setdefault(scope_id, []).append(
            AnnouncementHit(id=announcement_id, title=title, body=body, rank=0.0, sent_at=sent_at)
        )

    async def search(self, text: str, scope_id: str, limit: int) -> list[AnnouncementHit]:
        terms = {term for term in text.lower().split() if len(term) > 2}
        if not terms:
            return []
        hits: list[AnnouncementHit] = []
        for item in self._items.get(scope_id, []):
            words = set(f"{item.title} {item.body}".lower().split())
            matched = len(terms & words)
            if matched:
                hits.append(
                    AnnouncementHit(
                        id=item.id,
                        title=item.title,
                        body=item.body,
                        rank=matched / len(terms) * 0.1,
                        sent_at=item.sent_at,
                    )
                )
        hits.sort(key=lambda hit: hit.rank, reverse=True)
        return hits[:limit]
