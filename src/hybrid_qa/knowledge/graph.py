"""Structured knowledge records and lookup contract (events, policies, people)."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol


@dataclass(slots=True)
class Event:
    id: str
    name: str
    start_at: datetime | None = None
    location: str | None = None
    description: str | None = None
    aliases: list[str] = field(default_factory=list)


@dataclass(slots=True)
class Policy:
    id: str
    title: str
    summary: str | None = None
    bullets: list[str] = field(default_factory=list)
    aliases: list[str] = field(default_factory=list)


@dataclass(slots=True)
class Person:
    id: str
    name: str
    role: str | None = None
    email: str | None = None
    phone: str | None = None


class KnowledgeGraph(Protocol):
    """Name/title lookups against the structured knowledge store of one scope."""

    async def find_events(self, name: str, scope_id: str) -> list[Event]:
        """Events whose name or alias matches `name`."""

    async def find_policies(self, title: str, scope_id: str) -> list[Policy]:
        """Policies whose title or alias matches `title`."""

    async def find_people(self, name: str, scope_id: str) -> list[Person]:
        """People whose name or role matches `name`."""

    async def get_linkbacks(self, entity_type: str, entity_id: str) -> list[str]:
        """Titles of the source documents an entity was extracted from."""


class InMemoryKnowledgeGraph:
    """Dictionary-backed knowledge graph with case-insensitive matching.

    A record matches when the lookup text contains one of its names or
    aliases, or the other way around.
    """

    def __init__(self) -> None:
        self._events: dict[str, list[Event]] = {}
        self._policies: dict[str, list[Policy]] = {}
        self._people: dict[str, list[Person]] = {}
        self._linkbacks: dict[tuple[str, str], list[str]] = {}

    def add_event(self, scope_id: str, event: Event, sources: list[str] | None = None) -> None:
        self._events.setdefault(scope_id, []).append(event)
        self._linkbacks[("event", event.id)] = list(sources or [])

    def add_policy(self, scope_id: str, policy: Policy, sources: list[str] | None = None) -> None:
        self._policies.setdefault(scope_id, []).append(policy)
        self._linkbacks[("policy", policy.id)] = list(sources or [])

    def add_person(self, scope_id: str, person: Person, sources: list[str] | None = None) -> None:
        self._people.setdefault(scope_id, []).append(person)
        self._linkbacks[("person", person.id)] = list(sources or [])

    async def find_events(self, name: str, scope_id: str) -> list[Event]:
        return [
            event
            for event in self._events.get(scope_id, [])
            if _matches(name, [event.name, *event.aliases])
        ]

    async def find_policies(self, title: str, scope_id: str) -> list[Policy]:
        return [
            policy
            for policy in self._policies.get(scope_id, [])
            if _matches(title, [policy.title, *policy.aliases])
        ]

    async def find_people(self, name: str, scope_id: str) -> list[Person]:
        return [
            person
            for person in self._people.get(scope_id, [])
            if _matches(name, [person.name, person.role or ""])
        ]

    async def get_linkbacks(self, entity_type: str, entity_id: str) -> list[str]:
        return list(self._linkbacks.get((entity_type, entity_id), []))


def _matches(text: str, candidates: list[str]) -> bool:
    needle = " ".join(text.lower().split())
    if not needle:
        return False
    for candidate in candidates:
        value = " ".join(candidate.lower().split())
        if value and (value in needle or needle in value):
            return True
    return False
