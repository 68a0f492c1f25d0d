"""Wall-clock budget shared by every stage of one search request."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field


@dataclass(slots=True, frozen=True)
class SearchBudget:
    """Monotonic deadline for one end-to-end search.

    `started_at` is read from `clock` (seconds) at creation and never changes,
    so `remaining_ms()` can only go down over the life of a request.
    """

    total_ms: int
    clock: Callable[[], float] = time.monotonic
    started_at: float = field(default=-1.0)

    def __post_init__(self) -> None:
        if self.started_at < 0:
            object.__setattr__(self, "started_at", self.clock())

    @classmethod
    def create(
        cls, total_ms: int, *, clock: Callable[[], float] = time.monotonic
    ) -> "SearchBudget":
        return cls(total_ms=max(0, int(total_ms)), clock=clock)

    def elapsed_ms(self) -> int:
        return int((self.clock() - self.started_at) * 1000.0)

    def remaining_ms(self) -> int:
        return max(0, self.total_ms - self.elapsed_ms())

    def allows(self, required_ms: int) -> bool:
        """True when at least `required_ms` remain."""
        return self.remaining_ms() >= required_ms
