"""Error taxonomy used at the engine's internal boundaries.

None of these escape `AnswerEngine.plan_and_answer`; they are raised by
providers and adapters and converted to empty or failed results by the
component that calls them.
"""

from __future__ import annotations


class HybridQAError(Exception):
    """Base class for engine errors."""


class BackendError(HybridQAError):
    """A search backend reported an application-level error."""


class ProviderError(HybridQAError):
    """The embedding provider rejected the request or returned garbage."""


class TransientProviderError(ProviderError):
    """A provider failure worth retrying (timeout, throttling, 5xx)."""


class PlanningError(HybridQAError):
    """The optional LLM classifier failed or produced an unusable plan."""
