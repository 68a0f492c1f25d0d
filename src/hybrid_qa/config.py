"""Configuration models for the hybrid retrieval engine."""

from __future__ import annotations

from pydantic import BaseModel, Field, PositiveFloat
from pydantic_settings import BaseSettings, SettingsConfigDict


class SearchConfig(BaseModel):
    """Budget, timeout and early-exit knobs for multi-scope search (milliseconds)."""

    budget_ms: int = Field(default=8000, ge=0)
    keyword_timeout_ms: int = Field(default=800, ge=0)
    keyword_hard_timeout_ms: int = Field(default=350, ge=0)
    vector_timeout_ms: int = Field(default=1200, ge=0)
    vector_hard_timeout_ms: int = Field(default=600, ge=0)
    vector_margin_ms: int = Field(default=100, ge=0)
    embedding_wait_cap_ms: int = Field(default=500, ge=0)
    min_call_ms: int = Field(default=100, ge=0)
    scope_floor_ms: int = Field(default=500, ge=0)
    knowledge_timeout_ms: int = Field(default=800, ge=0)
    high_confidence_threshold: float = Field(default=0.75, ge=0.0, le=1.0)
    per_scope_limit: int = Field(default=5, ge=1)
    top_k: int = Field(default=10, ge=1)


class ScoreScalingConfig(BaseModel):
    """Maps backend-native keyword rank onto the shared score range."""

    keyword_scale: float = Field(default=10.0, ge=0.0)
    keyword_offset: float = Field(default=0.3, ge=0.0)
    max_score: float = Field(default=1.0, gt=0.0)


class EmbeddingConfig(BaseModel):
    """Embedding generation timeout, cache lifetime and circuit breaker window."""

    timeout_ms: int = Field(default=2000, ge=0)
    min_remaining_ms: int = Field(default=2500, ge=0)
    cache_ttl_ms: int = Field(default=180_000, ge=0)
    cache_max_entries: int = Field(default=1000, ge=1)
    breaker_threshold: int = Field(default=3, ge=1)
    breaker_window_ms: int = Field(default=300_000, ge=0)


class ProviderConfig(BaseModel):
    """HTTP embedding provider connection settings.

    `request_timeout_ms` is per attempt and stays well under
    `EmbeddingConfig.timeout_ms` so a timed-out request can still be retried.
    """

    base_url: str = "https://api.mistral.ai/v1"
    api_key: str | None = None
    model: str = "mistral-embed"
    request_timeout_ms: int = Field(default=800, ge=1)
    max_attempts: int = Field(default=3, ge=1)
    backoff_min_ms: int = Field(default=100, ge=0)
    backoff_max_ms: int = Field(default=1000, ge=0)


class RerankConfig(BaseModel):
    """Configures weighted score fusion, recency decay and authority boosts."""

    enabled: bool = False
    keyword_weight: float = Field(default=0.4, ge=0.0, le=1.0)
    vector_weight: float = Field(default=0.6, ge=0.0, le=1.0)
    half_life_days: PositiveFloat | None = 90.0
    event_intent_boost: float = Field(default=0.1, ge=0.0)
    source_authority: dict[str, float] = Field(
        default_factory=lambda: {"gdoc": 0.10, "upload": 0.08, "gcal": 0.12, "slack": 0.03}
    )
    channel_authority: dict[str, float] = Field(
        default_factory=lambda: {"announcements": 0.10, "officers": 0.08, "general": 0.05}
    )


class AgentConfig(BaseModel):
    """Configures planning, tool execution and answer composition."""

    llm_min_confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    classifier_timeout_ms: int = Field(default=3000, ge=1)
    early_exit_confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    clarify_below_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    max_documents: int = Field(default=5, ge=1)
    snippet_chars: int = Field(default=300, ge=20)
    target_latency_seconds: float = Field(default=8.0, gt=0.0)


class EngineSettings(BaseSettings):
    """All engine settings, overridable via `HYBRID_QA_<SECTION>__<FIELD>` env vars."""

    model_config = SettingsConfigDict(
        env_prefix="HYBRID_QA_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    search: SearchConfig = Field(default_factory=SearchConfig)
    scoring: ScoreScalingConfig = Field(default_factory=ScoreScalingConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    rerank: RerankConfig = Field(default_factory=RerankConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
