"""Hybrid retrieval and query planning engine."""

from .config import EngineSettings, SearchConfig
from .engine import AnswerEngine, build_engine

__all__ = ["AnswerEngine", "EngineSettings", "SearchConfig", "build_engine"]
