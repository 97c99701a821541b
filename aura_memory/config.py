# aura_memory/config.py
"""
Configuration for the memory layer.

Every tunable flows through this module. Values come from environment
variables (or a .env file at the project root) and are validated with
Pydantic. The defaults reproduce the documented behaviour exactly: a 7-day
relevance half-life, 10 results at a 0.3 floor, a 50-event working-memory
buffer swept after an hour idle, and a daily consolidation pass.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal, Optional

import structlog
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

logger = structlog.get_logger(__name__)

# Resolve .env relative to the project root (one level above aura_memory/),
# so the config works regardless of the current working directory.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"

_SETTINGS = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}


class StorageConfig(BaseSettings):
    """Where memories are kept."""

    # sqlite: durable local file. memory: process-lifetime only. none: offline stub.
    backend: Literal["sqlite", "memory", "none"] = Field("sqlite", alias="AURA_MEMORY_BACKEND")
    data_dir: Path = Field(Path("./aura_memory_data"), alias="AURA_MEMORY_DATA_DIR")
    db_path: Optional[Path] = Field(None, alias="AURA_MEMORY_DB_PATH")

    # Optional embedding index over factual memories (requires chromadb).
    semantic_search_enabled: bool = Field(False, alias="AURA_MEMORY_SEMANTIC_SEARCH")
    vector_db_path: Optional[Path] = Field(None, alias="AURA_MEMORY_VECTOR_DB_PATH")

    model_config = _SETTINGS

    @model_validator(mode="before")
    @classmethod
    def normalize_backend(cls, data: object) -> object:
        if isinstance(data, dict):
            for key, value in list(data.items()):
                if key.lower() in ("backend", "aura_memory_backend") and isinstance(value, str):
                    data[key] = value.strip().lower()
        return data

    @model_validator(mode="after")
    def derive_paths_from_data_dir(self) -> "StorageConfig":
        if self.db_path is None:
            self.db_path = self.data_dir / "memory.db"
        if self.vector_db_path is None:
            self.vector_db_path = self.data_dir / "vectors"
        return self


class RetrievalConfig(BaseSettings):
    """Ranking parameters for memory recall."""

    max_results: int = Field(10, alias="AURA_MEMORY_MAX_RESULTS")
    min_relevance: float = Field(0.3, alias="AURA_MEMORY_MIN_RELEVANCE")
    candidate_limit: int = Field(50, alias="AURA_MEMORY_CANDIDATE_LIMIT")
    half_life_days: float = Field(7.0, alias="AURA_MEMORY_HALF_LIFE_DAYS")
    temporal_decay_enabled: bool = Field(True, alias="AURA_MEMORY_TEMPORAL_DECAY")

    # Only consulted when semantic search is enabled on the storage side.
    hybrid_keyword_weight: float = Field(0.5, alias="AURA_MEMORY_HYBRID_KEYWORD_WEIGHT")
    hybrid_embedding_weight: float = Field(0.5, alias="AURA_MEMORY_HYBRID_EMBEDDING_WEIGHT")

    model_config = _SETTINGS

    @model_validator(mode="after")
    def normalize_limits(self) -> "RetrievalConfig":
        self.max_results = max(1, int(self.max_results))
        self.min_relevance = max(0.0, min(1.0, float(self.min_relevance)))
        self.candidate_limit = max(1, int(self.candidate_limit))
        self.half_life_days = max(0.0, float(self.half_life_days))
        self.hybrid_keyword_weight = max(0.0, min(1.0, float(self.hybrid_keyword_weight)))
        self.hybrid_embedding_weight = max(0.0, min(1.0, float(self.hybrid_embedding_weight)))
        return self


class WorkingMemoryConfig(BaseSettings):
    """Per-session scratchpad limits."""

    max_recent_events: int = Field(50, alias="AURA_MEMORY_MAX_RECENT_EVENTS")
    session_ttl_seconds: float = Field(3600.0, alias="AURA_MEMORY_SESSION_TTL")
    sweep_interval_seconds: float = Field(900.0, alias="AURA_MEMORY_SWEEP_INTERVAL")
    summary_event_count: int = Field(5, alias="AURA_MEMORY_SUMMARY_EVENTS")

    model_config = _SETTINGS

    @model_validator(mode="after")
    def normalize_limits(self) -> "WorkingMemoryConfig":
        self.max_recent_events = max(1, int(self.max_recent_events))
        self.session_ttl_seconds = max(1.0, float(self.session_ttl_seconds))
        self.sweep_interval_seconds = max(1.0, float(self.sweep_interval_seconds))
        self.summary_event_count = max(0, int(self.summary_event_count))
        return self


class ConsolidationConfig(BaseSettings):
    """Merge, rule extraction and pruning thresholds."""

    interval_hours: float = Field(24.0, alias="AURA_MEMORY_CONSOLIDATION_INTERVAL_HOURS")
    run_on_start: bool = Field(True, alias="AURA_MEMORY_CONSOLIDATION_ON_START")

    merge_window_days: float = Field(7.0, alias="AURA_MEMORY_MERGE_WINDOW_DAYS")
    merge_limit: int = Field(100, alias="AURA_MEMORY_MERGE_LIMIT")
    merge_similarity: float = Field(0.5, alias="AURA_MEMORY_MERGE_SIMILARITY")

    pattern_window_days: float = Field(30.0, alias="AURA_MEMORY_PATTERN_WINDOW_DAYS")
    pattern_limit: int = Field(50, alias="AURA_MEMORY_PATTERN_LIMIT")
    pattern_min_importance: float = Field(0.6, alias="AURA_MEMORY_PATTERN_MIN_IMPORTANCE")
    pattern_min_cluster: int = Field(3, alias="AURA_MEMORY_PATTERN_MIN_CLUSTER")

    prune_threshold: float = Field(0.3, alias="AURA_MEMORY_PRUNE_THRESHOLD")
    prune_max_age_days: float = Field(30.0, alias="AURA_MEMORY_PRUNE_MAX_AGE_DAYS")

    model_config = _SETTINGS

    @model_validator(mode="after")
    def normalize_thresholds(self) -> "ConsolidationConfig":
        self.interval_hours = max(0.01, float(self.interval_hours))
        self.merge_limit = max(1, int(self.merge_limit))
        self.merge_similarity = max(0.0, min(1.0, float(self.merge_similarity)))
        self.pattern_limit = max(1, int(self.pattern_limit))
        self.pattern_min_importance = max(0.0, min(1.0, float(self.pattern_min_importance)))
        self.pattern_min_cluster = max(1, int(self.pattern_min_cluster))
        self.prune_threshold = max(0.0, min(1.0, float(self.prune_threshold)))
        self.prune_max_age_days = max(0.0, float(self.prune_max_age_days))
        return self

    @property
    def interval_seconds(self) -> float:
        return self.interval_hours * 3600.0


class SynthesisConfig(BaseSettings):
    """How reflections on runs are written."""

    synthesizer: Literal["template", "claude"] = Field(
        "template", alias="AURA_MEMORY_SYNTHESIZER"
    )
    api_key: Optional[str] = Field(None, alias="ANTHROPIC_API_KEY")
    model: str = Field("claude-sonnet-4-5-20250929", alias="AURA_MEMORY_SYNTHESIS_MODEL")
    max_tokens: int = Field(300, alias="AURA_MEMORY_SYNTHESIS_MAX_TOKENS")
    request_timeout_seconds: float = Field(30.0, alias="AURA_MEMORY_SYNTHESIS_TIMEOUT")

    model_config = _SETTINGS

    @model_validator(mode="after")
    def require_key_for_claude(self) -> "SynthesisConfig":
        self.max_tokens = max(1, int(self.max_tokens))
        self.request_timeout_seconds = max(1.0, float(self.request_timeout_seconds))
        if self.synthesizer == "claude" and not self.api_key:
            logger.warning("config.synthesis_key_missing", fallback="template")
            self.synthesizer = "template"
        return self


class AuraMemoryConfig:
    """
    Master configuration composing every subsystem config.

    Components receive their slice from here; nothing reads the environment
    on its own.
    """

    def __init__(self):
        self.storage = StorageConfig()
        self.retrieval = RetrievalConfig()
        self.working_memory = WorkingMemoryConfig()
        self.consolidation = ConsolidationConfig()
        self.synthesis = SynthesisConfig()

    def __repr__(self) -> str:
        return (
            f"AuraMemoryConfig(backend={self.storage.backend}, "
            f"data_dir={self.storage.data_dir}, "
            f"semantic_search={self.storage.semantic_search_enabled}, "
            f"synthesizer={self.synthesis.synthesizer})"
        )
