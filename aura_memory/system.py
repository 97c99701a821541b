"""
MemorySystem — the public surface of the memory layer.

Other components (the run executor, agents, the CLI) talk to memory only
through this facade. It owns the wiring: which stores back it, the working
memory registry, the per-user locks shared by formation and consolidation,
and the set of runs already turned into memories.

Build one with ``MemorySystem.from_config()`` for the configured backend, or
pass stores directly (tests use the in-memory ones).
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Optional

import structlog

from aura_memory.config import AuraMemoryConfig, StorageConfig
from aura_memory.errors import ConfigurationUnavailable
from aura_memory.events import EventLog, InMemoryEventLog
from aura_memory.memory._utils import UserLocks
from aura_memory.memory.consolidation import (
    ConsolidationEngine,
    ConsolidationResult,
    ConsolidationStats,
)
from aura_memory.memory.experiential import ExperientialStore, InMemoryExperientialStore
from aura_memory.memory.factual import FactualStore, InMemoryFactualStore
from aura_memory.memory.formation import ExtractedMemories, MemoryFormationEngine
from aura_memory.memory.models import (
    ExperientialMemory,
    ExperientialStats,
    FactKind,
    FactualMemory,
    FactualStats,
)
from aura_memory.memory.offline import OfflineExperientialStore, OfflineFactualStore
from aura_memory.memory.retrieval import RetrievalEngine, SearchResult
from aura_memory.memory.store import MemoryDatabase, SQLiteExperientialStore, SQLiteFactualStore
from aura_memory.memory.working import WorkingMemory, WorkingMemoryManager
from aura_memory.metrics import RUNS_DUPLICATE, metrics
from aura_memory.synthesis import Synthesizer, build_synthesizer

logger = structlog.get_logger(__name__)

# How many processed run ids the facade remembers for duplicate suppression.
PROCESSED_RUN_LIMIT = 10_000


@dataclass
class MemoryStats:
    factual: FactualStats = field(default_factory=FactualStats)
    experiential: ExperientialStats = field(default_factory=ExperientialStats)
    consolidation: ConsolidationStats = field(default_factory=ConsolidationStats)
    active_sessions: int = 0
    backend: str = "memory"
    metrics: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class StoreBundle:
    factual: FactualStore
    experiential: ExperientialStore
    backend: str
    database: Optional[MemoryDatabase] = None


def build_stores(config: StorageConfig, clock: Callable[[], float] = time.time) -> StoreBundle:
    """Instantiate the record stores for the configured backend."""
    if config.backend == "sqlite":
        db = MemoryDatabase(
            config.db_path,
            vector_db_path=config.vector_db_path,
            enable_vector_search=config.semantic_search_enabled,
        )
        db.initialize()
        return StoreBundle(
            factual=SQLiteFactualStore(db, clock),
            experiential=SQLiteExperientialStore(db, clock),
            backend="sqlite",
            database=db,
        )
    if config.backend == "memory":
        return StoreBundle(
            factual=InMemoryFactualStore(clock),
            experiential=InMemoryExperientialStore(clock),
            backend="memory",
        )
    logger.warning("memory_system.offline_mode", reason="no backend configured")
    return StoreBundle(
        factual=OfflineFactualStore(clock),
        experiential=OfflineExperientialStore(clock),
        backend="none",
    )


class MemorySystem:
    """Facade over formation, retrieval, consolidation and working memory."""

    def __init__(
        self,
        factual_store: FactualStore,
        experiential_store: ExperientialStore,
        event_log: Optional[EventLog] = None,
        config: Optional[AuraMemoryConfig] = None,
        synthesizer: Optional[Synthesizer] = None,
        working_memory: Optional[WorkingMemoryManager] = None,
        clock: Callable[[], float] = time.time,
        backend: str = "memory",
        database: Optional[MemoryDatabase] = None,
        processed_run_limit: int = PROCESSED_RUN_LIMIT,
    ):
        self._config = config or AuraMemoryConfig()
        self._clock = clock
        self._backend = backend
        self._database = database
        self.factual_store = factual_store
        self.experiential_store = experiential_store
        self.event_log = event_log if event_log is not None else InMemoryEventLog()

        wm_config = self._config.working_memory
        self.working_memory = working_memory or WorkingMemoryManager(
            clock=clock,
            max_recent_events=wm_config.max_recent_events,
            session_ttl_seconds=wm_config.session_ttl_seconds,
            summary_event_count=wm_config.summary_event_count,
        )

        locks = UserLocks()
        self.formation = MemoryFormationEngine(
            self.event_log,
            factual_store,
            experiential_store,
            synthesizer=synthesizer or build_synthesizer(self._config.synthesis),
            locks=locks,
        )
        semantic = bool(
            self._config.storage.semantic_search_enabled
            and database is not None
            and database.vector_enabled
        )
        self.retrieval = RetrievalEngine(
            factual_store,
            experiential_store,
            config=self._config.retrieval,
            clock=clock,
            semantic_search_enabled=semantic,
        )
        self.consolidation = ConsolidationEngine(
            factual_store,
            experiential_store,
            config=self._config.consolidation,
            clock=clock,
            locks=locks,
        )

        self._processed_lock = threading.Lock()
        # Oldest run ids are forgotten first once the limit is reached.
        self._processed_runs: OrderedDict[str, None] = OrderedDict()
        self._processed_run_limit = max(1, int(processed_run_limit))

    @classmethod
    def from_config(
        cls,
        config: Optional[AuraMemoryConfig] = None,
        event_log: Optional[EventLog] = None,
        clock: Callable[[], float] = time.time,
    ) -> MemorySystem:
        config = config or AuraMemoryConfig()
        bundle = build_stores(config.storage, clock)
        logger.info("memory_system.initialized", backend=bundle.backend)
        return cls(
            bundle.factual,
            bundle.experiential,
            event_log=event_log,
            config=config,
            clock=clock,
            backend=bundle.backend,
            database=bundle.database,
        )

    @property
    def backend(self) -> str:
        return self._backend

    def require_backend(self, operation: str) -> None:
        """Raise ConfigurationUnavailable when running on the offline stores."""
        if self._backend == "none":
            raise ConfigurationUnavailable(
                f"{operation} needs a memory backend; set AURA_MEMORY_BACKEND"
            )

    def close(self) -> None:
        if self._database is not None:
            self._database.close()

    # -- Sessions ---------------------------------------------------------

    def initialize_session(self, user_id: str, session_id: str, goal: str) -> WorkingMemory:
        return self.working_memory.initialize(user_id, session_id, goal)

    def clear_session(self, session_id: str) -> bool:
        return self.working_memory.clear(session_id)

    def clear_expired_sessions(self) -> int:
        return self.working_memory.clear_expired()

    # -- Formation --------------------------------------------------------

    def record_run_completion(self, run_id: str, user_id: str) -> ExtractedMemories:
        """Turn a finished run into memories, at most once per run id.

        A failed extraction leaves nothing stored and releases the run id, so
        the call can be retried.
        """
        with self._processed_lock:
            if run_id in self._processed_runs:
                metrics.inc(RUNS_DUPLICATE)
                logger.info("memory_system.run_already_processed", run_id=run_id)
                return ExtractedMemories()
            self._processed_runs[run_id] = None
            while len(self._processed_runs) > self._processed_run_limit:
                self._processed_runs.popitem(last=False)

        try:
            extracted = self.formation.extract_from_run(run_id, user_id)
        except Exception:
            self._forget_run(run_id)
            raise
        # Nothing extracted: the run may not have finished yet, so allow a retry.
        if extracted.total == 0:
            self._forget_run(run_id)
        return extracted

    def _forget_run(self, run_id: str) -> None:
        with self._processed_lock:
            self._processed_runs.pop(run_id, None)

    def record_manual_fact(
        self,
        user_id: str,
        content: str,
        kind: FactKind | str = FactKind.FACT,
        confidence: float = 0.8,
        tags: Optional[list[str]] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> FactualMemory:
        return self.formation.record_fact(
            user_id, content, kind=kind, confidence=confidence, tags=tags, metadata=metadata
        )

    def record_manual_experience(
        self,
        user_id: str,
        context: str,
        action: str,
        outcome: str,
        success: bool,
        importance: float = 0.5,
        learned_skills: Optional[list[str]] = None,
    ) -> ExperientialMemory:
        return self.formation.record_experience(
            user_id,
            context=context,
            action=action,
            outcome=outcome,
            success=success,
            importance=importance,
            learned_skills=learned_skills,
        )

    # -- Retrieval --------------------------------------------------------

    def query_memory(
        self, user_id: str, text: str, session_id: Optional[str] = None
    ) -> list[SearchResult]:
        working = self.working_memory.get(session_id) if session_id else None
        if working is not None and working.user_id != user_id:
            logger.warning(
                "memory_system.session_user_mismatch", session_id=session_id, user_id=user_id
            )
            working = None
        return self.retrieval.retrieve(user_id, text, working)

    # -- Maintenance ------------------------------------------------------

    def run_consolidation(self, user_id: str) -> ConsolidationResult:
        return self.consolidation.consolidate(user_id)

    def get_memory_stats(self, user_id: str) -> MemoryStats:
        return MemoryStats(
            factual=self.factual_store.get_stats(user_id),
            experiential=self.experiential_store.get_stats(user_id),
            consolidation=self.consolidation.get_stats(user_id),
            active_sessions=self.working_memory.count,
            backend=self._backend,
            metrics=metrics.snapshot(),
        )
