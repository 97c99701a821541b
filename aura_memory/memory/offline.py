"""
Offline stores — what the memory layer does when no backend is configured.

Every write is accepted and forgotten: the caller gets back a record with a
synthetic id so the surrounding flow keeps working, and a warning is logged.
Reads return nothing and stats are zero. Nothing here ever raises
ConfigurationUnavailable; degraded local mode is a state, not an error.
"""

from __future__ import annotations

import dataclasses
from typing import Any, Optional

import structlog

from aura_memory.memory.experiential import ExperientialStore
from aura_memory.memory.factual import FactualStore
from aura_memory.memory.models import (
    ExperientialMemory,
    ExperientialStats,
    FactualMemory,
    FactualStats,
    MemoryQuery,
)

logger = structlog.get_logger(__name__)

OFFLINE_ID_PREFIX = "offline-"


def _offline_id(record_id: str) -> str:
    return f"{OFFLINE_ID_PREFIX}{record_id}"


class OfflineFactualStore(FactualStore):
    """Non-persistent factual store for degraded local operation."""

    def store(self, record: FactualMemory) -> FactualMemory:
        stamped = self.prepare(record)
        stamped = dataclasses.replace(stamped, id=_offline_id(stamped.id))
        logger.warning(
            "factual_store.offline_write",
            user_id=stamped.user_id,
            memory_id=stamped.id,
            kind=stamped.kind.value,
        )
        return stamped

    def get(self, user_id: str, memory_id: str) -> Optional[FactualMemory]:
        return None

    def retrieve(self, query: MemoryQuery) -> list[FactualMemory]:
        return []

    def update(
        self,
        user_id: str,
        memory_id: str,
        *,
        content: Optional[str] = None,
        confidence: Optional[float] = None,
        tags: Optional[list[str]] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Optional[FactualMemory]:
        logger.warning("factual_store.offline_update", memory_id=memory_id)
        return None

    def delete(self, user_id: str, memory_id: str) -> bool:
        return False

    def get_stats(self, user_id: str) -> FactualStats:
        return FactualStats()


class OfflineExperientialStore(ExperientialStore):
    """Non-persistent experiential store for degraded local operation."""

    def store(self, record: ExperientialMemory) -> ExperientialMemory:
        stamped = self.prepare(record)
        stamped = dataclasses.replace(stamped, id=_offline_id(stamped.id))
        logger.warning(
            "experiential_store.offline_write",
            user_id=stamped.user_id,
            memory_id=stamped.id,
            kind=stamped.kind.value,
        )
        return stamped

    def get(self, user_id: str, memory_id: str) -> Optional[ExperientialMemory]:
        return None

    def retrieve(self, query: MemoryQuery) -> list[ExperientialMemory]:
        return []

    def _set_importance(self, user_id: str, memory_id: str, value: float) -> bool:
        logger.warning("experiential_store.offline_update", memory_id=memory_id)
        return False

    def delete(self, user_id: str, memory_id: str) -> bool:
        return False

    def prune_old_memories(
        self, user_id: str, importance_threshold: float = 0.3, max_age_days: float = 30
    ) -> int:
        return 0

    def get_stats(self, user_id: str) -> ExperientialStats:
        return ExperientialStats()

    def get_learned_skills(self, user_id: str) -> list[str]:
        return []
