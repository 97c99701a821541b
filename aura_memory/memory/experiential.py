"""
Experiential Memory Store — what the agent has done, and what came of it.

Experiences are ordered by importance first and recency second: the records
most worth remembering come back before the merely recent ones. Importance is
also the retention signal. Consolidation halves it for records that have been
folded into a pattern, and pruning removes old records whose importance has
fallen below a threshold.
"""

from __future__ import annotations

import copy
import dataclasses
import time
import uuid
from abc import ABC, abstractmethod
from typing import Callable, Optional

import structlog

from aura_memory.memory._utils import SECONDS_PER_DAY, clamp01, require_unit_interval
from aura_memory.memory.models import (
    ExperienceKind,
    ExperientialMemory,
    ExperientialStats,
    MemoryQuery,
    compute_experiential_stats,
)

logger = structlog.get_logger(__name__)


def matches_experiential_query(record: ExperientialMemory, query: MemoryQuery) -> bool:
    """True if a record passes every filter of the query (user scope included)."""
    if record.user_id != query.user_id:
        return False
    if query.kind and record.kind.value != query.kind:
        return False
    if query.tags and not set(query.tags).issubset(record.learned_skills):
        return False
    if query.min_importance is not None and record.importance < query.min_importance:
        return False
    if query.time_range is not None and not query.time_range.contains(record.created_at):
        return False
    return True


def is_prunable(
    record: ExperientialMemory, now: float, importance_threshold: float, max_age_days: float
) -> bool:
    """Both conditions must hold: low importance AND older than the age limit."""
    age = now - record.created_at
    return record.importance < importance_threshold and age > max_age_days * SECONDS_PER_DAY


def sort_by_importance(records: list[ExperientialMemory]) -> list[ExperientialMemory]:
    # Input is newest-inserted first, so equal keys keep that order.
    return sorted(records, key=lambda r: (r.importance, r.created_at), reverse=True)


class ExperientialStore(ABC):
    """Abstract interface for experiential memory storage."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock

    def prepare(self, record: ExperientialMemory) -> ExperientialMemory:
        """Validate a record and stamp it with a fresh id and creation time."""
        importance = require_unit_interval("importance", record.importance)
        return dataclasses.replace(
            record,
            id=str(uuid.uuid4()),
            created_at=self._clock(),
            importance=importance,
            learned_skills=list(record.learned_skills),
            related_memories=list(record.related_memories),
            metadata=dict(record.metadata),
        )

    @abstractmethod
    def store(self, record: ExperientialMemory) -> ExperientialMemory:
        """Persist a record; returns the stored copy with its generated id."""

    @abstractmethod
    def get(self, user_id: str, memory_id: str) -> Optional[ExperientialMemory]:
        """Get a record by id, or None."""

    @abstractmethod
    def retrieve(self, query: MemoryQuery) -> list[ExperientialMemory]:
        """Filtered records for one user, by importance then recency."""

    @abstractmethod
    def _set_importance(self, user_id: str, memory_id: str, value: float) -> bool:
        """Write an already-clamped importance. True if the record exists."""

    @abstractmethod
    def delete(self, user_id: str, memory_id: str) -> bool:
        """Delete a record. Returns True if something was removed."""

    @abstractmethod
    def prune_old_memories(
        self, user_id: str, importance_threshold: float = 0.3, max_age_days: float = 30
    ) -> int:
        """Delete records with importance < threshold and age > max_age_days."""

    @abstractmethod
    def get_stats(self, user_id: str) -> ExperientialStats:
        """Counts by kind, average importance, success rate and skill count."""

    @abstractmethod
    def get_learned_skills(self, user_id: str) -> list[str]:
        """Distinct learned skills across all of a user's experiences, sorted."""

    def update_importance(self, user_id: str, memory_id: str, value: float) -> bool:
        return self._set_importance(user_id, memory_id, clamp01(value))

    def get_successes(self, user_id: str, limit: int = 20) -> list[ExperientialMemory]:
        return self.retrieve(MemoryQuery(user_id=user_id, kind=ExperienceKind.SUCCESS, limit=limit))

    def get_failures(self, user_id: str, limit: int = 20) -> list[ExperientialMemory]:
        return self.retrieve(MemoryQuery(user_id=user_id, kind=ExperienceKind.FAILURE, limit=limit))

    def get_patterns(self, user_id: str, limit: int = 20) -> list[ExperientialMemory]:
        return self.retrieve(MemoryQuery(user_id=user_id, kind=ExperienceKind.PATTERN, limit=limit))


class InMemoryExperientialStore(ExperientialStore):
    """In-memory implementation of ExperientialStore for testing and development."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        super().__init__(clock)
        self._records: dict[str, ExperientialMemory] = {}

    def _owned(self, user_id: str) -> list[ExperientialMemory]:
        return [r for r in self._records.values() if r.user_id == user_id]

    def store(self, record: ExperientialMemory) -> ExperientialMemory:
        stored = self.prepare(record)
        self._records[stored.id] = stored
        logger.debug(
            "experiential_store.stored",
            memory_id=stored.id,
            kind=stored.kind.value,
            importance=stored.importance,
        )
        return copy.deepcopy(stored)

    def get(self, user_id: str, memory_id: str) -> Optional[ExperientialMemory]:
        record = self._records.get(memory_id)
        if record is None or record.user_id != user_id:
            return None
        return copy.deepcopy(record)

    def retrieve(self, query: MemoryQuery) -> list[ExperientialMemory]:
        matches = [
            r for r in reversed(self._records.values()) if matches_experiential_query(r, query)
        ]
        page = sort_by_importance(matches)[query.offset:query.offset + query.limit]
        return [copy.deepcopy(r) for r in page]

    def _set_importance(self, user_id: str, memory_id: str, value: float) -> bool:
        record = self._records.get(memory_id)
        if record is None or record.user_id != user_id:
            return False
        record.importance = value
        return True

    def delete(self, user_id: str, memory_id: str) -> bool:
        record = self._records.get(memory_id)
        if record is None or record.user_id != user_id:
            return False
        del self._records[memory_id]
        return True

    def prune_old_memories(
        self, user_id: str, importance_threshold: float = 0.3, max_age_days: float = 30
    ) -> int:
        now = self._clock()
        doomed = [
            r.id
            for r in self._owned(user_id)
            if is_prunable(r, now, importance_threshold, max_age_days)
        ]
        for memory_id in doomed:
            del self._records[memory_id]
        if doomed:
            logger.info("experiential_store.pruned", user_id=user_id, count=len(doomed))
        return len(doomed)

    def get_stats(self, user_id: str) -> ExperientialStats:
        return compute_experiential_stats(self._owned(user_id))

    def get_learned_skills(self, user_id: str) -> list[str]:
        skills: set[str] = set()
        for record in self._owned(user_id):
            skills.update(record.learned_skills)
        return sorted(skills)

    @property
    def count(self) -> int:
        return len(self._records)
