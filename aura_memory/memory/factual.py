"""
Factual Memory Store — what the agent knows about a user.

Token-level memory: explicit facts, rules and preferences. The store is an
injected interface rather than a module-level singleton, so the composing
process decides which backend holds the records (in-memory for tests, SQLite
for durable local operation, the offline stub when nothing is configured).

Every method takes the owning user_id. A record belonging to another user is
indistinguishable from a record that does not exist.
"""

from __future__ import annotations

import copy
import dataclasses
import time
import uuid
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

import structlog

from aura_memory.memory._utils import clamp01, dedupe, require_unit_interval
from aura_memory.memory.models import (
    FactualMemory,
    FactualStats,
    MemoryQuery,
    compute_factual_stats,
)

logger = structlog.get_logger(__name__)


def matches_factual_query(record: FactualMemory, query: MemoryQuery) -> bool:
    """True if a record passes every filter of the query (user scope included)."""
    if record.user_id != query.user_id:
        return False
    if query.kind and record.kind.value != query.kind:
        return False
    if query.tags and not set(query.tags).issubset(record.tags):
        return False
    if query.min_confidence is not None and record.confidence < query.min_confidence:
        return False
    if query.time_range is not None and not query.time_range.contains(record.created_at):
        return False
    return True


class FactualStore(ABC):
    """Abstract interface for factual memory storage."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock

    def prepare(self, record: FactualMemory) -> FactualMemory:
        """Validate a record and stamp it with a fresh id and creation time."""
        confidence = require_unit_interval("confidence", record.confidence)
        return dataclasses.replace(
            record,
            id=str(uuid.uuid4()),
            created_at=self._clock(),
            confidence=confidence,
            tags=list(record.tags),
            metadata=dict(record.metadata),
        )

    @abstractmethod
    def store(self, record: FactualMemory) -> FactualMemory:
        """Persist a record; returns the stored copy with its generated id."""

    @abstractmethod
    def get(self, user_id: str, memory_id: str) -> Optional[FactualMemory]:
        """Get a record by id, or None."""

    @abstractmethod
    def retrieve(self, query: MemoryQuery) -> list[FactualMemory]:
        """Filtered records for one user, newest first."""

    @abstractmethod
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
        """Update selected fields; confidence is clamped. None if not found."""

    @abstractmethod
    def delete(self, user_id: str, memory_id: str) -> bool:
        """Delete a record. Returns True if something was removed."""

    @abstractmethod
    def get_stats(self, user_id: str) -> FactualStats:
        """Counts by kind, average confidence and top tags."""

    def update_confidence(self, user_id: str, memory_id: str, value: float) -> bool:
        return self.update(user_id, memory_id, confidence=clamp01(value)) is not None

    def semantic_search(
        self, user_id: str, query_text: str, limit: int = 10
    ) -> list[tuple[str, float]]:
        """(memory_id, similarity) pairs from an embedding index.

        Backends without a vector index return nothing, which leaves keyword
        retrieval untouched.
        """
        return []


class InMemoryFactualStore(FactualStore):
    """In-memory implementation of FactualStore for testing and development."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        super().__init__(clock)
        self._records: dict[str, FactualMemory] = {}

    def store(self, record: FactualMemory) -> FactualMemory:
        stored = self.prepare(record)
        self._records[stored.id] = stored
        logger.debug(
            "factual_store.stored",
            memory_id=stored.id,
            kind=stored.kind.value,
            confidence=stored.confidence,
        )
        return copy.deepcopy(stored)

    def get(self, user_id: str, memory_id: str) -> Optional[FactualMemory]:
        record = self._records.get(memory_id)
        if record is None or record.user_id != user_id:
            return None
        return copy.deepcopy(record)

    def retrieve(self, query: MemoryQuery) -> list[FactualMemory]:
        matches = [r for r in reversed(self._records.values()) if matches_factual_query(r, query)]
        matches.sort(key=lambda r: r.created_at, reverse=True)
        page = matches[query.offset:query.offset + query.limit]
        return [copy.deepcopy(r) for r in page]

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
        record = self._records.get(memory_id)
        if record is None or record.user_id != user_id:
            return None
        if content is not None:
            record.content = content
        if confidence is not None:
            record.confidence = clamp01(confidence)
        if tags is not None:
            record.tags = dedupe(tags)
        if metadata is not None:
            record.metadata = dict(metadata)
        return copy.deepcopy(record)

    def delete(self, user_id: str, memory_id: str) -> bool:
        record = self._records.get(memory_id)
        if record is None or record.user_id != user_id:
            return False
        del self._records[memory_id]
        return True

    def get_stats(self, user_id: str) -> FactualStats:
        return compute_factual_stats([r for r in self._records.values() if r.user_id == user_id])

    @property
    def count(self) -> int:
        return len(self._records)
