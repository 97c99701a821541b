"""
Memory records — the two persistent forms of long-term memory.

Factual memories are discrete statements: a fact, a rule, an entity, a
relation, a preference. Each carries a confidence that says how much it
should be trusted.

Experiential memories record something the agent did: the situation it was
in, the action it took, what happened, and what it drew from it. Each carries
an importance that decides how long it is retained before pruning.

Both are always owned by exactly one user. Nothing in this module reaches
across users; scoping is enforced by the stores, which take the user_id on
every call.
"""

from __future__ import annotations

import json
import time
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional

import structlog

from aura_memory.errors import MemoryValidationError
from aura_memory.memory._utils import clamp01, dedupe

logger = structlog.get_logger(__name__)


class FactKind(str, Enum):
    FACT = "fact"
    RULE = "rule"
    ENTITY = "entity"
    RELATION = "relation"
    PREFERENCE = "preference"


class ExperienceKind(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    PATTERN = "pattern"
    LESSON = "lesson"
    OPTIMIZATION = "optimization"


def _coerce_kind(enum_cls: type[Enum], value: Any) -> Any:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError as exc:
        allowed = ", ".join(member.value for member in enum_cls)
        raise MemoryValidationError(
            f"unknown {enum_cls.__name__} {value!r}; expected one of: {allowed}"
        ) from exc


def _json_list(value: Any) -> list[Any]:
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            logger.warning("memory_record.invalid_json", raw=value[:100])
            return []
    return list(value or [])


def _json_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            logger.warning("memory_record.invalid_json", raw=value[:100])
            return {}
    return dict(value or {})


@dataclass
class FactualMemory:
    """A discrete fact, rule or preference held for one user."""

    user_id: str
    content: str
    kind: FactKind = FactKind.FACT
    source: str = "manual"
    confidence: float = 0.8
    tags: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    embedding: Optional[list[float]] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        self.kind = _coerce_kind(FactKind, self.kind)
        self.tags = dedupe(self.tags)

    def to_dict(self) -> dict[str, Any]:
        """Plain JSON-ready view with native lists and dicts, for API and CLI output."""
        data = asdict(self)
        data["kind"] = self.kind.value
        return data

    def to_row(self) -> dict[str, Any]:
        """Serialize for database storage; list and dict columns become JSON text."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "kind": self.kind.value,
            "content": self.content,
            "source": self.source,
            "confidence": self.confidence,
            "tags": json.dumps(self.tags),
            "metadata": json.dumps(self.metadata, default=str),
            "embedding": json.dumps(self.embedding) if self.embedding is not None else None,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FactualMemory:
        """Rebuild from a database row or a to_dict() payload."""
        embedding = data.get("embedding")
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            kind=data["kind"],
            content=data["content"],
            source=data.get("source") or "",
            confidence=clamp01(data.get("confidence", 0.0), default=0.0),
            tags=_json_list(data.get("tags")),
            metadata=_json_dict(data.get("metadata")),
            embedding=_json_list(embedding) if embedding is not None else None,
            created_at=float(data["created_at"]),
        )


@dataclass
class ExperientialMemory:
    """
    A record of an action's outcome and the lesson drawn from it.

    related_memories links a consolidated pattern back to the experiences it
    was merged from, so raw history stays traceable after consolidation.
    """

    user_id: str
    kind: ExperienceKind = ExperienceKind.SUCCESS
    context: str = ""
    action: str = ""
    outcome: str = ""
    reflection: str = ""
    learned_skills: list[str] = field(default_factory=list)
    importance: float = 0.5
    related_memories: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        self.kind = _coerce_kind(ExperienceKind, self.kind)
        self.learned_skills = dedupe(self.learned_skills)
        self.related_memories = dedupe(self.related_memories)

    def to_dict(self) -> dict[str, Any]:
        """Plain JSON-ready view with native lists and dicts, for API and CLI output."""
        data = asdict(self)
        data["kind"] = self.kind.value
        return data

    def to_row(self) -> dict[str, Any]:
        """Serialize for database storage; list and dict columns become JSON text."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "kind": self.kind.value,
            "context": self.context,
            "action": self.action,
            "outcome": self.outcome,
            "reflection": self.reflection,
            "learned_skills": json.dumps(self.learned_skills),
            "importance": self.importance,
            "related_memories": json.dumps(self.related_memories),
            "metadata": json.dumps(self.metadata, default=str),
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExperientialMemory:
        """Rebuild from a database row or a to_dict() payload."""
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            kind=data["kind"],
            context=data.get("context") or "",
            action=data.get("action") or "",
            outcome=data.get("outcome") or "",
            reflection=data.get("reflection") or "",
            learned_skills=_json_list(data.get("learned_skills")),
            importance=clamp01(data.get("importance", 0.0), default=0.0),
            related_memories=_json_list(data.get("related_memories")),
            metadata=_json_dict(data.get("metadata")),
            created_at=float(data["created_at"]),
        )


@dataclass(frozen=True)
class TimeRange:
    start: float
    end: float

    def contains(self, timestamp: float) -> bool:
        return self.start <= timestamp <= self.end


@dataclass
class MemoryQuery:
    """Filtered range query against one user's records."""

    user_id: str
    kind: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    min_confidence: Optional[float] = None
    min_importance: Optional[float] = None
    time_range: Optional[TimeRange] = None
    limit: int = 50
    offset: int = 0

    def __post_init__(self) -> None:
        if isinstance(self.kind, Enum):
            self.kind = self.kind.value
        self.limit = max(0, int(self.limit))
        self.offset = max(0, int(self.offset))


@dataclass
class FactualStats:
    total_count: int = 0
    by_kind: dict[str, int] = field(default_factory=dict)
    avg_confidence: float = 0.0
    top_tags: list[tuple[str, int]] = field(default_factory=list)


@dataclass
class ExperientialStats:
    total_count: int = 0
    by_kind: dict[str, int] = field(default_factory=dict)
    avg_importance: float = 0.0
    success_rate: float = 0.0
    unique_skills: int = 0


def compute_factual_stats(records: list[FactualMemory], top_n: int = 10) -> FactualStats:
    """Aggregate counts, mean confidence and the most used tags."""
    if not records:
        return FactualStats()
    by_kind: dict[str, int] = {}
    tag_counts: dict[str, int] = {}
    total_confidence = 0.0
    for record in records:
        by_kind[record.kind.value] = by_kind.get(record.kind.value, 0) + 1
        total_confidence += record.confidence
        for tag in record.tags:
            tag_counts[tag] = tag_counts.get(tag, 0) + 1
    # Stable sort keeps first-seen order among equal counts.
    top_tags = sorted(tag_counts.items(), key=lambda item: item[1], reverse=True)[:top_n]
    return FactualStats(
        total_count=len(records),
        by_kind=by_kind,
        avg_confidence=total_confidence / len(records),
        top_tags=top_tags,
    )


def compute_experiential_stats(records: list[ExperientialMemory]) -> ExperientialStats:
    """Aggregate counts, mean importance, success rate and distinct skills."""
    if not records:
        return ExperientialStats()
    by_kind: dict[str, int] = {}
    skills: set[str] = set()
    total_importance = 0.0
    for record in records:
        by_kind[record.kind.value] = by_kind.get(record.kind.value, 0) + 1
        total_importance += record.importance
        skills.update(record.learned_skills)
    successes = by_kind.get(ExperienceKind.SUCCESS.value, 0)
    failures = by_kind.get(ExperienceKind.FAILURE.value, 0)
    attempts = successes + failures
    return ExperientialStats(
        total_count=len(records),
        by_kind=by_kind,
        avg_importance=total_importance / len(records),
        success_rate=successes / attempts if attempts else 0.0,
        unique_skills=len(skills),
    )
