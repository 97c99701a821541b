"""
Working Memory — the short-lived context of one execution session.

A session holds the goal being pursued, a free-form scratchpad, the most
recent events (a ring buffer, oldest evicted first), an attention list and a
small planning state. None of it is persisted. Sessions are created when a
run starts and removed explicitly or by the inactivity sweep.

The registry is a plain arena keyed by session id. Every mutation stamps
``last_touched`` from the injected clock, and the sweep is a pure function of
(sessions, now) so it can be tested without timers.

``get_summary`` is the only view handed to outside reasoning (an LLM prompt,
for example). It is deterministic: the same state always renders the same
text.

A session is assumed to have one active owner at a time; nothing here locks.
"""

from __future__ import annotations

import json
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping, Optional

import structlog

from aura_memory.memory._utils import dedupe
from aura_memory.metrics import SESSIONS_ACTIVE, SESSIONS_EXPIRED, metrics

logger = structlog.get_logger(__name__)

DEFAULT_MAX_RECENT_EVENTS = 50
DEFAULT_SESSION_TTL_SECONDS = 3600.0
DEFAULT_SUMMARY_EVENT_COUNT = 5
NO_ACTIVE_MEMORY = "No active working memory"


@dataclass
class RecentEvent:
    type: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = 0.0


@dataclass
class PlanningState:
    hypotheses: list[str] = field(default_factory=list)
    next_actions: list[str] = field(default_factory=list)
    uncertainties: list[str] = field(default_factory=list)
    blockers: list[str] = field(default_factory=list)

    def clear(self) -> None:
        self.hypotheses = []
        self.next_actions = []
        self.uncertainties = []
        self.blockers = []


PLANNING_FIELDS = ("hypotheses", "next_actions", "uncertainties", "blockers")


@dataclass
class WorkingMemory:
    user_id: str
    session_id: str
    current_goal: str = ""
    active_context: dict[str, Any] = field(default_factory=dict)
    recent_events: deque = field(
        default_factory=lambda: deque(maxlen=DEFAULT_MAX_RECENT_EVENTS)
    )
    attention: list[str] = field(default_factory=list)
    planning_state: PlanningState = field(default_factory=PlanningState)
    last_touched: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "session_id": self.session_id,
            "current_goal": self.current_goal,
            "active_context": dict(self.active_context),
            "recent_events": [
                {"type": e.type, "data": dict(e.data), "timestamp": e.timestamp}
                for e in self.recent_events
            ],
            "attention": list(self.attention),
            "planning_state": {
                name: list(getattr(self.planning_state, name)) for name in PLANNING_FIELDS
            },
            "last_touched": self.last_touched,
        }


class WorkingMemoryRegistry:
    """Session arena: session_id -> WorkingMemory."""

    def __init__(self) -> None:
        self._sessions: dict[str, WorkingMemory] = {}

    def put(self, memory: WorkingMemory) -> None:
        self._sessions[memory.session_id] = memory

    def get(self, session_id: str) -> Optional[WorkingMemory]:
        return self._sessions.get(session_id)

    def remove(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def snapshot(self) -> dict[str, WorkingMemory]:
        return dict(self._sessions)

    def session_ids(self) -> list[str]:
        return list(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)


def find_expired_sessions(
    sessions: Mapping[str, WorkingMemory], now: float, max_age_seconds: float
) -> list[str]:
    """Ids of sessions untouched for strictly longer than max_age_seconds."""
    return [
        session_id
        for session_id, memory in sessions.items()
        if now - memory.last_touched > max_age_seconds
    ]


def _format_timestamp(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


def _joined(items: Iterable[str]) -> str:
    return ", ".join(items) or "(none)"


def render_summary(memory: WorkingMemory, event_count: int = DEFAULT_SUMMARY_EVENT_COUNT) -> str:
    """Deterministic text rendering of a session."""
    context_lines = "\n".join(
        f"- {key}: {json.dumps(value, sort_keys=True, default=str)}"
        for key, value in memory.active_context.items()
    )
    events = list(memory.recent_events)[-event_count:] if event_count > 0 else []
    event_lines = "\n".join(f"- {e.type} at {_format_timestamp(e.timestamp)}" for e in events)
    planning = memory.planning_state
    sections = [
        "# Working Memory Summary",
        "",
        "## Current Goal",
        memory.current_goal,
        "",
        "## Active Context",
        context_lines or "(none)",
        "",
        "## Attention Focus",
        _joined(memory.attention),
        "",
        "## Planning State",
        f"- Hypotheses: {_joined(planning.hypotheses)}",
        f"- Next Actions: {_joined(planning.next_actions)}",
        f"- Uncertainties: {_joined(planning.uncertainties)}",
        f"- Blockers: {_joined(planning.blockers)}",
        "",
        "## Recent Events",
        event_lines or "(none)",
    ]
    return "\n".join(sections)


class WorkingMemoryManager:
    """
    Per-session scratchpads over a WorkingMemoryRegistry.

    Mutating an unknown session is a no-op; reading one returns None (or the
    "No active working memory" summary). Missing is not an error.
    """

    def __init__(
        self,
        registry: Optional[WorkingMemoryRegistry] = None,
        clock: Callable[[], float] = time.time,
        max_recent_events: int = DEFAULT_MAX_RECENT_EVENTS,
        session_ttl_seconds: float = DEFAULT_SESSION_TTL_SECONDS,
        summary_event_count: int = DEFAULT_SUMMARY_EVENT_COUNT,
    ):
        self._registry = registry if registry is not None else WorkingMemoryRegistry()
        self._clock = clock
        self._max_recent_events = max(1, int(max_recent_events))
        self._session_ttl = float(session_ttl_seconds)
        self._summary_event_count = int(summary_event_count)

    def _touch(self, session_id: str) -> Optional[WorkingMemory]:
        memory = self._registry.get(session_id)
        if memory is None:
            logger.debug("working_memory.unknown_session", session_id=session_id)
            return None
        memory.last_touched = self._clock()
        return memory

    # -- Lifecycle ---------------------------------------------------------

    def initialize(self, user_id: str, session_id: str, goal: str) -> WorkingMemory:
        """Register a fresh session. Re-initializing overwrites the old one."""
        memory = WorkingMemory(
            user_id=user_id,
            session_id=session_id,
            current_goal=goal,
            recent_events=deque(maxlen=self._max_recent_events),
            last_touched=self._clock(),
        )
        self._registry.put(memory)
        metrics.set_gauge(SESSIONS_ACTIVE, len(self._registry))
        logger.debug("working_memory.initialized", user_id=user_id, session_id=session_id)
        return memory

    def get(self, session_id: str) -> Optional[WorkingMemory]:
        return self._registry.get(session_id)

    def clear(self, session_id: str) -> bool:
        removed = self._registry.remove(session_id)
        metrics.set_gauge(SESSIONS_ACTIVE, len(self._registry))
        return removed

    def clear_expired(self) -> int:
        """Remove every session idle for more than the TTL; returns the count."""
        expired = find_expired_sessions(
            self._registry.snapshot(), self._clock(), self._session_ttl
        )
        for session_id in expired:
            self._registry.remove(session_id)
        metrics.set_gauge(SESSIONS_ACTIVE, len(self._registry))
        if expired:
            metrics.inc(SESSIONS_EXPIRED, len(expired))
            logger.info("working_memory.expired_cleared", count=len(expired))
        return len(expired)

    def active_sessions(self) -> list[str]:
        return self._registry.session_ids()

    @property
    def count(self) -> int:
        return len(self._registry)

    # -- Goal and context --------------------------------------------------

    def update_goal(self, session_id: str, goal: str) -> None:
        memory = self._touch(session_id)
        if memory is not None:
            memory.current_goal = goal

    def add_context(self, session_id: str, key: str, value: Any) -> None:
        memory = self._touch(session_id)
        if memory is not None:
            memory.active_context[key] = value

    def get_context(self, session_id: str, key: str) -> Any:
        memory = self._registry.get(session_id)
        if memory is None:
            return None
        return memory.active_context.get(key)

    def add_event(self, session_id: str, event: Any) -> None:
        """Append a run event; the deque drops the oldest past capacity."""
        memory = self._touch(session_id)
        if memory is None:
            return
        memory.recent_events.append(
            RecentEvent(
                type=event.type,
                data=dict(event.data or {}),
                timestamp=float(event.timestamp),
            )
        )

    # -- Attention ---------------------------------------------------------

    def set_attention(self, session_id: str, items: Iterable[str]) -> None:
        memory = self._touch(session_id)
        if memory is not None:
            memory.attention = dedupe(items)

    def add_attention(self, session_id: str, item: str) -> None:
        memory = self._touch(session_id)
        if memory is not None and item and item not in memory.attention:
            memory.attention.append(item)

    def remove_attention(self, session_id: str, item: str) -> None:
        memory = self._touch(session_id)
        if memory is not None:
            memory.attention = [a for a in memory.attention if a != item]

    # -- Planning ----------------------------------------------------------

    def _add_planning_item(self, session_id: str, field_name: str, item: str) -> None:
        memory = self._touch(session_id)
        if memory is None:
            return
        items = getattr(memory.planning_state, field_name)
        if item and item not in items:
            items.append(item)

    def add_hypothesis(self, session_id: str, hypothesis: str) -> None:
        self._add_planning_item(session_id, "hypotheses", hypothesis)

    def add_next_action(self, session_id: str, action: str) -> None:
        self._add_planning_item(session_id, "next_actions", action)

    def add_uncertainty(self, session_id: str, uncertainty: str) -> None:
        self._add_planning_item(session_id, "uncertainties", uncertainty)

    def add_blocker(self, session_id: str, blocker: str) -> None:
        self._add_planning_item(session_id, "blockers", blocker)

    def update_planning(self, session_id: str, **fields: Iterable[str]) -> None:
        """Replace whole planning fields, e.g. ``update_planning(sid, blockers=[...])``."""
        unknown = set(fields) - set(PLANNING_FIELDS)
        if unknown:
            raise ValueError(f"unknown planning fields: {sorted(unknown)}")
        memory = self._touch(session_id)
        if memory is None:
            return
        for name, values in fields.items():
            setattr(memory.planning_state, name, dedupe(values))

    def clear_planning(self, session_id: str) -> None:
        memory = self._touch(session_id)
        if memory is not None:
            memory.planning_state.clear()

    # -- Rendering ---------------------------------------------------------

    def get_summary(self, session_id: str) -> str:
        memory = self._registry.get(session_id)
        if memory is None:
            return NO_ACTIVE_MEMORY
        return render_summary(memory, self._summary_event_count)
