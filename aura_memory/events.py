"""
Run events — the input side of memory formation.

A run (one execution of a workflow) emits an ordered, append-only stream of
events. Formation reads that stream after the run ends and only cares about
a handful of event types, listed in ``EventType``; everything else still
counts towards the run's size and variety.

``EventLog`` is the collaborator interface formation depends on.
``InMemoryEventLog`` is the in-process implementation used by tests and by
the CLI's ``ingest`` command, which loads a run from a JSON-lines file.
"""

from __future__ import annotations

import json
import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator

logger = structlog.get_logger(__name__)


class EventType:
    RUN_STARTED = "run.started"
    RUN_COMPLETED = "run.completed"
    RUN_FAILED = "run.failed"
    STEP_COMPLETED = "step.completed"
    USER_INPUT = "user.input"
    VALIDATION_PASSED = "validation.passed"


class RunEvent(BaseModel):
    """One entry of a run's event stream."""

    type: str
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: float = Field(default_factory=time.time)
    run_id: str = ""

    @field_validator("timestamp", mode="before")
    @classmethod
    def _parse_timestamp(cls, value: Any) -> Any:
        # Event logs written by other services use ISO-8601 strings.
        if isinstance(value, str):
            try:
                return float(value)
            except ValueError:
                return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
        if isinstance(value, datetime):
            return value.timestamp()
        return value

    @field_validator("data", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return {} if value is None else value


class EventLog(ABC):
    """Read access to per-run event streams."""

    @abstractmethod
    def get_run_events(self, run_id: str) -> list[RunEvent]:
        """All events of a run in chronological order; empty if unknown."""


class InMemoryEventLog(EventLog):
    """Append-only in-process event log indexed by run id."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: dict[str, list[RunEvent]] = {}

    def append(self, run_id: str, event: RunEvent | dict[str, Any]) -> RunEvent:
        if not isinstance(event, RunEvent):
            event = RunEvent.model_validate(event)
        event = event.model_copy(update={"run_id": run_id})
        with self._lock:
            self._events.setdefault(run_id, []).append(event)
        return event

    def get_run_events(self, run_id: str) -> list[RunEvent]:
        with self._lock:
            events = list(self._events.get(run_id, ()))
        # Stable: equal timestamps keep append order.
        events.sort(key=lambda e: e.timestamp)
        return events

    def run_ids(self) -> list[str]:
        with self._lock:
            return list(self._events)

    def load_jsonl(self, path: Path | str, run_id: str) -> int:
        """Append every event from a JSON-lines file to ``run_id``.

        Blank lines are skipped. A malformed line raises ValueError naming the
        line number; nothing from the file is appended in that case.
        """
        parsed: list[RunEvent] = []
        with open(path, encoding="utf-8") as fh:
            for lineno, line in enumerate(fh, start=1):
                if not line.strip():
                    continue
                try:
                    parsed.append(RunEvent.model_validate(json.loads(line)))
                except (json.JSONDecodeError, ValidationError) as exc:
                    raise ValueError(f"{path}:{lineno}: invalid event: {exc}") from exc
        for event in parsed:
            self.append(run_id, event)
        logger.info("event_log.loaded", path=str(path), run_id=run_id, count=len(parsed))
        return len(parsed)
