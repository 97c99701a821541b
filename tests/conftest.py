"""
Shared fixtures for the aura-memory test suite.

Every store and engine here runs off a FakeClock so ages, decay and expiry
are exact rather than dependent on wall time.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from aura_memory.config import AuraMemoryConfig
from aura_memory.events import InMemoryEventLog, RunEvent
from aura_memory.main import configure_logging
from aura_memory.memory._utils import SECONDS_PER_DAY
from aura_memory.memory.experiential import InMemoryExperientialStore
from aura_memory.memory.factual import InMemoryFactualStore
from aura_memory.memory.store import MemoryDatabase
from aura_memory.metrics import metrics
from aura_memory.synthesis import TemplateSynthesizer
from aura_memory.system import MemorySystem

T0 = 1_700_000_000.0


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------

class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: float = T0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now

    def advance_minutes(self, minutes: float) -> float:
        return self.advance(minutes * 60.0)

    def advance_days(self, days: float) -> float:
        return self.advance(days * SECONDS_PER_DAY)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(scope="session", autouse=True)
def _logging():
    # Route structlog through stdlib at WARNING so CLI stdout stays parseable.
    configure_logging()


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------

@pytest.fixture()
def factual_store(clock: FakeClock) -> InMemoryFactualStore:
    return InMemoryFactualStore(clock)


@pytest.fixture()
def experiential_store(clock: FakeClock) -> InMemoryExperientialStore:
    return InMemoryExperientialStore(clock)


@pytest.fixture()
def database(tmp_path: Path):
    """An initialised SQLite MemoryDatabase in a temp directory."""
    db = MemoryDatabase(tmp_path / "memory.db")
    db.initialize()
    yield db
    db.close()


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

@pytest.fixture()
def event_log() -> InMemoryEventLog:
    return InMemoryEventLog()


def _append_run(
    event_log: InMemoryEventLog,
    run_id: str,
    *,
    steps: int = 2,
    outcome: str = "completed",
    intent: str = "draft a PRD",
    error: str = "Timeout calling search API",
    extra: list[RunEvent] | None = None,
    start: float = T0,
) -> list[RunEvent]:
    """Append a run.started / step.completed* / terminal stream to the log."""
    ts = start
    events = [RunEvent(type="run.started", data={"intent": intent}, timestamp=ts)]
    for i in range(steps):
        ts += 1
        events.append(RunEvent(
            type="step.completed",
            data={"step_id": f"s{i + 1}", "output": f"output of step {i + 1}"},
            timestamp=ts,
        ))
    for event in extra or []:
        ts += 1
        events.append(event.model_copy(update={"timestamp": ts}))
    ts += 1
    if outcome == "completed":
        events.append(RunEvent(type="run.completed", data={"result": "PRD drafted"}, timestamp=ts))
    elif outcome == "failed":
        events.append(RunEvent(type="run.failed", data={"error": error}, timestamp=ts))
    for event in events:
        event_log.append(run_id, event)
    return events


@pytest.fixture()
def make_run(event_log: InMemoryEventLog):
    """Callable that appends a synthetic run to the shared event log."""
    def _make(run_id: str, **kwargs) -> list[RunEvent]:
        return _append_run(event_log, run_id, **kwargs)
    return _make


# ---------------------------------------------------------------------------
# Facade
# ---------------------------------------------------------------------------

@pytest.fixture()
def memory_system(
    factual_store: InMemoryFactualStore,
    experiential_store: InMemoryExperientialStore,
    event_log: InMemoryEventLog,
    clock: FakeClock,
) -> MemorySystem:
    return MemorySystem(
        factual_store,
        experiential_store,
        event_log=event_log,
        config=AuraMemoryConfig(),
        synthesizer=TemplateSynthesizer(),
        clock=clock,
    )
