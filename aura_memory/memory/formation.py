"""
Memory Formation — turning a finished run into memories.

After a run ends, its event stream is read once and distilled:

  - every completed step that produced output becomes a fact about that step
  - every stated user preference becomes a preference
  - the run as a whole becomes one experience, a success or a failure, with
    a reflection written by the injected synthesizer

A run that never started, or that neither completed nor failed, leaves no
experience behind: there is nothing reliable to learn from it yet.

A run is stored all or nothing: if any write fails, the records already
written for it are deleted again before the error propagates. Reflections are
written before the user lock is taken.

Extraction is not idempotent. Running it twice for the same run stores every
memory twice, so callers track which runs they have processed (MemorySystem
does).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

import structlog

from aura_memory.errors import StorageError
from aura_memory.events import EventLog, EventType, RunEvent
from aura_memory.memory._utils import UserLocks
from aura_memory.memory.experiential import ExperientialStore
from aura_memory.memory.factual import FactualStore
from aura_memory.memory.models import (
    ExperienceKind,
    ExperientialMemory,
    FactKind,
    FactualMemory,
)
from aura_memory.metrics import EXPERIENCES_FORMED, FACTS_FORMED, RUNS_PROCESSED, metrics
from aura_memory.synthesis import Synthesizer, TemplateSynthesizer

logger = structlog.get_logger(__name__)

STEP_FACT_CONFIDENCE = 0.8
PREFERENCE_CONFIDENCE = 0.9
SUCCESS_BASE_IMPORTANCE = 0.6
FAILURE_BASE_IMPORTANCE = 0.7
LONG_RUN_EVENT_COUNT = 10
VARIED_RUN_TYPE_COUNT = 5
COMPLEX_WORKFLOW_STEPS = 5


@dataclass
class ExtractedMemories:
    factual: list[FactualMemory] = field(default_factory=list)
    experiential: list[ExperientialMemory] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.factual) + len(self.experiential)

    def to_dict(self) -> dict[str, Any]:
        return {
            "factual": [m.to_dict() for m in self.factual],
            "experiential": [m.to_dict() for m in self.experiential],
        }


def calculate_importance(events: Sequence[RunEvent], success: bool) -> float:
    """Failures start higher; long and varied runs are worth more."""
    importance = SUCCESS_BASE_IMPORTANCE if success else FAILURE_BASE_IMPORTANCE
    if len(events) > LONG_RUN_EVENT_COUNT:
        importance += 0.1
    if len({e.type for e in events}) > VARIED_RUN_TYPE_COUNT:
        importance += 0.1
    return min(importance, 1.0)


def extract_skills(events: Sequence[RunEvent]) -> list[str]:
    skills = []
    steps = sum(1 for e in events if e.type == EventType.STEP_COMPLETED)
    if steps > COMPLEX_WORKFLOW_STEPS:
        skills.append("complex_workflow_execution")
    if any(e.type == EventType.VALIDATION_PASSED for e in events):
        skills.append("validation_implementation")
    return skills


def _first_index(events: Sequence[RunEvent], event_type: str, start: int = 0) -> Optional[int]:
    for index in range(start, len(events)):
        if events[index].type == event_type:
            return index
    return None


class MemoryFormationEngine:
    """Extracts factual and experiential memories from run event streams."""

    def __init__(
        self,
        event_log: EventLog,
        factual_store: FactualStore,
        experiential_store: ExperientialStore,
        synthesizer: Optional[Synthesizer] = None,
        locks: Optional[UserLocks] = None,
    ):
        self._event_log = event_log
        self._factual = factual_store
        self._experiential = experiential_store
        self._synthesizer = synthesizer or TemplateSynthesizer()
        self._locks = locks or UserLocks()

    def extract_from_run(self, run_id: str, user_id: str) -> ExtractedMemories:
        events = self._event_log.get_run_events(run_id)
        if not events:
            logger.info("formation.no_events", run_id=run_id)
            return ExtractedMemories()

        # Build every record, reflections included, outside the user lock.
        facts = self._build_facts(events, user_id, run_id)
        experiences = self._build_experiences(events, user_id, run_id)
        with self._locks.hold(user_id):
            extracted = self._store_all(user_id, facts, experiences)

        metrics.inc(RUNS_PROCESSED)
        metrics.inc(FACTS_FORMED, len(extracted.factual))
        metrics.inc(EXPERIENCES_FORMED, len(extracted.experiential))
        logger.info(
            "formation.extracted",
            run_id=run_id,
            user_id=user_id,
            factual=len(extracted.factual),
            experiential=len(extracted.experiential),
        )
        return extracted

    def _store_all(
        self,
        user_id: str,
        facts: list[FactualMemory],
        experiences: list[ExperientialMemory],
    ) -> ExtractedMemories:
        """Store a run's records all or nothing, so a failed run can be retried."""
        stored = ExtractedMemories()
        try:
            for fact in facts:
                stored.factual.append(self._factual.store(fact))
            for experience in experiences:
                stored.experiential.append(self._experiential.store(experience))
        except Exception:
            self._roll_back(user_id, stored)
            raise
        return stored

    def _roll_back(self, user_id: str, stored: ExtractedMemories) -> None:
        for fact in stored.factual:
            try:
                self._factual.delete(user_id, fact.id)
            except StorageError:
                logger.error("formation.rollback_failed", memory_id=fact.id, exc_info=True)
        for experience in stored.experiential:
            try:
                self._experiential.delete(user_id, experience.id)
            except StorageError:
                logger.error("formation.rollback_failed", memory_id=experience.id, exc_info=True)
        logger.warning("formation.rolled_back", user_id=user_id, removed=stored.total)

    def _build_facts(
        self, events: Sequence[RunEvent], user_id: str, run_id: str
    ) -> list[FactualMemory]:
        facts: list[FactualMemory] = []
        for event in events:
            if event.type == EventType.STEP_COMPLETED and event.data.get("output"):
                step_id = event.data.get("step_id")
                step_label = "" if step_id is None else str(step_id)
                facts.append(FactualMemory(
                    user_id=user_id,
                    kind=FactKind.FACT,
                    content=f"Step {step_label}: {event.data['output']}",
                    source=f"run:{run_id}",
                    confidence=STEP_FACT_CONFIDENCE,
                    tags=["step_output", step_label],
                    metadata={"run_id": run_id, "step_id": step_id, "event_type": event.type},
                ))
            elif event.type == EventType.USER_INPUT and event.data.get("preference"):
                facts.append(FactualMemory(
                    user_id=user_id,
                    kind=FactKind.PREFERENCE,
                    content=str(event.data["preference"]),
                    source="user_input",
                    confidence=PREFERENCE_CONFIDENCE,
                    tags=["user_preference"],
                    metadata={"run_id": run_id, "event_type": event.type},
                ))
        return facts

    def _build_experiences(
        self, events: Sequence[RunEvent], user_id: str, run_id: str
    ) -> list[ExperientialMemory]:
        started_at = _first_index(events, EventType.RUN_STARTED)
        if started_at is None:
            return []
        start = events[started_at]
        completed_at = _first_index(events, EventType.RUN_COMPLETED, started_at + 1)
        failed_at = _first_index(events, EventType.RUN_FAILED, started_at + 1)
        context = f"Run with intent: {start.data.get('intent') or 'unknown'}"

        if completed_at is not None:
            complete = events[completed_at]
            record = ExperientialMemory(
                user_id=user_id,
                kind=ExperienceKind.SUCCESS,
                context=context,
                action=f"Executed workflow with {len(events)} events",
                outcome=str(complete.data.get("result") or "Completed successfully"),
                reflection=self._synthesizer.reflect(events, True),
                learned_skills=extract_skills(events),
                importance=calculate_importance(events, True),
                metadata={
                    "run_id": run_id,
                    "event_count": len(events),
                    "duration": complete.timestamp - start.timestamp,
                },
            )
        elif failed_at is not None:
            error = events[failed_at].data.get("error")
            record = ExperientialMemory(
                user_id=user_id,
                kind=ExperienceKind.FAILURE,
                context=context,
                action="Attempted workflow execution",
                outcome=str(error or "Failed with error"),
                reflection=self._synthesizer.reflect(
                    events, False, str(error) if error else None
                ),
                importance=calculate_importance(events, False),
                metadata={"run_id": run_id, "event_count": len(events), "error": error},
            )
        else:
            logger.debug("formation.run_incomplete", run_id=run_id)
            return []
        return [record]

    # -- Manual recording ------------------------------------------------------

    def record_fact(
        self,
        user_id: str,
        content: str,
        kind: FactKind | str = FactKind.FACT,
        confidence: float = 0.8,
        tags: Optional[list[str]] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> FactualMemory:
        """Store a fact supplied directly, e.g. from user feedback."""
        with self._locks.hold(user_id):
            return self._factual.store(FactualMemory(
                user_id=user_id,
                kind=kind,
                content=content,
                source="manual",
                confidence=confidence,
                tags=list(tags or []),
                metadata={**(metadata or {}), "manual": True},
            ))

    def record_experience(
        self,
        user_id: str,
        context: str,
        action: str,
        outcome: str,
        success: bool,
        importance: float = 0.5,
        learned_skills: Optional[list[str]] = None,
    ) -> ExperientialMemory:
        """Store an outcome supplied directly rather than derived from a run."""
        if success:
            reflection = f"Action succeeded: {outcome}"
        else:
            reflection = f"Action failed: {outcome}. Need to investigate and improve."
        with self._locks.hold(user_id):
            return self._experiential.store(ExperientialMemory(
                user_id=user_id,
                kind=ExperienceKind.SUCCESS if success else ExperienceKind.FAILURE,
                context=context,
                action=action,
                outcome=outcome,
                reflection=reflection,
                learned_skills=list(learned_skills or []),
                importance=importance,
                metadata={"manual": True},
            ))
