"""
Memory Consolidation — keeping long-term memory useful as it grows.

A consolidation pass rewrites one user's experiential memory in three phases,
always in this order:

1. **Merge.** Recent experiences that are the same kind and describe nearly
   the same situation are folded into a single *pattern* experience. The
   originals are kept but their importance is halved, which moves them toward
   pruning without losing the raw history.

2. **Extract.** When several important recent successes share a learned
   skill, that repetition is promoted to a factual *rule* whose confidence
   grows with the number of observations (capped at 0.9).

3. **Prune.** Old experiences whose importance has fallen below the
   threshold are deleted.

If a phase raises, later phases do not run. Each phase leaves the stores
consistent on its own, so a failed pass is simply retried next interval.

Two passes never overlap for the same user: a second caller gets a skipped
result immediately. The merge phase holds the user's write lock, the same
lock formation holds, so new experiences cannot interleave with a merge.
"""

from __future__ import annotations

import threading
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Optional

import structlog

from aura_memory.config import ConsolidationConfig
from aura_memory.memory._utils import SECONDS_PER_DAY, UserLocks, clamp01, dedupe
from aura_memory.memory.experiential import ExperientialStore
from aura_memory.memory.factual import FactualStore
from aura_memory.memory.keywords import extract_keywords, jaccard
from aura_memory.memory.models import (
    ExperienceKind,
    ExperientialMemory,
    FactKind,
    FactualMemory,
    MemoryQuery,
    TimeRange,
)
from aura_memory.metrics import (
    CONSOLIDATION_FAILURES,
    CONSOLIDATION_PASSES,
    CONSOLIDATION_SECONDS,
    CONSOLIDATION_SKIPPED,
    MEMORIES_PRUNED,
    PATTERNS_MERGED,
    RULES_EXTRACTED,
    metrics,
)

logger = structlog.get_logger(__name__)

RULE_CONFIDENCE_PER_OBSERVATION = 0.15
RULE_CONFIDENCE_CAP = 0.9


@dataclass
class ConsolidationResult:
    merged: int = 0
    patterns_extracted: int = 0
    pruned: int = 0
    skipped: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ConsolidationStats:
    total_experiences: int = 0
    patterns: int = 0
    rules: int = 0
    avg_importance: float = 0.0


def rule_confidence(observations: int) -> float:
    return min(RULE_CONFIDENCE_CAP, RULE_CONFIDENCE_PER_OBSERVATION * observations)


def group_similar(
    experiences: list[ExperientialMemory], threshold: float = 0.5
) -> list[list[ExperientialMemory]]:
    """
    Greedy single-pass clustering.

    Each experience joins the first group whose first member has the same
    kind and a context keyword Jaccard strictly above ``threshold``;
    otherwise it starts a new group.
    """
    groups: list[tuple[set[str], list[ExperientialMemory]]] = []
    for experience in experiences:
        words = extract_keywords(experience.context)
        for head_words, members in groups:
            head = members[0]
            if head.kind == experience.kind and jaccard(words, head_words) > threshold:
                members.append(experience)
                break
        else:
            groups.append((words, [experience]))
    return [members for _, members in groups]


def cluster_by_skill(experiences: list[ExperientialMemory]) -> dict[str, list[ExperientialMemory]]:
    """skill -> experiences that learned it. One record can sit in several clusters."""
    clusters: dict[str, list[ExperientialMemory]] = {}
    for experience in experiences:
        for skill in experience.learned_skills:
            clusters.setdefault(skill, []).append(experience)
    return clusters


class ConsolidationEngine:
    """Periodic merge, rule extraction and pruning over one user's memories."""

    def __init__(
        self,
        factual_store: FactualStore,
        experiential_store: ExperientialStore,
        config: Optional[ConsolidationConfig] = None,
        clock: Callable[[], float] = time.time,
        locks: Optional[UserLocks] = None,
    ):
        self._factual = factual_store
        self._experiential = experiential_store
        self._config = config or ConsolidationConfig()
        self._clock = clock
        self._locks = locks or UserLocks()
        self._active_guard = threading.Lock()
        self._active: set[str] = set()

    def _claim(self, user_id: str) -> bool:
        with self._active_guard:
            if user_id in self._active:
                return False
            self._active.add(user_id)
            return True

    def _release(self, user_id: str) -> None:
        with self._active_guard:
            self._active.discard(user_id)

    def is_running(self, user_id: str) -> bool:
        with self._active_guard:
            return user_id in self._active

    def consolidate(self, user_id: str) -> ConsolidationResult:
        """Run merge, then extraction, then pruning for one user."""
        if not self._claim(user_id):
            metrics.inc(CONSOLIDATION_SKIPPED)
            logger.info("consolidation.skipped_overlap", user_id=user_id)
            return ConsolidationResult(skipped=True)

        logger.info("consolidation.started", user_id=user_id)
        result = ConsolidationResult()
        try:
            with metrics.timer(CONSOLIDATION_SECONDS):
                with self._locks.hold(user_id):
                    result.merged = self.merge_similar_experiences(user_id)
                result.patterns_extracted = self.extract_patterns(user_id)
                result.pruned = self.prune(user_id)
        except Exception as e:
            metrics.inc(CONSOLIDATION_FAILURES)
            logger.error(
                "consolidation.failed",
                user_id=user_id,
                error=str(e),
                completed=result.to_dict(),
            )
            raise
        finally:
            self._release(user_id)

        metrics.inc(CONSOLIDATION_PASSES)
        metrics.inc(PATTERNS_MERGED, result.merged)
        metrics.inc(RULES_EXTRACTED, result.patterns_extracted)
        metrics.inc(MEMORIES_PRUNED, result.pruned)
        logger.info("consolidation.complete", user_id=user_id, **result.to_dict())
        return result

    # -------------------------------------------------------------------------
    # Phase 1: merge
    # -------------------------------------------------------------------------

    def merge_similar_experiences(self, user_id: str) -> int:
        now = self._clock()
        window = TimeRange(now - self._config.merge_window_days * SECONDS_PER_DAY, now)
        experiences = self._experiential.retrieve(
            MemoryQuery(user_id=user_id, time_range=window, limit=self._config.merge_limit)
        )
        if len(experiences) < 2:
            return 0

        merged = 0
        for group in group_similar(experiences, self._config.merge_similarity):
            if len(group) > 1:
                self._merge_group(user_id, group)
                merged += 1
        return merged

    def _merge_group(self, user_id: str, group: list[ExperientialMemory]) -> ExperientialMemory:
        head = group[0]
        total = len(group)
        successes = sum(1 for e in group if e.kind == ExperienceKind.SUCCESS)
        failures = sum(1 for e in group if e.kind == ExperienceKind.FAILURE)
        skills = dedupe(skill for e in group for skill in e.learned_skills)

        pattern = self._experiential.store(ExperientialMemory(
            user_id=user_id,
            kind=ExperienceKind.PATTERN,
            context=head.context,
            action=head.action,
            outcome=f"Observed {total} times. {successes} successes, {failures} failures.",
            reflection=(
                f"Consolidated from {total} similar experiences. "
                f"Success rate: {successes / total * 100:.0f}%. {head.reflection}"
            ),
            learned_skills=skills,
            importance=clamp01(max(e.importance for e in group)),
            related_memories=[e.id for e in group],
            metadata={"consolidated": True, "source_count": total},
        ))
        for experience in group:
            self._experiential.update_importance(
                user_id, experience.id, experience.importance * 0.5
            )
        logger.debug(
            "consolidation.group_merged",
            user_id=user_id,
            pattern_id=pattern.id,
            source_count=total,
        )
        return pattern

    # -------------------------------------------------------------------------
    # Phase 2: rule extraction
    # -------------------------------------------------------------------------

    def extract_patterns(self, user_id: str) -> int:
        now = self._clock()
        window = TimeRange(now - self._config.pattern_window_days * SECONDS_PER_DAY, now)
        successes = self._experiential.retrieve(MemoryQuery(
            user_id=user_id,
            kind=ExperienceKind.SUCCESS,
            time_range=window,
            min_importance=self._config.pattern_min_importance,
            limit=self._config.pattern_limit,
        ))
        minimum = self._config.pattern_min_cluster
        if len(successes) < minimum:
            return 0

        extracted = 0
        for skill, members in cluster_by_skill(successes).items():
            if len(members) >= minimum:
                self._store_rule(user_id, skill, members)
                extracted += 1
        return extracted

    def _store_rule(
        self, user_id: str, skill: str, members: list[ExperientialMemory]
    ) -> FactualMemory:
        count = len(members)
        return self._factual.store(FactualMemory(
            user_id=user_id,
            kind=FactKind.RULE,
            content=(
                f"When applying '{skill}', observed {count} successful outcomes. "
                "This pattern is reliable."
            ),
            source="pattern_extraction",
            confidence=rule_confidence(count),
            tags=[skill, "pattern", "extracted"],
            metadata={
                "experience_count": count,
                "source_experiences": [m.id for m in members],
            },
        ))

    # -------------------------------------------------------------------------
    # Phase 3: prune
    # -------------------------------------------------------------------------

    def prune(self, user_id: str) -> int:
        return self._experiential.prune_old_memories(
            user_id,
            importance_threshold=self._config.prune_threshold,
            max_age_days=self._config.prune_max_age_days,
        )

    def get_stats(self, user_id: str) -> ConsolidationStats:
        experiential = self._experiential.get_stats(user_id)
        factual = self._factual.get_stats(user_id)
        return ConsolidationStats(
            total_experiences=experiential.total_count,
            patterns=experiential.by_kind.get(ExperienceKind.PATTERN.value, 0),
            rules=factual.by_kind.get(FactKind.RULE.value, 0),
            avg_importance=experiential.avg_importance,
        )
