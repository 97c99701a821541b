"""
Memory Retrieval — ranking what is remembered against what is asked.

Recall happens in two passes. A coarse filter keeps any recent record that
shares at least one keyword with the query. Each survivor is then scored:

    base     = 0.3 * trust + 0.4 * J(query, record) + 0.1 * J(record, attention)
    score    = min(1.0, base * decay(age) * kind_boost)

where trust is a fact's confidence or an experience's importance, J is the
Jaccard similarity of keyword sets, and decay halves a record's weight every
half-life (7 days by default). Rules and patterns get the largest boosts
because they are already distilled from several observations.

When a vector index is available and semantic search is switched on, the
query-overlap term blends keyword and embedding similarity. With it off the
formula above is used as written.

Retrieval never writes to a store.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Optional, Union

import structlog

from aura_memory.config import RetrievalConfig
from aura_memory.memory._utils import SECONDS_PER_DAY
from aura_memory.memory.experiential import ExperientialStore
from aura_memory.memory.factual import FactualStore
from aura_memory.memory.keywords import extract_keywords, jaccard, keywords_from, temporal_decay
from aura_memory.memory.models import (
    ExperienceKind,
    ExperientialMemory,
    FactKind,
    FactualMemory,
    MemoryQuery,
)
from aura_memory.memory.working import WorkingMemory
from aura_memory.metrics import RETRIEVAL_QUERIES, RETRIEVAL_RESULTS, RETRIEVAL_SECONDS, metrics

logger = structlog.get_logger(__name__)

TRUST_WEIGHT = 0.3
QUERY_OVERLAP_WEIGHT = 0.4
ATTENTION_WEIGHT = 0.1

FACT_KIND_BOOST = {FactKind.RULE: 1.2, FactKind.PREFERENCE: 1.1}
EXPERIENCE_KIND_BOOST = {ExperienceKind.PATTERN: 1.3, ExperienceKind.SUCCESS: 1.1}

Memory = Union[FactualMemory, ExperientialMemory]


@dataclass
class SearchResult:
    memory: Memory
    score: float
    reason: str

    @property
    def memory_type(self) -> str:
        return "factual" if isinstance(self.memory, FactualMemory) else "experiential"

    def to_dict(self) -> dict:
        return {
            "memory_type": self.memory_type,
            "memory": self.memory.to_dict(),
            "score": round(self.score, 4),
            "reason": self.reason,
        }


def explain_score(score: float) -> str:
    if score > 0.8:
        return "highly_relevant"
    if score > 0.6:
        return "relevant"
    if score > 0.4:
        return "somewhat_relevant"
    return "low_relevance"


def fact_keywords(record: FactualMemory) -> set[str]:
    return keywords_from([record.content], record.tags)


def experience_keywords(record: ExperientialMemory) -> set[str]:
    return keywords_from([record.context, record.action], record.learned_skills)


def attention_keywords(working_memory: Optional[WorkingMemory]) -> set[str]:
    if working_memory is None:
        return set()
    return keywords_from(working_memory.attention)


class RetrievalEngine:
    """Scores and ranks stored memories for a free-text query."""

    def __init__(
        self,
        factual_store: FactualStore,
        experiential_store: ExperientialStore,
        config: Optional[RetrievalConfig] = None,
        clock: Callable[[], float] = time.time,
        semantic_search_enabled: bool = False,
    ):
        self._factual = factual_store
        self._experiential = experiential_store
        self._config = config or RetrievalConfig()
        self._clock = clock
        self._semantic = semantic_search_enabled

    def _decay(self, created_at: float, now: float) -> float:
        if not self._config.temporal_decay_enabled:
            return 1.0
        return temporal_decay(now - created_at, self._config.half_life_days * SECONDS_PER_DAY)

    def _blend(self, keyword_overlap: float, vector_similarity: Optional[float]) -> float:
        if vector_similarity is None:
            return keyword_overlap
        kw = self._config.hybrid_keyword_weight
        emb = self._config.hybrid_embedding_weight
        if kw + emb <= 0:
            return keyword_overlap
        return (kw * keyword_overlap + emb * vector_similarity) / (kw + emb)

    def score_fact(
        self,
        record: FactualMemory,
        query_keywords: set[str],
        attention: set[str],
        now: float,
        vector_similarity: Optional[float] = None,
    ) -> float:
        words = fact_keywords(record)
        overlap = self._blend(jaccard(query_keywords, words), vector_similarity)
        score = (
            TRUST_WEIGHT * record.confidence
            + QUERY_OVERLAP_WEIGHT * overlap
            + ATTENTION_WEIGHT * jaccard(words, attention)
        )
        score *= self._decay(record.created_at, now)
        score *= FACT_KIND_BOOST.get(record.kind, 1.0)
        return min(score, 1.0)

    def score_experience(
        self,
        record: ExperientialMemory,
        query_keywords: set[str],
        attention: set[str],
        now: float,
    ) -> float:
        words = experience_keywords(record)
        score = (
            TRUST_WEIGHT * record.importance
            + QUERY_OVERLAP_WEIGHT * jaccard(query_keywords, words)
            + ATTENTION_WEIGHT * jaccard(words, attention)
        )
        score *= self._decay(record.created_at, now)
        score *= EXPERIENCE_KIND_BOOST.get(record.kind, 1.0)
        return min(score, 1.0)

    def _vector_hits(self, user_id: str, query_text: str) -> dict[str, float]:
        if not self._semantic:
            return {}
        hits = self._factual.semantic_search(
            user_id, query_text, limit=self._config.candidate_limit
        )
        return dict(hits)

    def retrieve(
        self,
        user_id: str,
        query_text: str,
        working_memory: Optional[WorkingMemory] = None,
    ) -> list[SearchResult]:
        """Up to max_results memories scoring at least min_relevance, best first."""
        with metrics.timer(RETRIEVAL_SECONDS):
            results = self._retrieve(user_id, query_text, working_memory)
        metrics.inc(RETRIEVAL_QUERIES)
        metrics.inc(RETRIEVAL_RESULTS, len(results))
        logger.debug(
            "retrieval.complete", user_id=user_id, results=len(results)
        )
        return results

    def _retrieve(
        self,
        user_id: str,
        query_text: str,
        working_memory: Optional[WorkingMemory],
    ) -> list[SearchResult]:
        now = self._clock()
        query_keywords = extract_keywords(query_text)
        attention = attention_keywords(working_memory)
        vector_hits = self._vector_hits(user_id, query_text)
        limit = self._config.candidate_limit
        floor = self._config.min_relevance

        results: list[SearchResult] = []
        for fact in self._factual.retrieve(MemoryQuery(user_id=user_id, limit=limit)):
            similarity = vector_hits.get(fact.id)
            if similarity is None and not (query_keywords & fact_keywords(fact)):
                continue
            score = self.score_fact(fact, query_keywords, attention, now, similarity)
            if score >= floor:
                results.append(SearchResult(fact, score, explain_score(score)))

        for experience in self._experiential.retrieve(MemoryQuery(user_id=user_id, limit=limit)):
            if not (query_keywords & experience_keywords(experience)):
                continue
            score = self.score_experience(experience, query_keywords, attention, now)
            if score >= floor:
                results.append(SearchResult(experience, score, explain_score(score)))

        # Stable: ties keep store order, facts before experiences.
        results.sort(key=lambda r: r.score, reverse=True)
        return results[: self._config.max_results]

    def get_best_rule(self, user_id: str, query_text: str) -> Optional[FactualMemory]:
        """Highest-ranked rule for the query, if any."""
        for result in self.retrieve(user_id, query_text):
            memory = result.memory
            if isinstance(memory, FactualMemory) and memory.kind == FactKind.RULE:
                return memory
        return None

    def get_similar_experiences(
        self,
        user_id: str,
        query_text: str,
        kind: Optional[ExperienceKind | str] = None,
    ) -> list[ExperientialMemory]:
        wanted = ExperienceKind(kind) if kind is not None else None
        return [
            r.memory
            for r in self.retrieve(user_id, query_text)
            if isinstance(r.memory, ExperientialMemory)
            and (wanted is None or r.memory.kind == wanted)
        ]
