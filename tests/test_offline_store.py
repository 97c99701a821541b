"""
Tests for aura_memory.memory.offline — degraded local mode.

Offline stores accept writes with synthetic ids, return nothing on reads and
never raise ConfigurationUnavailable.
"""

from __future__ import annotations

import pytest

from aura_memory.errors import MemoryValidationError
from aura_memory.memory.models import ExperientialMemory, FactualMemory, MemoryQuery
from aura_memory.memory.offline import (
    OFFLINE_ID_PREFIX,
    OfflineExperientialStore,
    OfflineFactualStore,
)


# ---------------------------------------------------------------------------
# Factual
# ---------------------------------------------------------------------------

class TestOfflineFactualStore:

    def test_store_returns_synthetic_id(self, clock):
        store = OfflineFactualStore(clock)
        record = store.store(FactualMemory(user_id="u1", content="x", confidence=0.9))
        assert record.id.startswith(OFFLINE_ID_PREFIX)
        assert record.created_at == clock()
        assert record.confidence == 0.9

    def test_nothing_is_kept(self, clock):
        store = OfflineFactualStore(clock)
        record = store.store(FactualMemory(user_id="u1", content="x"))
        assert store.get("u1", record.id) is None
        assert store.retrieve(MemoryQuery(user_id="u1")) == []
        assert store.update("u1", record.id, confidence=0.1) is None
        assert store.update_confidence("u1", record.id, 0.1) is False
        assert store.delete("u1", record.id) is False
        assert store.get_stats("u1").total_count == 0
        assert store.semantic_search("u1", "x") == []

    def test_validation_still_applies(self, clock):
        with pytest.raises(MemoryValidationError):
            OfflineFactualStore(clock).store(FactualMemory(user_id="u1", content="x", confidence=2))


# ---------------------------------------------------------------------------
# Experiential
# ---------------------------------------------------------------------------

class TestOfflineExperientialStore:

    def test_store_returns_synthetic_id(self, clock):
        record = OfflineExperientialStore(clock).store(ExperientialMemory(user_id="u1"))
        assert record.id.startswith(OFFLINE_ID_PREFIX)

    def test_reads_are_empty(self, clock):
        store = OfflineExperientialStore(clock)
        store.store(ExperientialMemory(user_id="u1", learned_skills=["a"]))
        assert store.retrieve(MemoryQuery(user_id="u1")) == []
        assert store.get_successes("u1") == []
        assert store.get_learned_skills("u1") == []
        assert store.update_importance("u1", "any", 0.5) is False
        assert store.prune_old_memories("u1") == 0
        stats = store.get_stats("u1")
        assert stats.total_count == 0
        assert stats.success_rate == 0.0
