"""
Tests for aura_memory.memory.factual — the factual store contract.

Every test runs against both the in-memory store and the SQLite store, so the
two backends cannot drift apart on ordering, scoping or clamping.
"""

from __future__ import annotations

import math

import pytest

from aura_memory.errors import MemoryValidationError
from aura_memory.memory.factual import FactualStore, InMemoryFactualStore
from aura_memory.memory.models import FactKind, FactualMemory, MemoryQuery, TimeRange
from aura_memory.memory.store import MemoryDatabase, SQLiteFactualStore


@pytest.fixture(params=["memory", "sqlite"])
def store(request, clock, tmp_path) -> FactualStore:
    if request.param == "memory":
        yield InMemoryFactualStore(clock)
        return
    db = MemoryDatabase(tmp_path / "memory.db")
    db.initialize()
    yield SQLiteFactualStore(db, clock)
    db.close()


def _fact(content: str = "User prefers bullet points", user_id: str = "u1", **kwargs) -> FactualMemory:
    return FactualMemory(user_id=user_id, content=content, **kwargs)


# ---------------------------------------------------------------------------
# store / get
# ---------------------------------------------------------------------------

class TestStoreAndGet:

    def test_store_assigns_fresh_id_and_clock_time(self, store, clock):
        draft = _fact(kind=FactKind.PREFERENCE, confidence=0.9, tags=["prd"])
        stored = store.store(draft)
        assert stored.id != draft.id
        assert stored.created_at == clock()
        assert stored.content == draft.content
        assert stored.kind is FactKind.PREFERENCE
        assert stored.tags == ["prd"]

    def test_get_returns_what_was_stored(self, store):
        stored = store.store(_fact(metadata={"origin": "chat"}, source="run:r1"))
        assert store.get("u1", stored.id) == stored

    def test_get_missing_is_none(self, store):
        assert store.get("u1", "nope") is None

    def test_other_user_cannot_see_record(self, store):
        stored = store.store(_fact())
        assert store.get("u2", stored.id) is None

    @pytest.mark.parametrize("confidence", [1.5, -0.1, math.nan])
    def test_out_of_range_confidence_rejected(self, store, confidence):
        with pytest.raises(MemoryValidationError):
            store.store(_fact(confidence=confidence))
        assert store.retrieve(MemoryQuery(user_id="u1")) == []

    def test_returned_record_is_a_copy(self, store):
        stored = store.store(_fact(tags=["a"]))
        stored.tags.append("mutated")
        assert store.get("u1", stored.id).tags == ["a"]


# ---------------------------------------------------------------------------
# retrieve
# ---------------------------------------------------------------------------

class TestRetrieve:

    def test_newest_first(self, store, clock):
        first = store.store(_fact("first fact"))
        clock.advance(10)
        second = store.store(_fact("second fact"))
        results = store.retrieve(MemoryQuery(user_id="u1"))
        assert [r.id for r in results] == [second.id, first.id]

    def test_same_timestamp_latest_insert_first(self, store):
        a = store.store(_fact("a fact"))
        b = store.store(_fact("b fact"))
        assert [r.id for r in store.retrieve(MemoryQuery(user_id="u1"))] == [b.id, a.id]

    def test_scoped_to_user(self, store):
        store.store(_fact(user_id="u1"))
        store.store(_fact(user_id="u2"))
        results = store.retrieve(MemoryQuery(user_id="u2"))
        assert len(results) == 1
        assert results[0].user_id == "u2"

    def test_kind_filter(self, store):
        store.store(_fact("a rule", kind=FactKind.RULE))
        store.store(_fact("a fact"))
        results = store.retrieve(MemoryQuery(user_id="u1", kind=FactKind.RULE))
        assert [r.content for r in results] == ["a rule"]

    def test_tags_must_all_match(self, store):
        store.store(_fact("both", tags=["prd", "formatting"]))
        store.store(_fact("one", tags=["prd"]))
        results = store.retrieve(MemoryQuery(user_id="u1", tags=["prd", "formatting"]))
        assert [r.content for r in results] == ["both"]

    def test_min_confidence_inclusive(self, store):
        store.store(_fact("low", confidence=0.4))
        store.store(_fact("edge", confidence=0.6))
        store.store(_fact("high", confidence=0.9))
        results = store.retrieve(MemoryQuery(user_id="u1", min_confidence=0.6))
        assert sorted(r.content for r in results) == ["edge", "high"]

    def test_time_range(self, store, clock):
        start = clock()
        store.store(_fact("old"))
        clock.advance(100)
        store.store(_fact("new"))
        window = TimeRange(start + 50, start + 200)
        results = store.retrieve(MemoryQuery(user_id="u1", time_range=window))
        assert [r.content for r in results] == ["new"]

    def test_limit_and_offset(self, store, clock):
        for i in range(5):
            store.store(_fact(f"fact {i}"))
            clock.advance(1)
        page = store.retrieve(MemoryQuery(user_id="u1", limit=2, offset=1))
        assert [r.content for r in page] == ["fact 3", "fact 2"]

    def test_base_semantic_search_is_empty(self, store):
        store.store(_fact())
        assert store.semantic_search("u1", "bullet points") == []


# ---------------------------------------------------------------------------
# update / delete
# ---------------------------------------------------------------------------

class TestUpdateAndDelete:

    def test_update_fields(self, store):
        stored = store.store(_fact())
        updated = store.update("u1", stored.id, content="User prefers tables", tags=["x", "x"])
        assert updated.content == "User prefers tables"
        assert updated.tags == ["x"]
        assert store.get("u1", stored.id).content == "User prefers tables"

    def test_update_clamps_confidence(self, store):
        stored = store.store(_fact())
        assert store.update("u1", stored.id, confidence=1.7).confidence == 1.0
        assert store.update("u1", stored.id, confidence=-2).confidence == 0.0

    def test_update_confidence(self, store):
        stored = store.store(_fact(confidence=0.5))
        assert store.update_confidence("u1", stored.id, 0.75) is True
        assert store.get("u1", stored.id).confidence == pytest.approx(0.75)

    def test_update_confidence_unknown_record(self, store):
        assert store.update_confidence("u1", "missing", 0.5) is False

    def test_update_other_users_record_is_noop(self, store):
        stored = store.store(_fact(confidence=0.5))
        assert store.update("u2", stored.id, confidence=0.9) is None
        assert store.get("u1", stored.id).confidence == pytest.approx(0.5)

    def test_delete(self, store):
        stored = store.store(_fact())
        assert store.delete("u2", stored.id) is False
        assert store.delete("u1", stored.id) is True
        assert store.get("u1", stored.id) is None
        assert store.delete("u1", stored.id) is False


# ---------------------------------------------------------------------------
# stats
# ---------------------------------------------------------------------------

class TestStats:

    def test_empty(self, store):
        stats = store.get_stats("u1")
        assert stats.total_count == 0
        assert stats.by_kind == {}

    def test_counts_and_tags(self, store):
        store.store(_fact("a", confidence=0.6, tags=["prd", "style"]))
        store.store(_fact("b", confidence=0.8, tags=["prd"], kind=FactKind.RULE))
        store.store(_fact("c", confidence=1.0, user_id="u2", tags=["prd"]))
        stats = store.get_stats("u1")
        assert stats.total_count == 2
        assert stats.by_kind == {"fact": 1, "rule": 1}
        assert stats.avg_confidence == pytest.approx(0.7)
        assert stats.top_tags == [("prd", 2), ("style", 1)]
