"""
Tests for aura_memory.memory.store — SQLite persistence specifics.

The behavioural contract is covered by test_factual_store / test_experiential_store;
this module checks the database lifecycle, durability and the optional vector index.
"""

from __future__ import annotations

import os
import sqlite3
import stat
from unittest.mock import MagicMock

import pytest

from aura_memory.errors import StorageError
from aura_memory.memory.models import ExperientialMemory, FactualMemory, MemoryQuery
from aura_memory.memory.store import (
    MemoryDatabase,
    SQLiteExperientialStore,
    SQLiteFactualStore,
)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

class TestLifecycle:

    def test_creates_tables(self, database):
        rows = database.query(
            "test", "SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name"
        )
        names = {row["name"] for row in rows}
        assert {"factual_memories", "experiential_memories"} <= names

    def test_initialize_twice_is_harmless(self, database):
        database.initialize()
        assert database.query("test", "SELECT 1 AS one")[0]["one"] == 1

    def test_uninitialized_database_raises_storage_error(self, tmp_path, clock):
        db = MemoryDatabase(tmp_path / "memory.db")
        store = SQLiteFactualStore(db, clock)
        with pytest.raises(StorageError) as excinfo:
            store.store(FactualMemory(user_id="u1", content="x"))
        assert excinfo.value.operation == "connect"

    def test_closed_database_raises(self, tmp_path, clock):
        db = MemoryDatabase(tmp_path / "memory.db")
        db.initialize()
        db.close()
        with pytest.raises(StorageError):
            SQLiteExperientialStore(db, clock).retrieve(MemoryQuery(user_id="u1"))

    def test_creates_parent_directory(self, tmp_path):
        db = MemoryDatabase(tmp_path / "nested" / "dir" / "memory.db")
        db.initialize()
        try:
            assert db.path.exists()
        finally:
            db.close()

    @pytest.mark.skipif(os.name != "posix", reason="POSIX permissions only")
    def test_database_file_is_private(self, database):
        mode = stat.S_IMODE(database.path.stat().st_mode)
        assert mode == 0o600

    def test_sqlite_errors_are_wrapped(self, database):
        with pytest.raises(StorageError) as excinfo:
            database.query("broken", "SELECT * FROM no_such_table")
        assert excinfo.value.operation == "broken"
        assert isinstance(excinfo.value.__cause__, sqlite3.Error)

    def test_failed_transaction_rolls_back(self, database, clock):
        store = SQLiteFactualStore(database, clock)
        with pytest.raises(StorageError):
            with database.transaction("test") as conn:
                conn.execute(
                    "INSERT INTO factual_memories (id, user_id, kind, content, confidence, created_at)"
                    " VALUES ('a', 'u1', 'fact', 'x', 0.5, 0)"
                )
                conn.execute("INSERT INTO no_such_table VALUES (1)")
        assert store.get("u1", "a") is None


# ---------------------------------------------------------------------------
# Durability
# ---------------------------------------------------------------------------

class TestDurability:

    def test_records_survive_reopen(self, tmp_path, clock):
        path = tmp_path / "memory.db"
        db = MemoryDatabase(path)
        db.initialize()
        fact = SQLiteFactualStore(db, clock).store(
            FactualMemory(user_id="u1", content="User prefers bullet points", tags=["prd"])
        )
        exp = SQLiteExperientialStore(db, clock).store(
            ExperientialMemory(user_id="u1", context="Draft", learned_skills=["drafting"])
        )
        db.close()

        reopened = MemoryDatabase(path)
        reopened.initialize()
        try:
            assert SQLiteFactualStore(reopened, clock).get("u1", fact.id) == fact
            assert SQLiteExperientialStore(reopened, clock).get("u1", exp.id) == exp
        finally:
            reopened.close()


# ---------------------------------------------------------------------------
# Vector index
# ---------------------------------------------------------------------------

class TestVectorIndex:

    def test_disabled_by_default(self, database, clock):
        assert database.vector_enabled is False
        store = SQLiteFactualStore(database, clock)
        store.store(FactualMemory(user_id="u1", content="User prefers bullet points"))
        assert store.semantic_search("u1", "bullet points") == []

    def test_query_maps_distances_to_similarity(self, database, clock):
        collection = MagicMock()
        collection.query.return_value = {"ids": [["a", "b"]], "distances": [[1.0, 0.0]]}
        database._facts_collection = collection
        hits = SQLiteFactualStore(database, clock).semantic_search("u1", "bullets", limit=5)
        assert hits == [("b", 1.0), ("a", 0.5)]
        kwargs = collection.query.call_args.kwargs
        assert kwargs["where"] == {"user_id": "u1"}
        assert kwargs["n_results"] == 5

    def test_query_failure_returns_nothing(self, database, clock):
        collection = MagicMock()
        collection.query.side_effect = RuntimeError("index corrupt")
        database._facts_collection = collection
        assert SQLiteFactualStore(database, clock).semantic_search("u1", "bullets") == []

    def test_store_and_delete_mirror_into_index(self, database, clock):
        collection = MagicMock()
        database._facts_collection = collection
        store = SQLiteFactualStore(database, clock)
        fact = store.store(FactualMemory(user_id="u1", content="x", tags=["t"]))
        upsert = collection.upsert.call_args.kwargs
        assert upsert["ids"] == [fact.id]
        assert upsert["metadatas"] == [{"user_id": "u1", "kind": "fact"}]
        store.delete("u1", fact.id)
        collection.delete.assert_called_once_with(ids=[fact.id])
