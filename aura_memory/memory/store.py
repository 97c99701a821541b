"""
Memory Store — the durable persistence layer.

Factual and experiential records live in one SQLite database, one table per
memory type, every row carrying its owning user_id. All queries filter on it;
there is no method that reads or writes a row without being told whose it is.

An optional ChromaDB collection mirrors factual content for embedding search.
It is only created when semantic search is switched on, and a failure to load
or query it disables the index rather than failing the caller.

Every sqlite3 error is re-raised as StorageError so callers see one typed
failure regardless of backend.
"""

from __future__ import annotations

import dataclasses
import math
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

import structlog

from aura_memory.errors import StorageError
from aura_memory.memory._utils import SECONDS_PER_DAY, clamp01, dedupe
from aura_memory.memory.experiential import ExperientialStore
from aura_memory.memory.factual import FactualStore
from aura_memory.memory.models import (
    ExperienceKind,
    ExperientialMemory,
    ExperientialStats,
    FactualMemory,
    FactualStats,
    MemoryQuery,
)

logger = structlog.get_logger(__name__)

FACTUAL_SCHEMA = """
CREATE TABLE IF NOT EXISTS factual_memories (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    kind TEXT NOT NULL,
    content TEXT NOT NULL,
    source TEXT DEFAULT '',
    confidence REAL NOT NULL,
    tags TEXT DEFAULT '[]',
    metadata TEXT DEFAULT '{}',
    embedding TEXT,
    created_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_factual_user_created ON factual_memories(user_id, created_at);
CREATE INDEX IF NOT EXISTS idx_factual_user_kind ON factual_memories(user_id, kind);
"""

EXPERIENTIAL_SCHEMA = """
CREATE TABLE IF NOT EXISTS experiential_memories (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    kind TEXT NOT NULL,
    context TEXT DEFAULT '',
    action TEXT DEFAULT '',
    outcome TEXT DEFAULT '',
    reflection TEXT DEFAULT '',
    learned_skills TEXT DEFAULT '[]',
    importance REAL NOT NULL,
    related_memories TEXT DEFAULT '[]',
    metadata TEXT DEFAULT '{}',
    created_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_experiential_user_importance
    ON experiential_memories(user_id, importance, created_at);
CREATE INDEX IF NOT EXISTS idx_experiential_user_kind ON experiential_memories(user_id, kind);
"""


class MemoryDatabase:
    """
    Shared SQLite connection for both record stores.

    The connection is opened with check_same_thread=False because maintenance
    passes run on worker threads; a lock serializes access to it.
    """

    def __init__(
        self,
        db_path: Path,
        vector_db_path: Optional[Path] = None,
        enable_vector_search: bool = False,
    ):
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._best_effort_chmod(self._db_path.parent, 0o700)
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._vector_db_path = (
            Path(vector_db_path) if vector_db_path else self._db_path.parent / "vectors"
        )
        self._enable_vector_search = enable_vector_search
        self._vector_client: Any = None
        self._facts_collection: Any = None

        logger.info("memory_database.initializing", path=str(self._db_path))

    @property
    def path(self) -> Path:
        return self._db_path

    @property
    def vector_enabled(self) -> bool:
        return self._facts_collection is not None

    def initialize(self) -> None:
        """Open the connection and ensure the schema exists."""
        if self._conn is not None:
            logger.debug("memory_database.already_initialized", path=str(self._db_path))
            return
        try:
            self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.executescript(FACTUAL_SCHEMA)
            self._conn.executescript(EXPERIENTIAL_SCHEMA)
            self._conn.commit()
        except sqlite3.Error as exc:
            self._conn = None
            raise StorageError("initialize", str(exc)) from exc
        self._harden_storage_permissions()
        self._initialize_vector_store()
        logger.info("memory_database.initialized", path=str(self._db_path))

    def close(self) -> None:
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None
        self._vector_client = None
        self._facts_collection = None

    def _require_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageError("connect", "MemoryDatabase is not initialized; call initialize()")
        return self._conn

    @contextmanager
    def transaction(self, operation: str) -> Iterator[sqlite3.Connection]:
        """Run a block under the connection lock, committing on success."""
        with self._lock:
            conn = self._require_connection()
            try:
                yield conn
                conn.commit()
            except sqlite3.Error as exc:
                conn.rollback()
                logger.error("memory_database.error", operation=operation, error=str(exc))
                raise StorageError(operation, str(exc)) from exc

    def query(self, operation: str, sql: str, params: Any = ()) -> list[sqlite3.Row]:
        with self._lock:
            conn = self._require_connection()
            try:
                return conn.execute(sql, params).fetchall()
            except sqlite3.Error as exc:
                logger.error("memory_database.error", operation=operation, error=str(exc))
                raise StorageError(operation, str(exc)) from exc

    # -------------------------------------------------------------------------
    # Vector index (optional)
    # -------------------------------------------------------------------------

    def _initialize_vector_store(self) -> None:
        if not self._enable_vector_search:
            return
        try:
            import chromadb
        except Exception as e:
            logger.warning("memory_database.vector_unavailable", error=str(e))
            self._enable_vector_search = False
            return
        try:
            self._vector_db_path.mkdir(parents=True, exist_ok=True)
            self._best_effort_chmod(self._vector_db_path, 0o700)
            self._vector_client = chromadb.PersistentClient(path=str(self._vector_db_path))
            self._facts_collection = self._vector_client.get_or_create_collection(
                name="aura_factual_memories"
            )
            logger.info("memory_database.vector_initialized", path=str(self._vector_db_path))
        except Exception as e:
            logger.warning("memory_database.vector_init_failed", error=str(e))
            self._enable_vector_search = False
            self._vector_client = None
            self._facts_collection = None

    @staticmethod
    def _distance_to_similarity(distance: Optional[float]) -> float:
        """Map a Chroma distance onto (0, 1]; only monotonicity matters."""
        if distance is None or math.isnan(distance):
            return 0.0
        return 1.0 / (1.0 + max(0.0, float(distance)))

    def upsert_fact_embedding(self, record: FactualMemory) -> None:
        if self._facts_collection is None:
            return
        document = f"{record.content}\n{' '.join(record.tags)}".strip()
        try:
            self._facts_collection.upsert(
                ids=[record.id],
                documents=[document],
                metadatas=[{"user_id": record.user_id, "kind": record.kind.value}],
            )
        except Exception as e:
            logger.warning(
                "memory_database.vector_upsert_failed", memory_id=record.id, error=str(e)
            )

    def delete_fact_embedding(self, memory_id: str) -> None:
        if self._facts_collection is None:
            return
        try:
            self._facts_collection.delete(ids=[memory_id])
        except Exception as e:
            logger.warning(
                "memory_database.vector_delete_failed", memory_id=memory_id, error=str(e)
            )

    def query_fact_embeddings(
        self, user_id: str, query_text: str, top_k: int = 10
    ) -> list[tuple[str, float]]:
        """(memory_id, similarity) pairs for one user's facts, best first."""
        if self._facts_collection is None or not query_text.strip():
            return []
        try:
            result = self._facts_collection.query(
                query_texts=[query_text],
                n_results=max(1, int(top_k)),
                where={"user_id": user_id},
                include=["distances"],
            )
        except Exception as e:
            logger.warning("memory_database.vector_query_failed", error=str(e))
            return []
        ids = (result.get("ids") or [[]])[0]
        distances = (result.get("distances") or [[]])[0]
        scored = [
            (doc_id, self._distance_to_similarity(distance))
            for doc_id, distance in zip(ids, distances)
        ]
        scored.sort(key=lambda x: x[1], reverse=True)
        return scored

    # -------------------------------------------------------------------------
    # File permissions
    # -------------------------------------------------------------------------

    def _harden_storage_permissions(self) -> None:
        """Best-effort permission hardening for persisted memory artifacts."""
        self._best_effort_chmod(self._db_path.parent, 0o700)
        self._best_effort_chmod(self._vector_db_path, 0o700)
        self._best_effort_chmod(self._db_path, 0o600)
        for suffix in ("-wal", "-shm"):
            sidecar = Path(f"{self._db_path}{suffix}")
            if sidecar.exists():
                self._best_effort_chmod(sidecar, 0o600)

    @staticmethod
    def _best_effort_chmod(path: Path, mode: int) -> None:
        if not path.exists():
            return
        try:
            path.chmod(mode)
        except OSError:
            logger.debug("memory_database.chmod_skipped", path=str(path), mode=oct(mode))


def _filter_clauses(query: MemoryQuery, tag_column: str) -> tuple[str, list[Any]]:
    """WHERE clause shared by both tables. Always scoped to query.user_id."""
    sql = " WHERE user_id = ?"
    params: list[Any] = [query.user_id]
    if query.kind:
        sql += " AND kind = ?"
        params.append(query.kind)
    for tag in dedupe(query.tags):
        sql += f" AND EXISTS (SELECT 1 FROM json_each({tag_column}) WHERE value = ?)"
        params.append(tag)
    if query.time_range is not None:
        sql += " AND created_at >= ? AND created_at <= ?"
        params.extend([query.time_range.start, query.time_range.end])
    return sql, params


class SQLiteFactualStore(FactualStore):
    """FactualStore backed by the factual_memories table."""

    def __init__(self, db: MemoryDatabase, clock: Callable[[], float] = time.time) -> None:
        super().__init__(clock)
        self._db = db

    def store(self, record: FactualMemory) -> FactualMemory:
        stored = self.prepare(record)
        data = stored.to_row()
        with self._db.transaction("factual.store") as conn:
            conn.execute(
                """INSERT INTO factual_memories
                   (id, user_id, kind, content, source, confidence, tags,
                    metadata, embedding, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    data["id"], data["user_id"], data["kind"], data["content"],
                    data["source"], data["confidence"], data["tags"],
                    data["metadata"], data["embedding"], data["created_at"],
                ),
            )
        self._db.upsert_fact_embedding(stored)
        logger.debug("factual_store.stored", memory_id=stored.id, kind=data["kind"])
        return stored

    def get(self, user_id: str, memory_id: str) -> Optional[FactualMemory]:
        rows = self._db.query(
            "factual.get",
            "SELECT * FROM factual_memories WHERE id = ? AND user_id = ?",
            (memory_id, user_id),
        )
        return FactualMemory.from_dict(dict(rows[0])) if rows else None

    def retrieve(self, query: MemoryQuery) -> list[FactualMemory]:
        where, params = _filter_clauses(query, "tags")
        if query.min_confidence is not None:
            where += " AND confidence >= ?"
            params.append(query.min_confidence)
        sql = (
            "SELECT * FROM factual_memories" + where
            + " ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?"
        )
        params.extend([query.limit, query.offset])
        rows = self._db.query("factual.retrieve", sql, params)
        return [FactualMemory.from_dict(dict(row)) for row in rows]

    def update(
        self,
        user_id: str,
        memory_id: str,
        *,
        content: Optional[str] = None,
        confidence: Optional[float] = None,
        tags: Optional[list[str]] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Optional[FactualMemory]:
        current = self.get(user_id, memory_id)
        if current is None:
            return None
        changes: dict[str, Any] = {}
        if content is not None:
            changes["content"] = content
        if confidence is not None:
            changes["confidence"] = clamp01(confidence)
        if tags is not None:
            changes["tags"] = dedupe(tags)
        if metadata is not None:
            changes["metadata"] = dict(metadata)
        updated = dataclasses.replace(current, **changes)
        data = updated.to_row()
        with self._db.transaction("factual.update") as conn:
            conn.execute(
                """UPDATE factual_memories
                   SET content = ?, confidence = ?, tags = ?, metadata = ?
                   WHERE id = ? AND user_id = ?""",
                (
                    data["content"], data["confidence"], data["tags"],
                    data["metadata"], memory_id, user_id,
                ),
            )
        self._db.upsert_fact_embedding(updated)
        return updated

    def delete(self, user_id: str, memory_id: str) -> bool:
        with self._db.transaction("factual.delete") as conn:
            cursor = conn.execute(
                "DELETE FROM factual_memories WHERE id = ? AND user_id = ?",
                (memory_id, user_id),
            )
            deleted = cursor.rowcount > 0
        if deleted:
            self._db.delete_fact_embedding(memory_id)
        return deleted

    def get_stats(self, user_id: str) -> FactualStats:
        kind_rows = self._db.query(
            "factual.stats",
            """SELECT kind, COUNT(*) AS n, SUM(confidence) AS total
               FROM factual_memories WHERE user_id = ? GROUP BY kind""",
            (user_id,),
        )
        if not kind_rows:
            return FactualStats()
        total = sum(row["n"] for row in kind_rows)
        tag_rows = self._db.query(
            "factual.stats",
            """SELECT j.value AS tag, COUNT(*) AS n, MIN(f.rowid) AS first_seen
               FROM factual_memories f, json_each(f.tags) j
               WHERE f.user_id = ?
               GROUP BY j.value ORDER BY n DESC, first_seen ASC LIMIT 10""",
            (user_id,),
        )
        return FactualStats(
            total_count=total,
            by_kind={row["kind"]: row["n"] for row in kind_rows},
            avg_confidence=sum(row["total"] for row in kind_rows) / total,
            top_tags=[(row["tag"], row["n"]) for row in tag_rows],
        )

    def semantic_search(
        self, user_id: str, query_text: str, limit: int = 10
    ) -> list[tuple[str, float]]:
        return self._db.query_fact_embeddings(user_id, query_text, top_k=limit)


class SQLiteExperientialStore(ExperientialStore):
    """ExperientialStore backed by the experiential_memories table."""

    def __init__(self, db: MemoryDatabase, clock: Callable[[], float] = time.time) -> None:
        super().__init__(clock)
        self._db = db

    def store(self, record: ExperientialMemory) -> ExperientialMemory:
        stored = self.prepare(record)
        data = stored.to_row()
        with self._db.transaction("experiential.store") as conn:
            conn.execute(
                """INSERT INTO experiential_memories
                   (id, user_id, kind, context, action, outcome, reflection,
                    learned_skills, importance, related_memories, metadata, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    data["id"], data["user_id"], data["kind"], data["context"],
                    data["action"], data["outcome"], data["reflection"],
                    data["learned_skills"], data["importance"],
                    data["related_memories"], data["metadata"], data["created_at"],
                ),
            )
        logger.debug("experiential_store.stored", memory_id=stored.id, kind=data["kind"])
        return stored

    def get(self, user_id: str, memory_id: str) -> Optional[ExperientialMemory]:
        rows = self._db.query(
            "experiential.get",
            "SELECT * FROM experiential_memories WHERE id = ? AND user_id = ?",
            (memory_id, user_id),
        )
        return ExperientialMemory.from_dict(dict(rows[0])) if rows else None

    def retrieve(self, query: MemoryQuery) -> list[ExperientialMemory]:
        where, params = _filter_clauses(query, "learned_skills")
        if query.min_importance is not None:
            where += " AND importance >= ?"
            params.append(query.min_importance)
        sql = (
            "SELECT * FROM experiential_memories" + where
            + " ORDER BY importance DESC, created_at DESC, rowid DESC LIMIT ? OFFSET ?"
        )
        params.extend([query.limit, query.offset])
        rows = self._db.query("experiential.retrieve", sql, params)
        return [ExperientialMemory.from_dict(dict(row)) for row in rows]

    def _set_importance(self, user_id: str, memory_id: str, value: float) -> bool:
        with self._db.transaction("experiential.update_importance") as conn:
            cursor = conn.execute(
                "UPDATE experiential_memories SET importance = ? WHERE id = ? AND user_id = ?",
                (value, memory_id, user_id),
            )
            return cursor.rowcount > 0

    def delete(self, user_id: str, memory_id: str) -> bool:
        with self._db.transaction("experiential.delete") as conn:
            cursor = conn.execute(
                "DELETE FROM experiential_memories WHERE id = ? AND user_id = ?",
                (memory_id, user_id),
            )
            return cursor.rowcount > 0

    def prune_old_memories(
        self, user_id: str, importance_threshold: float = 0.3, max_age_days: float = 30
    ) -> int:
        cutoff = self._clock() - max_age_days * SECONDS_PER_DAY
        with self._db.transaction("experiential.prune") as conn:
            cursor = conn.execute(
                """DELETE FROM experiential_memories
                   WHERE user_id = ? AND importance < ? AND created_at < ?""",
                (user_id, importance_threshold, cutoff),
            )
            deleted = cursor.rowcount
        if deleted > 0:
            logger.info(
                "experiential_store.pruned",
                user_id=user_id,
                count=deleted,
                importance_threshold=importance_threshold,
                max_age_days=max_age_days,
            )
        return deleted

    def get_stats(self, user_id: str) -> ExperientialStats:
        kind_rows = self._db.query(
            "experiential.stats",
            """SELECT kind, COUNT(*) AS n, SUM(importance) AS total
               FROM experiential_memories WHERE user_id = ? GROUP BY kind""",
            (user_id,),
        )
        if not kind_rows:
            return ExperientialStats()
        by_kind = {row["kind"]: row["n"] for row in kind_rows}
        total = sum(by_kind.values())
        successes = by_kind.get(ExperienceKind.SUCCESS.value, 0)
        attempts = successes + by_kind.get(ExperienceKind.FAILURE.value, 0)
        return ExperientialStats(
            total_count=total,
            by_kind=by_kind,
            avg_importance=sum(row["total"] for row in kind_rows) / total,
            success_rate=successes / attempts if attempts else 0.0,
            unique_skills=len(self.get_learned_skills(user_id)),
        )

    def get_learned_skills(self, user_id: str) -> list[str]:
        rows = self._db.query(
            "experiential.skills",
            """SELECT DISTINCT j.value AS skill
               FROM experiential_memories e, json_each(e.learned_skills) j
               WHERE e.user_id = ? ORDER BY skill""",
            (user_id,),
        )
        return [row["skill"] for row in rows]
