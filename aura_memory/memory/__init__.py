"""Memory architecture — working, factual and experiential memory."""
from aura_memory.memory.consolidation import ConsolidationEngine, ConsolidationResult
from aura_memory.memory.experiential import ExperientialStore, InMemoryExperientialStore
from aura_memory.memory.factual import FactualStore, InMemoryFactualStore
from aura_memory.memory.formation import ExtractedMemories, MemoryFormationEngine
from aura_memory.memory.models import (
    ExperienceKind,
    ExperientialMemory,
    FactKind,
    FactualMemory,
    MemoryQuery,
    TimeRange,
)
from aura_memory.memory.offline import OfflineExperientialStore, OfflineFactualStore
from aura_memory.memory.retrieval import RetrievalEngine, SearchResult
from aura_memory.memory.store import MemoryDatabase, SQLiteExperientialStore, SQLiteFactualStore
from aura_memory.memory.working import WorkingMemory, WorkingMemoryManager, WorkingMemoryRegistry

__all__ = [
    "FactKind",
    "FactualMemory",
    "ExperienceKind",
    "ExperientialMemory",
    "MemoryQuery",
    "TimeRange",
    "FactualStore",
    "InMemoryFactualStore",
    "ExperientialStore",
    "InMemoryExperientialStore",
    "OfflineFactualStore",
    "OfflineExperientialStore",
    "MemoryDatabase",
    "SQLiteFactualStore",
    "SQLiteExperientialStore",
    "WorkingMemory",
    "WorkingMemoryManager",
    "WorkingMemoryRegistry",
    "MemoryFormationEngine",
    "ExtractedMemories",
    "RetrievalEngine",
    "SearchResult",
    "ConsolidationEngine",
    "ConsolidationResult",
]
