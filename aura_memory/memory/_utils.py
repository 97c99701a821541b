"""Shared helpers for the memory subsystem."""

from __future__ import annotations

import math
import threading
from contextlib import contextmanager
from typing import Iterable, Iterator

from aura_memory.errors import MemoryValidationError

SECONDS_PER_DAY = 86400.0


def clamp01(value: float, default: float = 0.5) -> float:
    """Clamp potentially noisy scores into [0, 1]."""
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(numeric):
        return default
    return max(0.0, min(1.0, numeric))


def require_unit_interval(name: str, value: float) -> float:
    """Reject a score that is not a finite number in [0, 1]."""
    try:
        numeric = float(value)
    except (TypeError, ValueError) as exc:
        raise MemoryValidationError(f"{name} must be a number, got {value!r}") from exc
    if not math.isfinite(numeric) or numeric < 0.0 or numeric > 1.0:
        raise MemoryValidationError(f"{name} must be within [0, 1], got {value!r}")
    return numeric


def dedupe(items: Iterable[str]) -> list[str]:
    """Drop repeats and empty strings, keeping first-seen order."""
    seen: set[str] = set()
    result: list[str] = []
    for item in items:
        if not item or item in seen:
            continue
        seen.add(item)
        result.append(item)
    return result


class UserLocks:
    """Per-user reentrant locks.

    Formation writes and the consolidation merge phase both hold the user's
    lock, so a merge never interleaves with new experiences for that user.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def get(self, user_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[user_id] = lock
            return lock

    @contextmanager
    def hold(self, user_id: str) -> Iterator[None]:
        lock = self.get(user_id)
        with lock:
            yield
