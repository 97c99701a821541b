"""
Maintenance Scheduler — the recurring side of the memory layer.

Two loops run on the event loop:

  - consolidation: for every scheduled user, one pass at start-up (when
    configured) and then once per interval (24 hours by default)
  - sweep: drop idle working-memory sessions every 15 minutes

The passes themselves are blocking store work, so they are dispatched to a
worker thread. A failing pass is logged and the loop waits for the next
interval; the stores are consistent after every phase, so a skipped cycle is
harmless.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import structlog

from aura_memory.config import ConsolidationConfig, WorkingMemoryConfig
from aura_memory.memory.consolidation import ConsolidationResult
from aura_memory.system import MemorySystem

logger = structlog.get_logger(__name__)


class MaintenanceScheduler:
    """Periodic consolidation per user plus the working-memory sweep."""

    def __init__(
        self,
        system: MemorySystem,
        consolidation: Optional[ConsolidationConfig] = None,
        working_memory: Optional[WorkingMemoryConfig] = None,
    ):
        consolidation = consolidation or ConsolidationConfig()
        working_memory = working_memory or WorkingMemoryConfig()
        self._system = system
        self._consolidation_interval = consolidation.interval_seconds
        self._run_on_start = consolidation.run_on_start
        self._sweep_interval = working_memory.sweep_interval_seconds
        self._users: list[str] = []
        self._running = False
        self._tasks: list[asyncio.Task] = []
        self._cycles = 0
        self._last_error: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def users(self) -> list[str]:
        return list(self._users)

    @property
    def cycles(self) -> int:
        return self._cycles

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    def schedule_user(self, user_id: str) -> None:
        """Add a user to the consolidation rotation."""
        if user_id in self._users:
            return
        self._users.append(user_id)
        logger.info("scheduler.user_scheduled", user_id=user_id)
        if self._running and self._run_on_start:
            self._tasks.append(asyncio.create_task(self.consolidate_user(user_id)))

    def unschedule_user(self, user_id: str) -> None:
        if user_id in self._users:
            self._users.remove(user_id)

    async def start(self) -> None:
        if self._running:
            logger.warning("scheduler.already_running")
            return
        self._running = True
        self._tasks = [
            asyncio.create_task(self._consolidation_loop(), name="memory-consolidation"),
            asyncio.create_task(self._sweep_loop(), name="working-memory-sweep"),
        ]
        logger.info(
            "scheduler.started",
            consolidation_interval=self._consolidation_interval,
            sweep_interval=self._sweep_interval,
            users=len(self._users),
        )

    async def stop(self) -> None:
        self._running = False
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        logger.info("scheduler.stopped", cycles=self._cycles)

    # -- Work -------------------------------------------------------------

    async def consolidate_user(self, user_id: str) -> Optional[ConsolidationResult]:
        """One consolidation pass; failures are logged, never raised."""
        try:
            return await asyncio.to_thread(self._system.run_consolidation, user_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._last_error = str(e)
            logger.error(
                "scheduler.consolidation_failed",
                user_id=user_id,
                error=str(e),
                exc_info=True,
            )
            return None

    async def run_consolidation_cycle(self) -> dict[str, Optional[ConsolidationResult]]:
        results: dict[str, Optional[ConsolidationResult]] = {}
        for user_id in list(self._users):
            results[user_id] = await self.consolidate_user(user_id)
        self._cycles += 1
        return results

    async def sweep_once(self) -> int:
        try:
            return await asyncio.to_thread(self._system.clear_expired_sessions)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._last_error = str(e)
            logger.error("scheduler.sweep_failed", error=str(e), exc_info=True)
            return 0

    async def _consolidation_loop(self) -> None:
        if not self._run_on_start:
            await asyncio.sleep(self._consolidation_interval)
        while self._running:
            await self.run_consolidation_cycle()
            await asyncio.sleep(self._consolidation_interval)

    async def _sweep_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._sweep_interval)
            await self.sweep_once()
