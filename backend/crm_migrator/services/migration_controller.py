from __future__ import annotations

import asyncio
import logging
import uuid
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable

from crm_migrator.core.settings import settings
from crm_migrator.services.entity_store import EntityStore, SqlAlchemyEntityStore
from crm_migrator.services.errors import MigrationConflictError, NoActiveMigrationError
from crm_migrator.services.migration_executor import MigrationExecutor
from crm_migrator.services.progress_broadcaster import ProgressBroadcaster
from crm_migrator.services.run_registry import RunRegistry
from crm_migrator.services.workbook_reader import Workbook

logger = logging.getLogger(__name__)

ExecutorFactory = Callable[[str, EntityStore, ProgressBroadcaster], MigrationExecutor]


class MigrationController:
    def __init__(
        self,
        store: EntityStore,
        broadcaster: ProgressBroadcaster,
        registry: RunRegistry[MigrationExecutor] | None = None,
        *,
        workbook_path: str | Path | None = None,
        executor_factory: ExecutorFactory = MigrationExecutor,
    ) -> None:
        self.store = store
        self.broadcaster = broadcaster
        self.registry = registry or RunRegistry()
        self.workbook_path = workbook_path or settings.workbook_path
        self.executor_factory = executor_factory
        self.last_run: MigrationExecutor | None = None
        self._tasks: set[asyncio.Task] = set()

    async def start(self, workbook: Workbook | str | Path | None = None) -> dict[str, Any]:
        run_id = uuid.uuid4().hex
        executor = self.executor_factory(run_id, self.store, self.broadcaster)
        if not self.registry.try_insert(run_id, executor):
            raise MigrationConflictError("Migration already in progress")

        source = workbook if workbook is not None else self.workbook_path
        task = asyncio.create_task(self._run(run_id, executor, source))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self.last_run = executor
        logger.info("migration.controller.start run_id=%s", run_id)
        return {"message": "Migration started", "id": run_id}

    async def _run(self, run_id: str, executor: MigrationExecutor, source: Workbook | str | Path) -> None:
        try:
            await executor.execute(source)
        finally:
            self.registry.remove(run_id)

    def pause(self) -> dict[str, Any]:
        return {
            "message": "Pause is not supported; abort the migration and start it again instead",
            "supported": False,
        }

    def abort(self) -> dict[str, Any]:
        active = self.registry.active()
        if active is None:
            raise NoActiveMigrationError("No active migration")
        run_id, executor = active
        executor.abort()
        self.registry.remove(run_id)
        logger.info("migration.controller.abort run_id=%s", run_id)
        return {"message": "Migration aborted", "id": run_id}

    def status(self) -> dict[str, Any]:
        active = self.registry.active()
        if active is None:
            result: dict[str, Any] = {"active": False, "message": "No active migration"}
            if self.last_run is not None:
                result["lastRun"] = self.last_run.status()
            return result
        run_id, executor = active
        return {
            "active": True,
            "message": "Migration in progress",
            "runId": run_id,
            "run": executor.status(),
        }

    async def statistics(self) -> dict[str, Any]:
        counts = await self.store.counts()
        return {"counts": counts, "migrationActive": self.registry.is_active()}

    async def wait(self) -> None:
        """Wait for every run task started by this controller to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        active = self.registry.active()
        if active is not None:
            active[1].abort()
        await self.wait()
        self.broadcaster.close_all()


@lru_cache
def get_broadcaster() -> ProgressBroadcaster:
    return ProgressBroadcaster()


@lru_cache
def get_controller() -> MigrationController:
    return MigrationController(SqlAlchemyEntityStore(), get_broadcaster())
