from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from crm_migrator.core.settings import settings
from crm_migrator.services.cells import is_empty
from crm_migrator.services.entity_store import EntityStore
from crm_migrator.services.errors import (
    NoUsableColumnsError,
    RowValidationError,
    StoreUnavailableError,
    StructuralError,
    UnsupportedWorkbookError,
)
from crm_migrator.services.field_transforms import transform_row
from crm_migrator.services.mapping_advisor import (
    ENTITY_ORDER,
    MappingAdvisor,
    MappingSuggestion,
    TargetEntity,
    identify_target_entity,
)
from crm_migrator.services.progress_broadcaster import EventKind, ProgressBroadcaster, utcnow
from crm_migrator.services.workbook_analyzer import AnalyzedSheet, WorkbookAnalyzer
from crm_migrator.services.workbook_reader import Workbook, read_workbook

logger = logging.getLogger(__name__)


class RunStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    # never entered; pause is not supported
    PAUSED = "paused"
    ABORTED = "aborted"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = {RunStatus.ABORTED, RunStatus.COMPLETED, RunStatus.FAILED}


@dataclass
class EntityCounters:
    processed: int = 0
    created: int = 0
    skipped: int = 0
    errored: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "created": self.created,
            "skipped": self.skipped,
            "errored": self.errored,
        }


def _empty_counters() -> dict[TargetEntity, EntityCounters]:
    return {entity: EntityCounters() for entity in ENTITY_ORDER}


@dataclass
class MigrationRun:
    id: str
    status: RunStatus = RunStatus.IDLE
    counters: dict[TargetEntity, EntityCounters] = field(default_factory=_empty_counters)
    started_at: datetime | None = None
    ended_at: datetime | None = None
    errors: list[dict[str, Any]] = field(default_factory=list)
    message: str | None = None
    current_sheet: str | None = None

    def counters_dict(self) -> dict[str, dict[str, int]]:
        return {entity.value: c.to_dict() for entity, c in self.counters.items()}

    def snapshot(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "counters": self.counters_dict(),
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "endedAt": self.ended_at.isoformat() if self.ended_at else None,
            "currentSheet": self.current_sheet,
            "errorCount": sum(c.errored for c in self.counters.values()),
            "message": self.message,
        }


@dataclass
class SheetPlan:
    sheet: AnalyzedSheet
    entity: TargetEntity
    suggestions: list[MappingSuggestion]


class MigrationExecutor:
    """Runs one migration: every mapped sheet, row by row, into the entity store.

    Sheets are processed in entity dependency order and rows strictly in
    sequence. ``abort()`` only raises a flag; it is honoured before the next
    row starts, never in the middle of a write.
    """

    def __init__(
        self,
        run_id: str,
        store: EntityStore,
        broadcaster: ProgressBroadcaster,
        *,
        analyzer: WorkbookAnalyzer | None = None,
        advisor: MappingAdvisor | None = None,
        progress_every_rows: int | None = None,
        max_reported_errors: int | None = None,
    ) -> None:
        self.run = MigrationRun(id=run_id)
        self.store = store
        self.broadcaster = broadcaster
        self.analyzer = analyzer or WorkbookAnalyzer()
        self.advisor = advisor or MappingAdvisor()
        self.progress_every_rows = max(1, progress_every_rows or settings.progress_every_rows)
        self.max_reported_errors = (
            settings.max_reported_errors if max_reported_errors is None else max_reported_errors
        )
        self._abort_requested = False

    def abort(self) -> None:
        if self.run.status in TERMINAL_STATUSES:
            return
        self._abort_requested = True
        logger.info("migration.run.abort_requested run_id=%s", self.run.id)

    def status(self) -> dict[str, Any]:
        return self.run.snapshot()

    async def execute(self, source: Workbook | str | Path) -> MigrationRun:
        run = self.run
        if run.status != RunStatus.IDLE:
            raise RuntimeError(f"Run {run.id} already started")

        run.status = RunStatus.RUNNING
        run.started_at = utcnow()
        logger.info("migration.run.start run_id=%s", run.id)

        try:
            workbook = source if isinstance(source, Workbook) else await asyncio.to_thread(read_workbook, source)
            await self._process_workbook(workbook)
        except (StoreUnavailableError, UnsupportedWorkbookError) as exc:
            self._fail(str(exc))
            logger.error("migration.run.failed run_id=%s error=%s", run.id, exc)
        except Exception as exc:
            self._fail(f"Unexpected error: {exc}")
            logger.exception("migration.run.crashed run_id=%s", run.id)
        else:
            if self._abort_requested:
                run.status = RunStatus.ABORTED
                run.message = "Migration aborted"
            else:
                run.status = RunStatus.COMPLETED
                run.message = "Migration completed"
        finally:
            run.ended_at = utcnow()
            run.current_sheet = None

        self.broadcaster.publish(EventKind.DONE, {
            "runId": run.id,
            "status": run.status.value,
            "counters": run.counters_dict(),
            "errors": list(run.errors),
            "startedAt": run.started_at.isoformat(),
            "endedAt": run.ended_at.isoformat(),
            "message": run.message,
        })
        logger.info(
            "migration.run.done run_id=%s status=%s counters=%s",
            run.id,
            run.status.value,
            run.counters_dict(),
        )
        return run

    def _fail(self, message: str) -> None:
        self.run.status = RunStatus.FAILED
        self.run.message = message
        self.broadcaster.publish(EventKind.ERROR, {
            "runId": self.run.id,
            "sheet": self.run.current_sheet,
            "message": message,
            "fatal": True,
        })

    async def _process_workbook(self, workbook: Workbook) -> None:
        plans = self.plan(workbook)
        for plan in plans:
            if self._abort_requested:
                break
            await self._process_sheet(plan)

    def plan(self, workbook: Workbook) -> list[SheetPlan]:
        """Analyze and map every sheet, reporting the ones that cannot be migrated."""
        plans: list[SheetPlan] = []
        for raw in workbook.sheets:
            try:
                sheet = self.analyzer.analyze(raw)
                if not sheet.column_profiles:
                    raise NoUsableColumnsError(f"Sheet '{raw.name}' has no populated columns")
            except StructuralError as exc:
                logger.warning("migration.sheet.skipped run_id=%s sheet=%s reason=%s", self.run.id, raw.name, exc)
                self.broadcaster.publish(EventKind.ERROR, {
                    "runId": self.run.id,
                    "sheet": raw.name,
                    "message": str(exc),
                    "fatal": False,
                })
                self._publish_skipped(raw.name, None, str(exc))
                continue

            entity = identify_target_entity(sheet.name, sheet.headers)
            if entity is None:
                self._publish_skipped(sheet.name, None, "No target entity for sheet")
                continue

            suggestions = self.advisor.suggest(sheet, entity)
            if not suggestions:
                self._publish_skipped(sheet.name, entity, "No column could be mapped")
                continue

            plans.append(SheetPlan(sheet=sheet, entity=entity, suggestions=suggestions))

        plans.sort(key=lambda p: ENTITY_ORDER.index(p.entity))
        return plans

    def _publish_skipped(self, sheet_name: str, entity: TargetEntity | None, reason: str) -> None:
        self.broadcaster.publish(EventKind.SHEET_COMPLETED, {
            "runId": self.run.id,
            "sheet": sheet_name,
            "entity": entity.value if entity else None,
            "counters": EntityCounters().to_dict(),
            "skipped": True,
            "reason": reason,
        })

    async def _process_sheet(self, plan: SheetPlan) -> None:
        sheet, entity = plan.sheet, plan.entity
        run_counters = self.run.counters[entity]
        sheet_counters = EntityCounters()
        self.run.current_sheet = sheet.name
        total = sheet.data_rows

        logger.info(
            "migration.sheet.start run_id=%s sheet=%s entity=%s rows=%s mappings=%s",
            self.run.id,
            sheet.name,
            entity.value,
            total,
            len(plan.suggestions),
        )
        self.broadcaster.publish(EventKind.SHEET_STARTED, {
            "runId": self.run.id,
            "sheet": sheet.name,
            "entity": entity.value,
            "totalRows": total,
        })

        for row_index, row in sheet.iter_data_rows():
            # lets status/abort requests run between rows
            await asyncio.sleep(0)
            if self._abort_requested:
                break

            outcome = await self._process_row(plan, row_index, row)
            for counters in (sheet_counters, run_counters):
                counters.processed += 1
                setattr(counters, outcome, getattr(counters, outcome) + 1)

            if sheet_counters.processed % self.progress_every_rows == 0:
                self._publish_progress(plan, sheet_counters, total)

        if sheet_counters.processed == 0 or sheet_counters.processed % self.progress_every_rows:
            self._publish_progress(plan, sheet_counters, total)
        self.broadcaster.publish(EventKind.SHEET_COMPLETED, {
            "runId": self.run.id,
            "sheet": sheet.name,
            "entity": entity.value,
            "counters": sheet_counters.to_dict(),
            "skipped": False,
        })
        logger.info(
            "migration.sheet.done run_id=%s sheet=%s counters=%s",
            self.run.id,
            sheet.name,
            sheet_counters.to_dict(),
        )

    async def _process_row(self, plan: SheetPlan, row_index: int, row: list) -> str:
        """Returns the counter the row lands in: created, skipped or errored."""
        if all(is_empty(c) for c in row):
            return "skipped"
        try:
            record = transform_row(plan.entity, row, plan.suggestions)
            created = await self.store.create(plan.entity, record)
        except RowValidationError as exc:
            self._record_error(plan.sheet.name, row_index, str(exc))
            return "errored"
        except StoreUnavailableError:
            raise
        except Exception as exc:
            logger.warning(
                "migration.row.unexpected_error run_id=%s sheet=%s row=%s error=%r",
                self.run.id,
                plan.sheet.name,
                row_index + 1,
                exc,
            )
            self._record_error(plan.sheet.name, row_index, f"Unexpected error: {exc}")
            return "errored"
        return "created" if created else "skipped"

    def _record_error(self, sheet_name: str, row_index: int, message: str) -> None:
        logger.debug("migration.row.error run_id=%s sheet=%s row=%s error=%s", self.run.id, sheet_name, row_index + 1, message)
        if len(self.run.errors) < self.max_reported_errors:
            # 1-based, as shown in the spreadsheet
            self.run.errors.append({"sheet": sheet_name, "row": row_index + 1, "message": message})

    def _publish_progress(self, plan: SheetPlan, counters: EntityCounters, total: int) -> None:
        percent = 100 if total == 0 else round(counters.processed * 100 / total)
        self.broadcaster.publish(EventKind.PROGRESS, {
            "runId": self.run.id,
            "sheet": plan.sheet.name,
            "entity": plan.entity.value,
            "processed": counters.processed,
            "total": total,
            "percent": percent,
            "counters": counters.to_dict(),
        })
