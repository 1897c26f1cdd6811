import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sse_starlette.sse import EventSourceResponse, ServerSentEvent

from crm_migrator.core.settings import settings
from crm_migrator.schemas.migration import (
    MigrationAbortResponse,
    MigrationControlRequest,
    MigrationPauseResponse,
    MigrationStartResponse,
    MigrationStatsResponse,
    MigrationStatusResponse,
)
from crm_migrator.services.errors import MigrationConflictError, NoActiveMigrationError, StoreUnavailableError
from crm_migrator.services.migration_controller import MigrationController, get_broadcaster, get_controller
from crm_migrator.services.progress_broadcaster import ProgressBroadcaster

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/migration")
async def control_migration(body: MigrationControlRequest, controller: MigrationController = Depends(get_controller)) -> dict:
    action = (body.action or "").strip().lower()
    try:
        if action == "start":
            return MigrationStartResponse(**await controller.start()).model_dump()
        if action == "pause":
            return MigrationPauseResponse(**controller.pause()).model_dump()
        if action == "abort":
            return MigrationAbortResponse(**controller.abort()).model_dump(exclude_none=True)
        if action == "status":
            return MigrationStatusResponse(**controller.status()).model_dump(exclude_none=True)
    except MigrationConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except NoActiveMigrationError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except Exception:
        logger.exception("migration.control.failed action=%s", action)
        raise HTTPException(status_code=500, detail="Internal server error")

    raise HTTPException(status_code=400, detail="Invalid action")


@router.get("/migration", response_model=MigrationStatsResponse)
async def migration_statistics(controller: MigrationController = Depends(get_controller)):
    try:
        return await controller.statistics()
    except StoreUnavailableError as exc:
        logger.error("migration.stats.store_unavailable error=%s", exc)
        raise HTTPException(status_code=503, detail="Entity store unavailable")


@router.get("/migration/progress")
async def migration_progress(request: Request, broadcaster: ProgressBroadcaster = Depends(get_broadcaster)):
    """Server-sent events for migration progress.

    The observer is registered before the response starts, so it only ever
    sees events published from this point on.
    """
    observer = broadcaster.register()

    async def event_generator():
        try:
            async for event in observer.events():
                if await request.is_disconnected():
                    break
                yield ServerSentEvent(data=event.to_json(), event=event.kind.value)
        finally:
            broadcaster.deregister(observer)

    return EventSourceResponse(
        event_generator(),
        ping=settings.progress_ping_interval_s,
        headers={
            "X-Accel-Buffering": "no",
            "Cache-Control": "no-cache",
        },
    )
