from pydantic import BaseModel
from typing import Any, Dict, Optional


class MigrationControlRequest(BaseModel):
    action: str


class MigrationStartResponse(BaseModel):
    message: str
    id: str


class MigrationPauseResponse(BaseModel):
    message: str
    supported: bool


class MigrationAbortResponse(BaseModel):
    message: str
    id: Optional[str] = None


class MigrationStatusResponse(BaseModel):
    active: bool
    message: str
    runId: Optional[str] = None
    run: Optional[Dict[str, Any]] = None
    lastRun: Optional[Dict[str, Any]] = None


class EntityCounts(BaseModel):
    organizations: int = 0
    contacts: int = 0
    opportunities: int = 0
    interactions: int = 0


class MigrationStatsResponse(BaseModel):
    counts: EntityCounts
    migrationActive: bool
