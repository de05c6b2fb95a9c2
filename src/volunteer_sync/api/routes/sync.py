"""Sync trigger, status, reset and pending-change routes."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel
from sqlmodel import Session, select

from volunteer_sync.bootstrap import get_sync_service
from volunteer_sync.db.engine import get_session
from volunteer_sync.entities import EntityType
from volunteer_sync.models.sync import SyncLog
from volunteer_sync.sync.service import SyncInProgressError, SyncOptions, SyncService

router = APIRouter()


class SyncTriggerRequest(BaseModel):
    force_full: bool = False
    download_only: bool = False
    entity_types: Optional[List[EntityType]] = None  # None syncs every entity type


class LastRunResponse(BaseModel):
    status: str
    strategy: Optional[str]
    started_at: Optional[datetime]
    finished_at: Optional[datetime]
    uploaded: Optional[int]
    downloaded: Optional[int]
    conflicts: Optional[int]
    error_message: Optional[str]


class SyncStatusResponse(BaseModel):
    enabled: bool
    online: Optional[bool]
    syncing: bool
    last_sync: Dict[str, Optional[str]]
    stats: Dict[str, Any]
    pending_changes: Dict[str, Dict[str, int]]
    last_run: LastRunResponse


async def _do_sync(service: SyncService, options: SyncOptions) -> None:
    """Background task: run one sync. Outcome is recorded in SyncLog and state."""
    await service.perform_sync(options)


@router.post("/trigger")
async def trigger_sync(
    request: SyncTriggerRequest,
    background_tasks: BackgroundTasks,
    service: SyncService = Depends(get_sync_service),
):
    """
    Trigger an on-demand sync.
    Returns immediately; sync runs in background.
    """
    if service.is_syncing:
        raise HTTPException(status_code=409, detail="Sync already in progress")
    options = SyncOptions(
        force_full=request.force_full,
        download_only=request.download_only,
        entity_types=[et.value for et in request.entity_types] if request.entity_types else None,
    )
    background_tasks.add_task(_do_sync, service, options)
    return {"message": "Sync started", "options": options.__dict__}


@router.get("/status", response_model=SyncStatusResponse)
async def sync_status(
    service: SyncService = Depends(get_sync_service),
    session: Session = Depends(get_session),
):
    """Engine status plus the most recent SyncLog row."""
    log = session.exec(select(SyncLog).order_by(SyncLog.started_at.desc())).first()
    if not log:
        last_run = LastRunResponse(
            status="never_run",
            strategy=None,
            started_at=None,
            finished_at=None,
            uploaded=None,
            downloaded=None,
            conflicts=None,
            error_message=None,
        )
    else:
        last_run = LastRunResponse(
            status=log.status,
            strategy=log.strategy,
            started_at=log.started_at,
            finished_at=log.finished_at,
            uploaded=log.uploaded,
            downloaded=log.downloaded,
            conflicts=log.conflicts,
            error_message=log.error_message,
        )
    return SyncStatusResponse(**service.get_status(), last_run=last_run)


@router.post("/reset")
async def reset_sync(service: SyncService = Depends(get_sync_service)):
    """Clear sync history and change tracking; the next sync will be full."""
    try:
        await service.reset()
    except SyncInProgressError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return {"message": "Sync state reset"}


@router.get("/changes")
async def pending_changes(
    entity_type: Optional[EntityType] = None,
    service: SyncService = Depends(get_sync_service),
):
    """Unsynced change entries, optionally for one entity type."""
    types = [entity_type] if entity_type else list(EntityType)
    return {
        et.value: [
            {
                "id": change.id,
                "operation": change.operation.value,
                "timestamp": change.timestamp,
            }
            for change in service.tracker.get_changes_since(et, None)
        ]
        for et in types
    }
