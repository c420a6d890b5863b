"""
Field-device endpoints: offline capture, queue inspection, sync status and control.
All handlers run on the event loop so the queue has a single writer.
"""
from dataclasses import asdict
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile, status
from pydantic import BaseModel

from ..services.offline_queue import (
    InvalidRecordError,
    InvalidTransitionError,
    OfflineReportRecord,
    QueueFullError,
    QueueStorageError,
    RecordNotFoundError,
)
from ..services.patrol_agent import PatrolAgent

router = APIRouter(tags=["offline"])


def get_agent(request: Request) -> PatrolAgent:
    return request.app.state.agent


# ── Response schemas ────────────────────────────────────────────────────────

class OfflineReportView(BaseModel):
    local_id: str
    notes: Optional[str]
    latitude: float
    longitude: float
    captured_at: datetime
    captured_offline: bool
    enqueued_at: datetime
    status: str
    attempt_count: int
    last_error: Optional[str]
    last_attempt_at: Optional[datetime]
    image_size: int
    needs_attention: bool


class SyncStatusResponse(BaseModel):
    online: bool
    pending_count: int
    is_syncing: bool
    last_sync_at: Optional[datetime]
    last_error: Optional[str]
    needs_attention_count: int


class SyncResultResponse(BaseModel):
    attempted: int
    synced: int
    failed: int
    skipped: int
    halted: bool
    coalesced: bool
    error: Optional[str]


class ConnectivitySignal(BaseModel):
    online: bool


def _view(record: OfflineReportRecord, agent: PatrolAgent) -> OfflineReportView:
    return OfflineReportView(
        local_id=record.local_id,
        notes=record.notes,
        latitude=record.latitude,
        longitude=record.longitude,
        captured_at=record.captured_at,
        captured_offline=record.captured_offline,
        enqueued_at=record.enqueued_at,
        status=record.status.value,
        attempt_count=record.attempt_count,
        last_error=record.last_error,
        last_attempt_at=record.last_attempt_at,
        image_size=record.image_size,
        needs_attention=record.attempt_count >= agent.engine.max_attempts,
    )


# ── Capture ─────────────────────────────────────────────────────────────────

@router.post("/offline-reports", response_model=OfflineReportView, status_code=status.HTTP_201_CREATED)
async def capture_report(
    latitude: float = Form(...),
    longitude: float = Form(...),
    notes: Optional[str] = Form(None),
    captured_at: Optional[datetime] = Form(None),
    image: UploadFile = File(...),
    agent: PatrolAgent = Depends(get_agent),
):
    """
    Save a report on the device. A 201 means the report is durable and will
    be delivered when the report API is reachable.
    """
    image_data = await image.read()
    try:
        record = agent.submit_report(
            image_data=image_data,
            latitude=latitude,
            longitude=longitude,
            captured_at=captured_at,
            notes=notes,
        )
    except InvalidRecordError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except QueueFullError as e:
        raise HTTPException(status_code=507, detail=str(e))
    except QueueStorageError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return _view(record, agent)


# ── Queue inspection & officer decisions ────────────────────────────────────

@router.get("/offline-reports", response_model=List[OfflineReportView])
async def list_offline_reports(agent: PatrolAgent = Depends(get_agent)):
    """Every report still held on the device, oldest capture first."""
    try:
        records = agent.queue.list_all()
    except QueueStorageError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return [_view(r, agent) for r in records]


@router.get("/offline-reports/{local_id}", response_model=OfflineReportView)
async def get_offline_report(local_id: str, agent: PatrolAgent = Depends(get_agent)):
    try:
        return _view(agent.queue.get(local_id), agent)
    except RecordNotFoundError:
        raise HTTPException(status_code=404, detail="Offline report not found")


@router.post("/offline-reports/{local_id}/retry", response_model=OfflineReportView)
async def retry_offline_report(local_id: str, agent: PatrolAgent = Depends(get_agent)):
    try:
        return _view(agent.retry(local_id), agent)
    except RecordNotFoundError:
        raise HTTPException(status_code=404, detail="Offline report not found")
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.delete("/offline-reports/{local_id}", status_code=status.HTTP_204_NO_CONTENT)
async def discard_offline_report(local_id: str, agent: PatrolAgent = Depends(get_agent)):
    """Officer decides an undeliverable report should be dropped."""
    try:
        agent.discard(local_id)
    except RecordNotFoundError:
        raise HTTPException(status_code=404, detail="Offline report not found")
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))


# ── Sync status & control ───────────────────────────────────────────────────

@router.get("/sync/status", response_model=SyncStatusResponse)
async def get_sync_status(agent: PatrolAgent = Depends(get_agent)):
    return SyncStatusResponse(**asdict(agent.status.snapshot()))


@router.post("/sync", response_model=SyncResultResponse)
async def trigger_sync(agent: PatrolAgent = Depends(get_agent)):
    """Manual sync. Returns ``coalesced=true`` if a pass was already running."""
    result = await agent.engine.sync_now()
    return SyncResultResponse(**asdict(result))


@router.post("/connectivity", response_model=SyncStatusResponse)
async def report_connectivity(signal: ConnectivitySignal, agent: PatrolAgent = Depends(get_agent)):
    """Bridge for the platform's online/offline events."""
    agent.monitor.report_signal(signal.online)
    return SyncStatusResponse(**asdict(agent.status.snapshot()))
