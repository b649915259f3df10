from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..core.runtime import SyncRuntime, get_runtime
from ..services.connectivity import NetworkSignal

router = APIRouter(tags=["sync"])


class SyncStatusResponse(BaseModel):
    is_online: bool
    is_running: bool
    pending_sync_count: int
    queue_depth: int
    last_synced_at: Optional[datetime]
    last_report: Optional[dict]


class ManualSyncResponse(BaseModel):
    started: bool
    pending_sync_count: int
    report: Optional[dict] = None


class ConnectivityUpdate(BaseModel):
    is_connected: bool
    is_internet_reachable: Optional[bool] = None


class ConnectivityResponse(BaseModel):
    is_online: bool
    changed: bool


@router.get("/sync/status", response_model=SyncStatusResponse)
async def sync_status(runtime: SyncRuntime = Depends(get_runtime)):
    orchestrator = runtime.orchestrator
    return SyncStatusResponse(
        is_online=runtime.state.is_online,
        is_running=orchestrator.is_running,
        pending_sync_count=runtime.state.pending_sync_count,
        queue_depth=runtime.state.queue_depth,
        last_synced_at=runtime.state.last_synced_at,
        last_report=orchestrator.last_report.to_dict() if orchestrator.last_report else None,
    )


@router.post("/sync", response_model=ManualSyncResponse)
async def manual_sync(runtime: SyncRuntime = Depends(get_runtime)):
    """Run a sync pass now. ``started`` is false when the device is offline."""
    started = await runtime.orchestrator.trigger_manual_sync()
    report = runtime.orchestrator.last_report if started else None
    return ManualSyncResponse(
        started=started,
        pending_sync_count=runtime.state.pending_sync_count,
        report=report.to_dict() if report else None,
    )


@router.post("/connectivity", response_model=ConnectivityResponse)
async def report_connectivity(body: ConnectivityUpdate, runtime: SyncRuntime = Depends(get_runtime)):
    """Network-change notification pushed by the platform shell."""
    changed = runtime.monitor.handle_signal(
        NetworkSignal(is_connected=body.is_connected, is_internet_reachable=body.is_internet_reachable)
    )
    return ConnectivityResponse(is_online=runtime.state.is_online, changed=changed)
