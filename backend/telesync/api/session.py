from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..core.runtime import SyncRuntime, get_runtime
from ..schemas.remote import Patient

router = APIRouter(prefix="/session", tags=["session"])


class SessionSelect(BaseModel):
    patient_id: str = Field(min_length=1)
    name: Optional[str] = None
    phone: Optional[str] = None
    village: Optional[str] = None


class SessionResponse(BaseModel):
    patient: Optional[Patient]
    is_online: bool
    pending_sync_count: int


def _session(runtime: SyncRuntime) -> SessionResponse:
    return SessionResponse(
        patient=runtime.state.patient,
        is_online=runtime.state.is_online,
        pending_sync_count=runtime.state.pending_sync_count,
    )


@router.put("", response_model=SessionResponse)
async def select_patient(body: SessionSelect, runtime: SyncRuntime = Depends(get_runtime)):
    """Make ``patient_id`` the device's active patient (single user per device)."""
    runtime.select_patient(
        Patient(id=body.patient_id, name=body.name, phone=body.phone, village=body.village)
    )
    return _session(runtime)


@router.get("", response_model=SessionResponse)
async def get_session(runtime: SyncRuntime = Depends(get_runtime)):
    return _session(runtime)
