from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..core.runtime import SyncRuntime, get_runtime
from ..schemas.remote import Consultation, ConsultationRecord, Medicine
from ..services.local_store import CacheKind

router = APIRouter(tags=["cache"])


class RecordsResponse(BaseModel):
    records: List[ConsultationRecord]
    cached_at: Optional[datetime]


class MedicinesResponse(BaseModel):
    medicines: List[Medicine]
    cached_at: Optional[datetime]


class ConsultationResponse(BaseModel):
    consultation: Optional[Consultation]


def _patient_id(runtime: SyncRuntime) -> str:
    if runtime.state.patient is None:
        raise HTTPException(status_code=404, detail="No patient selected")
    return runtime.state.patient.id


@router.get("/records", response_model=RecordsResponse)
async def get_records(runtime: SyncRuntime = Depends(get_runtime)):
    """Cached consultation history, newest first. May be stale when offline."""
    patient_id = _patient_id(runtime)
    return RecordsResponse(
        records=runtime.store.get_cached_records(patient_id),
        cached_at=runtime.store.last_cached_at(CacheKind.RECORDS, patient_id),
    )


@router.get("/medicines", response_model=MedicinesResponse)
async def get_medicines(runtime: SyncRuntime = Depends(get_runtime)):
    patient_id = _patient_id(runtime)
    return MedicinesResponse(
        medicines=runtime.store.get_cached_medicines(patient_id),
        cached_at=runtime.store.last_cached_at(CacheKind.MEDICINES, patient_id),
    )


@router.get("/consultation", response_model=ConsultationResponse)
async def get_consultation(runtime: SyncRuntime = Depends(get_runtime)):
    _patient_id(runtime)
    return ConsultationResponse(consultation=runtime.state.consultation)
