from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from ..core.errors import ValidationFailure
from ..core.runtime import SyncRuntime, get_runtime
from ..services.local_store import PendingSymptomReport

router = APIRouter(prefix="/symptoms", tags=["symptoms"])


class SymptomCreate(BaseModel):
    patient_id: Optional[str] = None  # Defaults to the session patient
    symptoms: List[str]
    notes: str = ""
    photo_path: Optional[str] = None
    voice_path: Optional[str] = None


class SymptomReportResponse(BaseModel):
    id: str
    patient_id: str
    symptoms: List[str]
    notes: str
    photo_path: Optional[str]
    voice_path: Optional[str]
    created_at: datetime
    sync_state: str


class SymptomCreated(SymptomReportResponse):
    pending_sync_count: int


class PendingReports(BaseModel):
    pending_sync_count: int
    reports: List[SymptomReportResponse]


def _to_response(report: PendingSymptomReport) -> dict:
    return dict(
        id=report.id,
        patient_id=report.patient_id,
        symptoms=list(report.symptoms),
        notes=report.notes,
        photo_path=report.photo_ref,
        voice_path=report.voice_ref,
        created_at=report.created_at,
        sync_state=report.sync_state.value,
    )


@router.post("", response_model=SymptomCreated, status_code=status.HTTP_201_CREATED)
async def submit_symptoms(body: SymptomCreate, runtime: SyncRuntime = Depends(get_runtime)):
    """
    Save a symptom report on the device.
    Always succeeds locally; delivery happens on the next sync pass.
    """
    patient_id = body.patient_id or (runtime.state.patient.id if runtime.state.patient else None)
    if not patient_id:
        raise ValidationFailure("No patient selected", field="patient_id")

    report = runtime.capture.submit_symptom_report(
        patient_id=patient_id,
        symptoms=body.symptoms,
        notes=body.notes,
        photo_ref=body.photo_path,
        voice_ref=body.voice_path,
    )
    if runtime.state.is_online:
        runtime.orchestrator.request_sync()
    return SymptomCreated(**_to_response(report), pending_sync_count=runtime.state.pending_sync_count)


@router.get("/pending", response_model=PendingReports)
async def list_pending(runtime: SyncRuntime = Depends(get_runtime)):
    reports = [_to_response(r) for r in runtime.store.list_unsynced_symptom_reports()]
    return PendingReports(pending_sync_count=runtime.state.pending_sync_count, reports=reports)
