from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from ..core.errors import ValidationFailure
from ..core.runtime import SyncRuntime, get_runtime

router = APIRouter(prefix="/feedback", tags=["feedback"])


class FeedbackCreate(BaseModel):
    patient_id: Optional[str] = None
    rating: int
    comment: str = ""


class FeedbackQueued(BaseModel):
    entry_id: str
    pending_sync_count: int


@router.post("", response_model=FeedbackQueued, status_code=status.HTTP_202_ACCEPTED)
async def submit_feedback(body: FeedbackCreate, runtime: SyncRuntime = Depends(get_runtime)):
    patient_id = body.patient_id or (runtime.state.patient.id if runtime.state.patient else None)
    if not patient_id:
        raise ValidationFailure("No patient selected", field="patient_id")

    entry = runtime.capture.submit_feedback(patient_id, body.rating, body.comment)
    if runtime.state.is_online:
        runtime.orchestrator.request_sync()
    return FeedbackQueued(entry_id=entry.id, pending_sync_count=runtime.state.pending_sync_count)
