"""
Symptom and feedback capture.
Validates what the patient submits and persists it locally first; delivery
to the server is left to the sync orchestrator.
"""
import logging
from typing import Iterable, Optional

from ..core.errors import ValidationFailure
from ..core.state import DeviceState
from ..models.base import generate_uuid, utc_now
from ..schemas.sync import FeedbackPayload, SymptomCode
from .local_store import LocalStore, PendingSymptomReport, SyncQueueEntry
from .sync_queue import SyncQueue

logger = logging.getLogger(__name__)

VALID_SYMPTOM_CODES = {code.value for code in SymptomCode}
MAX_NOTES_LENGTH = 2000


class SymptomCaptureService:
    def __init__(self, store: LocalStore, queue: SyncQueue, state: DeviceState):
        self.store = store
        self.queue = queue
        self.state = state

    def submit_symptom_report(
        self,
        patient_id: str,
        symptoms: Iterable[str],
        notes: str = "",
        photo_ref: Optional[str] = None,
        voice_ref: Optional[str] = None,
    ) -> PendingSymptomReport:
        """Validate and save a symptom report as unsynced.

        Duplicate codes collapse to one, keeping selection order.
        """
        if not patient_id:
            raise ValidationFailure("A patient must be selected before reporting symptoms", field="patient_id")

        selected = list(dict.fromkeys(symptoms))
        if not selected:
            raise ValidationFailure("Select at least one symptom", field="symptoms")
        unknown = [s for s in selected if s not in VALID_SYMPTOM_CODES]
        if unknown:
            raise ValidationFailure(
                f"Unknown symptom codes: {', '.join(unknown)}",
                field="symptoms",
                details={"allowed": sorted(VALID_SYMPTOM_CODES)},
            )
        notes = (notes or "").strip()
        if len(notes) > MAX_NOTES_LENGTH:
            raise ValidationFailure(f"Notes exceed {MAX_NOTES_LENGTH} characters", field="notes")

        report = PendingSymptomReport(
            id=generate_uuid(),
            patient_id=patient_id,
            symptoms=selected,
            notes=notes,
            photo_ref=photo_ref or None,
            voice_ref=voice_ref or None,
            created_at=utc_now(),
        )
        self.store.save_symptom_report(report)
        self.state.add_symptom(report)
        logger.info("Symptom report %s saved locally (%d symptoms)", report.id, len(selected))
        return report

    def submit_feedback(self, patient_id: str, rating: int, comment: str = "") -> SyncQueueEntry:
        if not patient_id:
            raise ValidationFailure("A patient must be selected before sending feedback", field="patient_id")
        if not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationFailure("Rating must be between 1 and 5", field="rating")

        entry = self.queue.enqueue(
            FeedbackPayload(patient_id=patient_id, rating=rating, comment=(comment or "").strip())
        )
        self.state.set_queue_depth(self.queue.depth())
        return entry
