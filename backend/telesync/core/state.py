"""
In-memory mirror of device data shown by the UI.

One ``DeviceState`` is created per runtime and passed explicitly to the
components that write it: the connectivity monitor owns ``is_online``, the
sync orchestrator owns the caches and sync outcomes, symptom capture adds
new reports.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from ..schemas.remote import Consultation, ConsultationRecord, Medicine, Patient
from ..services.local_store import LocalStore, PendingSymptomReport, SyncState

logger = logging.getLogger(__name__)


@dataclass
class DeviceState:
    is_online: bool = False
    patient: Optional[Patient] = None
    symptoms: Dict[str, PendingSymptomReport] = field(default_factory=dict)
    records: List[ConsultationRecord] = field(default_factory=list)
    consultation: Optional[Consultation] = None
    medicines: List[Medicine] = field(default_factory=list)
    queue_depth: int = 0
    last_synced_at: Optional[datetime] = None

    @property
    def unsynced_symptom_count(self) -> int:
        return sum(1 for s in self.symptoms.values() if s.sync_state == SyncState.UNSYNCED)

    @property
    def pending_sync_count(self) -> int:
        """Locally created items the server has not acknowledged yet."""
        return self.unsynced_symptom_count + self.queue_depth

    def set_online(self, online: bool) -> None:
        self.is_online = online

    def set_patient(self, patient: Optional[Patient]) -> None:
        self.patient = patient

    def add_symptom(self, report: PendingSymptomReport) -> None:
        self.symptoms[report.id] = report

    def mark_symptom_synced(self, report_id: str) -> None:
        report = self.symptoms.get(report_id)
        if report is not None:
            report.sync_state = SyncState.SYNCED

    def set_records(self, records: List[ConsultationRecord]) -> None:
        self.records = list(records)

    def set_consultation(self, consultation: Optional[Consultation]) -> None:
        self.consultation = consultation

    def set_medicines(self, medicines: List[Medicine]) -> None:
        self.medicines = list(medicines)

    def set_queue_depth(self, depth: int) -> None:
        self.queue_depth = depth

    def hydrate(self, store: LocalStore) -> None:
        """Rebuild the mirror from the local store after a restart."""
        self.symptoms = {r.id: r for r in store.list_unsynced_symptom_reports()}
        self.queue_depth = store.queue_depth()
        if self.patient is not None:
            self.records = store.get_cached_records(self.patient.id)
            self.medicines = store.get_cached_medicines(self.patient.id)
        logger.info(
            "Device state hydrated: %d unsynced reports, %d queued operations",
            len(self.symptoms),
            self.queue_depth,
        )
