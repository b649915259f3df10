"""
Local Store: durable device-side persistence for the offline-first sync core.

Holds symptom reports waiting for upload, cached consultation records,
cached medicine availability and the outbound sync queue, all in SQLite so
they survive process restarts. Every SQLAlchemy error is surfaced to the
caller as ``StorageFailure``.
"""
import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Iterator, List, Optional, Union

from sqlalchemy import and_, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..core.errors import StorageFailure
from ..models.base import generate_uuid, utc_now
from ..models.cache import CachedMedicineRow, CachedRecordRow
from ..models.symptom import SymptomReportRow
from ..models.sync_queue import SyncQueueRow
from ..schemas.remote import ConsultationRecord, Medicine

logger = logging.getLogger(__name__)

UNSYNCED_PAGE_SIZE = 50


class SyncState(str, Enum):
    UNSYNCED = "unsynced"
    SYNCED = "synced"


class CacheKind(str, Enum):
    RECORDS = "records"
    MEDICINES = "medicines"


@dataclass
class PendingSymptomReport:
    """A symptom report captured on the device, owned by it until synced."""
    id: str
    patient_id: str
    symptoms: List[str]
    notes: str = ""
    photo_ref: Optional[str] = None
    voice_ref: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    sync_state: SyncState = SyncState.UNSYNCED


@dataclass
class SyncQueueEntry:
    """An outbound intent waiting for server acknowledgement."""
    id: str
    kind: str
    data_json: str
    created_at: datetime
    attempts: int = 0
    last_error: Optional[str] = None


CacheItem = Union[ConsultationRecord, Medicine, dict]


class LocalStore:
    """
    CRUD over the four local tables.

    No locking: the sync core runs on one event loop and every call here
    completes without yielding to it.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @contextmanager
    def _transaction(self, action: str) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Local store failed to %s: %s", action, exc)
            raise StorageFailure(
                f"Local store failed to {action}", details={"error": str(exc)}
            ) from exc
        finally:
            db.close()

    @staticmethod
    def _next_seq(db: Session, model) -> int:
        return (db.query(func.max(model.seq)).scalar() or 0) + 1

    # ------------------------------------------------------------------
    # Symptom reports
    # ------------------------------------------------------------------

    def save_symptom_report(self, report: PendingSymptomReport) -> None:
        """Upsert by id."""
        with self._transaction("save symptom report") as db:
            row = db.get(SymptomReportRow, report.id)
            if row is None:
                row = SymptomReportRow(id=report.id, seq=self._next_seq(db, SymptomReportRow))
                db.add(row)
            row.patient_id = report.patient_id
            row.symptoms_json = json.dumps(list(report.symptoms))
            row.notes = report.notes
            row.photo_path = report.photo_ref
            row.voice_path = report.voice_ref
            row.created_at = report.created_at
            row.synced = report.sync_state == SyncState.SYNCED

    def get_symptom_report(self, report_id: str) -> Optional[PendingSymptomReport]:
        with self._transaction("read symptom report") as db:
            row = db.get(SymptomReportRow, report_id)
            return self._to_report(row) if row is not None else None

    def list_unsynced_symptom_reports(self) -> Iterator[PendingSymptomReport]:
        """
        Yield unsynced reports in creation order.

        Rows are read page by page with keyset pagination, so reports marked
        synced mid-iteration never cause skips, and calling again restarts
        from the beginning.
        """
        cursor = None
        while True:
            with self._transaction("list unsynced symptom reports") as db:
                query = db.query(SymptomReportRow).filter(SymptomReportRow.synced.is_(False))
                if cursor is not None:
                    last_created, last_seq = cursor
                    query = query.filter(
                        or_(
                            SymptomReportRow.created_at > last_created,
                            and_(
                                SymptomReportRow.created_at == last_created,
                                SymptomReportRow.seq > last_seq,
                            ),
                        )
                    )
                rows = (
                    query.order_by(SymptomReportRow.created_at, SymptomReportRow.seq)
                    .limit(UNSYNCED_PAGE_SIZE)
                    .all()
                )
                page = [self._to_report(row) for row in rows]
                if rows:
                    cursor = (rows[-1].created_at, rows[-1].seq)

            yield from page
            if len(page) < UNSYNCED_PAGE_SIZE:
                return

    def count_unsynced_symptom_reports(self) -> int:
        with self._transaction("count unsynced symptom reports") as db:
            return db.query(SymptomReportRow).filter(SymptomReportRow.synced.is_(False)).count()

    def mark_symptom_report_synced(self, report_id: str) -> bool:
        """Flag a report as acknowledged. Returns False when the id is unknown."""
        with self._transaction("mark symptom report synced") as db:
            row = db.get(SymptomReportRow, report_id)
            if row is None:
                logger.debug("Symptom report %s not found while marking synced", report_id)
                return False
            row.synced = True
            return True

    @staticmethod
    def _to_report(row: SymptomReportRow) -> PendingSymptomReport:
        try:
            symptoms = json.loads(row.symptoms_json)
        except (TypeError, ValueError) as exc:
            logger.error("Symptom report %s has unreadable symptoms: %s", row.id, exc)
            raise StorageFailure(
                f"Symptom report {row.id} is corrupt", details={"error": str(exc)}
            ) from exc
        return PendingSymptomReport(
            id=row.id,
            patient_id=row.patient_id,
            symptoms=symptoms,
            notes=row.notes or "",
            photo_ref=row.photo_path,
            voice_ref=row.voice_path,
            created_at=row.created_at,
            sync_state=SyncState.SYNCED if row.synced else SyncState.UNSYNCED,
        )

    # ------------------------------------------------------------------
    # Caches (records, medicines)
    # ------------------------------------------------------------------

    def replace_cache(self, kind: Union[CacheKind, str], patient_id: str, items: Iterable[CacheItem]) -> None:
        """
        Replace the patient's cached records or medicines with ``items``.

        Delete and insert share one transaction, so readers see either the
        previous set or the new one.
        """
        kind = CacheKind(kind)
        cached_at = utc_now()
        with self._transaction(f"replace {kind.value} cache") as db:
            if kind == CacheKind.RECORDS:
                validated = {r.id: r for r in (ConsultationRecord.model_validate(i) for i in items)}
                db.query(CachedRecordRow).filter(CachedRecordRow.patient_id == patient_id).delete(
                    synchronize_session=False
                )
                for record in validated.values():
                    db.add(
                        CachedRecordRow(
                            id=record.id,
                            patient_id=patient_id,
                            date=record.date,
                            doctor_name=record.doctor_name,
                            notes=record.notes,
                            prescription=record.prescription,
                            type=record.type,
                            cached_at=cached_at,
                        )
                    )
            else:
                validated = {m.id: m for m in (Medicine.model_validate(i) for i in items)}
                db.query(CachedMedicineRow).filter(CachedMedicineRow.patient_id == patient_id).delete(
                    synchronize_session=False
                )
                for med in validated.values():
                    db.add(
                        CachedMedicineRow(
                            id=med.id,
                            patient_id=patient_id,
                            name=med.name,
                            dosage=med.dosage,
                            pharmacy=med.pharmacy,
                            available=med.available,
                            last_updated=med.last_updated,
                            cached_at=cached_at,
                        )
                    )
        logger.debug("Cached %d %s for patient %s", len(validated), kind.value, patient_id)

    def get_cached_records(self, patient_id: str) -> List[ConsultationRecord]:
        with self._transaction("read cached records") as db:
            rows = (
                db.query(CachedRecordRow)
                .filter(CachedRecordRow.patient_id == patient_id)
                .order_by(CachedRecordRow.date.desc())
                .all()
            )
            return [
                ConsultationRecord(
                    id=r.id,
                    date=r.date,
                    doctor_name=r.doctor_name,
                    notes=r.notes,
                    prescription=r.prescription,
                    type=r.type,
                )
                for r in rows
            ]

    def get_cached_medicines(self, patient_id: str) -> List[Medicine]:
        with self._transaction("read cached medicines") as db:
            rows = (
                db.query(CachedMedicineRow)
                .filter(CachedMedicineRow.patient_id == patient_id)
                .order_by(CachedMedicineRow.name, CachedMedicineRow.id)
                .all()
            )
            return [
                Medicine(
                    id=m.id,
                    name=m.name,
                    dosage=m.dosage,
                    pharmacy=m.pharmacy,
                    available=m.available,
                    last_updated=m.last_updated,
                )
                for m in rows
            ]

    def last_cached_at(self, kind: Union[CacheKind, str], patient_id: str) -> Optional[datetime]:
        """Timestamp of the last successful fetch; display only, no TTL."""
        model = CachedRecordRow if CacheKind(kind) == CacheKind.RECORDS else CachedMedicineRow
        with self._transaction("read cache timestamp") as db:
            return db.query(func.max(model.cached_at)).filter(model.patient_id == patient_id).scalar()

    # ------------------------------------------------------------------
    # Sync queue table
    # ------------------------------------------------------------------

    def enqueue(self, kind: str, payload: Any) -> SyncQueueEntry:
        """Append an outbound operation. ``payload`` is any JSON-serializable value or a JSON string."""
        data_json = payload if isinstance(payload, str) else json.dumps(payload)
        entry = SyncQueueEntry(id=generate_uuid(), kind=str(kind), data_json=data_json, created_at=utc_now())
        with self._transaction("enqueue sync entry") as db:
            db.add(
                SyncQueueRow(
                    id=entry.id,
                    kind=entry.kind,
                    data_json=entry.data_json,
                    created_at=entry.created_at,
                    attempts=0,
                    seq=self._next_seq(db, SyncQueueRow),
                )
            )
        return entry

    def list_queue(self) -> List[SyncQueueEntry]:
        """All queue entries, oldest first."""
        with self._transaction("list sync queue") as db:
            rows = db.query(SyncQueueRow).order_by(SyncQueueRow.created_at, SyncQueueRow.seq).all()
            return [
                SyncQueueEntry(
                    id=r.id,
                    kind=r.kind,
                    data_json=r.data_json,
                    created_at=r.created_at,
                    attempts=r.attempts,
                    last_error=r.last_error,
                )
                for r in rows
            ]

    def dequeue(self, entry_id: str) -> bool:
        with self._transaction("dequeue sync entry") as db:
            deleted = db.query(SyncQueueRow).filter(SyncQueueRow.id == entry_id).delete(
                synchronize_session=False
            )
            return deleted > 0

    def record_failed_attempt(self, entry_id: str, error: Optional[str] = None) -> Optional[int]:
        """Bump ``attempts`` for an entry and return the new count."""
        with self._transaction("record failed sync attempt") as db:
            row = db.get(SyncQueueRow, entry_id)
            if row is None:
                return None
            row.attempts = (row.attempts or 0) + 1
            row.last_error = error
            return row.attempts

    def queue_depth(self) -> int:
        with self._transaction("count sync queue") as db:
            return db.query(SyncQueueRow).count()
