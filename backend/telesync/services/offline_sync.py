"""
Offline Mode & Sync Service.
Keeps data captured on the patient device consistent with the remote service:
uploads pending symptom reports, drains the sync queue, then refreshes the
cached records, consultation and medicine availability.
"""
import asyncio
import logging
import os
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from ..core.errors import RemoteOperationFailure, StorageFailure, TelesyncError
from ..core.state import DeviceState
from ..models.base import utc_now
from ..schemas.remote import SymptomSubmission
from ..schemas.sync import FeedbackPayload, SymptomPayload
from .local_store import CacheKind, LocalStore, PendingSymptomReport
from .remote_client import RemoteServiceClient
from .sync_queue import QueuedPayload, SyncQueue

logger = logging.getLogger(__name__)


class OrchestratorState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


@dataclass
class SyncReport:
    """Outcome of one sync pass."""
    started_at: datetime = field(default_factory=utc_now)
    finished_at: Optional[datetime] = None
    uploaded: List[str] = field(default_factory=list)
    failed_uploads: List[str] = field(default_factory=list)
    drained: List[str] = field(default_factory=list)
    failed_entries: List[str] = field(default_factory=list)
    refreshed: List[str] = field(default_factory=list)
    failed_refreshes: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not (self.failed_uploads or self.failed_entries or self.failed_refreshes)

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "uploaded": len(self.uploaded),
            "failed_uploads": len(self.failed_uploads),
            "drained": len(self.drained),
            "failed_entries": len(self.failed_entries),
            "refreshed": list(self.refreshed),
            "failed_refreshes": list(self.failed_refreshes),
        }


def submission_from_report(report: PendingSymptomReport) -> SymptomSubmission:
    return SymptomSubmission(
        id=report.id,
        patient_id=report.patient_id,
        symptoms=list(report.symptoms),
        notes=report.notes,
        photo_path=report.photo_ref,
        voice_path=report.voice_ref,
        created_at=report.created_at,
    )


def _local_file(ref: Optional[str]) -> Optional[str]:
    """Return a filesystem path when ``ref`` still points at an on-device file."""
    if not ref or ref.startswith(("http://", "https://")):
        return None
    path = ref[len("file://"):] if ref.startswith("file://") else ref
    return path if os.path.isfile(path) else None


class SyncOrchestrator:
    """
    Single-flight sync state machine: Idle -> Running -> Idle.

    Triggers from the connectivity monitor or the API are posted to a
    one-slot channel consumed by a single worker task (``run``). A trigger
    that arrives while another trigger is already waiting is coalesced
    rather than queued; triggers during a pass yield one follow-up pass.
    """

    def __init__(
        self,
        store: LocalStore,
        queue: SyncQueue,
        client: RemoteServiceClient,
        state: DeviceState,
    ):
        self.store = store
        self.queue = queue
        self.client = client
        self.state = state
        self.status = OrchestratorState.IDLE
        self.last_report: Optional[SyncReport] = None
        self._triggers: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._pass_done: Optional[asyncio.Event] = None

    @property
    def is_running(self) -> bool:
        return self.status == OrchestratorState.RUNNING

    # ------------------------------------------------------------------
    # Task handoff
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the worker task on the running event loop."""
        if self._worker is not None:
            return
        self._triggers = asyncio.Queue(maxsize=1)
        self._worker = asyncio.create_task(self.run())

    async def stop(self) -> None:
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        self._triggers = None

    def request_sync(self) -> bool:
        """
        Post a sync trigger. Returns False when it was coalesced or no worker runs.

        A trigger posted while a pass is running schedules one follow-up pass,
        so items saved after the running pass read its snapshot still go out.
        """
        if self._triggers is None:
            logger.warning("Sync requested before the orchestrator worker started")
            return False
        try:
            self._triggers.put_nowait(None)
        except asyncio.QueueFull:
            logger.debug("Sync trigger already pending, trigger coalesced")
            return False
        return True

    async def run(self) -> None:
        while True:
            await self._triggers.get()
            await self._run_pass()

    async def _run_pass(self) -> SyncReport:
        """Run a pass, first waiting out any pass already in flight."""
        while True:
            report = await self.perform_sync()
            if report is not None:
                return report
            await self._pass_done.wait()

    # ------------------------------------------------------------------
    # Sync pass
    # ------------------------------------------------------------------

    async def perform_sync(self) -> Optional[SyncReport]:
        """
        Run one sync pass. Returns None without doing anything if a pass is
        already running. Never raises: every step catches and logs its own
        failure.
        """
        if self.is_running:
            logger.debug("Sync pass already running")
            return None

        self.status = OrchestratorState.RUNNING
        self._pass_done = asyncio.Event()
        report = SyncReport()
        try:
            await self._upload_symptom_reports(report)
            await self._drain_queue(report)
            await self._refresh_caches(report)
        except Exception:
            logger.exception("Sync pass aborted by unexpected error")
        finally:
            report.finished_at = utc_now()
            self.last_report = report
            self.state.last_synced_at = report.finished_at
            self.status = OrchestratorState.IDLE
            self._pass_done.set()

        logger.info(
            "Sync pass finished: %d uploaded, %d upload failures, %d queued sent, "
            "%d queue failures, refreshed=%s",
            len(report.uploaded),
            len(report.failed_uploads),
            len(report.drained),
            len(report.failed_entries),
            ",".join(report.refreshed) or "-",
        )
        return report

    async def trigger_manual_sync(self) -> bool:
        """
        Run a pass now and return True once it has completed. If a pass is
        already in flight, waits for it and then runs a fresh one. Returns
        False without any remote call when offline.
        """
        if not self.state.is_online:
            logger.info("Manual sync skipped: device is offline")
            return False
        await self._run_pass()
        return True

    # -- upload phase ----------------------------------------------------

    async def _upload_symptom_reports(self, report: SyncReport) -> None:
        try:
            pending = list(self.store.list_unsynced_symptom_reports())
        except StorageFailure as exc:
            logger.error("Upload phase skipped, cannot read pending reports: %s", exc)
            return

        for symptom in pending:
            try:
                symptom = await self._upload_attachments(symptom)
                await self.client.submit_symptoms(submission_from_report(symptom))
                self.store.mark_symptom_report_synced(symptom.id)
            except TelesyncError as exc:
                logger.warning("Failed to sync symptom report %s: %s", symptom.id, exc)
                report.failed_uploads.append(symptom.id)
                continue
            except Exception:
                logger.exception("Unexpected error syncing symptom report %s", symptom.id)
                report.failed_uploads.append(symptom.id)
                continue
            self.state.mark_symptom_synced(symptom.id)
            report.uploaded.append(symptom.id)

    async def _upload_attachments(self, symptom: PendingSymptomReport) -> PendingSymptomReport:
        """
        Upload on-device photo/voice files. Each hosted URL is persisted as
        soon as its upload succeeds, so a later failure never re-uploads it.
        """
        for kind, attr in (("photo", "photo_ref"), ("voice", "voice_ref")):
            path = _local_file(getattr(symptom, attr))
            if path is None:
                continue
            url = await self.client.upload_file(kind, path, symptom.patient_id)
            symptom = replace(symptom, **{attr: url})
            self.store.save_symptom_report(symptom)
            self.state.add_symptom(symptom)
        return symptom

    # -- queue phase -----------------------------------------------------

    async def _drain_queue(self, report: SyncReport) -> None:
        try:
            entries = self.queue.entries()
        except StorageFailure as exc:
            logger.error("Queue phase skipped, cannot read sync queue: %s", exc)
            return

        for entry in entries:
            try:
                payload = self.queue.decode(entry)
                await self._dispatch(payload)
                self.queue.acknowledge(entry.id)
            except TelesyncError as exc:
                report.failed_entries.append(entry.id)
                try:
                    self.queue.record_failure(entry.id, str(exc))
                except StorageFailure:
                    logger.error("Could not record failed attempt for sync entry %s", entry.id)
                continue
            report.drained.append(entry.id)

        try:
            self.state.set_queue_depth(self.queue.depth())
        except StorageFailure as exc:
            logger.error("Could not refresh queue depth: %s", exc)

    async def _dispatch(self, payload: QueuedPayload) -> None:
        if isinstance(payload, SymptomPayload):
            await self.client.submit_symptoms(payload)
        elif isinstance(payload, FeedbackPayload):
            await self.client.submit_feedback(payload)
        else:
            raise RemoteOperationFailure(f"No remote operation for {type(payload).__name__}")

    # -- refresh phase ---------------------------------------------------

    async def _refresh_caches(self, report: SyncReport) -> None:
        patient = self.state.patient
        if patient is None:
            logger.debug("Refresh phase skipped: no patient selected")
            return
        patient_id = patient.id

        async def profile():
            self.state.set_patient(await self.client.get_patient(patient_id))

        async def records():
            items = await self.client.get_records(patient_id)
            self.store.replace_cache(CacheKind.RECORDS, patient_id, items)
            self.state.set_records(self.store.get_cached_records(patient_id))

        async def consultation():
            self.state.set_consultation(await self.client.get_upcoming_consultation(patient_id))

        async def medicines():
            items = await self.client.get_medicines(patient_id)
            self.store.replace_cache(CacheKind.MEDICINES, patient_id, items)
            self.state.set_medicines(items)

        for name, step in (
            ("profile", profile),
            ("records", records),
            ("consultation", consultation),
            ("medicines", medicines),
        ):
            await self._refresh_one(name, step, report)

    @staticmethod
    async def _refresh_one(name: str, step: Callable[[], Awaitable[None]], report: SyncReport) -> None:
        try:
            await step()
        except TelesyncError as exc:
            logger.warning("Failed to refresh %s: %s", name, exc)
            report.failed_refreshes.append(name)
            return
        except Exception:
            logger.exception("Unexpected error refreshing %s", name)
            report.failed_refreshes.append(name)
            return
        report.refreshed.append(name)
