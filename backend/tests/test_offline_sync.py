import asyncio
import json
from datetime import datetime, timedelta

import httpx
import pytest

from telesync.schemas.remote import Patient
from telesync.schemas.sync import FeedbackPayload
from telesync.services.connectivity import ConnectivityMonitor, NetworkSignal
from telesync.services.local_store import CacheKind, PendingSymptomReport, SyncState
from telesync.services.offline_sync import OrchestratorState, SyncOrchestrator
from telesync.services.symptom_capture import SymptomCaptureService

from conftest import app_error, ok

BASE_TIME = datetime(2026, 10, 1, 9, 0, 0)


def save_report(store, state, report_id, minutes=0, **kwargs):
    report = PendingSymptomReport(
        id=report_id,
        patient_id="p1",
        symptoms=kwargs.pop("symptoms", ["fever"]),
        notes=kwargs.pop("notes", ""),
        created_at=BASE_TIME + timedelta(minutes=minutes),
        **kwargs,
    )
    store.save_symptom_report(report)
    state.add_symptom(report)
    return report


@pytest.fixture()
def orchestrator(store, queue, client, state):
    state.set_patient(Patient(id="p1"))
    return SyncOrchestrator(store, queue, client, state)


class TestUploadPhase:
    @pytest.mark.asyncio
    async def test_uploads_unsynced_reports_and_marks_synced(self, orchestrator, store, state, remote):
        save_report(store, state, "a", minutes=0)
        save_report(store, state, "b", minutes=1)
        assert state.pending_sync_count == 2

        report = await orchestrator.perform_sync()

        assert report.uploaded == ["a", "b"]
        assert [body["id"] for body in remote.symptom_bodies] == ["a", "b"]
        assert list(store.list_unsynced_symptom_reports()) == []
        assert state.pending_sync_count == 0
        assert orchestrator.status == OrchestratorState.IDLE

    @pytest.mark.asyncio
    @pytest.mark.parametrize("failing_first", [True, False])
    async def test_partial_failure_does_not_block_other_items(self, orchestrator, store, state, remote, failing_first):
        order = ["A", "B"] if failing_first else ["B", "A"]
        for i, report_id in enumerate(order):
            save_report(store, state, report_id, minutes=i)

        def submit(request):
            body = json.loads(request.content)
            if body["id"] == "A":
                raise httpx.ReadTimeout("timed out", request=request)
            return ok({"id": "srv-B"})

        remote.override("POST", "/symptoms", submit)
        report = await orchestrator.perform_sync()

        assert report.failed_uploads == ["A"]
        assert report.uploaded == ["B"]
        assert [r.id for r in store.list_unsynced_symptom_reports()] == ["A"]
        assert store.get_symptom_report("B").sync_state == SyncState.SYNCED
        assert state.pending_sync_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_pass_is_coalesced(self, orchestrator, store, state, remote):
        save_report(store, state, "a", minutes=0)
        save_report(store, state, "b", minutes=1)
        gate = asyncio.Event()

        async def slow_submit(request):
            await gate.wait()
            return ok({"id": "srv"})

        remote.override("POST", "/symptoms", slow_submit)

        first = asyncio.create_task(orchestrator.perform_sync())
        await asyncio.sleep(0)
        assert orchestrator.is_running
        assert await orchestrator.perform_sync() is None

        gate.set()
        report = await first
        assert report.uploaded == ["a", "b"]
        assert remote.count("POST", "/symptoms") == 2
        assert not orchestrator.is_running

    @pytest.mark.asyncio
    async def test_local_attachments_uploaded_before_submit(self, orchestrator, store, state, remote, tmp_path):
        photo = tmp_path / "photo.jpg"
        photo.write_bytes(b"jpeg")
        remote.override("POST", "/upload", lambda request: ok({"url": "https://cdn.test/photo.jpg"}))
        save_report(store, state, "a", photo_ref=str(photo), voice_ref="https://cdn.test/already.m4a")

        await orchestrator.perform_sync()

        assert remote.count("POST", "/upload") == 1
        assert remote.symptom_bodies[0]["photoPath"] == "https://cdn.test/photo.jpg"
        assert remote.symptom_bodies[0]["voicePath"] == "https://cdn.test/already.m4a"
        assert store.get_symptom_report("a").photo_ref == "https://cdn.test/photo.jpg"

    @pytest.mark.asyncio
    async def test_failed_attachment_upload_leaves_report_unsynced(self, orchestrator, store, state, remote, tmp_path):
        photo = tmp_path / "photo.jpg"
        photo.write_bytes(b"jpeg")
        remote.override("POST", "/upload", lambda request: httpx.Response(500))
        save_report(store, state, "a", photo_ref=str(photo))

        report = await orchestrator.perform_sync()

        assert report.failed_uploads == ["a"]
        assert remote.count("POST", "/symptoms") == 0
        assert store.get_symptom_report("a").photo_ref == str(photo)

    @pytest.mark.asyncio
    async def test_uploaded_photo_kept_when_voice_upload_fails(self, orchestrator, store, state, remote, tmp_path):
        photo = tmp_path / "photo.jpg"
        photo.write_bytes(b"jpeg")
        voice = tmp_path / "voice.m4a"
        voice.write_bytes(b"m4a")
        responses = [ok({"url": "https://cdn.test/photo.jpg"}), app_error("Storage full")]
        remote.override("POST", "/upload", lambda request: responses.pop(0))
        save_report(store, state, "a", photo_ref=str(photo), voice_ref=str(voice))

        report = await orchestrator.perform_sync()

        assert report.failed_uploads == ["a"]
        stored = store.get_symptom_report("a")
        assert stored.photo_ref == "https://cdn.test/photo.jpg"
        assert stored.voice_ref == str(voice)

        remote.override("POST", "/upload", lambda request: ok({"url": "https://cdn.test/voice.m4a"}))
        report = await orchestrator.perform_sync()

        assert report.uploaded == ["a"]
        assert remote.count("POST", "/upload") == 3
        assert remote.symptom_bodies[0]["photoPath"] == "https://cdn.test/photo.jpg"
        assert remote.symptom_bodies[0]["voicePath"] == "https://cdn.test/voice.m4a"


class TestQueuePhase:
    @pytest.mark.asyncio
    async def test_drains_queue_fifo(self, orchestrator, queue, remote):
        queue.enqueue(FeedbackPayload(patient_id="p1", rating=5, comment="first"))
        queue.enqueue(FeedbackPayload(patient_id="p1", rating=4, comment="second"))

        report = await orchestrator.perform_sync()

        assert [b["comment"] for b in remote.feedback_bodies] == ["first", "second"]
        assert len(report.drained) == 2
        assert queue.entries() == []
        assert orchestrator.state.queue_depth == 0

    @pytest.mark.asyncio
    async def test_rejected_feedback_retries_forever(self, orchestrator, queue, remote):
        entry = queue.enqueue(FeedbackPayload(patient_id="p1", rating=1, comment="x" * 5000))
        remote.override("POST", "/feedback", lambda request: app_error("Comment too long", status_code=400))

        for expected_attempts in (1, 2, 3):
            await orchestrator.perform_sync()
            entries = queue.entries()
            assert [e.id for e in entries] == [entry.id]
            assert entries[0].attempts == expected_attempts

        assert remote.count("POST", "/feedback") == 3

    @pytest.mark.asyncio
    async def test_malformed_stored_payload_is_kept_and_counted(self, orchestrator, queue, store, remote):
        bad = store.enqueue("feedback", {"kind": "feedback", "patientId": "p1", "rating": "great"})
        good = queue.enqueue(FeedbackPayload(patient_id="p1", rating=5))

        await orchestrator.perform_sync()
        await orchestrator.perform_sync()

        entries = queue.entries()
        assert [e.id for e in entries] == [bad.id]
        assert entries[0].attempts == 2
        assert "Malformed" in entries[0].last_error
        assert good.id not in [e.id for e in entries]
        assert remote.count("POST", "/feedback") == 1

    @pytest.mark.asyncio
    async def test_uploads_happen_before_queue_and_refresh(self, orchestrator, store, state, queue, remote):
        queue.enqueue(FeedbackPayload(patient_id="p1", rating=5))
        save_report(store, state, "a")

        await orchestrator.perform_sync()

        posts = [call for call in remote.calls if call[0] == "POST"]
        assert posts == [("POST", "/symptoms"), ("POST", "/feedback")]
        first_get = next(i for i, call in enumerate(remote.calls) if call[0] == "GET")
        assert first_get > remote.calls.index(("POST", "/feedback"))


class TestRefreshPhase:
    @pytest.mark.asyncio
    async def test_refresh_replaces_caches_and_mirror(self, orchestrator, store, state, remote):
        store.replace_cache(CacheKind.MEDICINES, "p1", [
            {"id": "stale", "name": "Old", "available": False, "lastUpdated": "2026-01-01"},
        ])

        report = await orchestrator.perform_sync()

        assert report.refreshed == ["profile", "records", "consultation", "medicines"]
        assert [m.id for m in store.get_cached_medicines("p1")] == ["m1"]
        assert [r.id for r in store.get_cached_records("p1")] == ["r1"]
        assert state.patient.name == "Gurpreet"
        assert state.consultation.doctor_name == "Dr. Singh"
        assert [m.id for m in state.medicines] == ["m1"]
        assert [r.id for r in state.records] == ["r1"]
        assert state.last_synced_at is not None

    @pytest.mark.asyncio
    async def test_failed_fetch_keeps_previous_cache_and_others_continue(self, orchestrator, store, state, remote):
        store.replace_cache(CacheKind.RECORDS, "p1", [
            {"id": "old", "date": "2026-01-01", "type": "consultation"},
        ])
        remote.override("GET", "/patients/p1/records", lambda request: httpx.Response(500))

        report = await orchestrator.perform_sync()

        assert report.failed_refreshes == ["records"]
        assert "medicines" in report.refreshed
        assert "consultation" in report.refreshed
        assert [r.id for r in store.get_cached_records("p1")] == ["old"]
        assert [m.id for m in store.get_cached_medicines("p1")] == ["m1"]

    @pytest.mark.asyncio
    async def test_no_patient_skips_refresh(self, store, queue, client, state, remote):
        orchestrator = SyncOrchestrator(store, queue, client, state)
        report = await orchestrator.perform_sync()
        assert report.refreshed == []
        assert remote.calls == []

    @pytest.mark.asyncio
    async def test_malformed_list_payload_fails_only_that_fetch(self, orchestrator, store, remote):
        remote.override("GET", "/patients/p1/records", lambda request: ok(5))

        report = await orchestrator.perform_sync()

        assert report.failed_refreshes == ["records"]
        assert report.refreshed == ["profile", "consultation", "medicines"]
        assert remote.count("GET", "/patients/p1/medicines") == 1
        assert store.get_cached_records("p1") == []

    @pytest.mark.asyncio
    async def test_unexpected_error_in_one_step_does_not_stop_the_rest(self, orchestrator, store, monkeypatch):
        real_replace = store.replace_cache

        def replace_cache(kind, patient_id, items):
            if kind == CacheKind.RECORDS:
                raise RuntimeError("cache write interrupted")
            return real_replace(kind, patient_id, items)

        monkeypatch.setattr(store, "replace_cache", replace_cache)

        report = await orchestrator.perform_sync()

        assert report.failed_refreshes == ["records"]
        assert "medicines" in report.refreshed
        assert [m.id for m in store.get_cached_medicines("p1")] == ["m1"]


class TestPassBoundary:
    @pytest.mark.asyncio
    async def test_storage_failure_never_escapes(self, orchestrator, store, state, session_factory, remote):
        from sqlalchemy import text

        save_report(store, state, "a")
        with session_factory() as db:
            db.execute(text("DROP TABLE symptoms"))
            db.execute(text("DROP TABLE sync_queue"))
            db.commit()

        report = await orchestrator.perform_sync()

        assert report is not None
        assert remote.count("POST", "/symptoms") == 0
        assert orchestrator.status == OrchestratorState.IDLE

    @pytest.mark.asyncio
    async def test_manual_sync_offline_makes_no_remote_calls(self, orchestrator, store, state, remote):
        save_report(store, state, "a")
        state.set_online(False)

        assert await orchestrator.trigger_manual_sync() is False
        assert remote.calls == []
        assert state.pending_sync_count == 1

    @pytest.mark.asyncio
    async def test_manual_sync_online_runs_pass(self, orchestrator, store, state, remote):
        save_report(store, state, "a")
        state.set_online(True)

        assert await orchestrator.trigger_manual_sync() is True
        assert remote.count("POST", "/symptoms") == 1
        assert state.pending_sync_count == 0

    @pytest.mark.asyncio
    async def test_corrupt_report_row_skips_uploads_but_not_other_phases(
        self, orchestrator, store, state, queue, session_factory, remote
    ):
        from sqlalchemy import text

        save_report(store, state, "a")
        queue.enqueue(FeedbackPayload(patient_id="p1", rating=5))
        with session_factory() as db:
            db.execute(text("UPDATE symptoms SET symptoms_json = '{not json' WHERE id = 'a'"))
            db.commit()

        report = await orchestrator.perform_sync()

        assert report.uploaded == []
        assert remote.count("POST", "/symptoms") == 0
        assert len(report.drained) == 1
        assert report.refreshed == ["profile", "records", "consultation", "medicines"]

    @pytest.mark.asyncio
    async def test_manual_sync_during_pass_waits_and_runs_fresh_pass(self, orchestrator, store, state, remote):
        save_report(store, state, "a", minutes=0)
        state.set_online(True)
        gate = asyncio.Event()

        async def slow_submit(request):
            await gate.wait()
            return ok({"id": "srv"})

        remote.override("POST", "/symptoms", slow_submit)

        first = asyncio.create_task(orchestrator.perform_sync())
        await asyncio.sleep(0)
        assert orchestrator.is_running
        save_report(store, state, "b", minutes=1)

        manual = asyncio.create_task(orchestrator.trigger_manual_sync())
        for _ in range(5):
            await asyncio.sleep(0)
        assert not manual.done()

        gate.set()
        assert await manual is True
        first_report = await first

        assert first_report.uploaded == ["a"]
        assert orchestrator.last_report is not first_report
        assert orchestrator.last_report.uploaded == ["b"]
        assert state.pending_sync_count == 0


class TestTriggerHandoff:
    @pytest.mark.asyncio
    async def test_offline_to_online_runs_exactly_one_pass(self, orchestrator, store, state, remote):
        save_report(store, state, "a", minutes=0)
        save_report(store, state, "b", minutes=1)
        passes = []
        real_perform_sync = orchestrator.perform_sync

        async def counting_perform_sync():
            passes.append(1)
            return await real_perform_sync()

        orchestrator.perform_sync = counting_perform_sync
        orchestrator.start()
        monitor = ConnectivityMonitor(state, on_online=orchestrator.request_sync, poll_interval=0)

        monitor.handle_signal(NetworkSignal(is_connected=False, is_internet_reachable=False))
        assert state.pending_sync_count == 2
        monitor.handle_signal(NetworkSignal(is_connected=True, is_internet_reachable=True))
        monitor.handle_signal(NetworkSignal(is_connected=True, is_internet_reachable=True))

        for _ in range(200):
            if orchestrator.last_report is not None:
                break
            await asyncio.sleep(0.005)
        await orchestrator.stop()

        assert passes == [1]
        assert remote.count("POST", "/symptoms") == 2
        assert state.pending_sync_count == 0

    @pytest.mark.asyncio
    async def test_triggers_coalesce_while_one_is_pending(self, orchestrator):
        orchestrator.start()
        assert orchestrator.request_sync() is True
        assert orchestrator.request_sync() is False
        await orchestrator.stop()

    def test_request_before_start_is_rejected(self, orchestrator):
        assert orchestrator.request_sync() is False

    @pytest.mark.asyncio
    async def test_trigger_during_pass_schedules_one_follow_up(self, orchestrator, store, state, remote):
        save_report(store, state, "a", minutes=0)
        gate = asyncio.Event()

        async def slow_submit(request):
            remote.symptom_bodies.append(json.loads(request.content))
            await gate.wait()
            return ok({"id": "srv"})

        remote.override("POST", "/symptoms", slow_submit)
        orchestrator.start()
        assert orchestrator.request_sync() is True
        for _ in range(200):
            if remote.count("POST", "/symptoms") == 1:
                break
            await asyncio.sleep(0.005)
        assert orchestrator.is_running

        save_report(store, state, "b", minutes=1)
        assert orchestrator.request_sync() is True
        assert orchestrator.request_sync() is False
        gate.set()

        for _ in range(200):
            if state.pending_sync_count == 0 and not orchestrator.is_running:
                break
            await asyncio.sleep(0.005)
        await orchestrator.stop()

        assert [body["id"] for body in remote.symptom_bodies] == ["a", "b"]
        assert state.pending_sync_count == 0


class TestSymptomCaptureFlow:
    @pytest.mark.asyncio
    async def test_captured_reports_reach_the_server(self, orchestrator, store, queue, state, remote):
        capture = SymptomCaptureService(store, queue, state)
        first = capture.submit_symptom_report("p1", ["fever", "cough"], notes="Since Monday")
        capture.submit_feedback("p1", 4, "Quick reply")
        assert state.pending_sync_count == 2

        await orchestrator.perform_sync()

        assert remote.symptom_bodies[0]["id"] == first.id
        assert remote.symptom_bodies[0]["notes"] == "Since Monday"
        assert remote.feedback_bodies == [{"patientId": "p1", "rating": 4, "comment": "Quick reply"}]
        assert state.pending_sync_count == 0


def test_hydrate_restores_pending_count_after_restart(session_factory, store, queue):
    from telesync.core.state import DeviceState
    from telesync.services.local_store import LocalStore

    save_report(store, DeviceState(), "a")
    save_report(store, DeviceState(), "b", minutes=1)
    queue.enqueue(FeedbackPayload(patient_id="p1", rating=5))

    restarted = DeviceState()
    restarted.hydrate(LocalStore(session_factory))
    assert restarted.pending_sync_count == 3
