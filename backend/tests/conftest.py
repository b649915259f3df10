"""Shared pytest fixtures: in-memory local store and a fake remote service."""
import json
from typing import Callable, Dict, List, Optional, Tuple

import httpx
import pytest

from telesync.core.state import DeviceState
from telesync.models.base import create_db_engine, create_session_factory, init_db
from telesync.services.local_store import LocalStore
from telesync.services.remote_client import RemoteServiceClient
from telesync.services.sync_queue import SyncQueue

REMOTE_BASE_URL = "https://remote.test/v1"


def ok(data=None, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, json={"success": True, "data": data})


def app_error(message: str, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, json={"success": False, "error": message})


class FakeRemote:
    """In-process stand-in for the telemedicine API, served through httpx.MockTransport."""

    def __init__(self):
        self.calls: List[Tuple[str, str]] = []
        self.symptom_bodies: List[dict] = []
        self.feedback_bodies: List[dict] = []
        self.overrides: Dict[Tuple[str, str], Callable] = {}
        self.patient = {"id": "p1", "name": "Gurpreet", "phone": "98140", "village": "Nabha"}
        self.records = [
            {
                "id": "r1",
                "date": "2026-09-01",
                "doctorName": "Dr. Kaur",
                "notes": "Viral fever",
                "prescription": "Paracetamol 500mg",
                "type": "consultation",
            },
        ]
        self.consultation: Optional[dict] = {
            "id": "c1",
            "scheduledTime": "2026-10-20T10:00:00Z",
            "callType": "video",
            "doctorName": "Dr. Singh",
            "meetingUrl": "https://meet.test/c1",
        }
        self.medicines = [
            {
                "id": "m1",
                "name": "Paracetamol",
                "dosage": "500mg",
                "pharmacy": "Nabha Civil Hospital",
                "available": True,
                "lastUpdated": "2026-10-18T08:00:00Z",
            },
        ]

    def count(self, method: str, path: str) -> int:
        return sum(1 for call in self.calls if call == (method, path))

    def override(self, method: str, path: str, handler: Callable) -> None:
        self.overrides[(method, path)] = handler

    async def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.startswith("/v1"):
            path = path[len("/v1"):]
        key = (request.method, path)
        self.calls.append(key)

        if key in self.overrides:
            response = self.overrides[key](request)
            if not isinstance(response, httpx.Response):
                response = await response
            return response

        if key == ("POST", "/symptoms"):
            body = json.loads(request.content)
            self.symptom_bodies.append(body)
            return ok({"id": f"srv-{body.get('id')}"}, status_code=201)
        if key == ("POST", "/feedback"):
            self.feedback_bodies.append(json.loads(request.content))
            return ok(None)
        if key == ("POST", "/upload"):
            return ok({"url": f"https://cdn.test/uploads/{len(self.calls)}"})
        if request.method == "GET" and path.startswith("/patients/"):
            parts = path.strip("/").split("/")
            if len(parts) == 2:
                return ok(self.patient)
            resource = parts[2]
            if resource == "records":
                return ok(self.records)
            if resource == "consultation":
                return ok(self.consultation)
            if resource == "medicines":
                return ok(self.medicines)
        return httpx.Response(404, json={"success": False, "error": "Not found"})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture()
def session_factory():
    engine = create_db_engine("sqlite:///:memory:")
    init_db(engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture()
def store(session_factory):
    return LocalStore(session_factory)


@pytest.fixture()
def queue(store):
    return SyncQueue(store)


@pytest.fixture()
def state():
    return DeviceState()


@pytest.fixture()
def remote():
    return FakeRemote()


@pytest.fixture()
def client(remote):
    return RemoteServiceClient(base_url=REMOTE_BASE_URL, api_token="test-token", timeout=10, transport=remote.transport)
