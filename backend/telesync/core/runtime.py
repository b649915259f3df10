"""
Application container for the device sync core.
Builds every component once at startup and tears them down at shutdown.
"""
import logging
from typing import Optional

import httpx
from starlette.requests import Request

from .config import Settings, settings as default_settings
from .state import DeviceState
from ..models.base import create_db_engine, create_session_factory, init_db
from ..schemas.remote import Patient
from ..services.connectivity import ConnectivityMonitor, HttpReachabilityProbe
from ..services.local_store import LocalStore
from ..services.offline_sync import SyncOrchestrator
from ..services.remote_client import RemoteServiceClient
from ..services.symptom_capture import SymptomCaptureService
from ..services.sync_queue import SyncQueue

logger = logging.getLogger(__name__)


class SyncRuntime:
    def __init__(
        self,
        config: Optional[Settings] = None,
        remote_transport: Optional[httpx.AsyncBaseTransport] = None,
        probe: Optional[HttpReachabilityProbe] = None,
    ):
        self.config = config or default_settings
        self.engine = create_db_engine(self.config.DATABASE_URL)
        init_db(self.engine)
        self.session_factory = create_session_factory(self.engine)

        self.state = DeviceState()
        self.store = LocalStore(self.session_factory)
        self.queue = SyncQueue(self.store)
        self.client = RemoteServiceClient(
            base_url=self.config.REMOTE_API_BASE_URL,
            api_token=self.config.REMOTE_API_TOKEN,
            timeout=self.config.REMOTE_API_TIMEOUT,
            transport=remote_transport,
        )
        self.orchestrator = SyncOrchestrator(self.store, self.queue, self.client, self.state)
        self.capture = SymptomCaptureService(self.store, self.queue, self.state)
        self.monitor = ConnectivityMonitor(
            self.state,
            on_online=self.orchestrator.request_sync,
            probe=probe or HttpReachabilityProbe(
                url=self.config.CONNECTIVITY_PROBE_URL,
                timeout=self.config.CONNECTIVITY_PROBE_TIMEOUT,
            ),
            poll_interval=self.config.CONNECTIVITY_POLL_INTERVAL,
        )

        if self.config.PATIENT_ID:
            self.state.set_patient(Patient(id=self.config.PATIENT_ID))

    async def start(self) -> None:
        self.state.hydrate(self.store)
        self.orchestrator.start()
        await self.monitor.start()
        logger.info("Sync runtime started (online=%s)", self.state.is_online)

    async def stop(self) -> None:
        await self.monitor.stop()
        await self.orchestrator.stop()
        await self.client.aclose()
        self.engine.dispose()
        logger.info("Sync runtime stopped")

    def select_patient(self, patient: Patient) -> None:
        """Switch the active patient and load that patient's caches."""
        self.state.set_patient(patient)
        self.state.set_records(self.store.get_cached_records(patient.id))
        self.state.set_medicines(self.store.get_cached_medicines(patient.id))
        self.state.set_consultation(None)
        if self.state.is_online:
            self.orchestrator.request_sync()


def get_runtime(request: Request) -> SyncRuntime:
    """FastAPI dependency returning the runtime attached at startup."""
    return request.app.state.runtime
