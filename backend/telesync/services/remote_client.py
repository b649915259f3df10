"""
Remote telemedicine service client.
Typed wrappers over the JSON envelope API ``{success, data?, error?}`` with a
fixed per-call timeout. Transport errors, timeouts, non-2xx statuses and
``success=false`` all surface as ``RemoteOperationFailure``.
"""
import logging
import os
from typing import Any, List, Optional

import httpx

from ..core.config import settings
from ..core.errors import RemoteOperationFailure
from ..schemas.remote import (
    Consultation,
    ConsultationRecord,
    FeedbackSubmission,
    Medicine,
    Patient,
    SymptomSubmission,
)

logger = logging.getLogger(__name__)

UPLOAD_CONTENT_TYPES = {
    "photo": ("photo.jpg", "image/jpeg"),
    "voice": ("voice.m4a", "audio/m4a"),
}


class RemoteServiceClient:
    """Async HTTP client for the remote telemedicine API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.REMOTE_API_BASE_URL).rstrip("/")
        self.api_token = api_token if api_token is not None else settings.REMOTE_API_TOKEN
        self.timeout = timeout or settings.REMOTE_API_TIMEOUT
        headers = {"Authorization": f"Bearer {self.api_token}"} if self.api_token else {}
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout),
            headers=headers,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, endpoint: str, **kwargs) -> Any:
        """Send one request and unwrap the response envelope."""
        try:
            resp = await self._client.request(method, endpoint, **kwargs)
        except httpx.TimeoutException as exc:
            raise RemoteOperationFailure(f"{method} {endpoint} timed out after {self.timeout}s") from exc
        except httpx.HTTPError as exc:
            raise RemoteOperationFailure(f"{method} {endpoint} failed: {exc}") from exc

        if not resp.is_success:
            raise RemoteOperationFailure(f"API Error: {resp.status_code}", status_code=resp.status_code)

        try:
            envelope = resp.json()
        except ValueError as exc:
            raise RemoteOperationFailure(
                f"{method} {endpoint} returned a non-JSON body", status_code=resp.status_code
            ) from exc

        if not isinstance(envelope, dict) or not envelope.get("success"):
            error = envelope.get("error") if isinstance(envelope, dict) else None
            raise RemoteOperationFailure(error or "Unknown error", status_code=resp.status_code)

        return envelope.get("data")

    @staticmethod
    def _parse(model, data: Any, endpoint: str):
        try:
            return model.model_validate(data)
        except ValueError as exc:
            raise RemoteOperationFailure(f"Unexpected payload from {endpoint}: {exc}") from exc

    @classmethod
    def _parse_list(cls, model, data: Any, endpoint: str) -> list:
        if data is None:
            return []
        if not isinstance(data, list):
            raise RemoteOperationFailure(
                f"Unexpected payload from {endpoint}: expected a list, got {type(data).__name__}"
            )
        return [cls._parse(model, item, endpoint) for item in data]

    # ------------------------------------------------------------------
    # API operations
    # ------------------------------------------------------------------

    async def get_patient(self, patient_id: str) -> Patient:
        endpoint = f"/patients/{patient_id}"
        return self._parse(Patient, await self._request("GET", endpoint), endpoint)

    async def submit_symptoms(self, submission: SymptomSubmission) -> Optional[str]:
        """POST a symptom report; returns the server-side id."""
        data = await self._request(
            "POST", "/symptoms", json=submission.to_wire(include=set(SymptomSubmission.model_fields))
        )
        return data.get("id") if isinstance(data, dict) else None

    async def get_records(self, patient_id: str) -> List[ConsultationRecord]:
        endpoint = f"/patients/{patient_id}/records"
        data = await self._request("GET", endpoint)
        return self._parse_list(ConsultationRecord, data, endpoint)

    async def get_upcoming_consultation(self, patient_id: str) -> Optional[Consultation]:
        endpoint = f"/patients/{patient_id}/consultation"
        data = await self._request("GET", endpoint)
        if not data:
            return None
        return self._parse(Consultation, data, endpoint)

    async def get_medicines(self, patient_id: str) -> List[Medicine]:
        endpoint = f"/patients/{patient_id}/medicines"
        data = await self._request("GET", endpoint)
        return self._parse_list(Medicine, data, endpoint)

    async def submit_feedback(self, feedback: FeedbackSubmission) -> None:
        await self._request(
            "POST", "/feedback", json=feedback.to_wire(include=set(FeedbackSubmission.model_fields))
        )

    async def upload_file(self, kind: str, file_path: str, patient_id: str) -> str:
        """Multipart upload of a photo or voice note. Returns the hosted URL."""
        if kind not in UPLOAD_CONTENT_TYPES:
            raise ValueError(f"Unsupported upload type: {kind}")
        filename, content_type = UPLOAD_CONTENT_TYPES[kind]
        try:
            with open(file_path, "rb") as fh:
                content = fh.read()
        except OSError as exc:
            raise RemoteOperationFailure(f"Cannot read {kind} attachment {os.path.basename(file_path)}") from exc

        data = await self._request(
            "POST",
            "/upload",
            files={"file": (filename, content, content_type)},
            data={"patientId": patient_id, "type": kind},
        )
        url = data.get("url") if isinstance(data, dict) else None
        if not url:
            raise RemoteOperationFailure("Upload response did not include a url")
        logger.debug("Uploaded %s for patient %s", kind, patient_id)
        return url
