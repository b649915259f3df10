"""
Sync Queue: FIFO accounting for outbound operations on top of the Local Store.

Entries stay until the remote service acknowledges them. ``attempts`` is
advisory: there is no eviction and no backoff, so an entry the server keeps
rejecting is retried on every pass.
"""
import logging
from typing import List, Optional, Union

from pydantic import ValidationError

from ..core.errors import ValidationFailure
from ..schemas.sync import FeedbackPayload, SymptomPayload, queue_payload_adapter
from .local_store import LocalStore, SyncQueueEntry

logger = logging.getLogger(__name__)

QueuedPayload = Union[SymptomPayload, FeedbackPayload]


class SyncQueue:
    def __init__(self, store: LocalStore):
        self.store = store

    def enqueue(self, payload: QueuedPayload) -> SyncQueueEntry:
        """Persist a typed payload; its ``kind`` becomes the entry kind."""
        entry = self.store.enqueue(payload.kind, payload.model_dump_json(by_alias=True))
        logger.info("Queued %s operation %s", entry.kind, entry.id)
        return entry

    def entries(self) -> List[SyncQueueEntry]:
        return self.store.list_queue()

    def decode(self, entry: SyncQueueEntry) -> QueuedPayload:
        """Resolve the stored JSON back into its payload type.

        Raises ``ValidationFailure`` when the row no longer matches any kind.
        """
        try:
            payload = queue_payload_adapter.validate_json(entry.data_json)
        except ValidationError as exc:
            raise ValidationFailure(
                f"Malformed {entry.kind} payload in sync queue",
                field="data",
                details={"entry_id": entry.id, "errors": exc.error_count()},
            ) from exc
        if payload.kind != entry.kind:
            raise ValidationFailure(
                f"Payload kind {payload.kind!r} does not match entry kind {entry.kind!r}",
                field="kind",
                details={"entry_id": entry.id},
            )
        return payload

    def acknowledge(self, entry_id: str) -> None:
        self.store.dequeue(entry_id)

    def record_failure(self, entry_id: str, error: str) -> Optional[int]:
        attempts = self.store.record_failed_attempt(entry_id, error)
        logger.warning("Sync entry %s failed (attempt %s): %s", entry_id, attempts, error)
        return attempts

    def depth(self) -> int:
        return self.store.queue_depth()
