import threading
from collections import Counter
from typing import Optional

from paymenthub.core.errors import AlreadyExistsError, RecordNotFound
from paymenthub.schemas.payload import utc_now
from paymenthub.schemas.records import WebhookRecord, WebhookStatus
from paymenthub.storage.base import WebhookStorage


class InMemoryWebhookStorage(WebhookStorage):
    """Process-local storage for development and tests."""

    def __init__(self) -> None:
        self._records: dict[str, WebhookRecord] = {}
        self._lock = threading.Lock()

    def find_by_event_id(self, event_id: str) -> Optional[WebhookRecord]:
        with self._lock:
            record = self._records.get(event_id)
            return record.model_copy() if record else None

    def create(self, event_id: str) -> WebhookRecord:
        now = utc_now()
        with self._lock:
            if event_id in self._records:
                raise AlreadyExistsError(event_id)
            record = WebhookRecord(
                event_id=event_id,
                status=WebhookStatus.RECEIVED,
                first_seen_at=now,
                last_attempt_at=now,
            )
            self._records[event_id] = record
            return record.model_copy()

    def update_status(
        self, event_id: str, status: WebhookStatus, error: Optional[str] = None
    ) -> None:
        with self._lock:
            record = self._get(event_id)
            record.status = status
            record.last_error = error
            record.last_attempt_at = utc_now()

    def record_attempt(self, event_id: str) -> WebhookRecord:
        with self._lock:
            record = self._get(event_id)
            record.attempt_count += 1
            record.last_attempt_at = utc_now()
            return record.model_copy()

    def stats(self) -> dict[str, int]:
        with self._lock:
            return dict(Counter(r.status.value for r in self._records.values()))

    def _get(self, event_id: str) -> WebhookRecord:
        try:
            return self._records[event_id]
        except KeyError:
            raise RecordNotFound(event_id) from None
