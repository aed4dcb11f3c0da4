import abc
from typing import Optional

from paymenthub.schemas.records import WebhookRecord, WebhookStatus


class WebhookStorage(abc.ABC):
    """Durable record of webhook deliveries, keyed by event id.

    ``create`` is the idempotency gate: it must be a single atomic
    insert-if-absent that raises AlreadyExistsError for a known event id.
    Backend failures surface as StorageUnavailable. Records are never deleted.
    """

    @abc.abstractmethod
    def find_by_event_id(self, event_id: str) -> Optional[WebhookRecord]: ...

    @abc.abstractmethod
    def create(self, event_id: str) -> WebhookRecord: ...

    @abc.abstractmethod
    def update_status(
        self, event_id: str, status: WebhookStatus, error: Optional[str] = None
    ) -> None: ...

    @abc.abstractmethod
    def record_attempt(self, event_id: str) -> WebhookRecord:
        """Increment ``attempt_count`` for a redelivered event."""

    @abc.abstractmethod
    def stats(self) -> dict[str, int]:
        """Number of records per status value."""
