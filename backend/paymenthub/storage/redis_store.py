"""Redis storage: one hash per event id.

Key pattern: ``{prefix}:{event_id}``. Writes run inside WATCH/MULTI
transactions so ``create`` is an atomic insert-if-absent and updates never
resurrect a missing record. The client must be built with
``decode_responses=True``.
"""

import logging
from collections import Counter
from typing import Optional

import redis

from paymenthub.core.errors import AlreadyExistsError, RecordNotFound, StorageUnavailable
from paymenthub.schemas.payload import utc_now
from paymenthub.schemas.records import WebhookRecord, WebhookStatus
from paymenthub.storage.base import WebhookStorage

logger = logging.getLogger(__name__)


class RedisWebhookStorage(WebhookStorage):
    def __init__(self, client: redis.Redis, key_prefix: str = "webhook:record"):
        self._client = client
        self._prefix = key_prefix

    def _key(self, event_id: str) -> str:
        return f"{self._prefix}:{event_id}"

    def find_by_event_id(self, event_id: str) -> Optional[WebhookRecord]:
        try:
            fields = self._client.hgetall(self._key(event_id))
        except redis.exceptions.RedisError as e:
            raise StorageUnavailable(f"Redis unavailable: {e}") from e
        return self._to_record(fields) if fields else None

    def create(self, event_id: str) -> WebhookRecord:
        key = self._key(event_id)
        now = utc_now().isoformat()
        mapping = {
            "event_id": event_id,
            "status": WebhookStatus.RECEIVED.value,
            "first_seen_at": now,
            "last_attempt_at": now,
            "attempt_count": 1,
        }

        def _create(pipe: redis.client.Pipeline) -> None:
            if pipe.exists(key):
                raise AlreadyExistsError(event_id)
            pipe.multi()
            pipe.hset(key, mapping=mapping)

        self._transaction(_create, key)
        return self._to_record(mapping)

    def update_status(
        self, event_id: str, status: WebhookStatus, error: Optional[str] = None
    ) -> None:
        key = self._key(event_id)

        def _update(pipe: redis.client.Pipeline) -> None:
            if not pipe.exists(key):
                raise RecordNotFound(event_id)
            pipe.multi()
            pipe.hset(
                key,
                mapping={"status": status.value, "last_attempt_at": utc_now().isoformat()},
            )
            if error is None:
                pipe.hdel(key, "last_error")
            else:
                pipe.hset(key, "last_error", error)

        self._transaction(_update, key)

    def record_attempt(self, event_id: str) -> WebhookRecord:
        key = self._key(event_id)

        def _bump(pipe: redis.client.Pipeline) -> None:
            if not pipe.exists(key):
                raise RecordNotFound(event_id)
            pipe.multi()
            pipe.hincrby(key, "attempt_count", 1)
            pipe.hset(key, "last_attempt_at", utc_now().isoformat())
            pipe.hgetall(key)

        # read back inside MULTI so a concurrent bump cannot leak into this result
        _, _, fields = self._transaction(_bump, key)
        return self._to_record(fields)

    def stats(self) -> dict[str, int]:
        try:
            counts = Counter(
                self._client.hget(key, "status")
                for key in self._client.scan_iter(match=f"{self._prefix}:*")
            )
        except redis.exceptions.RedisError as e:
            raise StorageUnavailable(f"Redis unavailable: {e}") from e
        counts.pop(None, None)
        return dict(counts)

    def _transaction(self, func, key: str) -> list:
        try:
            return self._client.transaction(func, key)
        except redis.exceptions.RedisError as e:
            logger.warning(f"Redis transaction failed for {key}", exc_info=True)
            raise StorageUnavailable(f"Redis unavailable: {e}") from e

    @staticmethod
    def _to_record(fields: dict) -> WebhookRecord:
        return WebhookRecord(
            event_id=fields["event_id"],
            status=WebhookStatus(fields["status"]),
            first_seen_at=fields["first_seen_at"],
            last_attempt_at=fields["last_attempt_at"],
            attempt_count=int(fields["attempt_count"]),
            last_error=fields.get("last_error"),
        )
