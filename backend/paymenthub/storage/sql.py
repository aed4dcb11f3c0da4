import contextlib
import logging
from collections.abc import Iterator
from typing import Optional

import sqlalchemy.exc
from sqlalchemy.orm import Session, sessionmaker

from paymenthub.core.errors import AlreadyExistsError, RecordNotFound, StorageUnavailable
from paymenthub.db import crud
from paymenthub.schemas.records import WebhookRecord, WebhookStatus
from paymenthub.storage.base import WebhookStorage

logger = logging.getLogger(__name__)


class SqlWebhookStorage(WebhookStorage):
    """Relational storage; the ``event_id`` primary key makes ``create`` atomic."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def find_by_event_id(self, event_id: str) -> Optional[WebhookRecord]:
        with self._session() as db:
            row = crud.get_record(db, event_id)
            return WebhookRecord.model_validate(row) if row else None

    def create(self, event_id: str) -> WebhookRecord:
        with self._session() as db:
            try:
                row = crud.insert_record(db, event_id)
            except sqlalchemy.exc.IntegrityError:
                db.rollback()
                raise AlreadyExistsError(event_id) from None
            return WebhookRecord.model_validate(row)

    def update_status(
        self, event_id: str, status: WebhookStatus, error: Optional[str] = None
    ) -> None:
        with self._session() as db:
            if not crud.set_status(db, event_id, status, error):
                raise RecordNotFound(event_id)

    def record_attempt(self, event_id: str) -> WebhookRecord:
        with self._session() as db:
            row = crud.increment_attempt(db, event_id)
            if row is None:
                raise RecordNotFound(event_id)
            return WebhookRecord.model_validate(row)

    def stats(self) -> dict[str, int]:
        with self._session() as db:
            return crud.count_by_status(db)

    @contextlib.contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        except sqlalchemy.exc.SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Database error: {e}")
            raise StorageUnavailable(f"Database error: {e}") from e
        finally:
            db.close()
