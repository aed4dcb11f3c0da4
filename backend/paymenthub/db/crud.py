from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from paymenthub.db import models
from paymenthub.schemas.records import WebhookStatus


def insert_record(db: Session, event_id: str) -> models.WebhookRecordRow:
    now = models.utc_now()
    row = models.WebhookRecordRow(
        event_id=event_id,
        status=WebhookStatus.RECEIVED,
        first_seen_at=now,
        last_attempt_at=now,
        attempt_count=1,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def get_record(db: Session, event_id: str) -> Optional[models.WebhookRecordRow]:
    return db.get(models.WebhookRecordRow, event_id)


def set_status(
    db: Session, event_id: str, status: WebhookStatus, error: Optional[str] = None
) -> bool:
    result = db.execute(
        update(models.WebhookRecordRow)
        .where(models.WebhookRecordRow.event_id == event_id)
        .values(status=status, last_error=error, last_attempt_at=models.utc_now())
    )
    db.commit()
    return result.rowcount > 0


def increment_attempt(db: Session, event_id: str) -> Optional[models.WebhookRecordRow]:
    # single UPDATE so concurrent redeliveries never lose a count
    result = db.execute(
        update(models.WebhookRecordRow)
        .where(models.WebhookRecordRow.event_id == event_id)
        .values(
            attempt_count=models.WebhookRecordRow.attempt_count + 1,
            last_attempt_at=models.utc_now(),
        )
    )
    db.commit()
    if result.rowcount == 0:
        return None
    row = get_record(db, event_id)
    db.refresh(row)
    return row


def count_by_status(db: Session) -> dict[str, int]:
    rows = db.execute(
        select(models.WebhookRecordRow.status, func.count()).group_by(
            models.WebhookRecordRow.status
        )
    )
    return {status.value: count for status, count in rows}
