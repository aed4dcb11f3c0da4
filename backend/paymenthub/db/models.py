from datetime import datetime
from datetime import timezone as tz

from sqlalchemy import Column, DateTime, Enum, Index, Integer, String, Text
from sqlalchemy.orm import declarative_base

from paymenthub.schemas.records import WebhookStatus

Base = declarative_base()


def utc_now():
    return datetime.now(tz.utc)


class WebhookRecordRow(Base):
    __tablename__ = "webhook_records"
    # primary key doubles as the idempotency constraint
    event_id = Column(String(255), primary_key=True)
    status = Column(
        Enum(
            WebhookStatus,
            name="webhook_status",
            values_callable=lambda statuses: [s.value for s in statuses],
        ),
        nullable=False,
        default=WebhookStatus.RECEIVED,
    )
    first_seen_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    last_attempt_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    attempt_count = Column(Integer, nullable=False, default=1)
    last_error = Column(Text, nullable=True)

    __table_args__ = (Index("ix_webhook_records_status", "status"),)
