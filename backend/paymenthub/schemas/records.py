import enum
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from paymenthub.core.errors import FailureReason


class WebhookStatus(str, enum.Enum):
    RECEIVED = "received"
    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"


class WebhookRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    event_id: str
    status: WebhookStatus
    first_seen_at: datetime
    last_attempt_at: datetime
    attempt_count: int = 1
    last_error: Optional[str] = None


class ProcessorOutcome(BaseModel):
    name: str
    priority: int
    skipped: bool = False
    success: bool = True
    error: Optional[str] = None


# Status codes the transport layer should answer with.
_REASON_HTTP_STATUS = {
    FailureReason.INVALID_SIGNATURE: 401,
    FailureReason.FORBIDDEN_SOURCE: 403,
    FailureReason.MALFORMED_PAYLOAD: 400,
    FailureReason.STORAGE_UNAVAILABLE: 503,
    FailureReason.PROCESSING_FAILED: 500,
    FailureReason.RETRIES_EXHAUSTED: 422,
}


class WebhookResult(BaseModel):
    event_id: Optional[str] = None
    status: WebhookStatus
    overall_success: bool
    per_processor_results: list[ProcessorOutcome] = Field(default_factory=list)
    reason: Optional[FailureReason] = None
    error: Optional[str] = None
    duplicate: bool = False
    duration: float = 0.0

    @property
    def http_status(self) -> int:
        if self.overall_success:
            return 200
        return _REASON_HTTP_STATUS.get(self.reason, 500)

    @property
    def is_retryable(self) -> bool:
        """True when the gateway should redeliver (5xx)."""
        return self.http_status >= 500
