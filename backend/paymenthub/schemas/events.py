"""Events published on the in-process EventDispatcher.

Domain events (payment / subscription) are produced by webhook processors.
Pipeline events (``webhook.*``) are produced by the WebhookHandler itself.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, ClassVar, Optional

from pydantic import BaseModel, ConfigDict, Field

from paymenthub.schemas.enums import PaymentMethod, PaymentStatus
from paymenthub.schemas.payload import WebhookPayload, utc_now


class Event(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_name: ClassVar[str] = "event"

    timestamp: datetime = Field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {"event": self.event_name, **self.model_dump(mode="json")}


class PaymentEvent(Event):
    transaction_id: str
    amount: Decimal
    currency: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class PaymentCreated(PaymentEvent):
    event_name: ClassVar[str] = "payment.created"

    method: PaymentMethod


class PaymentCompleted(PaymentEvent):
    event_name: ClassVar[str] = "payment.completed"

    status: PaymentStatus = PaymentStatus.COMPLETED


class PaymentFailed(PaymentEvent):
    event_name: ClassVar[str] = "payment.failed"

    status: PaymentStatus = PaymentStatus.FAILED
    reason: str = ""


class PaymentRefunded(PaymentEvent):
    event_name: ClassVar[str] = "payment.refunded"

    refund_id: str
    reason: str = ""


class SubscriptionEvent(PaymentEvent):
    """``transaction_id`` carries the gateway's subscription id."""

    status: str
    plan_id: Optional[str] = None


class SubscriptionCreated(SubscriptionEvent):
    event_name: ClassVar[str] = "subscription.created"


class SubscriptionCancelled(SubscriptionEvent):
    event_name: ClassVar[str] = "subscription.cancelled"


class SubscriptionRenewed(SubscriptionEvent):
    event_name: ClassVar[str] = "subscription.renewed"


class WebhookReceived(Event):
    event_name: ClassVar[str] = "webhook.received"

    payload: WebhookPayload


class WebhookProcessed(Event):
    event_name: ClassVar[str] = "webhook.processed"

    event_id: str
    event_type: str
    duration: float


class WebhookFailed(Event):
    event_name: ClassVar[str] = "webhook.failed"

    event_id: Optional[str] = None
    event_type: Optional[str] = None
    reason: str
    error: Optional[str] = None
