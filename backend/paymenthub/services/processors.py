"""Built-in webhook processors.

Each processor turns a gateway notification into domain events on the
shared EventDispatcher and then calls the matching optional callback.
"""

import abc
import logging
from collections.abc import Callable
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from paymenthub.core.errors import ProcessorError
from paymenthub.schemas.enums import PaymentMethod, PaymentStatus
from paymenthub.schemas.events import (
    Event,
    PaymentCompleted,
    PaymentCreated,
    PaymentFailed,
    PaymentRefunded,
    SubscriptionCancelled,
    SubscriptionCreated,
    SubscriptionRenewed,
)
from paymenthub.schemas.payload import WebhookPayload
from paymenthub.services.dispatcher import EventDispatcher

logger = logging.getLogger(__name__)

Callback = Callable[[Any], None]

DEFAULT_CURRENCY = "BRL"


def _amount(data: dict[str, Any]) -> Decimal:
    try:
        return Decimal(str(data.get("amount", 0)))
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {data.get('amount')!r}") from None


def _currency(data: dict[str, Any]) -> str:
    return str(data.get("currency") or DEFAULT_CURRENCY).upper()


def _metadata(data: dict[str, Any]) -> dict[str, Any]:
    metadata = data.get("metadata")
    return dict(metadata) if isinstance(metadata, dict) else {}


class BaseWebhookProcessor(abc.ABC):
    event_types: tuple[str, ...] = ()
    priority: int = 50

    def __init__(self, dispatcher: EventDispatcher, *, priority: Optional[int] = None):
        self.dispatcher = dispatcher
        if priority is not None:
            self.priority = priority
        self._callbacks: dict[str, Optional[Callback]] = {}

    @property
    def name(self) -> str:
        return type(self).__name__

    def supports(self, event_type: str) -> bool:
        return event_type in self.event_types

    def validate(self, payload: WebhookPayload) -> bool:
        return payload.has("id")

    def process(self, payload: WebhookPayload) -> bool:
        try:
            event = self.build_event(payload)
        except ValueError as e:
            raise ProcessorError(self.name, str(e)) from e
        self.dispatcher.dispatch(event)
        logger.info(f"{self.name} dispatched {event.event_name} for webhook {payload.event_id}")
        callback = self._callbacks.get(payload.event_type)
        if callback is not None:
            callback(event)
        return True

    @abc.abstractmethod
    def build_event(self, payload: WebhookPayload) -> Event:
        """Map a webhook to the domain event it announces."""


class PaymentWebhookProcessor(BaseWebhookProcessor):
    event_types = ("payment.created", "payment.completed", "payment.failed")

    def __init__(
        self,
        dispatcher: EventDispatcher,
        *,
        on_created: Optional[Callback] = None,
        on_completed: Optional[Callback] = None,
        on_failed: Optional[Callback] = None,
        priority: Optional[int] = None,
    ):
        super().__init__(dispatcher, priority=priority)
        self._callbacks = {
            "payment.created": on_created,
            "payment.completed": on_completed,
            "payment.failed": on_failed,
        }

    def build_event(self, payload: WebhookPayload) -> Event:
        data = payload.data
        common = {
            "transaction_id": str(data["id"]),
            "amount": _amount(data),
            "currency": _currency(data),
            "metadata": _metadata(data),
        }
        if payload.is_type("payment.created"):
            if not payload.has("method"):
                raise ProcessorError(self.name, "Missing payment method")
            return PaymentCreated(method=PaymentMethod.from_string(str(data["method"])), **common)
        if payload.is_type("payment.completed"):
            status = PaymentStatus.from_string(str(data.get("status", "completed")))
            return PaymentCompleted(status=status, **common)
        status = PaymentStatus.from_string(str(data.get("status", "failed")))
        reason = str(data.get("failure_reason") or data.get("reason") or "")
        return PaymentFailed(status=status, reason=reason, **common)


class RefundWebhookProcessor(BaseWebhookProcessor):
    event_types = ("refund.completed",)

    def __init__(
        self,
        dispatcher: EventDispatcher,
        *,
        on_completed: Optional[Callback] = None,
        priority: Optional[int] = None,
    ):
        super().__init__(dispatcher, priority=priority)
        self._callbacks = {"refund.completed": on_completed}

    def validate(self, payload: WebhookPayload) -> bool:
        return payload.has("id") and payload.has("payment_id")

    def build_event(self, payload: WebhookPayload) -> Event:
        data = payload.data
        return PaymentRefunded(
            transaction_id=str(data["payment_id"]),
            refund_id=str(data["id"]),
            amount=_amount(data),
            currency=_currency(data),
            reason=str(data.get("reason") or ""),
            metadata=_metadata(data),
        )


class SubscriptionWebhookProcessor(BaseWebhookProcessor):
    event_types = (
        "subscription.created",
        "subscription.cancelled",
        "subscription.renewed",
    )
    priority = 100

    _EVENTS = {
        "subscription.created": (SubscriptionCreated, "active"),
        "subscription.cancelled": (SubscriptionCancelled, "cancelled"),
        "subscription.renewed": (SubscriptionRenewed, "active"),
    }

    def __init__(
        self,
        dispatcher: EventDispatcher,
        *,
        on_created: Optional[Callback] = None,
        on_cancelled: Optional[Callback] = None,
        on_renewed: Optional[Callback] = None,
        priority: Optional[int] = None,
    ):
        super().__init__(dispatcher, priority=priority)
        self._callbacks = {
            "subscription.created": on_created,
            "subscription.cancelled": on_cancelled,
            "subscription.renewed": on_renewed,
        }

    def build_event(self, payload: WebhookPayload) -> Event:
        data = payload.data
        event_cls, default_status = self._EVENTS[payload.event_type]
        plan_id = data.get("plan_id")
        return event_cls(
            transaction_id=str(data["id"]),
            amount=_amount(data),
            currency=_currency(data),
            status=str(data.get("status") or default_status),
            plan_id=str(plan_id) if plan_id is not None else None,
            metadata=_metadata(data),
        )
