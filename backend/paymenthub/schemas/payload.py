import json
import re
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from paymenthub.core.errors import ParseError

_MISSING = object()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class WebhookPayload(BaseModel):
    """One inbound notification, as received.

    ``raw_body`` holds the exact bytes that were signed and is never rewritten.
    ``data`` is kept as the gateway sent it; processors interpret it.
    """

    model_config = ConfigDict(frozen=True)

    event_type: str
    event_id: str
    delivery_id: str
    raw_body: bytes = Field(repr=False)
    signature_header: str = ""
    received_at: datetime = Field(default_factory=utc_now)
    gateway: Optional[str] = None
    headers: dict[str, str] = Field(default_factory=dict, repr=False)
    data: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def parse(
        cls,
        raw_body: bytes,
        headers: Mapping[str, str],
        *,
        gateway: Optional[str] = None,
        signature_header: str = "X-Webhook-Signature",
        delivery_id_header: str = "X-Webhook-Delivery",
    ) -> "WebhookPayload":
        """Build a payload from a request body and its headers.

        Raises ParseError when the body is not a JSON object or lacks
        ``id`` / ``type``.
        """
        try:
            document = json.loads(raw_body)
        except ValueError as exc:
            raise ParseError(f"Invalid JSON payload: {exc}") from exc
        except RecursionError:
            raise ParseError("Invalid JSON payload: nesting too deep") from None
        if not isinstance(document, dict):
            raise ParseError("Webhook payload must be a JSON object")

        event_id = document.get("id")
        if isinstance(event_id, bool) or not isinstance(event_id, (str, int)) or event_id == "":
            raise ParseError('Webhook payload must contain an "id" field')
        event_type = document.get("type") or document.get("event")
        if not isinstance(event_type, str) or not event_type:
            raise ParseError('Webhook payload must contain a "type" field')

        data = document.get("data", document)
        if not isinstance(data, dict):
            raise ParseError('Webhook "data" field must be a JSON object')

        lowered = {str(k).lower(): str(v) for k, v in headers.items()}
        return cls(
            event_type=event_type,
            event_id=str(event_id),
            delivery_id=lowered.get(delivery_id_header.lower()) or str(event_id),
            raw_body=bytes(raw_body),
            signature_header=lowered.get(signature_header.lower(), ""),
            gateway=gateway,
            headers=lowered,
            data=data,
        )

    def get(self, key: str, default: Any = None) -> Any:
        """Dot-notation lookup into ``data``, e.g. ``payload.get("customer.email")``."""
        value: Any = self.data
        for part in key.split("."):
            if not isinstance(value, dict):
                return default
            value = value.get(part, _MISSING)
            if value is _MISSING:
                return default
        return value

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(name.lower(), default)

    def is_type(self, event_type: str) -> bool:
        return self.event_type == event_type

    def matches_type(self, pattern: str) -> bool:
        # only "*" is a wildcard
        regex = re.escape(pattern).replace(r"\*", ".*")
        return re.fullmatch(regex, self.event_type) is not None

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude={"raw_body"})

    def __str__(self) -> str:
        return f"Webhook[id={self.event_id}, type={self.event_type}, gateway={self.gateway or 'unknown'}]"
