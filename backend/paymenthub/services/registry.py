import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Optional, Protocol

from paymenthub.schemas.payload import WebhookPayload

logger = logging.getLogger(__name__)

MIN_PRIORITY = 0
MAX_PRIORITY = 100


class WebhookProcessor(Protocol):
    priority: int

    def supports(self, event_type: str) -> bool: ...

    def validate(self, payload: WebhookPayload) -> bool: ...

    def process(self, payload: WebhookPayload) -> bool: ...


@dataclass(frozen=True)
class Registration:
    processor: WebhookProcessor
    supports: Callable[[str], bool]
    priority: int
    sequence: int

    @property
    def name(self) -> str:
        return getattr(self.processor, "name", type(self.processor).__name__)


class ProcessorRegistry:
    """Ordered set of webhook processors.

    Resolution order is descending priority; equal priorities keep their
    registration order.
    """

    def __init__(self) -> None:
        self._entries: list[Registration] = []
        self._sequence = 0

    def register(
        self,
        processor: WebhookProcessor,
        *,
        priority: Optional[int] = None,
        supports: Optional[Callable[[str], bool]] = None,
    ) -> Registration:
        if priority is None:
            priority = processor.priority
        if not MIN_PRIORITY <= priority <= MAX_PRIORITY:
            raise ValueError(
                f"Processor priority must be between {MIN_PRIORITY} and {MAX_PRIORITY}, got {priority}"
            )
        entry = Registration(
            processor=processor,
            supports=supports or processor.supports,
            priority=priority,
            sequence=self._sequence,
        )
        self._sequence += 1
        self._entries.append(entry)
        self._entries.sort(key=lambda e: (-e.priority, e.sequence))
        logger.info(f"Registered webhook processor {entry.name} (priority={priority})")
        return entry

    def unregister(self, processor: WebhookProcessor) -> None:
        self._entries = [e for e in self._entries if e.processor is not processor]

    def resolve_entries(self, event_type: str) -> list[Registration]:
        return [e for e in self._entries if e.supports(event_type)]

    def resolve(self, event_type: str) -> list[WebhookProcessor]:
        return [e.processor for e in self.resolve_entries(event_type)]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Registration]:
        return iter(list(self._entries))
