import enum


class FailureReason(str, enum.Enum):
    INVALID_SIGNATURE = "invalid_signature"
    FORBIDDEN_SOURCE = "forbidden_source"
    MALFORMED_PAYLOAD = "malformed_payload"
    STORAGE_UNAVAILABLE = "storage_unavailable"
    PROCESSING_FAILED = "processing_failed"
    RETRIES_EXHAUSTED = "retries_exhausted"


class WebhookError(Exception):
    pass


class ParseError(WebhookError):
    """Raised when a webhook body is not a well-formed event document."""


class AlreadyExistsError(WebhookError):
    def __init__(self, event_id: str):
        super().__init__(f"Webhook record already exists: {event_id}")
        self.event_id = event_id


class RecordNotFound(WebhookError):
    def __init__(self, event_id: str):
        super().__init__(f"Webhook record not found: {event_id}")
        self.event_id = event_id


class StorageUnavailable(WebhookError):
    """Transient failure of the storage backend. Callers should retry."""


class ProcessorError(WebhookError):
    def __init__(self, processor: str, reason: str):
        super().__init__(f"{processor}: {reason}")
        self.processor = processor
        self.reason = reason


class UnknownGateway(WebhookError):
    def __init__(self, name: str):
        super().__init__(f"No webhook configuration for gateway: {name}")
        self.name = name
