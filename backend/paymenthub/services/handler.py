"""Webhook ingestion pipeline.

One ``handle`` call per inbound delivery walks the states

    RECEIVED -> AUTHENTICATING -> PARSING -> DEDUPING -> PROCESSING -> PROCESSED | FAILED

Authentication and parse failures end the call before any storage write.
Storage failures abort the call with a retryable result. Processor failures
are isolated: every resolved processor runs and their outcomes are
aggregated into the final status.
"""

import ipaddress
import logging
import time
from collections.abc import Mapping
from typing import Optional

from paymenthub.core.config import GatewayConfig, Settings
from paymenthub.core.errors import (
    AlreadyExistsError,
    FailureReason,
    ParseError,
    ProcessorError,
    RecordNotFound,
    StorageUnavailable,
)
from paymenthub.schemas.events import WebhookFailed, WebhookProcessed, WebhookReceived
from paymenthub.schemas.payload import WebhookPayload
from paymenthub.schemas.records import (
    ProcessorOutcome,
    WebhookRecord,
    WebhookResult,
    WebhookStatus,
)
from paymenthub.services.dispatcher import EventDispatcher
from paymenthub.services.registry import ProcessorRegistry, Registration, WebhookProcessor
from paymenthub.services.signatures import SignatureValidator, build_validator
from paymenthub.storage.base import WebhookStorage

logger = logging.getLogger(__name__)


def _ip_allowed(client_ip: Optional[str], allowed: list[str]) -> bool:
    if not allowed:
        return True
    if not client_ip:
        return False
    try:
        address = ipaddress.ip_address(client_ip)
    except ValueError:
        return False
    for entry in allowed:
        try:
            if address in ipaddress.ip_network(entry, strict=False):
                return True
        except ValueError:
            logger.warning(f"Ignoring invalid allowed_ips entry: {entry}")
    return False


class WebhookHandler:
    def __init__(
        self,
        settings: Settings,
        storage: WebhookStorage,
        registry: Optional[ProcessorRegistry] = None,
        dispatcher: Optional[EventDispatcher] = None,
    ):
        self.settings = settings
        self.storage = storage
        self.registry = registry if registry is not None else ProcessorRegistry()
        self.dispatcher = dispatcher if dispatcher is not None else EventDispatcher()
        self._validators: dict[str, SignatureValidator] = {}

    def add_processor(self, processor: WebhookProcessor, **kwargs) -> "WebhookHandler":
        self.registry.register(processor, **kwargs)
        return self

    def stats(self) -> dict[str, int]:
        return self.storage.stats()

    def validator_for(self, gateway: str) -> SignatureValidator:
        if gateway not in self._validators:
            self._validators[gateway] = build_validator(self.settings.gateway(gateway))
        return self._validators[gateway]

    def handle(
        self,
        raw_body: bytes,
        headers: Mapping[str, str],
        gateway: str,
        client_ip: Optional[str] = None,
    ) -> WebhookResult:
        """Run one delivery through the pipeline.

        Raises UnknownGateway when ``gateway`` has no configuration; every
        other failure is reported through the returned WebhookResult.
        """
        started = time.monotonic()
        config = self.settings.gateway(gateway)

        # AUTHENTICATING
        if not _ip_allowed(client_ip, config.allowed_ips):
            logger.warning(f"Webhook from unauthorized source {client_ip} for {gateway}")
            return self._reject(FailureReason.FORBIDDEN_SOURCE, started)
        signature = self._header(headers, config.signature_header)
        if not self.validator_for(gateway).verify(raw_body, signature, config.secret):
            logger.warning(f"Webhook signature validation failed for {gateway}")
            return self._reject(FailureReason.INVALID_SIGNATURE, started)

        # PARSING
        try:
            payload = self._parse(raw_body, headers, gateway, config)
        except ParseError as e:
            logger.warning(f"Malformed webhook payload from {gateway}: {e}")
            return self._reject(FailureReason.MALFORMED_PAYLOAD, started, error=str(e))

        logger.info(
            f"Webhook received: id={payload.event_id} type={payload.event_type} "
            f"delivery={payload.delivery_id} gateway={gateway}"
        )
        self.dispatcher.dispatch(WebhookReceived(payload=payload))

        try:
            # DEDUPING
            record = self._claim(payload.event_id)
            if record.status is WebhookStatus.PROCESSED:
                logger.info(f"Webhook already processed (idempotent): {payload.event_id}")
                return WebhookResult(
                    event_id=payload.event_id,
                    status=WebhookStatus.PROCESSED,
                    overall_success=True,
                    duplicate=True,
                    duration=time.monotonic() - started,
                )
            if record.attempt_count > self.settings.webhook_max_attempts:
                error = f"retries exhausted after {record.attempt_count - 1} attempts"
                self.storage.update_status(payload.event_id, WebhookStatus.FAILED, error)
                logger.error(f"Webhook {payload.event_id}: {error}")
                return self._fail(payload, FailureReason.RETRIES_EXHAUSTED, started, error=error)

            # PROCESSING
            self.storage.update_status(payload.event_id, WebhookStatus.PROCESSING)
            outcomes = self._run_processors(payload)
            errors = [f"{o.name}: {o.error}" for o in outcomes if not o.success]
            if errors:
                error = "; ".join(errors)
                self.storage.update_status(payload.event_id, WebhookStatus.FAILED, error)
            else:
                self.storage.update_status(payload.event_id, WebhookStatus.PROCESSED)
        except (StorageUnavailable, RecordNotFound) as e:
            # a record removed mid-flight is recreated by the redelivery
            logger.error(f"Webhook storage unavailable for {payload.event_id}: {e}")
            return self._fail(payload, FailureReason.STORAGE_UNAVAILABLE, started, error=str(e))

        if errors:
            logger.error(f"Webhook processing failed: id={payload.event_id} errors={error}")
            return self._fail(
                payload, FailureReason.PROCESSING_FAILED, started, error=error, outcomes=outcomes
            )

        duration = time.monotonic() - started
        logger.info(f"Webhook processed successfully: id={payload.event_id} duration={duration:.4f}s")
        self.dispatcher.dispatch(
            WebhookProcessed(
                event_id=payload.event_id, event_type=payload.event_type, duration=duration
            )
        )
        return WebhookResult(
            event_id=payload.event_id,
            status=WebhookStatus.PROCESSED,
            overall_success=True,
            per_processor_results=outcomes,
            duration=duration,
        )

    def _parse(
        self,
        raw_body: bytes,
        headers: Mapping[str, str],
        gateway: str,
        config: GatewayConfig,
    ) -> WebhookPayload:
        if len(raw_body) > self.settings.webhook_max_payload_bytes:
            raise ParseError("Payload too large")
        return WebhookPayload.parse(
            raw_body,
            headers,
            gateway=gateway,
            signature_header=config.signature_header,
            delivery_id_header=config.delivery_id_header,
        )

    def _claim(self, event_id: str) -> WebhookRecord:
        """Create the record, or register another attempt on an existing one."""
        try:
            return self.storage.create(event_id)
        except AlreadyExistsError:
            pass
        existing = self.storage.find_by_event_id(event_id)
        if existing is None:
            raise StorageUnavailable(f"Record {event_id} vanished after create conflict")
        if existing.status is WebhookStatus.PROCESSED:
            return existing
        logger.info(
            f"Retrying webhook {event_id} (status={existing.status.value}, "
            f"attempts={existing.attempt_count})"
        )
        return self.storage.record_attempt(event_id)

    def _run_processors(self, payload: WebhookPayload) -> list[ProcessorOutcome]:
        entries = self.registry.resolve_entries(payload.event_type)
        if not entries:
            logger.warning(
                f"No processor found for webhook type {payload.event_type} ({payload.event_id})"
            )
        return [self._run_processor(entry, payload) for entry in entries]

    def _run_processor(self, entry: Registration, payload: WebhookPayload) -> ProcessorOutcome:
        outcome = ProcessorOutcome(name=entry.name, priority=entry.priority)
        try:
            if not entry.processor.validate(payload):
                logger.info(f"Processor {entry.name} skipped webhook {payload.event_id}")
                outcome.skipped = True
                return outcome
            if not entry.processor.process(payload):
                outcome.success = False
                outcome.error = "processing returned false"
        except ProcessorError as e:
            logger.warning(f"Processor {entry.name} rejected webhook {payload.event_id}: {e.reason}")
            outcome.success = False
            outcome.error = e.reason
        except Exception as e:
            logger.error(
                f"Processor {entry.name} raised for webhook {payload.event_id}", exc_info=True
            )
            outcome.success = False
            outcome.error = str(e) or type(e).__name__
        return outcome

    def _reject(
        self, reason: FailureReason, started: float, error: Optional[str] = None
    ) -> WebhookResult:
        self.dispatcher.dispatch(WebhookFailed(reason=reason.value, error=error))
        return WebhookResult(
            status=WebhookStatus.FAILED,
            overall_success=False,
            reason=reason,
            error=error,
            duration=time.monotonic() - started,
        )

    def _fail(
        self,
        payload: WebhookPayload,
        reason: FailureReason,
        started: float,
        error: Optional[str] = None,
        outcomes: Optional[list[ProcessorOutcome]] = None,
    ) -> WebhookResult:
        self.dispatcher.dispatch(
            WebhookFailed(
                event_id=payload.event_id,
                event_type=payload.event_type,
                reason=reason.value,
                error=error,
            )
        )
        return WebhookResult(
            event_id=payload.event_id,
            status=WebhookStatus.FAILED,
            overall_success=False,
            per_processor_results=outcomes or [],
            reason=reason,
            error=error,
            duration=time.monotonic() - started,
        )

    @staticmethod
    def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
        wanted = name.lower()
        for key, value in headers.items():
            if key.lower() == wanted:
                return value
        return None
