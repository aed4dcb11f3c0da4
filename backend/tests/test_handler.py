import json
from unittest.mock import MagicMock, Mock

import pytest

from paymenthub.core.errors import (
    AlreadyExistsError,
    FailureReason,
    RecordNotFound,
    StorageUnavailable,
    UnknownGateway,
)
from paymenthub.schemas.events import SubscriptionCancelled
from paymenthub.schemas.payload import utc_now
from paymenthub.schemas.records import WebhookRecord, WebhookStatus
from paymenthub.services.handler import WebhookHandler
from paymenthub.services.processors import PaymentWebhookProcessor, SubscriptionWebhookProcessor
from paymenthub.services.signatures import HmacSignatureValidator, StripeSignatureValidator
from paymenthub.storage.base import WebhookStorage
from paymenthub.storage.memory import InMemoryWebhookStorage


class RecordingProcessor:
    def __init__(self, name, log, priority=50, result=True, valid=True, error=None):
        self.name = name
        self.priority = priority
        self._log = log
        self._result = result
        self._valid = valid
        self._error = error

    def supports(self, event_type):
        return event_type.startswith("payment.")

    def validate(self, payload):
        return self._valid

    def process(self, payload):
        self._log.append(self.name)
        if self._error is not None:
            raise self._error
        return self._result


class SpyStorage(InMemoryWebhookStorage):
    def __init__(self):
        super().__init__()
        self.transitions = []

    def create(self, event_id):
        record = super().create(event_id)
        self.transitions.append(record.status)
        return record

    def update_status(self, event_id, status, error=None):
        super().update_status(event_id, status, error)
        self.transitions.append(status)


def test_subscription_cancelled_scenario(settings, dispatcher, make_body, signed_headers):
    storage = SpyStorage()
    handler = WebhookHandler(settings, storage, dispatcher=dispatcher)
    handler.add_processor(SubscriptionWebhookProcessor(dispatcher))
    cancelled = []
    dispatcher.add_listener("subscription.cancelled", cancelled.append)

    body = make_body(event_id="evt_1", event_type="subscription.cancelled", id="sub_1")
    result = handler.handle(body, signed_headers(body), "fakebank")

    assert result.overall_success is True
    assert result.status is WebhookStatus.PROCESSED
    assert result.http_status == 200
    assert [o.name for o in result.per_processor_results] == ["SubscriptionWebhookProcessor"]
    assert result.per_processor_results[0].priority == 100
    assert len(cancelled) == 1
    assert isinstance(cancelled[0], SubscriptionCancelled)
    assert cancelled[0].transaction_id == "sub_1"
    assert storage.transitions == [
        WebhookStatus.RECEIVED,
        WebhookStatus.PROCESSING,
        WebhookStatus.PROCESSED,
    ]


def test_duplicate_delivery_runs_processors_once(handler, memory_storage, make_body, signed_headers):
    log = []
    handler.add_processor(RecordingProcessor("P", log))
    body = make_body()
    headers = signed_headers(body)

    first = handler.handle(body, headers, "fakebank")
    second = handler.handle(body, headers, "fakebank")

    assert log == ["P"]
    assert first.overall_success and not first.duplicate
    assert second.overall_success and second.duplicate
    assert second.status is WebhookStatus.PROCESSED
    assert second.per_processor_results == []
    assert second.http_status == 200
    assert memory_storage.find_by_event_id("evt_1").attempt_count == 1


def test_processors_run_in_priority_order(handler, make_body, signed_headers):
    log = []
    handler.add_processor(RecordingProcessor("P2", log, priority=50))
    handler.add_processor(RecordingProcessor("P1", log, priority=90))
    body = make_body()

    result = handler.handle(body, signed_headers(body), "fakebank")

    assert log == ["P1", "P2"]
    assert [o.name for o in result.per_processor_results] == ["P1", "P2"]


def test_partial_failure_runs_every_processor(handler, memory_storage, make_body, signed_headers):
    log = []
    handler.add_processor(RecordingProcessor("P1", log, priority=90, error=RuntimeError("gateway down")))
    handler.add_processor(RecordingProcessor("P2", log, priority=50))
    body = make_body()

    result = handler.handle(body, signed_headers(body), "fakebank")

    assert log == ["P1", "P2"]
    p1, p2 = result.per_processor_results
    assert not p1.success and p1.error == "gateway down"
    assert p2.success
    assert result.overall_success is False
    assert result.status is WebhookStatus.FAILED
    assert result.reason is FailureReason.PROCESSING_FAILED
    assert result.http_status == 500
    record = memory_storage.find_by_event_id("evt_1")
    assert record.status is WebhookStatus.FAILED
    assert record.last_error == "P1: gateway down"


def test_failures_are_concatenated(handler, memory_storage, make_body, signed_headers):
    log = []
    handler.add_processor(RecordingProcessor("P1", log, priority=90, result=False))
    handler.add_processor(RecordingProcessor("P2", log, priority=50, error=ValueError()))
    body = make_body()

    handler.handle(body, signed_headers(body), "fakebank")

    assert memory_storage.find_by_event_id("evt_1").last_error == (
        "P1: processing returned false; P2: ValueError"
    )


@pytest.mark.parametrize(
    "headers",
    [
        {},
        {"X-Webhook-Signature": "forged"},
        {"X-Webhook-Signature": HmacSignatureValidator().sign(b"other body", "whsec_test")},
    ],
)
def test_invalid_signature_never_touches_storage(settings, dispatcher, make_body, headers):
    storage = Mock(spec=WebhookStorage)
    handler = WebhookHandler(settings, storage, dispatcher=dispatcher)
    failed = []
    dispatcher.add_listener("webhook.failed", failed.append)

    result = handler.handle(make_body(), headers, "fakebank")

    assert result.overall_success is False
    assert result.reason is FailureReason.INVALID_SIGNATURE
    assert result.http_status == 401
    assert result.event_id is None
    storage.create.assert_not_called()
    assert storage.method_calls == []
    assert [e.reason for e in failed] == ["invalid_signature"]


def test_wrong_secret_is_rejected(handler, make_body, signed_headers):
    body = make_body()
    result = handler.handle(body, signed_headers(body, secret="whsec_other"), "fakebank")
    assert result.reason is FailureReason.INVALID_SIGNATURE


def test_malformed_payload_is_rejected_before_storage(settings, dispatcher, signed_headers):
    storage = Mock(spec=WebhookStorage)
    handler = WebhookHandler(settings, storage, dispatcher=dispatcher)
    body = json.dumps({"type": "payment.completed"}).encode()

    result = handler.handle(body, signed_headers(body), "fakebank")

    assert result.reason is FailureReason.MALFORMED_PAYLOAD
    assert result.http_status == 400
    assert not result.is_retryable
    assert storage.method_calls == []


def test_oversized_payload_is_malformed(handler, signed_headers):
    body = json.dumps({"id": "evt_big", "type": "payment.completed", "data": {"blob": "x" * 70_000}}).encode()
    result = handler.handle(body, signed_headers(body), "fakebank")
    assert result.reason is FailureReason.MALFORMED_PAYLOAD
    assert result.error == "Payload too large"


@pytest.mark.parametrize(
    "client_ip, allowed",
    [
        ("10.1.2.3", True),
        ("192.168.1.7", True),
        ("192.168.1.8", False),
        (None, False),
        ("not-an-ip", False),
    ],
)
def test_source_allowlist(handler, make_body, signed_headers, client_ip, allowed):
    body = make_body()
    result = handler.handle(body, signed_headers(body), "locked", client_ip=client_ip)
    if allowed:
        assert result.overall_success
    else:
        assert result.reason is FailureReason.FORBIDDEN_SOURCE
        assert result.http_status == 403


def test_failed_event_is_retried(handler, memory_storage, make_body, signed_headers):
    log = []
    flaky = RecordingProcessor("Flaky", log, result=False)
    handler.add_processor(flaky)
    body = make_body()
    headers = signed_headers(body)

    assert handler.handle(body, headers, "fakebank").status is WebhookStatus.FAILED

    flaky._result = True
    retry = handler.handle(body, headers, "fakebank")

    assert retry.overall_success
    assert not retry.duplicate
    assert log == ["Flaky", "Flaky"]
    record = memory_storage.find_by_event_id("evt_1")
    assert record.status is WebhookStatus.PROCESSED
    assert record.attempt_count == 2
    assert record.last_error is None


def test_in_flight_event_is_processed_redundantly(handler, memory_storage, make_body, signed_headers):
    log = []
    handler.add_processor(RecordingProcessor("P", log))
    memory_storage.create("evt_1")
    memory_storage.update_status("evt_1", WebhookStatus.PROCESSING)
    body = make_body()

    result = handler.handle(body, signed_headers(body), "fakebank")

    assert result.overall_success
    assert log == ["P"]
    assert memory_storage.find_by_event_id("evt_1").attempt_count == 2


def test_retries_exhausted(handler, memory_storage, make_body, signed_headers):
    log = []
    handler.add_processor(RecordingProcessor("P", log, result=False))
    body = make_body()
    headers = signed_headers(body)

    results = [handler.handle(body, headers, "fakebank") for _ in range(4)]

    # webhook_max_attempts=3 in the test settings
    assert log == ["P", "P", "P"]
    assert [r.reason for r in results] == [FailureReason.PROCESSING_FAILED] * 3 + [
        FailureReason.RETRIES_EXHAUSTED
    ]
    assert results[-1].http_status == 422
    record = memory_storage.find_by_event_id("evt_1")
    assert record.status is WebhookStatus.FAILED
    assert record.last_error == "retries exhausted after 3 attempts"


def test_skipped_processor_is_not_a_failure(handler, make_body, signed_headers):
    log = []
    handler.add_processor(RecordingProcessor("Picky", log, valid=False))
    body = make_body()

    result = handler.handle(body, signed_headers(body), "fakebank")

    assert result.overall_success
    assert log == []
    assert result.per_processor_results[0].skipped


def test_no_processor_still_processed(handler, memory_storage, make_body, signed_headers):
    body = make_body(event_type="unknown.event")
    result = handler.handle(body, signed_headers(body), "fakebank")
    assert result.overall_success
    assert result.per_processor_results == []
    assert memory_storage.find_by_event_id("evt_1").status is WebhookStatus.PROCESSED


def test_storage_unavailable_is_retryable(settings, dispatcher, make_body, signed_headers):
    storage = MagicMock(spec=WebhookStorage)
    storage.create.side_effect = StorageUnavailable("connection refused")
    handler = WebhookHandler(settings, storage, dispatcher=dispatcher)
    log = []
    handler.add_processor(RecordingProcessor("P", log))
    body = make_body()

    result = handler.handle(body, signed_headers(body), "fakebank")

    assert result.reason is FailureReason.STORAGE_UNAVAILABLE
    assert result.http_status == 503
    assert result.is_retryable
    assert result.event_id == "evt_1"
    assert log == []
    storage.update_status.assert_not_called()


def test_lifecycle_events(handler, dispatcher, make_body, signed_headers):
    seen = []
    for name in ("webhook.received", "webhook.processed", "webhook.failed"):
        dispatcher.add_listener(name, seen.append)
    body = make_body()

    handler.handle(body, signed_headers(body), "fakebank")

    received, processed = seen
    assert received.event_name == "webhook.received"
    assert received.payload.event_id == "evt_1"
    assert received.payload.raw_body == body
    assert processed.event_name == "webhook.processed"
    assert processed.event_type == "payment.completed"
    assert processed.duration >= 0


def test_unknown_gateway(handler, make_body):
    with pytest.raises(UnknownGateway):
        handler.handle(make_body(), {}, "nobody")


def test_prefixed_and_stripe_gateways(handler, secret, make_body):
    body = make_body(event_id="evt_hub")
    hub_headers = {"x-hub-signature-256": HmacSignatureValidator(prefix="sha256=").sign(body, secret)}
    assert handler.handle(body, hub_headers, "hub").overall_success

    body = make_body(event_id="evt_stripe")
    stripe_headers = {"Stripe-Signature": StripeSignatureValidator().sign(body, secret)}
    assert handler.handle(body, stripe_headers, "stripe").overall_success
    assert handler.stats() == {"processed": 2}


def test_processor_error_reason_is_recorded(handler, memory_storage, dispatcher, make_body, signed_headers):
    handler.add_processor(PaymentWebhookProcessor(dispatcher))
    body = make_body(id="pay_1", amount="ten")

    result = handler.handle(body, signed_headers(body), "fakebank")

    [outcome] = result.per_processor_results
    assert not outcome.success
    assert outcome.error == "Invalid amount: 'ten'"
    assert memory_storage.find_by_event_id("evt_1").last_error == (
        "PaymentWebhookProcessor: Invalid amount: 'ten'"
    )


def test_hostile_inputs_are_rejected_not_raised(handler, signed_headers):
    header = "t=1" + "0" * 400 + ",v1=" + "0" * 64
    result = handler.handle(b"{}", {"Stripe-Signature": header}, "stripe")
    assert result.reason is FailureReason.INVALID_SIGNATURE

    # under the 64 KiB test limit, deep enough to exhaust the decoder's recursion
    body = b"[" * 60_000
    result = handler.handle(body, signed_headers(body), "fakebank")
    assert result.reason is FailureReason.MALFORMED_PAYLOAD
    assert result.http_status == 400


def test_record_vanishing_mid_flight_is_retryable(settings, dispatcher, make_body, signed_headers):
    storage = MagicMock(spec=WebhookStorage)
    storage.create.side_effect = AlreadyExistsError("evt_1")
    storage.find_by_event_id.return_value = WebhookRecord(
        event_id="evt_1",
        status=WebhookStatus.FAILED,
        first_seen_at=utc_now(),
        last_attempt_at=utc_now(),
    )
    storage.record_attempt.side_effect = RecordNotFound("evt_1")
    handler = WebhookHandler(settings, storage, dispatcher=dispatcher)
    body = make_body()

    result = handler.handle(body, signed_headers(body), "fakebank")

    assert result.reason is FailureReason.STORAGE_UNAVAILABLE
    assert result.http_status == 503
    storage.update_status.assert_not_called()
