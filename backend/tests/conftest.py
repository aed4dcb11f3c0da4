import json
import logging
from typing import Iterator

import fakeredis
import pytest

from paymenthub.core.config import GatewayConfig, Settings
from paymenthub.db import models
from paymenthub.db.session import make_engine, make_session_factory
from paymenthub.services.dispatcher import EventDispatcher
from paymenthub.services.handler import WebhookHandler
from paymenthub.services.signatures import HmacSignatureValidator
from paymenthub.storage.memory import InMemoryWebhookStorage
from paymenthub.storage.redis_store import RedisWebhookStorage
from paymenthub.storage.sql import SqlWebhookStorage

logger = logging.getLogger(__name__)

SECRET = "whsec_test"


@pytest.fixture
def secret() -> str:
    return SECRET


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        storage_backend="memory",
        webhook_max_attempts=3,
        webhook_max_payload_bytes=64 * 1024,
        gateways={
            "fakebank": GatewayConfig(secret=SECRET),
            "hub": GatewayConfig(
                secret=SECRET,
                signature_header="X-Hub-Signature-256",
                signature_prefix="sha256=",
            ),
            "stripe": GatewayConfig(
                secret=SECRET, scheme="stripe", signature_header="Stripe-Signature"
            ),
            "locked": GatewayConfig(secret=SECRET, allowed_ips=["10.0.0.0/8", "192.168.1.7"]),
        },
    )


@pytest.fixture
def dispatcher() -> EventDispatcher:
    return EventDispatcher()


@pytest.fixture
def memory_storage() -> InMemoryWebhookStorage:
    return InMemoryWebhookStorage()


@pytest.fixture
def sql_storage() -> Iterator[SqlWebhookStorage]:
    engine = make_engine("sqlite://")
    models.Base.metadata.create_all(engine)
    yield SqlWebhookStorage(make_session_factory(engine))
    models.Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def redis_client() -> Iterator[fakeredis.FakeRedis]:
    client = fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    client.flushall()


@pytest.fixture
def redis_storage(redis_client) -> RedisWebhookStorage:
    return RedisWebhookStorage(redis_client, key_prefix="test:webhook")


@pytest.fixture(params=["memory", "sql", "redis"])
def storage(request):
    """Every storage backend, so the contract is checked once per adapter."""
    return request.getfixturevalue(f"{request.param}_storage")


@pytest.fixture
def handler(settings, memory_storage, dispatcher) -> WebhookHandler:
    return WebhookHandler(settings, memory_storage, dispatcher=dispatcher)


@pytest.fixture
def make_body():
    def _make(event_id="evt_1", event_type="payment.completed", **data) -> bytes:
        document = {"id": event_id, "type": event_type, "data": data}
        return json.dumps(document).encode("utf-8")

    return _make


@pytest.fixture
def signed_headers():
    """Headers for the default ``fakebank`` gateway (hex HMAC-SHA256)."""

    def _headers(body: bytes, secret: str = SECRET, **extra) -> dict[str, str]:
        signature = HmacSignatureValidator().sign(body, secret)
        logger.info(f"Test signature: {signature}")
        return {"X-Webhook-Signature": signature, "Content-Type": "application/json", **extra}

    return _headers
