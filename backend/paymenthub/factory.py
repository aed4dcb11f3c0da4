import logging
from collections.abc import Iterable
from typing import Optional

import redis

from paymenthub.core.config import Settings, get_settings
from paymenthub.db import models
from paymenthub.db.session import make_engine, make_session_factory
from paymenthub.services.dispatcher import EventDispatcher
from paymenthub.services.handler import WebhookHandler
from paymenthub.services.registry import ProcessorRegistry, WebhookProcessor
from paymenthub.storage.base import WebhookStorage
from paymenthub.storage.memory import InMemoryWebhookStorage
from paymenthub.storage.redis_store import RedisWebhookStorage
from paymenthub.storage.sql import SqlWebhookStorage

logger = logging.getLogger(__name__)


def build_storage(settings: Settings, create_schema: bool = False) -> WebhookStorage:
    """Storage backend selected by ``settings.storage_backend``.

    ``create_schema`` creates the SQL table directly instead of relying on
    the Alembic migration (useful for SQLite and tests).
    """
    backend = settings.storage_backend
    if backend == "memory":
        return InMemoryWebhookStorage()
    if backend == "sql":
        engine = make_engine(settings.database_url)
        if create_schema:
            models.Base.metadata.create_all(engine)
        return SqlWebhookStorage(make_session_factory(engine))
    if backend == "redis":
        client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
        return RedisWebhookStorage(client, key_prefix=settings.redis_key_prefix)
    raise ValueError(f"Unknown storage backend: {backend}")


def build_handler(
    settings: Optional[Settings] = None,
    processors: Iterable[WebhookProcessor] = (),
    dispatcher: Optional[EventDispatcher] = None,
    storage: Optional[WebhookStorage] = None,
) -> WebhookHandler:
    settings = settings or get_settings()
    registry = ProcessorRegistry()
    for processor in processors:
        registry.register(processor)
    handler = WebhookHandler(
        settings=settings,
        storage=storage if storage is not None else build_storage(settings),
        registry=registry,
        dispatcher=dispatcher,
    )
    logger.info(
        f"Webhook handler ready: backend={settings.storage_backend} "
        f"gateways={sorted(settings.gateways)} processors={len(registry)}"
    )
    return handler
