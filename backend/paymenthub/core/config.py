from functools import lru_cache

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings

from paymenthub.core.errors import UnknownGateway

SIGNATURE_SCHEMES = (
    "hmac-sha256-hex",
    "hmac-sha256-base64",
    "hmac-sha1-hex",
    "hmac-sha512-hex",
    "stripe",
)


class GatewayConfig(BaseModel):
    """Per-gateway webhook settings: secret, header layout and signing scheme."""

    secret: str
    signature_header: str = "X-Webhook-Signature"
    scheme: str = "hmac-sha256-hex"
    signature_prefix: str = ""
    delivery_id_header: str = "X-Webhook-Delivery"
    tolerance_seconds: int = 300
    allowed_ips: list[str] = Field(default_factory=list)

    @field_validator("scheme")
    @classmethod
    def _known_scheme(cls, value: str) -> str:
        if value not in SIGNATURE_SCHEMES:
            raise ValueError(f"unknown signature scheme: {value}")
        return value


class Settings(BaseSettings):
    database_url: str = "sqlite:///./webhooks.db"
    redis_url: str = "redis://localhost:6379/0"
    redis_key_prefix: str = "webhook:record"
    storage_backend: str = "memory"  # memory, sql, redis
    webhook_max_attempts: int = 5
    webhook_max_payload_bytes: int = 1_048_576  # 1 MiB
    gateways: dict[str, GatewayConfig] = Field(default_factory=dict)

    model_config = {"env_file": ".env", "extra": "ignore"}

    def gateway(self, name: str) -> GatewayConfig:
        try:
            return self.gateways[name]
        except KeyError:
            raise UnknownGateway(name) from None


@lru_cache
def get_settings() -> Settings:
    return Settings()
