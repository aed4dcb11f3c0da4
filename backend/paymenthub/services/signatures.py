"""Webhook signature verification strategies.

Every strategy exposes ``verify(raw_body, signature_header, secret) -> bool``.
Verification never raises on bad input: malformed or missing headers, empty
secrets and stale timestamps all return False. Digests are compared with
``hmac.compare_digest``.
"""

import base64
import hashlib
import hmac
import logging
import time
from typing import Optional, Protocol

from paymenthub.core.config import SIGNATURE_SCHEMES, GatewayConfig

logger = logging.getLogger(__name__)

_DIGESTS = {
    "sha1": hashlib.sha1,
    "sha256": hashlib.sha256,
    "sha512": hashlib.sha512,
}


class SignatureValidator(Protocol):
    def verify(
        self, raw_body: bytes, signature_header: Optional[str], secret: str
    ) -> bool: ...

    def sign(self, raw_body: bytes, secret: str) -> str: ...


def _equal(expected: str, received: str) -> bool:
    return hmac.compare_digest(expected.encode("utf-8"), received.encode("utf-8"))


class HmacSignatureValidator:
    """HMAC over the raw body, hex or base64 encoded, with an optional prefix.

    ``prefix`` covers headers such as ``X-Hub-Signature-256: sha256=<hex>``.
    """

    def __init__(self, algorithm: str = "sha256", encoding: str = "hex", prefix: str = ""):
        if algorithm not in _DIGESTS:
            raise ValueError(f"Unsupported digest algorithm: {algorithm}")
        if encoding not in ("hex", "base64"):
            raise ValueError(f"Unsupported signature encoding: {encoding}")
        self.algorithm = algorithm
        self.encoding = encoding
        self.prefix = prefix

    def sign(self, raw_body: bytes, secret: str) -> str:
        digest = hmac.new(secret.encode("utf-8"), raw_body, _DIGESTS[self.algorithm]).digest()
        if self.encoding == "base64":
            encoded = base64.b64encode(digest).decode("ascii")
        else:
            encoded = digest.hex()
        return f"{self.prefix}{encoded}"

    def verify(
        self, raw_body: bytes, signature_header: Optional[str], secret: str
    ) -> bool:
        if not secret:
            logger.warning("Webhook secret not configured, rejecting signature")
            return False
        if not signature_header:
            return False
        return _equal(self.sign(raw_body, secret), signature_header.strip())


class StripeSignatureValidator:
    """Stripe ``t=<timestamp>,v1=<hex>[,v1=<hex>...]`` scheme.

    The signed message is ``"<timestamp>." + raw_body``. Timestamps further than
    ``tolerance`` seconds from now are rejected to stop replays; a tolerance
    of 0 disables the check.
    """

    def __init__(self, tolerance: int = 300):
        self.tolerance = tolerance

    @staticmethod
    def _compute(raw_body: bytes, secret: str, timestamp: int) -> str:
        signed_payload = f"{timestamp}.".encode("utf-8") + raw_body
        return hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()

    @staticmethod
    def _parse_header(header: str) -> Optional[tuple[int, list[str]]]:
        timestamp = None
        signatures = []
        for item in header.split(","):
            key, sep, value = item.strip().partition("=")
            if not sep:
                continue
            if key == "t":
                try:
                    timestamp = int(value)
                except ValueError:
                    return None
            elif key == "v1":
                signatures.append(value)
        if timestamp is None or not signatures:
            return None
        return timestamp, signatures

    def sign(self, raw_body: bytes, secret: str, timestamp: Optional[int] = None) -> str:
        if timestamp is None:
            timestamp = int(time.time())
        return f"t={timestamp},v1={self._compute(raw_body, secret, timestamp)}"

    def verify(
        self, raw_body: bytes, signature_header: Optional[str], secret: str
    ) -> bool:
        if not secret:
            logger.warning("Stripe webhook secret not configured, rejecting signature")
            return False
        if not signature_header:
            return False

        parsed = self._parse_header(signature_header)
        if parsed is None:
            return False
        timestamp, signatures = parsed

        # int math: a huge timestamp would overflow a float
        if self.tolerance and abs(int(time.time()) - timestamp) > self.tolerance:
            logger.warning(f"Stripe webhook timestamp outside tolerance: {timestamp}")
            return False

        expected = self._compute(raw_body, secret, timestamp)
        return any(_equal(expected, sig) for sig in signatures)


def build_validator(config: GatewayConfig) -> SignatureValidator:
    """Return the strategy configured for a gateway."""
    if config.scheme not in SIGNATURE_SCHEMES:
        raise ValueError(f"Unknown signature scheme: {config.scheme}")
    if config.scheme == "stripe":
        return StripeSignatureValidator(tolerance=config.tolerance_seconds)
    _, algorithm, encoding = config.scheme.split("-")
    return HmacSignatureValidator(algorithm, encoding, prefix=config.signature_prefix)
