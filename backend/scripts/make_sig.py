#!/usr/bin/env python3

import json
import sys

from paymenthub.core.config import GatewayConfig
from paymenthub.services.signatures import build_validator


def make_signature(scheme: str, secret: str, payload: str, prefix: str = "") -> str:
    """Generate a webhook signature header value for testing."""
    config = GatewayConfig(secret=secret, scheme=scheme, signature_prefix=prefix)
    return build_validator(config).sign(payload.encode("utf-8"), secret)


if __name__ == "__main__":
    if len(sys.argv) not in (4, 5):
        print("Usage: make_sig.py <scheme> <secret> <payload> [prefix]")
        sys.exit(1)

    scheme, secret, payload = sys.argv[1:4]
    prefix = sys.argv[4] if len(sys.argv) == 5 else ""

    # Validate payload is valid JSON
    try:
        json.loads(payload)
    except json.JSONDecodeError:
        print("Error: Payload must be valid JSON", file=sys.stderr)
        sys.exit(1)

    print(make_signature(scheme, secret, payload, prefix))
