"""
x402 signaling

A publisher signals licensed access with ``402 Payment Required`` plus a
header naming the payment scheme as ``x402``. Payment hints travel in
dedicated headers; when a header is missing, a JSON object body may carry
the same hint under a plain key.
"""

import json
import logging
from typing import Any, Dict, Mapping, Optional

from ..errors import ProtocolMismatch
from .models import X402Hints

logger = logging.getLogger(__name__)

PAYMENT_REQUIRED = 402
X402_SCHEME = "x402"

SCHEME_HEADER = "X-Payment-Scheme"
AUTHENTICATE_HEADER = "WWW-Authenticate"

HINT_HEADERS = {
    "price": "X-Payment-Price",
    "payto": "X-Payment-PayTo",
    "stage": "X-License-Stage",
    "distribution": "X-License-Distribution",
    "facilitator_url": "X-Payment-Facilitator",
}

HINT_BODY_KEYS = {
    "price": ("price",),
    "payto": ("payto", "payTo"),
    "stage": ("stage",),
    "distribution": ("distribution",),
    "facilitator_url": ("facilitator_url", "facilitator"),
}


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    # httpx.Headers is case-insensitive, plain dicts are not
    value = headers.get(name)
    if value is None:
        lowered = name.lower()
        for key, candidate in headers.items():
            if key.lower() == lowered:
                value = candidate
                break
    if value is None:
        return None
    value = value.strip()
    return value or None


def payment_scheme(headers: Mapping[str, str]) -> Optional[str]:
    """Return the declared payment scheme, lower-cased, if any."""
    scheme = _header(headers, SCHEME_HEADER)
    if scheme is None:
        challenge = _header(headers, AUTHENTICATE_HEADER)
        if challenge:
            scheme = challenge.split()[0].rstrip(",")
    return scheme.lower() if scheme else None


def is_x402(status: int, headers: Mapping[str, str]) -> bool:
    return status == PAYMENT_REQUIRED and payment_scheme(headers) == X402_SCHEME


def _body_hints(body: Optional[str]) -> Dict[str, Any]:
    if not body:
        return {}
    try:
        data = json.loads(body)
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def parse_x402(status: int, headers: Mapping[str, str], body: Optional[str] = None) -> X402Hints:
    """Parse the payment hints of an x402 response.

    Raises ProtocolMismatch when the response is not a 402 carrying the
    x402 scheme.
    """
    if status != PAYMENT_REQUIRED:
        raise ProtocolMismatch(f"expected HTTP 402, got {status}")

    scheme = payment_scheme(headers)
    if scheme != X402_SCHEME:
        raise ProtocolMismatch(f"402 without x402 payment scheme (scheme={scheme or 'none'})")

    body_data = _body_hints(body)
    hints = {}
    for field_name, header_name in HINT_HEADERS.items():
        value = _header(headers, header_name)
        if value is None:
            for key in HINT_BODY_KEYS[field_name]:
                if body_data.get(key) is not None:
                    value = str(body_data[key])
                    break
        hints[field_name] = value

    logger.debug(f"x402 hints: {hints}")
    return X402Hints(**hints)
