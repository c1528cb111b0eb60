"""Request signing: canonical messages, HMAC signatures, key generation.

Clients sign every protected request with the secret key issued at
registration::

    message = canonical_message(method, path, ts, device_id, user_id, body)
    signature = sign(message, secret_key)

and send the result in ``X-Signature``. The server rebuilds the message
from the request it actually received and compares in constant time.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import re
import secrets
import time

API_KEY_PREFIX = "api_live_"
API_KEY_LENGTH = len(API_KEY_PREFIX) + 32
SECRET_KEY_LENGTH = 64
EMPTY_BODY = "{}"

_UUID_RE = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}",
    re.IGNORECASE,
)
_USER_ID_RE = re.compile(r"[0-9a-f]{32}")


def canonical_body(raw: bytes | str | None) -> str:
    """Return the body text that takes part in the signature.

    Requests without content sign the empty JSON object ``{}``.
    Anything else is used exactly as received.

    Raises:
        UnicodeDecodeError: ``raw`` is not valid UTF-8. Such a body has no
            canonical text, so no signature can cover it.
    """
    if raw is None:
        return EMPTY_BODY
    text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
    if not text.strip():
        return EMPTY_BODY
    return text


def canonical_message(
    method: str,
    path: str,
    timestamp_ms: int,
    device_id: str,
    user_id: str,
    body_text: str,
) -> str:
    """Join the signed fields with newlines in their fixed order.

    Args:
        method: HTTP method, e.g. ``GET``.
        path: Full request path including the query string.
        timestamp_ms: Client timestamp in milliseconds since epoch.
        device_id: Device UUID.
        user_id: Bare 32-char user id.
        body_text: Body as produced by :func:`canonical_body`.
    """
    return "\n".join(
        (method, path, str(timestamp_ms), device_id, user_id, body_text)
    )


def sign(message: str, secret: str) -> str:
    """HMAC-SHA256 of ``message`` keyed by ``secret``, base64-encoded."""
    digest = hmac.new(
        secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256
    ).digest()
    return base64.b64encode(digest).decode("ascii")


def _b64decode(value: str) -> bytes | None:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return None


def verify(claimed: str, expected: str) -> bool:
    """Compare two base64 signatures in constant time.

    Malformed input of any kind yields ``False``; this never raises.
    """
    claimed_bytes = _b64decode(claimed)
    expected_bytes = _b64decode(expected)
    if claimed_bytes is None or expected_bytes is None:
        return False
    return hmac.compare_digest(claimed_bytes, expected_bytes)


def new_api_key() -> str:
    """Generate a live API key: ``api_live_`` + 32 hex chars."""
    return f"{API_KEY_PREFIX}{secrets.token_hex(16)}"


def new_secret_key() -> str:
    """Generate a 256-bit HMAC secret as 64 hex chars."""
    return secrets.token_hex(32)


def new_event_id() -> str:
    """Generate an event id: ``evt_<ms timestamp>_<8 hex chars>``."""
    return f"evt_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def is_valid_uuid(value: str | None) -> bool:
    return value is not None and _UUID_RE.fullmatch(value) is not None


def is_valid_user_id(value: str | None) -> bool:
    """Bare user id: 32 lowercase hex chars, no separators."""
    return value is not None and _USER_ID_RE.fullmatch(value) is not None
