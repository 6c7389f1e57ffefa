"""
HMAC signature schemes used by the payment gateway and the identity provider.

All functions are pure: the same inputs always produce the same result, and
comparisons are constant time.
"""

import base64
import hashlib
import hmac
import time
from typing import Mapping, Optional

SVIX_TOLERANCE_SECONDS = 5 * 60


def payment_signature(order_id: str, payment_id: str, secret: str) -> str:
    """Expected checkout signature: hex HMAC-SHA256(secret, "order_id|payment_id")."""
    message = f"{order_id}|{payment_id}"
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_payment_signature(order_id: str, payment_id: str, signature: Optional[str], secret: str) -> bool:
    if not signature:
        return False
    expected = payment_signature(order_id, payment_id, secret)
    return hmac.compare_digest(expected, signature)


def webhook_signature(raw_body: bytes, secret: str) -> str:
    """Expected webhook signature: hex HMAC-SHA256(secret, raw request body)."""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_webhook_signature(raw_body: bytes, signature: Optional[str], secret: str) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(webhook_signature(raw_body, secret), signature)


def svix_signature(msg_id: str, timestamp: str, raw_body: bytes, secret: str) -> str:
    """
    Svix scheme used by Clerk webhooks: base64 HMAC-SHA256 over
    "{id}.{timestamp}.{body}" keyed with the base64 part of "whsec_...".
    """
    key = base64.b64decode(secret.split("_", 1)[1] if secret.startswith("whsec_") else secret)
    signed = f"{msg_id}.{timestamp}.".encode("utf-8") + raw_body
    return base64.b64encode(hmac.new(key, signed, hashlib.sha256).digest()).decode("utf-8")


def verify_svix_signature(
    raw_body: bytes,
    headers: Mapping[str, str],
    secret: str,
    now: Optional[float] = None,
) -> bool:
    msg_id = headers.get("svix-id")
    timestamp = headers.get("svix-timestamp")
    signature_header = headers.get("svix-signature")
    if not (msg_id and timestamp and signature_header):
        return False

    try:
        sent_at = int(timestamp)
    except ValueError:
        return False
    current = time.time() if now is None else now
    if abs(current - sent_at) > SVIX_TOLERANCE_SECONDS:
        return False

    expected = svix_signature(msg_id, timestamp, raw_body, secret)
    # Header holds space-separated "v1,<sig>" entries (several during key rotation)
    for entry in signature_header.split(" "):
        version, _, candidate = entry.partition(",")
        if version == "v1" and hmac.compare_digest(expected, candidate):
            return True
    return False
