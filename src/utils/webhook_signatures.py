"""
Webhook payload signing.

Outbound deliveries carry X-Signature = hex(HMAC-SHA256(subscription secret, body)).
The body bytes that are signed are exactly the bytes that are sent.
"""
import hashlib
import hmac
import json

SIGNATURE_HEADER = "X-Signature"


def serialize_payload(payload: dict) -> bytes:
    """Compact JSON encoding used for both the request body and its signature."""
    return json.dumps(payload, separators=(",", ":"), default=str).encode("utf-8")


def sign_payload(body: bytes, secret: str) -> str:
    """HMAC-SHA256 of the raw body, hex-encoded."""
    return hmac.new(
        secret.encode("utf-8"),
        body,
        hashlib.sha256,
    ).hexdigest()


def verify_signature(body: bytes, secret: str, signature: str) -> bool:
    """
    Receiver-side check of an X-Signature header value. Accepts a bare hex
    digest or one prefixed with "sha256=", in either case.
    """
    if not secret or not signature:
        return False
    digest = signature.strip().lower().removeprefix("sha256=")
    if not digest.isascii():
        return False
    return hmac.compare_digest(sign_payload(body, secret), digest)
