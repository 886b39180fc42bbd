"""
Webhook signature verification (Razorpay).

Razorpay signs the raw request body: hex(HMAC-SHA256(secret, body)),
sent in the X-Razorpay-Signature header. The body must be verified
exactly as received — before any JSON parsing.
"""

import hashlib
import hmac


def compute_signature(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_webhook_signature(body: bytes, signature: str | None, secret: str) -> bool:
    """Constant-time comparison of the expected and supplied signatures."""
    if not signature or not secret:
        return False
    return hmac.compare_digest(compute_signature(body, secret), signature.strip())
