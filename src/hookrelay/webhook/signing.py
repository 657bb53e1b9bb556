"""HMAC-SHA256 webhook payload signatures."""

import hashlib
import hmac

SIGNATURE_ALGORITHM = "sha256"


def compute_signature(body: bytes, secret: str) -> str:
    """Compute the hex HMAC-SHA256 of a serialized payload.

    The signature covers the body only. Freshness is carried separately in
    the X-Webhook-Timestamp header.
    """
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def format_signature_header(signature: str) -> str:
    """Prefix a hex signature with its algorithm tag."""
    return f"{SIGNATURE_ALGORITHM}={signature}"


def verify_signature(body: bytes, secret: str, header: str | None) -> bool:
    """Check an X-Webhook-Signature header value against a body.

    Args:
        body: Raw request body as received
        secret: Endpoint shared secret
        header: Header value in ``sha256=<hex>`` form

    Returns:
        True if the signature matches, False otherwise
    """
    if not header:
        return False

    algorithm, _, signature = header.partition("=")
    if algorithm != SIGNATURE_ALGORITHM or not signature:
        return False

    expected = compute_signature(body, secret)
    return hmac.compare_digest(expected, signature)
