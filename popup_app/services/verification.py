"""
Shopify webhook signature verification.

Shopify signs the exact request body with HMAC-SHA256 keyed by the app's API
secret and sends the base64 digest in ``X-Shopify-Hmac-Sha256``. The digest
must be computed over the raw bytes; re-serialized JSON will not match.
"""
import base64
import hashlib
import hmac

SIGNATURE_HEADER = 'X-Shopify-Hmac-Sha256'


def _to_bytes(value):
    return value.encode('utf-8') if isinstance(value, str) else value


def sign_payload(body, secret):
    digest = hmac.new(_to_bytes(secret), _to_bytes(body), hashlib.sha256).digest()
    return base64.b64encode(digest).decode('ascii')


def verify_webhook_signature(body, signature, secret):
    """
    Return True when ``signature`` is the base64 HMAC of ``body`` under ``secret``.
    """
    if not signature or not secret:
        return False
    expected = sign_payload(body, secret)
    return hmac.compare_digest(expected.encode('ascii'), _to_bytes(signature))
