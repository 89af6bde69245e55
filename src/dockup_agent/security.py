"""Webhook and manual-trigger authentication, GitHub App key handling"""

import hashlib
import hmac
from typing import Optional

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from .constants import WebhookDefaults
from .error_handling import KeyParseError


def compute_signature(payload: bytes, secret: str) -> str:
    """Return the ``sha256=<hex>`` signature GitHub sends for ``payload``."""
    mac = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256)
    return WebhookDefaults.SIGNATURE_PREFIX + mac.hexdigest()


def verify_signature(payload: bytes, secret: str, header_value: Optional[str]) -> bool:
    """Check an ``X-Hub-Signature-256`` header against the raw request body.

    Args:
        payload: Exact bytes of the request body
        secret: Shared secret of the registered application
        header_value: Value of the signature header, possibly missing

    Returns:
        True only when the header equals ``sha256=`` + hex HMAC-SHA256
    """
    if not header_value or not header_value.startswith(WebhookDefaults.SIGNATURE_PREFIX):
        return False

    expected = compute_signature(payload, secret)
    return hmac.compare_digest(header_value.encode("utf-8"), expected.encode("utf-8"))


def verify_bearer(header_value: Optional[str], secret: str) -> bool:
    """Check an ``Authorization: Bearer <secret>`` header in constant time."""
    if not header_value:
        return False
    expected = f"Bearer {secret}"
    return hmac.compare_digest(header_value.encode("utf-8"), expected.encode("utf-8"))


def load_rsa_private_key(pem: str) -> rsa.RSAPrivateKey:
    """Parse a GitHub App private key.

    Accepts both ``BEGIN RSA PRIVATE KEY`` (PKCS1) and ``BEGIN PRIVATE KEY``
    (PKCS8) encodings.

    Raises:
        KeyParseError: If the PEM cannot be decoded or holds a non-RSA key
    """
    try:
        key = serialization.load_pem_private_key(pem.encode("utf-8"), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise KeyParseError(f"failed to parse private key (tried PKCS1 and PKCS8): {e}") from e

    if not isinstance(key, rsa.RSAPrivateKey):
        raise KeyParseError("private key is not RSA")
    return key
