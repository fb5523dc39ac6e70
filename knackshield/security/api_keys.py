"""API key handling for protected endpoints.

Keys are never logged in full and are always compared in constant time.
"""

import hashlib
import hmac
import logging
import secrets
from typing import Mapping, Optional

logger = logging.getLogger(__name__)


def constant_time_compare(provided: str, expected: str) -> bool:
    """Compare two secrets without leaking where (or whether) lengths differ.

    Both values are hashed to fixed-length digests first, so the comparison
    always walks the same number of bytes.
    """
    provided_digest = hashlib.sha256(provided.encode("utf-8")).digest()
    expected_digest = hashlib.sha256(expected.encode("utf-8")).digest()
    return hmac.compare_digest(provided_digest, expected_digest)


def validate_api_key(provided: Optional[str], expected: Optional[str]) -> bool:
    """Validate a presented key against the configured one.

    Missing or blank keys on either side never validate.
    """
    if not provided or not expected:
        return False
    if not provided.strip() or not expected.strip():
        return False
    return constant_time_compare(provided, expected)


def extract_api_key(headers: Mapping[str, str]) -> Optional[str]:
    """Extract an API key from request headers.

    Supports ``Authorization: Bearer <key>`` and ``X-API-Key: <key>``.
    """
    auth_header = headers.get("authorization") or headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        token = auth_header[len("Bearer "):].strip()
        if token:
            return token

    api_key = headers.get("x-api-key") or headers.get("X-API-Key")
    if api_key and api_key.strip():
        return api_key.strip()

    return None


def mask_key(key: Optional[str]) -> str:
    """Mask a key for logging: first and last four characters only."""
    if not key:
        return "none"
    if len(key) <= 8:
        return "****"
    return f"{key[:4]}...{key[-4:]}"


def generate_api_key(prefix: str = "sk") -> str:
    """Generate a strong API key for storage in the environment or Vault."""
    return f"{prefix}_{secrets.token_hex(32)}"


def log_security_event(event_type: str, provided_key: Optional[str] = None, **details) -> None:
    """Log a security event without exposing the presented key."""
    detail_str = " ".join(f"{k}={v}" for k, v in details.items())
    logger.warning(f"[SECURITY] {event_type} {detail_str} key={mask_key(provided_key)}")
