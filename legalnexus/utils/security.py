"""
Security utilities: access tokens and shared-secret comparison.
"""
import secrets
from typing import Optional

# No 0/O or 1/I/l
ACCESS_TOKEN_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZabcdefghjkmnpqrstuvwxyz23456789"
ACCESS_TOKEN_LENGTH = 32


def generate_access_token(length: int = ACCESS_TOKEN_LENGTH) -> str:
    """
    Generate an opaque public access token for a signing request.

    Note: Never log the raw token - use fingerprint() for correlation.
    """
    return "".join(secrets.choice(ACCESS_TOKEN_ALPHABET) for _ in range(length))


def generate_suffix(length: int = 8) -> str:
    """Random lowercase suffix for request-scoped storage paths."""
    alphabet = "abcdefghijklmnopqrstuvwxyz0123456789"
    return "".join(secrets.choice(alphabet) for _ in range(length))


def secrets_match(provided: Optional[str], expected: Optional[str]) -> bool:
    """Constant-time comparison of a provided secret with the configured one."""
    if not provided or not expected:
        return False
    return secrets.compare_digest(provided.encode(), expected.encode())

