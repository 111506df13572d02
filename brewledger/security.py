"""
Security utilities: password hashing, JWT tokens, and webhook signatures.

This module centralizes all cryptographic operations so they're easy to
audit and update. Three concerns are handled here:

1. PASSWORD HASHING (Argon2)
   - Passwords are never stored in plaintext
   - Argon2id is memory-hard and time-hard, so GPU cracking is expensive
   - We use passlib's CryptContext for safe, high-level Argon2 operations

2. JWT TOKENS (JSON Web Tokens)
   - After login, the user receives a signed JWT containing their user ID
   - The token is signed with SECRET_KEY using HS256 (HMAC-SHA256)
   - Tokens expire after ACCESS_TOKEN_EXPIRE_MINUTES (default: 60 min)
   - The server is stateless: no session storage needed

3. WEBHOOK SIGNATURES (HMAC-SHA256)
   - The point-of-sale platform signs each webhook delivery with a shared
     signature key over "notification URL + raw body", base64-encoded
   - Verification is constant-time (hmac.compare_digest)
   - A missing key means verification is not configured; the caller
     decides what that implies
"""

import base64
import hashlib
import hmac
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt
from passlib.context import CryptContext

from brewledger.config import settings


# ---------------------------------------------------------------------------
# 1. Password Hashing (Argon2)
# ---------------------------------------------------------------------------

# "deprecated='auto'" lets passlib re-hash on login if we ever add a newer
# scheme ahead of argon2.
pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def hash_password(plain_password: str) -> str:
    """
    Hash a plaintext password using Argon2id.

    Args:
        plain_password: The user's raw password input.

    Returns:
        An Argon2 hash string (e.g., "$argon2id$v=19$m=65536,t=3,p=4$...").
    """
    return pwd_context.hash(plain_password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a plaintext password against a stored Argon2 hash.

    Returns:
        True if the password matches, False otherwise.
    """
    return pwd_context.verify(plain_password, hashed_password)


# ---------------------------------------------------------------------------
# 2. JWT Tokens
# ---------------------------------------------------------------------------


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """
    Create a signed JWT access token.

    The token payload contains:
      - "sub": The subject (user ID as string) — standard JWT claim
      - "exp": Expiration timestamp — after this, the token is rejected

    Args:
        data: Dictionary of claims to encode (must include "sub").
        expires_delta: Optional custom expiration time. Defaults to
                       ACCESS_TOKEN_EXPIRE_MINUTES from settings.

    Returns:
        An encoded JWT string.
    """
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(
            minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES
        )

    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> dict:
    """
    Decode and verify a JWT access token.

    Raises:
        JWTError: If the token is expired, tampered with, or invalid.

    Returns:
        The decoded payload dictionary (contains "sub", "exp", etc.).
    """
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])


# ---------------------------------------------------------------------------
# 3. Webhook signatures
# ---------------------------------------------------------------------------


def compute_webhook_signature(signature_key: str, notification_url: str, body: bytes) -> str:
    """Return the base64 HMAC-SHA256 of notification_url + body."""
    digest = hmac.new(
        signature_key.encode("utf-8"),
        notification_url.encode("utf-8") + body,
        hashlib.sha256,
    ).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_webhook_signature(
    signature_key: str,
    notification_url: str,
    body: bytes,
    signature: str | None,
) -> bool:
    """
    Check a webhook signature header against the raw request body.

    Returns False when the header is missing or does not match.
    """
    if not signature:
        return False
    expected = compute_webhook_signature(signature_key, notification_url, body)
    return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8"))


__all__ = [
    "JWTError",
    "hash_password",
    "verify_password",
    "create_access_token",
    "decode_access_token",
    "compute_webhook_signature",
    "verify_webhook_signature",
]
