"""Admin session tokens, secret comparison and unsubscribe signatures.

Admin tokens are ``<payload>.<signature>`` where the payload is canonical
JSON encoded as unpadded base64url and the signature is HMAC-SHA256 over the
encoded payload. There is a single admin role; the token carries no user id.
"""

import asyncio
import base64
import binascii
import hashlib
import hmac
import json
import random
import secrets
import time
from dataclasses import asdict, dataclass

from fastapi import Request, Response

from waitlist.core.config import (
    MIN_ADMIN_PASSWORD_LENGTH,
    MIN_TOKEN_SECRET_LENGTH,
    TOKEN_SECRET_PREFIX,
    Settings,
)
from waitlist.core.errors import Misconfigured
from waitlist.core.logging import get_logger
from waitlist.services.email_validator import normalize_email

logger = get_logger("auth")

ADMIN_COOKIE_NAME = "waitlist_admin"
ADMIN_ROLE = "admin"

# Tolerated clock skew for a token's issue time. Expiry gets no tolerance.
IAT_SKEW_SECONDS = 60


@dataclass(frozen=True)
class AdminToken:
    role: str
    iat: int
    exp: int
    nonce: str


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64decode(data: str) -> bytes:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def _sign(data: str, secret: str) -> str:
    digest = hmac.new(secret.encode(), data.encode(), hashlib.sha256).digest()
    return _b64encode(digest)


def derive_token_secret(seed: str) -> str:
    """Server secret for a seed, or "" when the seed is empty."""
    return f"{TOKEN_SECRET_PREFIX}{seed}" if seed else ""


def secure_compare(a: str, b: str) -> bool:
    """Constant-time string comparison.

    Both sides are hashed first so the comparison time does not depend on
    the length of either input.
    """
    a_bytes = a.encode()
    b_bytes = b.encode()
    digests_equal = hmac.compare_digest(
        hashlib.sha256(a_bytes).digest(), hashlib.sha256(b_bytes).digest()
    )
    lengths_equal = len(a_bytes) == len(b_bytes)
    return digests_equal & lengths_equal


def make_token(secret: str, ttl_seconds: int, now: float | None = None) -> str:
    """Mint a signed admin session token."""
    issued = int(now if now is not None else time.time())
    token = AdminToken(
        role=ADMIN_ROLE,
        iat=issued,
        exp=issued + int(ttl_seconds),
        nonce=secrets.token_urlsafe(16),
    )
    payload = json.dumps(asdict(token), sort_keys=True, separators=(",", ":"))
    encoded = _b64encode(payload.encode())
    return f"{encoded}.{_sign(encoded, secret)}"


def parse_token(token: str | None, secret: str, now: float | None = None) -> AdminToken | None:
    """Verify a token and return its payload, or None if it is not acceptable.

    Rejects bad signatures, malformed payloads, tokens issued more than
    ``IAT_SKEW_SECONDS`` in the future and expired tokens. Never raises.
    """
    if not token or not secret or not isinstance(token, str):
        return None
    encoded, sep, signature = token.partition(".")
    if not sep or not encoded or not signature or "." in signature:
        return None
    if not secure_compare(signature, _sign(encoded, secret)):
        return None

    try:
        data = json.loads(_b64decode(encoded))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None

    role, iat, exp, nonce = (data.get(k) for k in ("role", "iat", "exp", "nonce"))
    if role != ADMIN_ROLE or not isinstance(nonce, str):
        return None
    # bool is an int subclass; reject it explicitly
    if not all(isinstance(v, int) and not isinstance(v, bool) for v in (iat, exp)):
        return None

    current = int(now if now is not None else time.time())
    if iat > current + IAT_SKEW_SECONDS:
        return None
    if exp < current:
        return None
    return AdminToken(role=role, iat=iat, exp=exp, nonce=nonce)


# --- cookies ---


def set_session_cookie(response: Response, token: str, *, secure: bool, max_age: int) -> None:
    response.set_cookie(
        key=ADMIN_COOKIE_NAME,
        value=token,
        max_age=max_age,
        path="/",
        secure=secure,
        httponly=True,
        samesite="strict",
    )


def clear_session_cookie(response: Response, *, secure: bool) -> None:
    response.delete_cookie(
        key=ADMIN_COOKIE_NAME,
        path="/",
        secure=secure,
        httponly=True,
        samesite="strict",
    )


def extract_session_token(request: Request) -> str | None:
    """Session token from the admin cookie, falling back to a Bearer header."""
    cookie = request.cookies.get(ADMIN_COOKIE_NAME)
    if cookie:
        return cookie
    auth_header = request.headers.get("Authorization", "")
    scheme, _, credentials = auth_header.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return None


# --- login helpers ---


async def random_login_delay(min_ms: int, jitter_ms: int) -> None:
    """Sleep a randomized interval after a failed login."""
    jitter = random.randint(0, jitter_ms) if jitter_ms > 0 else 0
    delay_ms = max(0, min_ms) + jitter
    if delay_ms:
        await asyncio.sleep(delay_ms / 1000)


def ensure_admin_configured(settings: Settings) -> None:
    """Fail closed when the admin password or token secret is weak or unset."""
    if len(settings.admin_password) < MIN_ADMIN_PASSWORD_LENGTH:
        logger.error("Admin endpoint refused: ADMIN_PASSWORD unset or too short")
        raise Misconfigured("Admin access is not configured")
    if len(settings.token_secret) < MIN_TOKEN_SECRET_LENGTH:
        logger.error("Admin endpoint refused: token secret unset or too short")
        raise Misconfigured("Admin access is not configured")


# --- unsubscribe links ---


def sign_unsubscribe_token(email: str, secret: str) -> str:
    return _sign(normalize_email(email), secret)


def verify_unsubscribe_token(email: str, token: str | None, secret: str) -> bool:
    if not token or not secret:
        return False
    return secure_compare(token.strip(), sign_unsubscribe_token(email, secret))
