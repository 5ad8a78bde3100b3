"""
Password hashing and auth tokens.
"""
import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping

import jwt

from .config import Settings

JWT_ALGORITHM = "HS256"
_HASH_SCHEME = "pbkdf2_sha256"

InvalidTokenError = jwt.InvalidTokenError


def hash_password(password: str, iterations: int) -> str:
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), iterations).hex()
    return f"{_HASH_SCHEME}${iterations}${salt}${digest}"


def verify_password(password: str, stored: str) -> bool:
    try:
        scheme, iterations, salt, digest = stored.split("$", 3)
        rounds = int(iterations)
    except (AttributeError, ValueError):
        return False
    if scheme != _HASH_SCHEME:
        return False
    candidate = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), rounds).hex()
    return hmac.compare_digest(candidate, digest)


def create_token(user: Mapping[str, Any], settings: Settings) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "userId": user["userId"],
        "email": user["email"],
        "givenName": user.get("givenName"),
        "familyName": user.get("familyName"),
        "iat": now,
        "exp": now + timedelta(seconds=settings.token_expires_in),
    }
    return jwt.encode(payload, settings.token_secret_key, algorithm=JWT_ALGORITHM)


def decode_token(token: str, settings: Settings) -> Dict[str, Any]:
    """Raises ``InvalidTokenError`` for bad signatures, expiry or missing claims."""
    claims = jwt.decode(
        token,
        settings.token_secret_key,
        algorithms=[JWT_ALGORITHM],
        options={"require": ["exp", "userId"]},
    )
    return claims
