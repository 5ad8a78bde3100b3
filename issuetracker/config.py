"""
Runtime configuration read from the environment.
"""
import logging
import os
from dataclasses import dataclass
from functools import lru_cache

logger = logging.getLogger(__name__)

_DEV_TOKEN_SECRET = "insecure-development-secret-change-me-in-production"


@dataclass(frozen=True)
class Settings:
    database_url: str
    database_name: str
    users_collection: str
    projects_collection: str
    issues_collection: str
    store_timeout_ms: int
    store_connect_timeout_ms: int
    token_secret_key: str
    token_expires_in: int
    password_hash_iterations: int
    cache_max_age: int
    log_level: str
    port: int


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def load_settings() -> Settings:
    secret = os.getenv("TOKEN_SECRET_KEY")
    if not secret:
        logger.warning("TOKEN_SECRET_KEY not configured, using insecure development secret")
        secret = _DEV_TOKEN_SECRET

    return Settings(
        database_url=os.getenv("DATABASE_URL", "mongodb://localhost:27017"),
        database_name=os.getenv("DATABASE_NAME", "issuetracker"),
        users_collection=os.getenv("USERS_COLLECTION", "Users"),
        projects_collection=os.getenv("PROJECTS_COLLECTION", "Projects"),
        issues_collection=os.getenv("ISSUES_COLLECTION", "Issues"),
        store_timeout_ms=_int_env("STORE_TIMEOUT_MS", 10000),
        store_connect_timeout_ms=_int_env("STORE_CONNECT_TIMEOUT_MS", 5000),
        token_secret_key=secret,
        token_expires_in=_int_env("TOKEN_EXPIRES_IN", 3600),
        password_hash_iterations=_int_env("PASSWORD_HASH_ITERATIONS", 100_000),
        cache_max_age=_int_env("CACHE_MAX_AGE", 0),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        port=_int_env("PORT", 8000),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Settings are read once per process; tests call ``get_settings.cache_clear()``."""
    return load_settings()
