"""
Secret lookup for BranchGate.

Database, SMTP and Redis passwords can be mounted as files (container
secrets) or passed as plain environment variables. A file always wins:

    POSTGRES_PASSWORD_FILE=/run/secrets/pg   ->  contents of that file
    POSTGRES_PASSWORD=...                    ->  the value itself
    /run/secrets/postgres_password           ->  contents, if present
"""
import os
import logging
from typing import Optional
from functools import lru_cache

logger = logging.getLogger(__name__)

SECRETS_DIR = os.getenv("SECRETS_DIR", "/run/secrets")


def _read_secret_file(path: str) -> Optional[str]:
    if not os.path.isfile(path):
        return None
    try:
        with open(path, "r") as f:
            return f.read().strip()
    except OSError as e:
        logger.warning(f"Secret file {path} is not readable: {e}")
        return None


@lru_cache(maxsize=16)
def get_secret(name: str, default: Optional[str] = None) -> Optional[str]:
    """
    Resolve a secret by its environment name (e.g. ``SMTP_PASSWORD``).

    Values are cached for the life of the process.
    """
    pointer = os.environ.get(f"{name}_FILE")
    if pointer:
        value = _read_secret_file(pointer)
        if value is not None:
            return value

    value = os.environ.get(name)
    if value:
        return value

    value = _read_secret_file(os.path.join(SECRETS_DIR, name.lower()))
    if value is not None:
        logger.debug(f"Secret {name} read from {SECRETS_DIR}")
        return value

    return default


def get_postgres_password() -> str:
    return get_secret("POSTGRES_PASSWORD", "")


def get_smtp_password() -> Optional[str]:
    return get_secret("SMTP_PASSWORD")


def get_redis_password() -> Optional[str]:
    return get_secret("REDIS_PASSWORD") or None


def mask_secret(secret: Optional[str], visible_chars: int = 4) -> str:
    """
    Shorten a token for log lines: ``"abcd..."``.

    Short values are fully hidden so that the prefix never reveals most of it.
    """
    if not secret or len(secret) <= visible_chars * 2:
        return "***"
    return f"{secret[:visible_chars]}..."
