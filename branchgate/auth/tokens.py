"""
Opaque token helpers.

Tokens are 256-bit CSPRNG strings with no structure. Only their SHA-256
digest is stored, so a read of the database cannot be replayed as a token.
"""
import hashlib
import secrets
from dataclasses import dataclass, field
from datetime import datetime

TOKEN_BYTES = 32


@dataclass(frozen=True)
class IssuedToken:
    """A freshly issued single-use token (raw value never persisted)."""
    principal_id: str
    token: str = field(repr=False)
    expires_at: datetime


def generate_token() -> str:
    """New URL-safe opaque token (43 chars, 256 bits of entropy)."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def hash_token(token: str) -> str:
    """Lookup key for a token (hex SHA-256)."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
