"""
FastAPI Dependencies for the BranchGate API.

Provides:
- Redis client
- Rate limiter (Redis-backed with in-memory fallback)
- Auth gateway wiring
- Bearer token extraction
"""
import os
import logging
from typing import Optional

import redis
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..auth.gateway import AuthGateway
from ..auth.notifier import get_notifier
from ..auth.rate_limit import RateLimiter
from ..database.connection import Database, get_database
from ..database.models import Principal
from ..utils.secrets import get_redis_password

logger = logging.getLogger(__name__)


# ============================================
# Redis Client
# ============================================

_redis_client: Optional[redis.Redis] = None


def get_redis_client() -> Optional[redis.Redis]:
    """
    Shared Redis client for rate limiting, or None.

    ``REDIS_HOST`` empty disables Redis; an unreachable server also yields
    None and the limiter keeps its counters in memory.
    """
    global _redis_client
    if _redis_client is not None:
        return _redis_client

    host = os.getenv("REDIS_HOST", "localhost")
    if not host:
        return None

    client = redis.Redis(
        host=host,
        port=int(os.getenv("REDIS_PORT", "6379")),
        password=get_redis_password(),
        db=int(os.getenv("REDIS_DB", "0")),
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=5,
    )
    try:
        client.ping()
    except redis.RedisError as e:
        logger.warning(f"Redis at {host} unreachable ({e}); auth rate limits stay in memory")
        return None

    logger.info(f"Redis connected for rate limiting: {host}")
    _redis_client = client
    return _redis_client


# Security scheme
security = HTTPBearer(auto_error=False)


# ============================================
# Service Dependencies
# ============================================

def get_db() -> Database:
    """Get database connection."""
    return get_database()


_rate_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """Get singleton rate limiter (Redis-backed if available)."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter(get_redis_client())
    return _rate_limiter


_gateway: Optional[AuthGateway] = None


def get_gateway() -> AuthGateway:
    """Get singleton auth gateway."""
    global _gateway
    if _gateway is None:
        _gateway = AuthGateway.build(get_db(), get_notifier(), get_rate_limiter())
    return _gateway


# ============================================
# Request Context
# ============================================

def get_client_ip(request: Request) -> str:
    """Origin address of the request."""
    return request.client.host if request.client else "unknown"


def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[str]:
    """Raw bearer token, or None if no Authorization header was sent."""
    if credentials is None:
        return None
    return credentials.credentials


async def require_bearer_token(token: Optional[str] = Depends(get_bearer_token)) -> str:
    """
    Raises:
        HTTPException: If no bearer token was sent.
    """
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return token


def get_current_principal(
    token: str = Depends(require_bearer_token),
    gateway: AuthGateway = Depends(get_gateway),
) -> Principal:
    """
    Validate bearer token and return the current principal.

    Raises:
        HTTPException: If token is invalid or expired.
    """
    result = gateway.current_principal(token)
    if not result.success:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return result.principal
