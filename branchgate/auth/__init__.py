"""
Authentication and account lifecycle for BranchGate.

This package provides:
- Login with progressive lockout
- Session token issuance and revocation
- Email verification and password reset tokens
- Rate limiting and outbound notification collaborators

Heavier components (gateway, services) are imported from their modules
directly, e.g. ``from branchgate.auth.gateway import AuthGateway``.
"""
from .outcomes import Outcome, AuthResult
from .errors import (
    AuthError,
    ValidationError,
    NotFoundOrEnumerationSuppressed,
    InvalidCredentials,
    AccountLocked,
    AccountUnverified,
    TokenExpired,
    TokenInvalidOrUsed,
    RateLimited,
    StoreError,
    NotifierError,
)
from .lockout import LockoutPolicy, LockDecision

__all__ = [
    "Outcome",
    "AuthResult",
    "AuthError",
    "ValidationError",
    "NotFoundOrEnumerationSuppressed",
    "InvalidCredentials",
    "AccountLocked",
    "AccountUnverified",
    "TokenExpired",
    "TokenInvalidOrUsed",
    "RateLimited",
    "StoreError",
    "NotifierError",
    "LockoutPolicy",
    "LockDecision",
]
