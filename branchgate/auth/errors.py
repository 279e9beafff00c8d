"""
Exception taxonomy for the authentication subsystem.

Services raise these; ``AuthGateway`` turns them into ``AuthResult`` values.
Each exception carries a user-safe ``message`` and its ``Outcome`` code.
Internal details go to ``str(exc)`` (logged), never to the caller.
"""
from typing import Optional

from .outcomes import Outcome, MESSAGES


class AuthError(Exception):
    """Base class for all auth failures."""
    outcome: Outcome = Outcome.INTERNAL_ERROR

    def __init__(self, detail: Optional[str] = None, message: Optional[str] = None):
        self.message = message or MESSAGES[self.outcome]
        self.detail = detail or self.message
        super().__init__(self.detail)


class ValidationError(AuthError):
    """Missing or malformed input. Raised before any side effect."""
    outcome = Outcome.VALIDATION_ERROR

    def __init__(self, message: str):
        super().__init__(detail=message, message=message)


class NotFoundOrEnumerationSuppressed(AuthError):
    """
    The requested side effect was skipped on purpose.

    Known internally, but reported to the caller exactly like success.
    """
    outcome = Outcome.REQUEST_ACCEPTED

    def __init__(self, reason: str, principal_id: Optional[str] = None):
        self.reason = reason
        self.principal_id = principal_id
        super().__init__(detail=f"suppressed: {reason}")


class InvalidCredentials(AuthError):
    outcome = Outcome.INVALID_CREDENTIALS


class AccountLocked(AuthError):
    outcome = Outcome.ACCOUNT_LOCKED

    def __init__(self, remaining_seconds: int):
        self.remaining_seconds = remaining_seconds
        self.retry_after = remaining_seconds
        super().__init__(detail=f"Account locked for another {remaining_seconds} seconds")


class AccountUnverified(AuthError):
    outcome = Outcome.ACCOUNT_UNVERIFIED


class TokenExpired(AuthError):
    outcome = Outcome.TOKEN_EXPIRED


class TokenInvalidOrUsed(AuthError):
    outcome = Outcome.TOKEN_INVALID


class RateLimited(AuthError):
    outcome = Outcome.RATE_LIMITED

    def __init__(self, retry_after: int):
        self.retry_after = retry_after
        super().__init__(detail=f"Rate limit exceeded, retry after {retry_after}s")


class StoreError(AuthError):
    """Persistence failure. Fatal for the current operation, never retried here."""
    outcome = Outcome.INTERNAL_ERROR


class NotifierError(AuthError):
    """Outbound message dispatch failed after the token was persisted."""
    outcome = Outcome.MESSAGE_NOT_SENT
