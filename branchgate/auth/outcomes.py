"""
Outcome variants returned by the caller-facing operations.

Every gateway operation returns an ``AuthResult`` carrying one ``Outcome``.
Rendering to HTTP (or any other wire format) happens at the API boundary.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class Outcome(str, Enum):
    """Closed set of results an auth operation can report."""
    LOGGED_IN = "logged_in"
    LOGGED_OUT = "logged_out"
    AUTHENTICATED = "authenticated"
    REGISTERED = "registered"
    REQUEST_ACCEPTED = "request_accepted"
    VERIFIED = "verified"
    ALREADY_VERIFIED = "already_verified"
    PASSWORD_RESET = "password_reset"
    VALIDATION_ERROR = "validation_error"
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_LOCKED = "account_locked"
    ACCOUNT_UNVERIFIED = "account_unverified"
    TOKEN_EXPIRED = "token_expired"
    TOKEN_INVALID = "token_invalid"
    RATE_LIMITED = "rate_limited"
    MESSAGE_NOT_SENT = "message_not_sent"
    INTERNAL_ERROR = "internal_error"


SUCCESS_OUTCOMES = frozenset({
    Outcome.LOGGED_IN,
    Outcome.LOGGED_OUT,
    Outcome.AUTHENTICATED,
    Outcome.REGISTERED,
    Outcome.REQUEST_ACCEPTED,
    Outcome.VERIFIED,
    Outcome.ALREADY_VERIFIED,
    Outcome.PASSWORD_RESET,
})

# Enumeration-safe responses: identical for every internal case
VERIFICATION_REQUEST_MESSAGE = (
    "If this address is registered, you will receive a verification link shortly."
)
RESET_REQUEST_MESSAGE = (
    "If this address is registered, you will receive instructions to reset your password."
)

MESSAGES: Dict[Outcome, str] = {
    Outcome.LOGGED_IN: "Login successful",
    Outcome.LOGGED_OUT: "Logout successful",
    Outcome.AUTHENTICATED: "Session is valid",
    Outcome.REGISTERED: "Registration completed. You can now verify your email and log in.",
    Outcome.REQUEST_ACCEPTED: VERIFICATION_REQUEST_MESSAGE,
    Outcome.VERIFIED: "Email verified successfully",
    Outcome.ALREADY_VERIFIED: "Email already verified",
    Outcome.PASSWORD_RESET: "Password updated successfully",
    Outcome.VALIDATION_ERROR: "Invalid request",
    Outcome.INVALID_CREDENTIALS: "Invalid email or password",
    Outcome.ACCOUNT_LOCKED: (
        "Account temporarily locked after multiple failed attempts. Try again later."
    ),
    Outcome.ACCOUNT_UNVERIFIED: "Please verify your email address before logging in",
    Outcome.TOKEN_EXPIRED: "This link has expired. Please request a new one.",
    Outcome.TOKEN_INVALID: "Invalid or expired token",
    Outcome.RATE_LIMITED: "Too many attempts. Try again later.",
    Outcome.MESSAGE_NOT_SENT: "Could not send the message. Please try again later.",
    Outcome.INTERNAL_ERROR: "Internal server error",
}


@dataclass
class AuthResult:
    """
    Result of a caller-facing operation.

    ``success`` and ``message`` are always safe to show to the caller;
    ``reason`` is the machine-readable outcome code.
    """
    outcome: Outcome
    message: str
    token: Optional[str] = field(default=None, repr=False)
    expires_at: Optional[datetime] = None
    principal: Optional[Any] = None
    retry_after: Optional[int] = None

    @property
    def success(self) -> bool:
        return self.outcome in SUCCESS_OUTCOMES

    @property
    def reason(self) -> str:
        return self.outcome.value

    @classmethod
    def of(cls, outcome: Outcome, message: Optional[str] = None, **kwargs) -> "AuthResult":
        """Build a result with the default message for ``outcome``."""
        return cls(outcome=outcome, message=message or MESSAGES[outcome], **kwargs)

    @classmethod
    def from_error(cls, error) -> "AuthResult":
        """Build a failure result from an ``AuthError``."""
        return cls(
            outcome=error.outcome,
            message=error.message,
            retry_after=getattr(error, "retry_after", None),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Wire-neutral representation (no internal details)."""
        data: Dict[str, Any] = {
            "success": self.success,
            "message": self.message,
            "reason": self.reason,
        }
        if self.token is not None:
            data["token"] = self.token
        if self.expires_at is not None:
            data["expires_at"] = self.expires_at.isoformat()
        if self.retry_after is not None:
            data["retry_after"] = self.retry_after
        return data
