"""
Auth tunables, read from the environment.

Defaults match the lockout, session and token lifetimes the services use
when constructed without explicit values.
"""
import os
from dataclasses import dataclass

from .lockout import MAX_FAILED_ATTEMPTS, LOCKOUT_MINUTES
from .password_reset import DEFAULT_RESET_MINUTES, MIN_PASSWORD_LENGTH
from .sessions import DEFAULT_SESSION_HOURS
from .verification import DEFAULT_VERIFICATION_HOURS


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer, got '{value}'")


@dataclass(frozen=True)
class AuthSettings:
    session_hours: int = DEFAULT_SESSION_HOURS
    lock_threshold: int = MAX_FAILED_ATTEMPTS
    lock_minutes: int = LOCKOUT_MINUTES
    reset_token_minutes: int = DEFAULT_RESET_MINUTES
    verification_token_hours: int = DEFAULT_VERIFICATION_HOURS
    min_password_length: int = MIN_PASSWORD_LENGTH

    @classmethod
    def from_env(cls) -> "AuthSettings":
        """
        Build settings from ``AUTH_*`` environment variables.

        Raises:
            ValueError: If a variable is set but not an integer.
        """
        return cls(
            session_hours=_int_env("AUTH_SESSION_HOURS", DEFAULT_SESSION_HOURS),
            lock_threshold=_int_env("AUTH_LOCK_THRESHOLD", MAX_FAILED_ATTEMPTS),
            lock_minutes=_int_env("AUTH_LOCK_MINUTES", LOCKOUT_MINUTES),
            reset_token_minutes=_int_env("AUTH_RESET_TOKEN_MINUTES", DEFAULT_RESET_MINUTES),
            verification_token_hours=_int_env(
                "AUTH_VERIFICATION_TOKEN_HOURS", DEFAULT_VERIFICATION_HOURS
            ),
            min_password_length=_int_env("AUTH_MIN_PASSWORD_LENGTH", MIN_PASSWORD_LENGTH),
        )
