"""
Persistence layer for BranchGate.

This package provides:
- Connection management (SQLAlchemy engine and sessions)
- Table definitions
- The credential store and password hashing helpers
"""
from .connection import Database, get_database
from .credential_store import (
    CredentialStore,
    hash_password,
    verify_password,
    normalize_address,
)
from .models import Principal, FailedAttemptResult, LoginAttempt, ActiveSession

__all__ = [
    "Database",
    "get_database",
    "CredentialStore",
    "hash_password",
    "verify_password",
    "normalize_address",
    "Principal",
    "FailedAttemptResult",
    "LoginAttempt",
    "ActiveSession",
]
