"""
Record types returned by the stores.

Password hashes and token hashes are excluded from ``repr`` so records can be
logged safely.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional


@dataclass
class Principal:
    """An authenticable account (primary user or branch account)."""
    principal_id: str
    identity_address: str
    display_name: Optional[str] = None
    password_hash: Optional[str] = field(default=None, repr=False)
    is_login_enabled: bool = True
    is_verified: bool = False
    failed_attempt_count: int = 0
    locked_until: Optional[datetime] = None
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def has_password(self) -> bool:
        return bool(self.password_hash)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Principal":
        return cls(
            principal_id=row["principal_id"],
            identity_address=row["identity_address"],
            display_name=row["display_name"],
            password_hash=row["password_hash"],
            is_login_enabled=bool(row["is_login_enabled"]),
            is_verified=bool(row["is_verified"]),
            failed_attempt_count=row["failed_attempt_count"],
            locked_until=row["locked_until"],
            last_login_at=row["last_login_at"],
            created_at=row["created_at"],
        )

    def to_public_dict(self) -> Dict[str, Any]:
        """Profile fields safe to return to the principal itself."""
        return {
            "principal_id": self.principal_id,
            "identity_address": self.identity_address,
            "display_name": self.display_name,
            "is_verified": self.is_verified,
            "last_login_at": self.last_login_at,
        }


@dataclass(frozen=True)
class FailedAttemptResult:
    """Counter state right after an atomic failed-attempt increment."""
    failed_attempt_count: int
    locked_until: Optional[datetime]
    lock_started: bool = False


@dataclass
class LoginAttempt:
    """One row of login history. ``principal_id`` is None for unknown identities."""
    principal_id: Optional[str]
    origin_address: Optional[str]
    outcome: str
    reason: Optional[str] = None
    user_agent: Optional[str] = None
    occurred_at: Optional[datetime] = None


@dataclass
class ActiveSession:
    """A stored session. Only the token hash is ever persisted."""
    token_hash: str = field(repr=False)
    principal_id: str
    expires_at: datetime
    device_info: Optional[str] = None
    origin_address: Optional[str] = None
    created_at: Optional[datetime] = None
