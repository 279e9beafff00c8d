"""
Credential Store for principals.

This module provides persistence for:
- Principal records (identity, password hash, verification state)
- Failed-attempt counters and lock timestamps (atomic updates)
- Login history

SECURITY NOTE: The failed-attempt counter is only ever changed with a single
UPDATE ... RETURNING statement. Never read the count, add one in Python and
write it back: concurrent wrong passwords would under-count the lockout.
"""
import os
import uuid
import logging
from typing import Optional, List

import bcrypt
from sqlalchemy import select, update, insert, and_, or_, case, literal

from .connection import Database
from .models import Principal, FailedAttemptResult, LoginAttempt
from .schema import principals, login_attempts, UTCDateTime
from ..auth.errors import StoreError
from ..auth.lockout import LockoutPolicy
from ..utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)

# bcrypt ignores everything past 72 bytes; newer releases refuse it outright
BCRYPT_MAX_BYTES = 72


def normalize_address(address: str) -> str:
    """Canonical form of an identity address (case-insensitive match)."""
    return (address or "").strip().lower()


class CredentialStore:
    """
    Persistence for principals and their login counters.

    Example usage:
        store = CredentialStore(db)

        principal = store.find_by_identity("branch@client.com")
        if principal is None:
            ...

        state = store.record_failed_attempt(principal.principal_id)
        if state.lock_started:
            ...
    """

    def __init__(
        self,
        db: Database,
        lockout: Optional[LockoutPolicy] = None,
        clock: Clock = utcnow,
    ):
        self.db = db
        self.lockout = lockout or LockoutPolicy()
        self.clock = clock

    # ==========================================
    # Principal Lookup
    # ==========================================

    def create_principal(
        self,
        identity_address: str,
        display_name: Optional[str] = None,
        password_hash: Optional[str] = None,
        is_login_enabled: bool = True,
        is_verified: bool = False,
    ) -> str:
        """
        Provision a principal (out-of-band, not part of the login path).

        Returns:
            ID of the created principal.

        Raises:
            ValueError: If the address already exists.
        """
        address = normalize_address(identity_address)
        if not address:
            raise ValueError("Identity address is required")

        principal_id = str(uuid.uuid4())
        now = self.clock()

        with self.db.get_session() as session:
            existing = session.execute(
                select(principals.c.principal_id).where(principals.c.identity_address == address)
            ).first()
            if existing:
                raise ValueError(f"Principal with address '{address}' already exists")

            session.execute(
                insert(principals).values(
                    principal_id=principal_id,
                    identity_address=address,
                    display_name=display_name,
                    password_hash=password_hash,
                    is_login_enabled=is_login_enabled,
                    is_verified=is_verified,
                    failed_attempt_count=0,
                    created_at=now,
                    updated_at=now,
                )
            )

        logger.info(f"Provisioned principal {principal_id}")
        return principal_id

    def find_by_identity(self, address: str, for_login: bool = True) -> Optional[Principal]:
        """
        Get principal by identity address.

        Args:
            address: Identity address, matched case-insensitively.
            for_login: When True, principals with login disabled are invisible.

        Returns:
            Principal or None if not found.
        """
        query = select(principals).where(principals.c.identity_address == normalize_address(address))
        if for_login:
            query = query.where(principals.c.is_login_enabled.is_(True))

        with self.db.get_session() as session:
            row = session.execute(query).mappings().first()
            return Principal.from_row(row) if row else None

    def get_by_id(self, principal_id: str) -> Optional[Principal]:
        """Administrative lookup by ID (ignores login enablement)."""
        with self.db.get_session() as session:
            row = session.execute(
                select(principals).where(principals.c.principal_id == principal_id)
            ).mappings().first()
            return Principal.from_row(row) if row else None

    # ==========================================
    # Failed Login Tracking
    # ==========================================

    def record_failed_attempt(self, principal_id: str) -> FailedAttemptResult:
        """
        Atomically increment the failed-attempt counter.

        When the new count reaches the lockout threshold and no unexpired lock
        exists, ``locked_until`` is set to now + lock duration in the same
        statement. An existing lock is never extended.

        Returns:
            Counter and lock state after the increment.
        """
        now = self.clock()
        candidate_lock = self.lockout.lock_expiry(now)
        col = principals.c

        no_active_lock = or_(col.locked_until.is_(None), col.locked_until <= now)
        starts_lock = and_(col.failed_attempt_count + 1 >= self.lockout.threshold, no_active_lock)

        statement = (
            update(principals)
            .where(col.principal_id == principal_id)
            .values(
                failed_attempt_count=col.failed_attempt_count + 1,
                locked_until=case(
                    (starts_lock, literal(candidate_lock, UTCDateTime())),
                    else_=col.locked_until,
                ),
                updated_at=now,
            )
            .returning(col.failed_attempt_count, col.locked_until)
        )

        with self.db.get_session() as session:
            row = session.execute(statement).first()

        if row is None:
            raise StoreError(detail=f"Principal {principal_id} not found while recording failure")

        count, locked_until = row[0], row[1]
        lock_started = locked_until is not None and locked_until == candidate_lock
        if lock_started:
            logger.warning(f"Principal {principal_id} locked until {locked_until} after {count} failures")
        else:
            logger.debug(f"Recorded failed attempt {count} for principal {principal_id}")

        return FailedAttemptResult(
            failed_attempt_count=count,
            locked_until=locked_until,
            lock_started=lock_started,
        )

    def is_locked(self, principal_id: str) -> bool:
        """True iff ``locked_until`` is set and in the future."""
        with self.db.get_session() as session:
            row = session.execute(
                select(principals.c.principal_id).where(
                    principals.c.principal_id == principal_id,
                    principals.c.locked_until > self.clock(),
                )
            ).first()
            return row is not None

    def reset_on_success(self, principal_id: str) -> None:
        """Clear counter and lock and stamp the last login, in one statement."""
        now = self.clock()
        with self.db.get_session() as session:
            session.execute(
                update(principals)
                .where(principals.c.principal_id == principal_id)
                .values(
                    failed_attempt_count=0,
                    locked_until=None,
                    last_login_at=now,
                    updated_at=now,
                )
            )

    # ==========================================
    # Field Mutations
    # ==========================================

    def set_password(self, principal_id: str, password_hash: str, session=None) -> None:
        """
        Replace the password hash.

        Args:
            session: Optional open session, to join a caller's transaction.
        """
        statement = (
            update(principals)
            .where(principals.c.principal_id == principal_id)
            .values(password_hash=password_hash, updated_at=self.clock())
        )
        if session is not None:
            session.execute(statement)
            return
        with self.db.get_session() as own_session:
            own_session.execute(statement)

    def set_verified(self, principal_id: str, verified: bool = True, session=None) -> None:
        """Set the email-verified flag."""
        statement = (
            update(principals)
            .where(principals.c.principal_id == principal_id)
            .values(is_verified=verified, updated_at=self.clock())
        )
        if session is not None:
            session.execute(statement)
            return
        with self.db.get_session() as own_session:
            own_session.execute(statement)

    def set_initial_password(
        self,
        principal_id: str,
        password_hash: str,
        display_name: Optional[str] = None,
    ) -> bool:
        """
        Set the first password of a provisioned principal and enable login.

        Conditional on no password being set yet, so two concurrent
        registrations cannot both succeed. ``display_name`` replaces the
        provisioned one when given.

        Returns:
            True if the password was set.
        """
        values = {
            "password_hash": password_hash,
            "is_login_enabled": True,
            "updated_at": self.clock(),
        }
        if display_name:
            values["display_name"] = display_name

        with self.db.get_session() as session:
            result = session.execute(
                update(principals)
                .where(
                    principals.c.principal_id == principal_id,
                    principals.c.password_hash.is_(None),
                )
                .values(**values)
            )
            return result.rowcount == 1

    # ==========================================
    # Login History
    # ==========================================

    def record_login_attempt(self, attempt: LoginAttempt) -> None:
        """Append a login attempt to the history."""
        with self.db.get_session() as session:
            session.execute(
                insert(login_attempts).values(
                    principal_id=attempt.principal_id,
                    origin_address=attempt.origin_address,
                    outcome=attempt.outcome,
                    reason=attempt.reason,
                    user_agent=attempt.user_agent,
                    occurred_at=attempt.occurred_at or self.clock(),
                )
            )

    def recent_login_attempts(self, principal_id: str, limit: int = 20) -> List[LoginAttempt]:
        """Most recent login attempts for a principal, newest first."""
        with self.db.get_session() as session:
            rows = session.execute(
                select(login_attempts)
                .where(login_attempts.c.principal_id == principal_id)
                .order_by(login_attempts.c.occurred_at.desc(), login_attempts.c.attempt_id.desc())
                .limit(limit)
            ).mappings().all()

            return [
                LoginAttempt(
                    principal_id=row["principal_id"],
                    origin_address=row["origin_address"],
                    outcome=row["outcome"],
                    reason=row["reason"],
                    user_agent=row["user_agent"],
                    occurred_at=row["occurred_at"],
                )
                for row in rows
            ]


# ==========================================
# Password Hashing Utilities
# ==========================================

def _bcrypt_rounds() -> int:
    return int(os.getenv("BCRYPT_ROUNDS", "12"))


def _password_bytes(password: str) -> bytes:
    return password.encode('utf-8')[:BCRYPT_MAX_BYTES]


def hash_password(password: str) -> str:
    """
    Hash a password using bcrypt.

    Args:
        password: Plain text password.

    Returns:
        Bcrypt hash string.
    """
    salt = bcrypt.gensalt(rounds=_bcrypt_rounds())
    return bcrypt.hashpw(_password_bytes(password), salt).decode('utf-8')


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    """
    Verify a password against its hash.

    Returns:
        True if password matches, False otherwise (including no hash stored).
    """
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(_password_bytes(password), password_hash.encode('utf-8'))
    except ValueError:
        logger.warning("Stored password hash is malformed")
        return False


_dummy_hash: Optional[str] = None


def burn_password_check(password: str) -> None:
    """
    Spend one bcrypt comparison against a throwaway hash.

    Used when the identity does not resolve, so unknown addresses take as
    long to reject as wrong passwords.
    """
    global _dummy_hash
    if _dummy_hash is None:
        _dummy_hash = hash_password(uuid.uuid4().hex)
    verify_password(password, _dummy_hash)

