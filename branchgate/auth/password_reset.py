"""
Password reset token lifecycle.

At most one live reset token per principal: issuing a new one deletes the
previous rows. Redemption consumes the token with a conditional UPDATE in the
same transaction as the password change and the revocation of every session
of the principal, so two concurrent redemptions of one token cannot both
succeed and a committed reset never leaves old sessions alive.
"""
import os
import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from sqlalchemy import select, update, delete, insert, func, or_

from .errors import (
    NotFoundOrEnumerationSuppressed,
    NotifierError,
    StoreError,
    TokenExpired,
    TokenInvalidOrUsed,
    ValidationError,
)
from .notifier import Notifier, NotificationKind, dispatch, build_link
from .outcomes import MESSAGES, Outcome
from .sessions import SessionTokenIssuer
from .tokens import IssuedToken, generate_token, hash_token
from ..database.credential_store import CredentialStore, hash_password
from ..database.schema import password_resets
from ..security.audit import AuditTrail, AuditKind, Severity
from ..utils.clock import Clock, utcnow
from ..utils.secrets import mask_secret

logger = logging.getLogger(__name__)

DEFAULT_RESET_MINUTES = 60
MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128
RESET_PATH = "/auth/password/reset"

# Redemption failures all read the same to the caller
GENERIC_TOKEN_MESSAGE = MESSAGES[Outcome.TOKEN_INVALID]


def validate_new_password(password: Optional[str], min_length: Optional[int] = None) -> None:
    """
    Raises:
        ValidationError: If the password does not meet the length policy.
    """
    if min_length is None:
        min_length = int(os.getenv("AUTH_MIN_PASSWORD_LENGTH", str(MIN_PASSWORD_LENGTH)))
    if not password or len(password) < min_length:
        raise ValidationError(f"Password must be at least {min_length} characters")
    if len(password) > MAX_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at most {MAX_PASSWORD_LENGTH} characters")


class PasswordResetService:
    """
    Issues and redeems password reset tokens.

    Example usage:
        service = PasswordResetService(store, notifier, audit, sessions)
        service.request_reset("branch@client.com", origin_address="10.0.0.1")

        principal_id = service.redeem(token, "new-password-123")
    """

    def __init__(
        self,
        store: CredentialStore,
        notifier: Notifier,
        audit: AuditTrail,
        sessions: Optional[SessionTokenIssuer] = None,
        validity_minutes: Optional[int] = None,
        min_password_length: Optional[int] = None,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.db = store.db
        self.notifier = notifier
        self.audit = audit
        self.sessions = sessions
        if validity_minutes is None:
            validity_minutes = int(os.getenv("AUTH_RESET_TOKEN_MINUTES", str(DEFAULT_RESET_MINUTES)))
        self.validity = timedelta(minutes=validity_minutes)
        self.min_password_length = min_password_length
        self.clock = clock

    def _suppress(self, reason: str, principal_id: Optional[str], origin_address: Optional[str]):
        logger.info(f"Password reset suppressed ({reason}) for principal {principal_id}")
        self.audit.emit(
            AuditKind.RESET_SUPPRESSED,
            principal_id,
            origin_address,
            {"reason": reason},
        )
        return NotFoundOrEnumerationSuppressed(reason, principal_id)

    def _fail(self, error, principal_id: Optional[str], origin_address: Optional[str]):
        self.audit.emit(
            AuditKind.RESET_FAILED,
            principal_id,
            origin_address,
            {"reason": error.outcome.value},
            Severity.WARNING,
        )
        return error

    # ==========================================
    # Request
    # ==========================================

    def request_reset(self, address: str, origin_address: Optional[str] = None) -> IssuedToken:
        """
        Issue a reset token and send it.

        Raises:
            NotFoundOrEnumerationSuppressed: Unknown, login disabled, or no password yet.
            NotifierError: Token persisted but the message was not sent.
        """
        principal = self.store.find_by_identity(address, for_login=False)
        if principal is None:
            raise self._suppress("unknown_identity", None, origin_address)
        if not principal.is_login_enabled:
            raise self._suppress("login_disabled", principal.principal_id, origin_address)
        if not principal.has_password:
            raise self._suppress("no_password", principal.principal_id, origin_address)

        token = generate_token()
        now = self.clock()
        expires_at = now + self.validity

        with self.db.get_session() as session:
            session.execute(
                delete(password_resets).where(password_resets.c.principal_id == principal.principal_id)
            )
            session.execute(
                insert(password_resets).values(
                    principal_id=principal.principal_id,
                    token_hash=hash_token(token),
                    expires_at=expires_at,
                    used_at=None,
                    created_at=now,
                )
            )

        self.audit.emit(
            AuditKind.RESET_REQUESTED,
            principal.principal_id,
            origin_address,
            {"expires_at": expires_at},
        )

        try:
            dispatch(
                self.notifier,
                NotificationKind.RESET,
                principal.identity_address,
                {
                    "token": token,
                    "display_name": principal.display_name,
                    "expires_at": expires_at.isoformat(),
                    "link": build_link(RESET_PATH, token),
                },
            )
        except NotifierError as e:
            self.audit.emit(
                AuditKind.NOTIFICATION_FAILED,
                principal.principal_id,
                origin_address,
                {"kind": NotificationKind.RESET, "error": e.detail},
                Severity.ERROR,
            )
            raise

        logger.info(f"Reset token {mask_secret(token)} sent to principal {principal.principal_id}")
        return IssuedToken(principal_id=principal.principal_id, token=token, expires_at=expires_at)

    # ==========================================
    # Redemption
    # ==========================================

    def redeem(self, token: str, new_password: str, origin_address: Optional[str] = None) -> str:
        """
        Set a new password using a reset token.

        The password policy is checked before the store is touched. On success
        every session of the principal is revoked.

        Returns:
            ID of the principal whose password changed.

        Raises:
            ValidationError: Password too short or too long.
            TokenExpired: Token past expiry (generic message, distinct reason).
            TokenInvalidOrUsed: Unknown or already used token.
        """
        validate_new_password(new_password, self.min_password_length)

        if not token:
            raise TokenInvalidOrUsed(detail="empty reset token")

        token_hash = hash_token(token)
        now = self.clock()

        with self.db.get_session() as session:
            row = session.execute(
                select(password_resets).where(password_resets.c.token_hash == token_hash)
            ).mappings().first()

        if row is None:
            raise self._fail(TokenInvalidOrUsed(detail="unknown reset token"), None, origin_address)

        principal_id = row["principal_id"]

        if row["used_at"] is not None:
            raise self._fail(
                TokenInvalidOrUsed(detail="reset token already used"), principal_id, origin_address
            )
        if row["expires_at"] <= now:
            raise self._fail(
                TokenExpired(detail="reset token expired", message=GENERIC_TOKEN_MESSAGE),
                principal_id,
                origin_address,
            )

        password_hash = hash_password(new_password)

        with self.db.get_session() as session:
            consumed = session.execute(
                update(password_resets)
                .where(
                    password_resets.c.token_hash == token_hash,
                    password_resets.c.used_at.is_(None),
                    password_resets.c.expires_at > now,
                )
                .values(used_at=now)
                .returning(password_resets.c.principal_id)
            ).first()
            revoked = 0
            if consumed is not None:
                self.store.set_password(principal_id, password_hash, session=session)
                if self.sessions is not None:
                    revoked = self.sessions.revoke_all(principal_id, session=session)

        if consumed is None:
            raise self._fail(
                TokenInvalidOrUsed(detail="reset token consumed concurrently"), principal_id, origin_address
            )

        self.audit.emit(
            AuditKind.RESET_COMPLETED,
            principal_id,
            origin_address,
            {"sessions_revoked": revoked},
            Severity.INFO,
        )
        self._confirm(principal_id)
        logger.info(f"Password reset completed for principal {principal_id}")
        return principal_id

    def _confirm(self, principal_id: str) -> None:
        """Tell the principal their password changed. Failure is only logged."""
        try:
            principal = self.store.get_by_id(principal_id)
        except StoreError as e:
            logger.warning(f"Password change confirmation skipped for {principal_id}: {e.detail}")
            return
        if principal is None:
            return
        try:
            dispatch(
                self.notifier,
                NotificationKind.CONFIRMATION,
                principal.identity_address,
                {"display_name": principal.display_name},
            )
        except NotifierError as e:
            logger.warning(f"Password change confirmation not sent to {principal_id}: {e}")

    # ==========================================
    # Maintenance
    # ==========================================

    def purge_expired(self) -> int:
        """
        Delete expired and used reset tokens.

        Returns:
            Number of rows deleted.
        """
        with self.db.get_session() as session:
            result = session.execute(
                delete(password_resets).where(
                    or_(
                        password_resets.c.expires_at <= self.clock(),
                        password_resets.c.used_at.isnot(None),
                    )
                )
            )
            count = result.rowcount
        logger.info(f"Purged {count} reset tokens")
        return count

    def token_stats(self) -> Dict[str, Any]:
        """Counts of reset tokens by state."""
        now = self.clock()
        with self.db.get_session() as session:
            total = session.execute(select(func.count()).select_from(password_resets)).scalar_one()
            used = session.execute(
                select(func.count()).select_from(password_resets)
                .where(password_resets.c.used_at.isnot(None))
            ).scalar_one()
            expired = session.execute(
                select(func.count()).select_from(password_resets)
                .where(password_resets.c.used_at.is_(None), password_resets.c.expires_at <= now)
            ).scalar_one()

        return {
            "total": total,
            "active": total - used - expired,
            "used": used,
            "expired": expired,
        }
