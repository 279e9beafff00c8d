"""
Email verification token lifecycle.

Per principal: ``unverified -> pending -> verified``. Issuing overwrites the
principal's single token row; an expired redemption leaves the principal
pending; ``verified`` is terminal.

Initiation is enumeration-safe: unknown addresses, principals without a
password and already verified principals all raise
``NotFoundOrEnumerationSuppressed``, which callers report exactly like success.
"""
import os
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy import select, update, delete, insert

from .errors import NotFoundOrEnumerationSuppressed, NotifierError, TokenExpired, TokenInvalidOrUsed
from .notifier import Notifier, NotificationKind, dispatch, build_link
from .tokens import IssuedToken, generate_token, hash_token
from ..database.credential_store import CredentialStore
from ..database.models import Principal
from ..database.schema import verification_tokens
from ..security.audit import AuditTrail, AuditKind, Severity
from ..utils.clock import Clock, utcnow
from ..utils.secrets import mask_secret

logger = logging.getLogger(__name__)

DEFAULT_VERIFICATION_HOURS = 24
VERIFY_PATH = "/auth/verify-email"


@dataclass(frozen=True)
class VerificationRedemption:
    principal_id: str
    already_verified: bool = False


class EmailVerificationService:
    """
    Issues and redeems email verification tokens.

    Example usage:
        service = EmailVerificationService(store, notifier, audit)
        try:
            service.initiate("branch@client.com", origin_address="10.0.0.1")
        except NotFoundOrEnumerationSuppressed:
            pass  # same response as success

        redemption = service.redeem(token)
    """

    def __init__(
        self,
        store: CredentialStore,
        notifier: Notifier,
        audit: AuditTrail,
        validity_hours: Optional[int] = None,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.db = store.db
        self.notifier = notifier
        self.audit = audit
        if validity_hours is None:
            validity_hours = int(
                os.getenv("AUTH_VERIFICATION_TOKEN_HOURS", str(DEFAULT_VERIFICATION_HOURS))
            )
        self.validity = timedelta(hours=validity_hours)
        self.clock = clock

    def _suppress(self, reason: str, principal_id: Optional[str], origin_address: Optional[str]):
        logger.info(f"Verification suppressed ({reason}) for principal {principal_id}")
        self.audit.emit(
            AuditKind.VERIFICATION_SUPPRESSED,
            principal_id,
            origin_address,
            {"reason": reason},
            Severity.INFO,
        )
        return NotFoundOrEnumerationSuppressed(reason, principal_id)

    def _eligible_principal(self, address: str, origin_address: Optional[str]) -> Principal:
        principal = self.store.find_by_identity(address, for_login=False)
        if principal is None:
            raise self._suppress("unknown_identity", None, origin_address)
        if not principal.has_password:
            raise self._suppress("no_password", principal.principal_id, origin_address)
        if not principal.is_login_enabled:
            raise self._suppress("login_disabled", principal.principal_id, origin_address)
        if principal.is_verified:
            raise self._suppress("already_verified", principal.principal_id, origin_address)
        return principal

    def issue_for(self, principal: Principal) -> IssuedToken:
        """Create (or overwrite) the principal's verification token."""
        token = generate_token()
        now = self.clock()
        expires_at = now + self.validity

        with self.db.get_session() as session:
            session.execute(
                delete(verification_tokens).where(
                    verification_tokens.c.principal_id == principal.principal_id
                )
            )
            session.execute(
                insert(verification_tokens).values(
                    principal_id=principal.principal_id,
                    token_hash=hash_token(token),
                    expires_at=expires_at,
                    consumed_at=None,
                    created_at=now,
                )
            )

        return IssuedToken(principal_id=principal.principal_id, token=token, expires_at=expires_at)

    def send(self, principal: Principal, origin_address: Optional[str] = None) -> IssuedToken:
        """
        Issue a token and dispatch it.

        The token stays persisted even if dispatch fails.

        Raises:
            NotifierError: If the message could not be sent.
        """
        issued = self.issue_for(principal)
        self.audit.emit(
            AuditKind.VERIFICATION_ISSUED,
            principal.principal_id,
            origin_address,
            {"expires_at": issued.expires_at},
        )

        try:
            dispatch(
                self.notifier,
                NotificationKind.VERIFICATION,
                principal.identity_address,
                {
                    "token": issued.token,
                    "display_name": principal.display_name,
                    "expires_at": issued.expires_at.isoformat(),
                    "link": build_link(VERIFY_PATH, issued.token),
                },
            )
        except NotifierError as e:
            self.audit.emit(
                AuditKind.NOTIFICATION_FAILED,
                principal.principal_id,
                origin_address,
                {"kind": NotificationKind.VERIFICATION, "error": e.detail},
                Severity.ERROR,
            )
            raise

        logger.info(f"Verification token {mask_secret(issued.token)} sent to principal {principal.principal_id}")
        return issued

    def initiate(self, address: str, origin_address: Optional[str] = None) -> IssuedToken:
        """
        Start verification for an address.

        Raises:
            NotFoundOrEnumerationSuppressed: Unknown, no password, login disabled or already verified.
            NotifierError: Token persisted but the message was not sent.
        """
        principal = self._eligible_principal(address, origin_address)
        return self.send(principal, origin_address)

    def resend(self, address: str, origin_address: Optional[str] = None) -> IssuedToken:
        """Re-issue a verification token. Same contract as ``initiate``."""
        return self.initiate(address, origin_address)

    def redeem(self, token: str, origin_address: Optional[str] = None) -> VerificationRedemption:
        """
        Consume a verification token and mark the principal verified.

        Redeeming an already consumed token again reports ``already_verified``.

        Raises:
            TokenInvalidOrUsed: No token matches.
            TokenExpired: Token is past its expiry; principal stays pending.
        """
        if not token:
            raise TokenInvalidOrUsed(detail="empty verification token")

        token_hash = hash_token(token)
        now = self.clock()

        with self.db.get_session() as session:
            row = session.execute(
                select(verification_tokens).where(verification_tokens.c.token_hash == token_hash)
            ).mappings().first()

        if row is None:
            raise TokenInvalidOrUsed(detail="unknown verification token")

        principal_id = row["principal_id"]

        if row["consumed_at"] is not None:
            return VerificationRedemption(principal_id, already_verified=True)

        if row["expires_at"] <= now:
            self.audit.emit(
                AuditKind.VERIFICATION_FAILED,
                principal_id,
                origin_address,
                {"reason": "token_expired"},
                Severity.WARNING,
            )
            raise TokenExpired(detail="verification token expired")

        with self.db.get_session() as session:
            consumed = session.execute(
                update(verification_tokens)
                .where(
                    verification_tokens.c.token_hash == token_hash,
                    verification_tokens.c.consumed_at.is_(None),
                    verification_tokens.c.expires_at > now,
                )
                .values(consumed_at=now)
                .returning(verification_tokens.c.principal_id)
            ).first()
            if consumed is not None:
                self.store.set_verified(principal_id, True, session=session)

        if consumed is None:
            # A concurrent redemption got there first
            return VerificationRedemption(principal_id, already_verified=True)

        self.audit.emit(
            AuditKind.VERIFICATION_COMPLETED,
            principal_id,
            origin_address,
            {},
            Severity.INFO,
            previous_state="pending",
            new_state="verified",
        )
        logger.info(f"Principal {principal_id} verified")
        return VerificationRedemption(principal_id)
