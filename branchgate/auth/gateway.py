"""
Caller-facing authentication operations.

Every operation returns an ``AuthResult``; exceptions raised by the services
are converted here and never escape. Login follows a fixed order:

    rate limit -> lookup -> unverified -> locked -> password -> session

A locked principal never reaches the password comparison. Login attempt
history, audit events and anomaly detection are best-effort side effects:
their failure is logged and never changes the result.
"""
import logging
from typing import Optional

from .errors import (
    AuthError,
    AccountLocked,
    AccountUnverified,
    InvalidCredentials,
    NotFoundOrEnumerationSuppressed,
    NotifierError,
    RateLimited,
    StoreError,
    TokenInvalidOrUsed,
    ValidationError,
)
from .lockout import LockoutPolicy
from .notifier import Notifier
from .outcomes import AuthResult, Outcome, VERIFICATION_REQUEST_MESSAGE, RESET_REQUEST_MESSAGE
from .password_reset import PasswordResetService, validate_new_password
from .rate_limit import RateLimiter
from .sessions import SessionTokenIssuer
from .settings import AuthSettings
from .verification import EmailVerificationService
from ..database.connection import Database
from ..database.credential_store import (
    CredentialStore,
    burn_password_check,
    hash_password,
    normalize_address,
    verify_password,
)
from ..database.models import LoginAttempt, Principal
from ..security.audit import AuditTrail, AuditKind, Severity
from ..utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)

REGISTRATION_UNAVAILABLE = "Registration is not available for this address"


class AuthGateway:
    """
    Entry point for login, logout, verification, reset and registration.

    Example usage:
        gateway = AuthGateway.build(db, notifier, RateLimiter())

        result = gateway.login("branch@client.com", "secret-password", origin_address="10.0.0.1")
        if result.success:
            token = result.token
    """

    def __init__(
        self,
        store: CredentialStore,
        sessions: SessionTokenIssuer,
        verification: EmailVerificationService,
        resets: PasswordResetService,
        audit: AuditTrail,
        rate_limiter: Optional[RateLimiter] = None,
        min_password_length: Optional[int] = None,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.sessions = sessions
        self.verification = verification
        self.resets = resets
        self.audit = audit
        self.rate_limiter = rate_limiter
        self.min_password_length = min_password_length
        self.clock = clock

    @classmethod
    def build(
        cls,
        db: Database,
        notifier: Notifier,
        rate_limiter: Optional[RateLimiter] = None,
        settings: Optional[AuthSettings] = None,
        clock: Clock = utcnow,
    ) -> "AuthGateway":
        """Wire every service against one database, notifier and clock."""
        settings = settings or AuthSettings.from_env()
        lockout = LockoutPolicy(settings.lock_threshold, settings.lock_minutes)
        store = CredentialStore(db, lockout=lockout, clock=clock)
        audit = AuditTrail(db, clock=clock)
        sessions = SessionTokenIssuer(db, validity_hours=settings.session_hours, clock=clock)
        verification = EmailVerificationService(
            store, notifier, audit,
            validity_hours=settings.verification_token_hours,
            clock=clock,
        )
        resets = PasswordResetService(
            store, notifier, audit, sessions,
            validity_minutes=settings.reset_token_minutes,
            min_password_length=settings.min_password_length,
            clock=clock,
        )
        return cls(
            store, sessions, verification, resets, audit,
            rate_limiter=rate_limiter,
            min_password_length=settings.min_password_length,
            clock=clock,
        )

    @property
    def lockout(self) -> LockoutPolicy:
        return self.store.lockout

    # ==========================================
    # Helpers
    # ==========================================

    def _check_rate(self, purpose: str, origin_address: Optional[str], identity: Optional[str]) -> None:
        if self.rate_limiter is None:
            return
        decision = self.rate_limiter.hit(purpose, origin_address, identity)
        if not decision.allowed:
            logger.warning(f"Rate limit hit for {purpose} from {origin_address}")
            raise RateLimited(decision.retry_after)

    def _failure(self, error: AuthError, operation: str) -> AuthResult:
        if isinstance(error, StoreError):
            logger.error(f"{operation} failed on store error: {error.detail}", exc_info=True)
        elif isinstance(error, NotifierError):
            logger.error(f"{operation}: message not sent: {error.detail}")
        else:
            logger.info(f"{operation} rejected: {error.outcome.value}")
        return AuthResult.from_error(error)

    def _record_attempt(
        self,
        principal_id: Optional[str],
        origin_address: Optional[str],
        outcome: str,
        reason: Optional[str],
        user_agent: Optional[str],
    ) -> None:
        try:
            self.store.record_login_attempt(LoginAttempt(
                principal_id=principal_id,
                origin_address=origin_address,
                outcome=outcome,
                reason=reason,
                user_agent=user_agent,
            ))
        except StoreError as e:
            logger.warning(f"Could not record login attempt: {e.detail}")

    def _login_failed(
        self,
        principal_id: Optional[str],
        origin_address: Optional[str],
        reason: str,
        user_agent: Optional[str],
        **details,
    ) -> None:
        self._record_attempt(principal_id, origin_address, "failed", reason, user_agent)
        self.audit.emit(
            AuditKind.LOGIN_FAILED,
            principal_id,
            origin_address,
            {"reason": reason, **details},
            Severity.WARNING,
        )

    def _detect_anomalies(self, principal_id: str, origin_address: Optional[str]) -> None:
        try:
            self.audit.detect_anomalies(
                principal_id, AuditKind.LOGIN_FAILED, origin_address=origin_address
            )
        except AuthError as e:
            logger.warning(f"Anomaly detection skipped: {e.detail}")

    def _lookup_for_login(self, address: str) -> Optional[Principal]:
        try:
            return self.store.find_by_identity(address, for_login=True)
        except StoreError as e:
            # Indistinguishable from an unknown identity
            logger.error(f"Principal lookup failed: {e.detail}")
            return None

    # ==========================================
    # Login / Logout
    # ==========================================

    def login(
        self,
        address: str,
        password: str,
        origin_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuthResult:
        """Authenticate and issue a session token."""
        try:
            if not address or not password:
                raise ValidationError("Email and password are required")
            address = normalize_address(address)

            self._check_rate("login", origin_address, address)

            principal = self._lookup_for_login(address)
            if principal is None or not principal.has_password:
                burn_password_check(password)
                principal_id = principal.principal_id if principal else None
                self._login_failed(
                    principal_id, origin_address,
                    "unknown_identity" if principal is None else "no_password",
                    user_agent,
                    identity_address=address,
                )
                raise InvalidCredentials()

            if not principal.is_verified:
                self._login_failed(principal.principal_id, origin_address, "unverified", user_agent)
                raise AccountUnverified()

            decision = self.lockout.decide(
                principal.failed_attempt_count, principal.locked_until, self.clock()
            )
            if decision.locked:
                self._login_failed(
                    principal.principal_id, origin_address, "locked", user_agent,
                    remaining_seconds=decision.remaining_seconds,
                )
                raise AccountLocked(decision.remaining_seconds)

            if not verify_password(password, principal.password_hash):
                state = self.store.record_failed_attempt(principal.principal_id)
                self._login_failed(
                    principal.principal_id, origin_address, "wrong_password", user_agent,
                    failed_attempt_count=state.failed_attempt_count,
                )
                if state.lock_started:
                    self.audit.emit(
                        AuditKind.ACCOUNT_LOCKED,
                        principal.principal_id,
                        origin_address,
                        {
                            "failed_attempt_count": state.failed_attempt_count,
                            "locked_until": state.locked_until,
                        },
                        Severity.WARNING,
                        previous_state="active",
                        new_state="locked",
                    )
                self._detect_anomalies(principal.principal_id, origin_address)
                raise InvalidCredentials()

            self.store.reset_on_success(principal.principal_id)
            issued = self.sessions.issue(principal, user_agent, origin_address)

        except StoreError as e:
            logger.error(f"Login failed on store error: {e.detail}", exc_info=True)
            return AuthResult.of(Outcome.INVALID_CREDENTIALS)
        except AuthError as e:
            return self._failure(e, "Login")

        if self.rate_limiter is not None:
            self.rate_limiter.reset("login", origin_address, address)
        self._record_attempt(principal.principal_id, origin_address, "success", None, user_agent)
        self.audit.emit(
            AuditKind.LOGIN_SUCCEEDED,
            principal.principal_id,
            origin_address,
            {"user_agent": user_agent},
        )
        logger.info(f"Principal {principal.principal_id} logged in")

        return AuthResult.of(
            Outcome.LOGGED_IN,
            token=issued.token,
            expires_at=issued.expires_at,
            principal=principal,
        )

    def logout(self, token: str, origin_address: Optional[str] = None) -> AuthResult:
        """Revoke one session. Unknown or already revoked tokens also succeed."""
        try:
            principal_id = self.sessions.revoke(token)
        except AuthError as e:
            return self._failure(e, "Logout")

        if principal_id is not None:
            self.audit.emit(AuditKind.LOGOUT, principal_id, origin_address, {})
        return AuthResult.of(Outcome.LOGGED_OUT)

    def logout_all(self, token: str, origin_address: Optional[str] = None) -> AuthResult:
        """Revoke every session of the principal owning ``token``."""
        try:
            principal = self.sessions.validate(token)
            if principal is None:
                raise TokenInvalidOrUsed(detail="unknown session")
            revoked = self.sessions.revoke_all(principal.principal_id)
        except AuthError as e:
            return self._failure(e, "Logout everywhere")

        self.audit.emit(
            AuditKind.SESSIONS_REVOKED,
            principal.principal_id,
            origin_address,
            {"sessions_revoked": revoked},
        )
        return AuthResult.of(Outcome.LOGGED_OUT, f"Logged out of {revoked} session(s)")

    def current_principal(self, token: str) -> AuthResult:
        """Resolve a bearer token. Never renews the session."""
        try:
            principal = self.sessions.validate(token)
        except AuthError as e:
            return self._failure(e, "Session check")

        if principal is None:
            return AuthResult.of(Outcome.TOKEN_INVALID)
        return AuthResult.of(Outcome.AUTHENTICATED, principal=principal)

    # ==========================================
    # Email Verification
    # ==========================================

    def _verification_request(
        self,
        purpose: str,
        address: str,
        origin_address: Optional[str],
    ) -> AuthResult:
        try:
            if not address:
                raise ValidationError("Email is required")
            self._check_rate(purpose, origin_address, address)
            try:
                self.verification.initiate(address, origin_address)
            except NotFoundOrEnumerationSuppressed:
                pass
        except AuthError as e:
            return self._failure(e, "Verification request")

        return AuthResult.of(Outcome.REQUEST_ACCEPTED, VERIFICATION_REQUEST_MESSAGE)

    def initiate_verification(self, address: str, origin_address: Optional[str] = None) -> AuthResult:
        return self._verification_request("verification", address, origin_address)

    def resend_verification(self, address: str, origin_address: Optional[str] = None) -> AuthResult:
        return self._verification_request("verification-resend", address, origin_address)

    def redeem_verification(self, token: str, origin_address: Optional[str] = None) -> AuthResult:
        try:
            redemption = self.verification.redeem(token, origin_address)
        except AuthError as e:
            return self._failure(e, "Verification")

        if redemption.already_verified:
            return AuthResult.of(Outcome.ALREADY_VERIFIED)
        return AuthResult.of(Outcome.VERIFIED)

    # ==========================================
    # Password Reset
    # ==========================================

    def request_password_reset(self, address: str, origin_address: Optional[str] = None) -> AuthResult:
        try:
            if not address:
                raise ValidationError("Email is required")
            self._check_rate("password-reset", origin_address, address)
            try:
                self.resets.request_reset(address, origin_address)
            except NotFoundOrEnumerationSuppressed:
                pass
        except AuthError as e:
            return self._failure(e, "Password reset request")

        return AuthResult.of(Outcome.REQUEST_ACCEPTED, RESET_REQUEST_MESSAGE)

    def reset_password(
        self,
        token: str,
        new_password: str,
        origin_address: Optional[str] = None,
    ) -> AuthResult:
        try:
            self.resets.redeem(token, new_password, origin_address)
        except AuthError as e:
            return self._failure(e, "Password reset")
        return AuthResult.of(Outcome.PASSWORD_RESET)

    # ==========================================
    # Registration
    # ==========================================

    def complete_registration(
        self,
        address: str,
        password: str,
        origin_address: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> AuthResult:
        """
        Set the first password of a provisioned principal and send verification.

        Provisioned principals register even when login is still disabled;
        registering enables it. Unknown addresses and principals that already
        have a password get the same refusal.
        """
        try:
            if not address:
                raise ValidationError("Email is required")
            validate_new_password(password, self.min_password_length)
            self._check_rate("registration", origin_address, address)

            principal = self.store.find_by_identity(address, for_login=False)
            if principal is None or principal.has_password:
                raise ValidationError(REGISTRATION_UNAVAILABLE)

            display_name = (display_name or "").strip() or None
            registered = self.store.set_initial_password(
                principal.principal_id, hash_password(password), display_name
            )
            if not registered:
                raise ValidationError(REGISTRATION_UNAVAILABLE)
            principal = self.store.get_by_id(principal.principal_id) or principal
        except AuthError as e:
            return self._failure(e, "Registration")

        self.audit.emit(
            AuditKind.REGISTRATION_COMPLETED,
            principal.principal_id,
            origin_address,
            {"identity_address": principal.identity_address, "display_name": display_name},
            previous_state="unregistered",
            new_state="unverified",
        )

        if not principal.is_verified:
            try:
                self.verification.send(principal, origin_address)
            except AuthError as e:
                logger.warning(f"Verification after registration not sent: {e.detail}")

        logger.info(f"Principal {principal.principal_id} completed registration")
        return AuthResult.of(Outcome.REGISTERED, principal=principal)
