"""
Session token issuance, validation and revocation.

Sessions are stateful: every privileged request looks the token hash up in
``active_sessions``, so deleting the row is an immediate forced logout.
Multiple concurrent sessions per principal are allowed (multi-device).
"""
import os
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import select, insert, delete

from .tokens import generate_token, hash_token
from ..database.connection import Database
from ..database.models import Principal, ActiveSession
from ..database.schema import active_sessions, principals
from ..utils.clock import Clock, utcnow
from ..utils.secrets import mask_secret

logger = logging.getLogger(__name__)

DEFAULT_SESSION_HOURS = 24


@dataclass(frozen=True)
class IssuedSession:
    """Raw bearer token (shown once to the caller) and its expiry."""
    token: str = field(repr=False)
    expires_at: datetime


class SessionTokenIssuer:
    """
    Issues and tracks bearer session tokens.

    Example usage:
        issuer = SessionTokenIssuer(db)
        issued = issuer.issue(principal, device_info="Mozilla/5.0", origin_address="10.0.0.1")

        principal = issuer.validate(issued.token)
        issuer.revoke(issued.token)
    """

    def __init__(
        self,
        db: Database,
        validity_hours: Optional[int] = None,
        clock: Clock = utcnow,
    ):
        self.db = db
        if validity_hours is None:
            validity_hours = int(os.getenv("AUTH_SESSION_HOURS", str(DEFAULT_SESSION_HOURS)))
        self.validity = timedelta(hours=validity_hours)
        self.clock = clock

    def issue(
        self,
        principal: Principal,
        device_info: Optional[str] = None,
        origin_address: Optional[str] = None,
    ) -> IssuedSession:
        """
        Create a new session for a principal.

        Independent of any existing sessions for the same principal.

        Returns:
            The raw token and its expiry. The raw token is not stored.
        """
        token = generate_token()
        now = self.clock()
        expires_at = now + self.validity

        with self.db.get_session() as session:
            session.execute(
                insert(active_sessions).values(
                    token_hash=hash_token(token),
                    principal_id=principal.principal_id,
                    expires_at=expires_at,
                    device_info=(device_info or "")[:512] or None,
                    origin_address=origin_address,
                    created_at=now,
                )
            )

        logger.debug(f"Created session for principal {principal.principal_id}, expires {expires_at}")
        return IssuedSession(token=token, expires_at=expires_at)

    def validate(self, token: str) -> Optional[Principal]:
        """
        Resolve a bearer token to its principal.

        Returns:
            Principal if the session exists, is unexpired and the principal can
            still log in; None otherwise. Never extends the session.
        """
        if not token:
            return None

        with self.db.get_session() as session:
            row = session.execute(
                select(principals)
                .join(active_sessions, active_sessions.c.principal_id == principals.c.principal_id)
                .where(
                    active_sessions.c.token_hash == hash_token(token),
                    active_sessions.c.expires_at > self.clock(),
                    principals.c.is_login_enabled.is_(True),
                )
            ).mappings().first()

            if not row:
                return None
            return Principal.from_row(row)

    def revoke(self, token: str) -> Optional[str]:
        """
        Delete the session matching ``token``.

        Idempotent: unknown or already revoked tokens are not an error.

        Returns:
            The principal ID the session belonged to, or None.
        """
        if not token:
            return None

        with self.db.get_session() as session:
            row = session.execute(
                delete(active_sessions)
                .where(active_sessions.c.token_hash == hash_token(token))
                .returning(active_sessions.c.principal_id)
            ).first()

        if row is None:
            logger.debug(f"Revoke of unknown session {mask_secret(token)}")
            return None
        logger.debug(f"Revoked session for principal {row[0]}")
        return row[0]

    def revoke_all(self, principal_id: str, session=None) -> int:
        """
        Delete every session of a principal (logout from all devices).

        Args:
            session: Optional open session, to join a caller's transaction.

        Returns:
            Number of sessions revoked.
        """
        statement = delete(active_sessions).where(active_sessions.c.principal_id == principal_id)
        if session is not None:
            count = session.execute(statement).rowcount
        else:
            with self.db.get_session() as own_session:
                count = own_session.execute(statement).rowcount
        logger.info(f"Revoked {count} sessions for principal {principal_id}")
        return count

    def sessions_for(self, principal_id: str) -> List[ActiveSession]:
        """Unexpired sessions of a principal, newest first."""
        with self.db.get_session() as session:
            rows = session.execute(
                select(active_sessions)
                .where(
                    active_sessions.c.principal_id == principal_id,
                    active_sessions.c.expires_at > self.clock(),
                )
                .order_by(active_sessions.c.created_at.desc())
            ).mappings().all()

            return [
                ActiveSession(
                    token_hash=row["token_hash"],
                    principal_id=row["principal_id"],
                    expires_at=row["expires_at"],
                    device_info=row["device_info"],
                    origin_address=row["origin_address"],
                    created_at=row["created_at"],
                )
                for row in rows
            ]
