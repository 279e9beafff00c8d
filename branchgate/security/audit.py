"""
Security audit trail.

Append-only log of security-relevant events with mandatory payload
sanitization and threshold-based anomaly detection.

Writes from primary operations go through ``emit``: a failed audit write is
logged and dropped, it never aborts the login, reset or verification it
describes.
"""
import uuid
import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import select, insert, func

from .sanitizer import sanitize_details
from ..database.connection import Database
from ..database.schema import audit_events
from ..utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)

# Anomaly thresholds
ANOMALY_WINDOW_SECONDS = 300
ANOMALY_MAX_ATTEMPTS = 3
ANOMALY_MAX_AMOUNT = 50000


class AuditKind(str, Enum):
    """Types of audit events."""
    LOGIN_SUCCEEDED = "login-succeeded"
    LOGIN_FAILED = "login-failed"
    ACCOUNT_LOCKED = "account-locked"
    LOGOUT = "logout"
    SESSIONS_REVOKED = "sessions-revoked"
    REGISTRATION_COMPLETED = "registration-completed"
    VERIFICATION_ISSUED = "verification-issued"
    VERIFICATION_SUPPRESSED = "verification-suppressed"
    VERIFICATION_COMPLETED = "verification-completed"
    VERIFICATION_FAILED = "verification-failed"
    RESET_REQUESTED = "reset-requested"
    RESET_SUPPRESSED = "reset-suppressed"
    RESET_COMPLETED = "reset-completed"
    RESET_FAILED = "reset-failed"
    NOTIFICATION_FAILED = "notification-failed"
    SECURITY_EVENT = "security-event"


class Severity(str, Enum):
    """Severity levels."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


@dataclass
class Anomaly:
    """A flagged pattern. Advisory only."""
    type: str
    severity: Severity
    details: str


@dataclass
class AuditEvent:
    """A persisted audit event (immutable once written)."""
    event_id: str
    kind: str
    principal_id: Optional[str]
    origin_address: Optional[str]
    details: Any
    severity: str
    previous_state: Optional[str] = None
    new_state: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    occurred_at: Optional[datetime] = None


def _row_to_event(row) -> AuditEvent:
    return AuditEvent(
        event_id=row["event_id"],
        kind=row["kind"],
        principal_id=row["principal_id"],
        origin_address=row["origin_address"],
        details=row["details"],
        severity=row["severity"],
        previous_state=row["previous_state"],
        new_state=row["new_state"],
        metadata=row["metadata"] or {},
        occurred_at=row["occurred_at"],
    )


class AuditTrail:
    """
    Append-only security event log.

    Example usage:
        audit = AuditTrail(db)
        audit.record(
            AuditKind.RESET_COMPLETED,
            principal_id,
            "10.0.0.1",
            {"password": "never stored"},  # persisted as "[REDACTED]"
        )
    """

    def __init__(
        self,
        db: Database,
        clock: Clock = utcnow,
        max_amount: float = ANOMALY_MAX_AMOUNT,
    ):
        self.db = db
        self.clock = clock
        self.max_amount = max_amount

    def record(
        self,
        kind: AuditKind,
        principal_id: Optional[str],
        origin_address: Optional[str],
        details: Any,
        severity: Severity = Severity.INFO,
        previous_state: Optional[str] = None,
        new_state: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Persist one audit event.

        ``details`` and ``metadata`` are always sanitized first; there is no
        way to opt out.

        Returns:
            ID of the created event.

        Raises:
            StoreError: If the event could not be written.
        """
        event_id = str(uuid.uuid4())
        kind = AuditKind(kind)
        severity = Severity(severity)

        with self.db.get_session() as session:
            session.execute(
                insert(audit_events).values(**{
                    "event_id": event_id,
                    "kind": kind.value,
                    "principal_id": principal_id,
                    "origin_address": origin_address,
                    "details": sanitize_details(details if details is not None else {}),
                    "severity": severity.value,
                    "previous_state": previous_state,
                    "new_state": new_state,
                    "metadata": sanitize_details(metadata or {}),
                    "occurred_at": self.clock(),
                })
            )

        logger.debug(f"Audit event recorded: {kind.value} ({severity.value}) id={event_id}")
        return event_id

    def emit(self, *args, **kwargs) -> Optional[str]:
        """
        Best-effort ``record``.

        Returns:
            Event ID, or None if the write failed (the failure is logged).
        """
        try:
            return self.record(*args, **kwargs)
        except Exception as e:
            logger.error(f"Audit write failed, continuing without it: {e}", exc_info=True)
            return None

    # ==========================================
    # Anomaly Detection
    # ==========================================

    def count_recent(self, principal_id: str, kind: AuditKind, window_seconds: int) -> int:
        """Events of ``kind`` for a principal within the trailing window."""
        since = self.clock() - timedelta(seconds=window_seconds)
        with self.db.get_session() as session:
            return session.execute(
                select(func.count())
                .select_from(audit_events)
                .where(
                    audit_events.c.principal_id == principal_id,
                    audit_events.c.kind == AuditKind(kind).value,
                    audit_events.c.occurred_at > since,
                )
            ).scalar_one()

    def detect_anomalies(
        self,
        principal_id: Optional[str],
        kind: AuditKind = AuditKind.LOGIN_FAILED,
        window_seconds: int = ANOMALY_WINDOW_SECONDS,
        max_attempts_in_window: int = ANOMALY_MAX_ATTEMPTS,
        amount: Optional[float] = None,
        max_amount: Optional[float] = None,
        origin_address: Optional[str] = None,
    ) -> List[Anomaly]:
        """
        Flag suspicious patterns for a principal.

        - ``multiple_attempts``: at least ``max_attempts_in_window`` events of
          ``kind`` in the trailing window.
        - ``high_amount``: ``amount`` above the ceiling.

        Found anomalies are recorded as a warning ``security-event``. This never
        blocks the operation being observed.
        """
        ceiling = self.max_amount if max_amount is None else max_amount
        anomalies: List[Anomaly] = []

        if amount is not None and amount > ceiling:
            anomalies.append(Anomaly(
                type="high_amount",
                severity=Severity.WARNING,
                details=f"Amount above {ceiling}",
            ))

        if principal_id is not None:
            recent = self.count_recent(principal_id, kind, window_seconds)
            if recent >= max_attempts_in_window:
                anomalies.append(Anomaly(
                    type="multiple_attempts",
                    severity=Severity.WARNING,
                    details=f"{recent} {AuditKind(kind).value} events in {window_seconds} seconds",
                ))

        if anomalies:
            logger.warning(
                f"Anomalies for principal {principal_id}: {[a.type for a in anomalies]}"
            )
            self.emit(
                AuditKind.SECURITY_EVENT,
                principal_id,
                origin_address,
                {"anomalies": [asdict(a) for a in anomalies], "observed_kind": AuditKind(kind).value},
                Severity.WARNING,
            )

        return anomalies

    # ==========================================
    # Queries
    # ==========================================

    def events_for(self, principal_id: str, limit: int = 50) -> List[AuditEvent]:
        """Audit history of one principal, newest first."""
        with self.db.get_session() as session:
            rows = session.execute(
                select(audit_events)
                .where(audit_events.c.principal_id == principal_id)
                .order_by(audit_events.c.occurred_at.desc())
                .limit(limit)
            ).mappings().all()
            return [_row_to_event(row) for row in rows]

    def report(
        self,
        start: datetime,
        end: datetime,
        severity: Optional[Severity] = None,
        kind: Optional[AuditKind] = None,
    ) -> List[AuditEvent]:
        """Events between ``start`` and ``end`` (inclusive), optionally filtered."""
        query = select(audit_events).where(audit_events.c.occurred_at.between(start, end))
        if severity is not None:
            query = query.where(audit_events.c.severity == Severity(severity).value)
        if kind is not None:
            query = query.where(audit_events.c.kind == AuditKind(kind).value)

        with self.db.get_session() as session:
            rows = session.execute(query.order_by(audit_events.c.occurred_at.desc())).mappings().all()
            return [_row_to_event(row) for row in rows]

