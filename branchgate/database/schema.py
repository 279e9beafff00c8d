"""
Relational schema for principals, tokens, sessions and audit events.

Tables are declared with SQLAlchemy Core so the same statements run on
PostgreSQL (production) and SQLite (tests, local development).
"""
from datetime import timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)
from sqlalchemy.types import TypeDecorator

from ..utils.clock import ensure_utc


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware UTC timestamp.

    PostgreSQL stores TIMESTAMP WITH TIME ZONE; SQLite has no timezone support,
    so values are written as naive UTC and re-tagged as UTC when read back.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = ensure_utc(value)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


metadata = MetaData()

principals = Table(
    "principals",
    metadata,
    Column("principal_id", String(36), primary_key=True),
    Column("identity_address", String(255), nullable=False, unique=True),
    Column("display_name", String(255)),
    Column("password_hash", String(255), nullable=True),
    Column("is_login_enabled", Boolean, nullable=False, default=True),
    Column("is_verified", Boolean, nullable=False, default=False),
    Column("failed_attempt_count", Integer, nullable=False, default=0),
    Column("locked_until", UTCDateTime, nullable=True),
    Column("last_login_at", UTCDateTime, nullable=True),
    Column("created_at", UTCDateTime, nullable=False),
    Column("updated_at", UTCDateTime, nullable=False),
)

verification_tokens = Table(
    "verification_tokens",
    metadata,
    Column(
        "principal_id",
        String(36),
        ForeignKey("principals.principal_id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column("token_hash", String(64), nullable=False, unique=True),
    Column("expires_at", UTCDateTime, nullable=False),
    Column("consumed_at", UTCDateTime, nullable=True),
    Column("created_at", UTCDateTime, nullable=False),
)

password_resets = Table(
    "password_resets",
    metadata,
    Column("reset_id", Integer, primary_key=True, autoincrement=True),
    Column(
        "principal_id",
        String(36),
        ForeignKey("principals.principal_id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("token_hash", String(64), nullable=False, unique=True),
    Column("expires_at", UTCDateTime, nullable=False),
    Column("used_at", UTCDateTime, nullable=True),
    Column("created_at", UTCDateTime, nullable=False),
    Index("idx_password_resets_principal", "principal_id"),
)

active_sessions = Table(
    "active_sessions",
    metadata,
    Column("token_hash", String(64), primary_key=True),
    Column(
        "principal_id",
        String(36),
        ForeignKey("principals.principal_id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("expires_at", UTCDateTime, nullable=False),
    Column("device_info", String(512)),
    Column("origin_address", String(64)),
    Column("created_at", UTCDateTime, nullable=False),
    Index("idx_active_sessions_principal", "principal_id"),
    Index("idx_active_sessions_expires", "expires_at"),
)

login_attempts = Table(
    "login_attempts",
    metadata,
    Column("attempt_id", Integer, primary_key=True, autoincrement=True),
    Column("principal_id", String(36), nullable=True),
    Column("origin_address", String(64)),
    Column("outcome", String(16), nullable=False),
    Column("reason", String(255)),
    Column("user_agent", Text),
    Column("occurred_at", UTCDateTime, nullable=False),
    Index("idx_login_attempts_principal", "principal_id", "occurred_at"),
)

audit_events = Table(
    "audit_events",
    metadata,
    Column("event_id", String(36), primary_key=True),
    Column("kind", String(64), nullable=False),
    Column("principal_id", String(36), nullable=True),
    Column("origin_address", String(64)),
    Column("details", JSON, nullable=False),
    Column("severity", String(16), nullable=False),
    Column("previous_state", String(64)),
    Column("new_state", String(64)),
    Column("metadata", JSON, nullable=False),
    Column("occurred_at", UTCDateTime, nullable=False),
    Index("idx_audit_events_principal", "principal_id", "kind", "occurred_at"),
    Index("idx_audit_events_occurred", "occurred_at"),
)
