"""
Pytest configuration and shared fixtures for BranchGate tests.

This module provides common test fixtures for:
- A throwaway SQLite database per test (same SQLAlchemy code as PostgreSQL)
- A fixed, advanceable clock
- Recording notifier and mock Redis client
- Wired services and gateway
"""
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add project root to Python path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

# Cheap hashes in tests
os.environ.setdefault("BCRYPT_ROUNDS", "4")

from branchgate.auth.gateway import AuthGateway
from branchgate.auth.password_reset import PasswordResetService
from branchgate.auth.rate_limit import RateLimiter
from branchgate.auth.sessions import SessionTokenIssuer
from branchgate.auth.settings import AuthSettings
from branchgate.auth.verification import EmailVerificationService
from branchgate.database.connection import Database
from branchgate.database.credential_store import CredentialStore, hash_password
from branchgate.security.audit import AuditTrail

TEST_PASSWORD = "correct-horse-battery"


# ============================================
# Time
# ============================================

class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def timestamp(self) -> float:
        return self.now.timestamp()


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 3, 1, 9, 0, 0, tzinfo=timezone.utc))


# ============================================
# Database Fixtures
# ============================================

@pytest.fixture
def db(tmp_path):
    """
    Fresh SQLite database file with the full schema.
    Automatically cleaned up after test completes.
    """
    database = Database(f"sqlite:///{tmp_path / 'branchgate.db'}")
    database.init_schema()
    yield database
    database.dispose()


@pytest.fixture
def store(db, clock):
    return CredentialStore(db, clock=clock)


@pytest.fixture
def audit(db, clock):
    return AuditTrail(db, clock=clock)


@pytest.fixture
def sessions(db, clock):
    return SessionTokenIssuer(db, validity_hours=24, clock=clock)


@pytest.fixture
def password_hash():
    """One bcrypt hash of TEST_PASSWORD, shared across a test."""
    return hash_password(TEST_PASSWORD)


@pytest.fixture
def make_principal(store, password_hash):
    """
    Factory for provisioned principals.

    Defaults to a verified principal with TEST_PASSWORD set.
    """
    def _make(
        address="branch@client.com",
        with_password=True,
        is_verified=True,
        is_login_enabled=True,
        display_name="Branch North",
    ):
        principal_id = store.create_principal(
            address,
            display_name=display_name,
            password_hash=password_hash if with_password else None,
            is_login_enabled=is_login_enabled,
            is_verified=is_verified,
        )
        return store.get_by_id(principal_id)

    return _make


# ============================================
# Collaborators
# ============================================

class RecordingNotifier:
    """Notifier that keeps every message; can be told to fail."""

    def __init__(self):
        self.sent = []
        self.fail = False
        self.raise_error = None

    def send(self, kind, address, params):
        if self.raise_error is not None:
            raise self.raise_error
        if self.fail:
            return False
        self.sent.append((kind, address, dict(params)))
        return True

    def last_token(self):
        return self.sent[-1][2]["token"]


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def mock_redis_client():
    """
    Mock Redis client for testing rate limiting.
    Implements get/incr/ttl/expire/delete and pipelines with an in-memory store.
    """
    class MockPipeline:
        def __init__(self, client):
            self.client = client
            self.commands = []

        def incr(self, key):
            self.commands.append(("incr", key))
            return self

        def ttl(self, key):
            self.commands.append(("ttl", key))
            return self

        def execute(self):
            results = [getattr(self.client, name)(key) for name, key in self.commands]
            self.commands = []
            return results

    class MockRedisClient:
        def __init__(self):
            self.store = {}
            self.expiry = {}

        def get(self, key):
            return self.store.get(key)

        def delete(self, key):
            self.store.pop(key, None)
            self.expiry.pop(key, None)
            return 1

        def incr(self, key):
            self.store[key] = int(self.store.get(key, 0)) + 1
            return self.store[key]

        def ttl(self, key):
            if key not in self.store:
                return -2
            return self.expiry.get(key, -1)

        def expire(self, key, seconds):
            self.expiry[key] = seconds
            return True

        def pipeline(self):
            return MockPipeline(self)

    return MockRedisClient()


@pytest.fixture
def rate_limiter(clock):
    return RateLimiter(redis_client=None, time_source=clock.timestamp)


# ============================================
# Services
# ============================================

@pytest.fixture
def verification(store, notifier, audit, clock):
    return EmailVerificationService(store, notifier, audit, validity_hours=24, clock=clock)


@pytest.fixture
def resets(store, notifier, audit, sessions, clock):
    return PasswordResetService(
        store, notifier, audit, sessions,
        validity_minutes=60,
        min_password_length=8,
        clock=clock,
    )


@pytest.fixture
def gateway(db, notifier, rate_limiter, clock):
    return AuthGateway.build(db, notifier, rate_limiter, settings=AuthSettings(), clock=clock)
