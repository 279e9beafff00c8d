"""
Tests for session token issuance, validation and revocation.
"""
from datetime import timedelta

from sqlalchemy import select, update

from branchgate.database.schema import active_sessions, principals
from branchgate.auth.tokens import hash_token


class TestIssue:
    """Test session issuance."""

    def test_issue_returns_token_and_expiry(self, sessions, make_principal, clock):
        principal = make_principal()
        issued = sessions.issue(principal, "pytest-agent", "10.0.0.1")

        assert len(issued.token) >= 43
        assert issued.expires_at == clock() + timedelta(hours=24)
        assert issued.token not in repr(issued)

    def test_only_hash_is_stored(self, db, sessions, make_principal):
        principal = make_principal()
        issued = sessions.issue(principal)

        with db.get_session() as session:
            stored = session.execute(select(active_sessions.c.token_hash)).scalars().all()

        assert stored == [hash_token(issued.token)]
        assert issued.token not in stored

    def test_sessions_are_independent(self, sessions, make_principal):
        principal = make_principal()
        first = sessions.issue(principal, "laptop")
        second = sessions.issue(principal, "phone")

        assert first.token != second.token
        assert len(sessions.sessions_for(principal.principal_id)) == 2
        assert sessions.validate(first.token).principal_id == principal.principal_id
        assert sessions.validate(second.token).principal_id == principal.principal_id


class TestValidate:
    """Test session validation."""

    def test_unknown_token(self, sessions):
        assert sessions.validate("not-a-real-token") is None
        assert sessions.validate("") is None

    def test_expired_session_is_invalid(self, sessions, make_principal, clock):
        principal = make_principal()
        issued = sessions.issue(principal)

        clock.advance(hours=23, minutes=59)
        assert sessions.validate(issued.token) is not None

        clock.advance(minutes=1)
        assert sessions.validate(issued.token) is None

    def test_validation_does_not_renew(self, sessions, make_principal, clock):
        principal = make_principal()
        issued = sessions.issue(principal)

        clock.advance(hours=12)
        sessions.validate(issued.token)
        clock.advance(hours=12)

        assert sessions.validate(issued.token) is None

    def test_disabled_principal_session_is_invalid(self, sessions, make_principal, db):
        principal = make_principal()
        issued = sessions.issue(principal)
        with db.get_session() as session:
            session.execute(
                update(principals)
                .where(principals.c.principal_id == principal.principal_id)
                .values(is_login_enabled=False)
            )

        assert sessions.validate(issued.token) is None


class TestRevoke:
    """Test session revocation."""

    def test_revoke_is_idempotent(self, sessions, make_principal):
        principal = make_principal()
        issued = sessions.issue(principal)

        assert sessions.revoke(issued.token) == principal.principal_id
        assert sessions.validate(issued.token) is None
        assert sessions.revoke(issued.token) is None
        assert sessions.revoke("never-issued") is None

    def test_revoke_only_affects_one_session(self, sessions, make_principal):
        principal = make_principal()
        first = sessions.issue(principal)
        second = sessions.issue(principal)

        sessions.revoke(first.token)

        assert sessions.validate(second.token) is not None

    def test_revoke_all(self, sessions, make_principal):
        principal = make_principal()
        other = make_principal("other@client.com")
        tokens = [sessions.issue(principal).token for _ in range(3)]
        other_token = sessions.issue(other).token

        assert sessions.revoke_all(principal.principal_id) == 3

        assert all(sessions.validate(token) is None for token in tokens)
        assert sessions.validate(other_token) is not None
