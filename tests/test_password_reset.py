"""
Tests for the password reset lifecycle.

Covers:
- Enumeration-safe requests
- Single live token per principal
- Redemption: success, expiry, reuse, concurrent redemption
- Password policy before any store access
- Session revocation and maintenance helpers
"""
import threading
from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import select

from branchgate.auth.errors import (
    NotFoundOrEnumerationSuppressed,
    NotifierError,
    StoreError,
    TokenExpired,
    TokenInvalidOrUsed,
    ValidationError,
)
from branchgate.auth.notifier import NotificationKind
from branchgate.auth.outcomes import MESSAGES, Outcome
from branchgate.database.credential_store import verify_password
from branchgate.database.schema import password_resets
from branchgate.security.audit import AuditKind

NEW_PASSWORD = "brand-new-password"


class TestRequestReset:
    """Test reset requests."""

    def test_issues_one_hour_token(self, resets, make_principal, notifier, clock):
        make_principal()
        issued = resets.request_reset("BRANCH@client.com", "10.0.0.1")

        kind, address, params = notifier.sent[0]
        assert kind == NotificationKind.RESET
        assert address == "branch@client.com"
        assert params["token"] == issued.token
        assert issued.expires_at == clock() + timedelta(hours=1)

    @pytest.mark.parametrize("address,kwargs,reason", [
        ("nobody@client.com", None, "unknown_identity"),
        ("branch@client.com", {"is_login_enabled": False}, "login_disabled"),
        ("branch@client.com", {"with_password": False}, "no_password"),
    ])
    def test_suppressed_cases(self, resets, make_principal, notifier, audit, address, kwargs, reason):
        principal = make_principal(**kwargs) if kwargs is not None else None

        with pytest.raises(NotFoundOrEnumerationSuppressed) as exc_info:
            resets.request_reset(address)

        assert exc_info.value.reason == reason
        assert notifier.sent == []
        if principal is not None:
            assert audit.events_for(principal.principal_id)[0].kind == AuditKind.RESET_SUPPRESSED.value

    def test_new_token_invalidates_previous(self, resets, make_principal, db):
        make_principal()
        first = resets.request_reset("branch@client.com")
        second = resets.request_reset("branch@client.com")

        with db.get_session() as session:
            assert len(session.execute(select(password_resets)).all()) == 1

        with pytest.raises(TokenInvalidOrUsed):
            resets.redeem(first.token, NEW_PASSWORD)
        resets.redeem(second.token, NEW_PASSWORD)

    def test_notifier_failure_keeps_token(self, resets, make_principal, notifier):
        make_principal()
        notifier.fail = True

        with pytest.raises(NotifierError):
            resets.request_reset("branch@client.com")

        assert resets.token_stats()["active"] == 1


class TestRedeem:
    """Test reset redemption."""

    def test_redeem_sets_password(self, resets, make_principal, store, notifier):
        principal = make_principal()
        issued = resets.request_reset("branch@client.com")

        assert resets.redeem(issued.token, NEW_PASSWORD) == principal.principal_id

        refreshed = store.get_by_id(principal.principal_id)
        assert verify_password(NEW_PASSWORD, refreshed.password_hash)
        assert notifier.sent[-1][0] == NotificationKind.CONFIRMATION

    def test_redeem_revokes_all_sessions(self, resets, sessions, make_principal, audit):
        principal = make_principal()
        tokens = [sessions.issue(principal).token for _ in range(2)]
        issued = resets.request_reset("branch@client.com")

        resets.redeem(issued.token, NEW_PASSWORD)

        assert all(sessions.validate(t) is None for t in tokens)
        completed = audit.events_for(principal.principal_id)[0]
        assert completed.kind == AuditKind.RESET_COMPLETED.value
        assert completed.details == {"sessions_revoked": 2}

    def test_second_redemption_fails(self, resets, make_principal):
        make_principal()
        issued = resets.request_reset("branch@client.com")
        resets.redeem(issued.token, NEW_PASSWORD)

        with pytest.raises(TokenInvalidOrUsed) as exc_info:
            resets.redeem(issued.token, "yet-another-password")
        assert exc_info.value.message == MESSAGES[Outcome.TOKEN_INVALID]

    def test_expired_after_61_minutes(self, resets, make_principal, clock):
        make_principal()
        issued = resets.request_reset("branch@client.com")

        clock.advance(minutes=61)
        with pytest.raises(TokenExpired) as exc_info:
            resets.redeem(issued.token, NEW_PASSWORD)

        # Generic message, distinct reason
        assert exc_info.value.message == MESSAGES[Outcome.TOKEN_INVALID]
        assert exc_info.value.outcome == Outcome.TOKEN_EXPIRED

    def test_short_password_rejected_before_store_access(self, resets, make_principal, store):
        principal = make_principal()
        issued = resets.request_reset("branch@client.com")

        with pytest.raises(ValidationError):
            resets.redeem(issued.token, "short")

        # Token untouched
        assert resets.token_stats()["active"] == 1
        assert verify_password("correct-horse-battery", store.get_by_id(principal.principal_id).password_hash)

    def test_short_password_checked_even_for_unknown_token(self, resets):
        with pytest.raises(ValidationError):
            resets.redeem("unknown-token", "short")

    def test_unknown_token(self, resets):
        with pytest.raises(TokenInvalidOrUsed):
            resets.redeem("unknown-token", NEW_PASSWORD)

    def test_concurrent_redemptions_one_wins(self, resets, make_principal):
        make_principal()
        issued = resets.request_reset("branch@client.com")

        barrier = threading.Barrier(2)
        outcomes = []

        def redeem(password):
            barrier.wait()
            try:
                resets.redeem(issued.token, password)
                outcomes.append("ok")
            except TokenInvalidOrUsed:
                outcomes.append("used")

        threads = [
            threading.Thread(target=redeem, args=(p,))
            for p in ("first-new-password", "second-new-password")
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(outcomes) == ["ok", "used"]

    def test_confirmation_lookup_failure_keeps_reset(self, resets, make_principal, store):
        principal = make_principal()
        issued = resets.request_reset("branch@client.com")

        with patch.object(resets.store, "get_by_id", side_effect=StoreError(detail="db blip")):
            assert resets.redeem(issued.token, NEW_PASSWORD) == principal.principal_id

        assert verify_password(NEW_PASSWORD, store.get_by_id(principal.principal_id).password_hash)

    def test_revocation_failure_rolls_back_reset(self, resets, sessions, make_principal, store):
        principal = make_principal()
        session_token = sessions.issue(principal).token
        issued = resets.request_reset("branch@client.com")

        with patch.object(resets.sessions, "revoke_all", side_effect=StoreError(detail="db blip")):
            with pytest.raises(StoreError):
                resets.redeem(issued.token, NEW_PASSWORD)

        # Nothing committed: old password, token still live, session intact
        refreshed = store.get_by_id(principal.principal_id)
        assert verify_password("correct-horse-battery", refreshed.password_hash)
        assert resets.token_stats()["active"] == 1
        assert sessions.validate(session_token) is not None

        # A retry with the same token then goes through
        assert resets.redeem(issued.token, NEW_PASSWORD) == principal.principal_id
        assert sessions.validate(session_token) is None

    def test_gateway_reports_committed_reset_as_success(self, gateway, make_principal, notifier):
        make_principal()
        gateway.request_password_reset("branch@client.com", "10.0.0.1")
        token = notifier.last_token()

        with patch.object(gateway.store, "get_by_id", side_effect=StoreError(detail="db blip")):
            result = gateway.reset_password(token, NEW_PASSWORD, "10.0.0.1")

        assert result.outcome == Outcome.PASSWORD_RESET
        assert gateway.login("branch@client.com", NEW_PASSWORD, origin_address="10.0.0.1").success


class TestMaintenance:
    """Test token purge and statistics."""

    def test_stats_and_purge(self, resets, make_principal, clock):
        make_principal("a@client.com")
        make_principal("b@client.com")
        make_principal("c@client.com")

        used = resets.request_reset("a@client.com")
        resets.redeem(used.token, NEW_PASSWORD)
        resets.request_reset("b@client.com")
        clock.advance(minutes=59)
        resets.request_reset("c@client.com")
        clock.advance(minutes=2)

        assert resets.token_stats() == {"total": 3, "active": 1, "used": 1, "expired": 1}

        assert resets.purge_expired() == 2
        assert resets.token_stats() == {"total": 1, "active": 1, "used": 0, "expired": 0}
