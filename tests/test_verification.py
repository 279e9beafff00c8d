"""
Tests for the email verification lifecycle.

Covers:
- Enumeration-safe initiation (suppressed cases)
- Redemption: success, expired, unknown, repeated
- Token overwrite on re-issue
- Notifier failure after the token was persisted
"""
from datetime import timedelta

import pytest
from sqlalchemy import select

from branchgate.auth.errors import (
    NotFoundOrEnumerationSuppressed,
    NotifierError,
    TokenExpired,
    TokenInvalidOrUsed,
)
from branchgate.auth.notifier import NotificationKind
from branchgate.database.schema import verification_tokens
from branchgate.security.audit import AuditKind


class TestInitiate:
    """Test verification initiation."""

    def test_sends_token_to_unverified_principal(self, verification, make_principal, notifier, clock):
        principal = make_principal(is_verified=False)

        issued = verification.initiate("branch@client.com", "10.0.0.1")

        kind, address, params = notifier.sent[0]
        assert kind == NotificationKind.VERIFICATION
        assert address == "branch@client.com"
        assert params["token"] == issued.token
        assert params["display_name"] == "Branch North"
        assert params["link"].endswith(f"/auth/verify-email/{issued.token}")
        assert issued.principal_id == principal.principal_id
        assert issued.expires_at == clock() + timedelta(hours=24)

    @pytest.mark.parametrize("address,kwargs,reason", [
        ("nobody@client.com", None, "unknown_identity"),
        ("branch@client.com", {"with_password": False, "is_verified": False}, "no_password"),
        ("branch@client.com", {"is_verified": False, "is_login_enabled": False}, "login_disabled"),
        ("branch@client.com", {"is_verified": True}, "already_verified"),
    ])
    def test_suppressed_cases(self, verification, make_principal, notifier, audit, address, kwargs, reason):
        principal = make_principal(**kwargs) if kwargs is not None else None

        with pytest.raises(NotFoundOrEnumerationSuppressed) as exc_info:
            verification.initiate(address, "10.0.0.1")

        assert exc_info.value.reason == reason
        assert notifier.sent == []

        if principal is not None:
            events = audit.events_for(principal.principal_id)
            assert events[0].kind == AuditKind.VERIFICATION_SUPPRESSED.value
            assert events[0].details == {"reason": reason}

    def test_reissue_overwrites_previous_token(self, verification, make_principal, db):
        make_principal(is_verified=False)
        first = verification.initiate("branch@client.com")
        second = verification.resend("branch@client.com")

        with db.get_session() as session:
            rows = session.execute(select(verification_tokens)).all()
        assert len(rows) == 1

        with pytest.raises(TokenInvalidOrUsed):
            verification.redeem(first.token)
        assert verification.redeem(second.token).already_verified is False

    def test_notifier_failure_keeps_token(self, verification, make_principal, notifier, db):
        make_principal(is_verified=False)
        notifier.fail = True

        with pytest.raises(NotifierError):
            verification.initiate("branch@client.com")

        with db.get_session() as session:
            assert len(session.execute(select(verification_tokens)).all()) == 1

    def test_notifier_exception_becomes_notifier_error(self, verification, make_principal, notifier):
        make_principal(is_verified=False)
        notifier.raise_error = TimeoutError("smtp timed out")

        with pytest.raises(NotifierError):
            verification.initiate("branch@client.com")


class TestRedeem:
    """Test verification redemption."""

    def test_redeem_marks_verified(self, verification, make_principal, store, audit):
        principal = make_principal(is_verified=False)
        issued = verification.initiate("branch@client.com")

        redemption = verification.redeem(issued.token)

        assert redemption.principal_id == principal.principal_id
        assert redemption.already_verified is False
        assert store.get_by_id(principal.principal_id).is_verified is True
        kinds = [e.kind for e in audit.events_for(principal.principal_id)]
        assert AuditKind.VERIFICATION_COMPLETED.value in kinds

    def test_second_redeem_reports_already_verified(self, verification, make_principal):
        make_principal(is_verified=False)
        issued = verification.initiate("branch@client.com")

        verification.redeem(issued.token)
        again = verification.redeem(issued.token)

        assert again.already_verified is True

    def test_expired_token_leaves_principal_pending(self, verification, make_principal, store, clock):
        principal = make_principal(is_verified=False)
        issued = verification.initiate("branch@client.com")

        clock.advance(hours=24, seconds=1)
        with pytest.raises(TokenExpired):
            verification.redeem(issued.token)

        assert store.get_by_id(principal.principal_id).is_verified is False

        # A fresh token still works
        fresh = verification.resend("branch@client.com")
        assert verification.redeem(fresh.token).already_verified is False

    def test_unknown_token(self, verification):
        with pytest.raises(TokenInvalidOrUsed):
            verification.redeem("unknown-token")
        with pytest.raises(TokenInvalidOrUsed):
            verification.redeem("")

    def test_verified_principal_gets_no_new_token(self, verification, make_principal, notifier):
        make_principal(is_verified=False)
        verification.redeem(verification.initiate("branch@client.com").token)
        sent_before = len(notifier.sent)

        with pytest.raises(NotFoundOrEnumerationSuppressed):
            verification.resend("branch@client.com")

        assert len(notifier.sent) == sent_before
