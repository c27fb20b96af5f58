from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from conftest import DEFAULT_PASSWORD
from safra_api.core.security import hash_token
from safra_api.exceptions import AuthError
from safra_api.models.auth import PasswordResetToken
from safra_api.models.enums import AuthErrorCode, ResetTokenStatus, SessionPool
from safra_api.services import password_reset as password_reset_module
from safra_api.services.credentials import is_locked, verify_credentials
from safra_api.services.password_reset import redeem_reset, request_reset
from safra_api.services.sessions import create_session, validate_session
from safra_api.utils.clock import utc_now


def _token_record(db: Session, token: str) -> PasswordResetToken:
    return db.execute(
        select(PasswordResetToken).where(PasswordResetToken.token_hash == hash_token(token))
    ).scalar_one()


def test_request_reset_for_unknown_email_issues_nothing(db_session: Session):
    assert request_reset(db_session, "ghost@example.com") is None
    assert db_session.execute(select(PasswordResetToken)).scalars().all() == []


def test_request_reset_does_same_token_work_for_unknown_email(
    db_session: Session,
    make_user,
    monkeypatch: pytest.MonkeyPatch,
):
    calls: list[str] = []
    original_generate = password_reset_module.generate_token
    original_hash = password_reset_module.hash_token

    def _generate() -> str:
        calls.append("generate")
        return original_generate()

    def _hash(token: str) -> str:
        calls.append("hash")
        return original_hash(token)

    monkeypatch.setattr(password_reset_module, "generate_token", _generate)
    monkeypatch.setattr(password_reset_module, "hash_token", _hash)
    monkeypatch.setattr(password_reset_module, "deliver_reset_token", lambda user, token: None)
    make_user()

    assert request_reset(db_session, "reader@example.com") is not None
    known_calls = list(calls)
    calls.clear()
    assert request_reset(db_session, "ghost@example.com") is None

    assert known_calls == calls == ["generate", "hash"]


def test_request_reset_delivers_token(db_session: Session, make_user, monkeypatch: pytest.MonkeyPatch):
    delivered: list[str] = []
    monkeypatch.setattr(password_reset_module, "deliver_reset_token", lambda user, token: delivered.append(token))
    make_user()

    token = request_reset(db_session, "Reader@Example.com")

    assert token is not None
    assert delivered == [token]
    record = _token_record(db_session, token)
    assert record.status == ResetTokenStatus.ISSUED
    assert record.token_hash != token


def test_reset_token_is_single_use(db_session: Session, make_user):
    make_user()
    token = request_reset(db_session, "reader@example.com")

    redeem_reset(db_session, token, "Rotated1Pass")
    with pytest.raises(AuthError) as exc:
        redeem_reset(db_session, token, "Another1Pass")

    assert exc.value.code == AuthErrorCode.INVALID_OR_EXPIRED_TOKEN
    assert _token_record(db_session, token).status == ResetTokenStatus.REDEEMED
    verify_credentials(db_session, "reader@example.com", "Rotated1Pass", ip_address="10.0.0.1")


def test_redeem_rotates_password_and_revokes_sessions(db_session: Session, make_user):
    user = make_user()
    issued = create_session(db_session, user, SessionPool.USER)
    db_session.commit()
    token = request_reset(db_session, "reader@example.com")

    redeem_reset(db_session, token, "Rotated1Pass")

    assert validate_session(db_session, issued.token, SessionPool.USER) is None
    with pytest.raises(AuthError):
        verify_credentials(db_session, "reader@example.com", DEFAULT_PASSWORD, ip_address="10.0.0.1")


def test_redeem_clears_account_lock(db_session: Session, make_user):
    user = make_user()
    user.failed_login_attempts = 5
    user.locked_until = utc_now() + timedelta(minutes=15)
    db_session.commit()
    token = request_reset(db_session, "reader@example.com")

    redeem_reset(db_session, token, "Rotated1Pass")
    db_session.refresh(user)

    assert not is_locked(user)
    assert user.failed_login_attempts == 0


def test_expired_reset_token_is_rejected(db_session: Session, make_user):
    make_user()
    token = request_reset(db_session, "reader@example.com")
    record = _token_record(db_session, token)
    record.expires_at = utc_now() - timedelta(seconds=1)
    db_session.commit()

    with pytest.raises(AuthError) as exc:
        redeem_reset(db_session, token, "Rotated1Pass")
    assert exc.value.code == AuthErrorCode.INVALID_OR_EXPIRED_TOKEN
    verify_credentials(db_session, "reader@example.com", DEFAULT_PASSWORD, ip_address="10.0.0.1")


def test_new_request_supersedes_previous_token(db_session: Session, make_user):
    make_user()
    first = request_reset(db_session, "reader@example.com")
    second = request_reset(db_session, "reader@example.com")

    with pytest.raises(AuthError):
        redeem_reset(db_session, first, "Rotated1Pass")
    db_session.expire_all()
    assert _token_record(db_session, first).status == ResetTokenStatus.SUPERSEDED

    redeem_reset(db_session, second, "Rotated1Pass")


@pytest.mark.parametrize("token", ["", "short", "bad token with spaces", "C" * 43])
def test_unknown_or_malformed_reset_tokens_are_rejected(db_session: Session, token: str):
    with pytest.raises(AuthError) as exc:
        redeem_reset(db_session, token, "Rotated1Pass")
    assert exc.value.code == AuthErrorCode.INVALID_OR_EXPIRED_TOKEN
