"""Unit tests for auth/credentials.py -- sign-up and sign-in.

Covers:
- end-to-end sign-up: one user with hash/salt, one verification token that
  expires in an hour, default preferences, and a cookie for the new user
- duplicate email -> CONFLICT, store unchanged
- the losing side of a sign-up race -> CONFLICT, not a crash or a duplicate
- concurrent sign-ups with the same email on a file-backed DB
- unexpected failures -> INTERNAL_ERROR with a generic message
- sign-in: success, remember flag, identical errors for unknown email and
  wrong password, OAuth-only accounts
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone

import pytest

from auth.credentials import CredentialAuthService
from auth.errors import Err, ErrorKind, Ok
from auth.models import User
from auth.store import DEFAULT_PREFERENCES, UserStore
from tests.conftest import make_sessions

# ---------------------------------------------------------------------------
# Sign-up
# ---------------------------------------------------------------------------


def test_sign_up_end_to_end(credential_service, store, sessions):
    before = datetime.now(timezone.utc)
    result = credential_service.sign_up("alice", "a@x.com", "pw123")

    assert isinstance(result, Ok)
    outcome = result.value
    assert outcome.user.username == "alice"
    assert outcome.user.email == "a@x.com"

    assert store.count_users("a@x.com") == 1
    user = store.get_by_email("a@x.com")
    assert user.password and user.salt
    assert user.password != "pw123"
    assert store.get_preferences(user.id) == DEFAULT_PREFERENCES

    tokens = store.get_verification_tokens(user.id)
    assert len(tokens) == 1
    assert len(tokens[0].token) == 64
    int(tokens[0].token, 16)  # hex-encoded
    assert tokens[0].email == "a@x.com"
    ttl = (datetime.fromisoformat(tokens[0].expires_at) - before).total_seconds()
    assert 3595 <= ttl <= 3605

    session = sessions.read_session(outcome.cookie.value)
    assert session.user_id == user.id
    assert session.remember is False
    assert outcome.cookie.max_age == 3600


def test_sign_up_normalizes_email(credential_service, store):
    result = credential_service.sign_up("alice", "  Alice@X.com ", "pw123")
    assert result.ok
    assert store.get_by_email("alice@x.com") is not None


def test_sign_up_duplicate_email_is_conflict(credential_service, store):
    assert credential_service.sign_up("alice", "a@x.com", "pw123").ok
    before = store.get_by_email("a@x.com")

    result = credential_service.sign_up("mallory", "a@x.com", "other-pw")

    assert result == Err(ErrorKind.CONFLICT, "Email already in use")
    assert store.count_users("a@x.com") == 1
    after = store.get_by_email("a@x.com")
    assert after.username == before.username
    assert after.password == before.password
    assert len(store.get_verification_tokens(after.id)) == 1


def test_sign_up_race_loser_gets_conflict(credential_service, store, monkeypatch):
    """Simulate a request that passed the lookup before the winner committed."""
    store.create_user(User(email="a@x.com", username="winner"))
    monkeypatch.setattr(store, "get_by_email", lambda email, tx=None: None)

    result = credential_service.sign_up("loser", "a@x.com", "pw123")

    assert not result.ok
    assert result.kind is ErrorKind.CONFLICT
    assert store.count_users("a@x.com") == 1


def test_concurrent_sign_ups_yield_one_user(tmp_path):
    store = UserStore(f"sqlite:///{tmp_path / 'race.db'}")
    service = CredentialAuthService(store, make_sessions())
    barrier = threading.Barrier(2)
    results = []

    def attempt(name: str) -> None:
        barrier.wait()
        results.append(service.sign_up(name, "race@x.com", "pw123"))

    threads = [threading.Thread(target=attempt, args=(n,)) for n in ("one", "two")]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    try:
        assert sum(1 for r in results if r.ok) == 1
        losers = [r for r in results if not r.ok]
        assert len(losers) == 1
        assert losers[0].kind is ErrorKind.CONFLICT
        assert store.count_users("race@x.com") == 1
    finally:
        store.close()


def test_sign_up_unexpected_failure_is_internal_error(credential_service, store, monkeypatch):
    def broken(*args, **kwargs):
        raise RuntimeError("disk on fire: /var/lib/secret")

    monkeypatch.setattr(store, "create_verification_token", broken)

    result = credential_service.sign_up("alice", "a@x.com", "pw123")

    assert result == Err(ErrorKind.INTERNAL_ERROR, "Failed to create a user")
    # The user insert shared the failed transaction and was rolled back.
    assert store.count_users("a@x.com") == 0


# ---------------------------------------------------------------------------
# Sign-in
# ---------------------------------------------------------------------------


@pytest.fixture
def alice(credential_service):
    result = credential_service.sign_up("alice", "a@x.com", "pw123")
    assert result.ok
    return result.value.user


def test_sign_in_success(credential_service, sessions, alice):
    result = credential_service.sign_in("a@x.com", "pw123")
    assert result.ok
    assert result.value.user.id == alice.id
    session = sessions.read_session(result.value.cookie.value)
    assert session.user_id == alice.id
    assert session.remember is False


def test_sign_in_remember_extends_session(credential_service, sessions, alice):
    short = credential_service.sign_in("a@x.com", "pw123", remember=False).value.cookie
    long = credential_service.sign_in("a@x.com", "pw123", remember=True).value.cookie
    assert long.max_age > short.max_age
    assert sessions.read_session(long.value).remember is True


def test_sign_in_is_case_insensitive_on_email(credential_service, alice):
    assert credential_service.sign_in("A@X.COM", "pw123").ok


def test_unknown_email_and_wrong_password_are_indistinguishable(credential_service, alice):
    unknown = credential_service.sign_in("nobody@x.com", "pw123")
    wrong = credential_service.sign_in("a@x.com", "not-the-password")
    assert unknown == wrong == Err(ErrorKind.BAD_REQUEST, "Wrong credentials")


def test_unknown_email_still_runs_bcrypt(credential_service, monkeypatch):
    import auth.credentials as credentials

    calls = []
    real = credentials.verify_password

    def spy(*args):
        calls.append(args)
        return real(*args)

    monkeypatch.setattr(credentials, "verify_password", spy)
    credential_service.sign_in("nobody@x.com", "pw123")
    assert len(calls) == 1


def test_oauth_only_account_cannot_sign_in_with_password(credential_service, store):
    store.create_user(User(email="o@x.com", username="oauth-only"))
    result = credential_service.sign_in("o@x.com", "anything")
    assert result == Err(ErrorKind.BAD_REQUEST, "Wrong credentials")


def test_sign_in_store_failure_is_internal_error(credential_service, store, monkeypatch):
    def broken(*args, **kwargs):
        raise RuntimeError("connection refused")

    monkeypatch.setattr(store, "get_credentials", broken)
    result = credential_service.sign_in("a@x.com", "pw123")
    assert result.kind is ErrorKind.INTERNAL_ERROR
    assert "connection refused" not in result.message
