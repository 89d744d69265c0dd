"""Unit tests for core/config.py -- Settings validation.

Covers:
- SECRET_KEY policy: generated in debug, required otherwise, minimum length
- session lifetimes must be positive and remember must outlast the default
- cookie_secure derives from ENVIRONMENT unless SECURE_COOKIES is explicit
"""

from __future__ import annotations

import pytest

from core.config import Settings
from tests.conftest import TEST_SECRET


def test_debug_generates_secret_key():
    settings = Settings(debug=True, secret_key="")
    assert settings.secret_key
    assert len(settings.secret_key) >= 32


def test_missing_secret_key_outside_debug_is_rejected():
    with pytest.raises(ValueError, match="SECRET_KEY is required"):
        Settings(debug=False, secret_key="")


def test_short_secret_key_is_rejected():
    with pytest.raises(ValueError, match="at least 32"):
        Settings(secret_key="too-short")


def test_remember_must_outlast_default_session():
    with pytest.raises(ValueError):
        Settings(secret_key=TEST_SECRET, session_expire_seconds=7200, remember_expire_seconds=3600)


def test_lifetimes_must_be_positive():
    with pytest.raises(ValueError):
        Settings(secret_key=TEST_SECRET, session_expire_seconds=0)


@pytest.mark.parametrize(
    "environment,expected",
    [("development", False), ("test", False), ("production", True), ("Staging", True)],
)
def test_cookie_secure_follows_environment(environment, expected):
    assert Settings(secret_key=TEST_SECRET, environment=environment).cookie_secure is expected


def test_explicit_secure_cookies_wins():
    assert Settings(secret_key=TEST_SECRET, environment="production", secure_cookies=False).cookie_secure is False
    assert Settings(secret_key=TEST_SECRET, environment="development", secure_cookies=True).cookie_secure is True
