"""Unit tests for auth/oauth.py -- provider parsing and identity normalization.

Covers:
- parse_provider() maps onto the closed Provider enum
- get_enabled_providers() only lists providers with credentials
- GitHub: primary + verified email required; name falls back to login
- OIDC: email_verified required; sub and email required

The provider clients are AsyncMock stand-ins; no network access.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from auth.models import ExternalUser, Provider
from auth.oauth import _get_oidc_user, fetch_external_user, get_enabled_providers, parse_provider


def _github_client(profile: dict, emails: list[dict]) -> MagicMock:
    def response(payload):
        resp = MagicMock()
        resp.json.return_value = payload
        resp.raise_for_status.return_value = None
        return resp

    client = MagicMock()
    client.get = AsyncMock(side_effect=[response(profile), response(emails)])
    return client


# ---------------------------------------------------------------------------
# Provider parsing
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("raw,expected", [("github", Provider.github), ("google", Provider.google)])
def test_parse_provider_known(raw, expected):
    assert parse_provider(raw) is expected


@pytest.mark.parametrize("raw", ["", "GitHub", "facebook", "../github"])
def test_parse_provider_unknown(raw):
    assert parse_provider(raw) is None


def test_enabled_providers_require_credentials():
    # tests/conftest.py configures GitHub only.
    assert get_enabled_providers() == [{"name": "github", "label": "GitHub"}]


# ---------------------------------------------------------------------------
# GitHub
# ---------------------------------------------------------------------------


def test_github_user_uses_primary_verified_email():
    client = _github_client(
        {"id": 42, "login": "octo", "name": "Octo Cat"},
        [
            {"email": "old@x.com", "primary": False, "verified": True},
            {"email": "octo@x.com", "primary": True, "verified": True},
        ],
    )
    user = asyncio.run(fetch_external_user(client, Provider.github, {"access_token": "t"}))
    assert user == ExternalUser(subject_id="42", email="octo@x.com", name="Octo Cat")


def test_github_name_falls_back_to_login():
    client = _github_client(
        {"id": 7, "login": "octo", "name": None},
        [{"email": "octo@x.com", "primary": True, "verified": True}],
    )
    user = asyncio.run(fetch_external_user(client, Provider.github, {}))
    assert user.name == "octo"


def test_github_unverified_primary_email_is_rejected():
    client = _github_client(
        {"id": 7, "login": "octo"},
        [{"email": "octo@x.com", "primary": True, "verified": False}],
    )
    with pytest.raises(ValueError, match="no primary verified email"):
        asyncio.run(fetch_external_user(client, Provider.github, {}))


# ---------------------------------------------------------------------------
# OIDC (Google)
# ---------------------------------------------------------------------------


def test_oidc_user_from_verified_userinfo():
    token = {"userinfo": {"sub": "g-1", "email": "a@x.com", "email_verified": True, "name": "Alice"}}
    user = asyncio.run(fetch_external_user(MagicMock(), Provider.google, token))
    assert user == ExternalUser(subject_id="g-1", email="a@x.com", name="Alice")


def test_oidc_name_falls_back_to_email_local_part():
    token = {"userinfo": {"sub": "g-1", "email": "alice@x.com", "email_verified": True}}
    assert _get_oidc_user(token, Provider.google).name == "alice"


@pytest.mark.parametrize(
    "userinfo",
    [
        None,
        {"sub": "g-1", "email": "a@x.com"},
        {"sub": "g-1", "email": "a@x.com", "email_verified": False},
        {"email": "a@x.com", "email_verified": True},
        {"sub": "g-1", "email_verified": True},
    ],
)
def test_oidc_rejects_incomplete_or_unverified_userinfo(userinfo):
    with pytest.raises(ValueError):
        _get_oidc_user({"userinfo": userinfo}, Provider.google)
