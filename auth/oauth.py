"""
auth/oauth.py -- Authlib OAuth/OIDC provider configuration and identity exchange.

Reads configuration from core.config.get_settings() at module load to decide
which providers are active. Only providers with both client ID and secret
configured get registered.

This module is the identity-exchange collaborator: it turns a provider token
into a normalized ExternalUser (subject id, email, display name). Linking that
identity to a local user is auth/linking.py's job.

Security notes:
  [H1] Email verification is mandatory. fetch_external_user() raises
       ValueError if the provider does not confirm the email is verified.
       Linking is keyed by email, so an unverified address could attach an
       attacker's provider account to a victim's local user.

  OAuth state parameter (CSRF protection) is handled by authlib automatically
  via Starlette SessionMiddleware.

Supported providers (closed set, see auth.models.Provider):
  github -- Authorization code flow; static endpoints.
  google -- Authorization code flow; OIDC discovery.

Layer rule: no imports from api/ or web/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuth

from auth.models import ExternalUser, Provider
from core.config import get_settings

logger = logging.getLogger("snipshare.auth.oauth")

# ---------------------------------------------------------------------------
# Authlib OAuth registry
# ---------------------------------------------------------------------------

oauth = OAuth()

_cfg = get_settings()

# GitHub -- static endpoints (no OIDC discovery document)
if _cfg.github_client_id and _cfg.github_client_secret:
    oauth.register(
        name=Provider.github.value,
        client_id=_cfg.github_client_id,
        client_secret=_cfg.github_client_secret,
        access_token_url="https://github.com/login/oauth/access_token",  # noqa: S106 -- URL, not a password
        authorize_url="https://github.com/login/oauth/authorize",
        api_base_url="https://api.github.com/",
        client_kwargs={"scope": "read:user user:email"},
    )
    logger.info("GitHub OAuth provider registered")

# Google -- OIDC discovery
if _cfg.google_client_id and _cfg.google_client_secret:
    oauth.register(
        name=Provider.google.value,
        client_id=_cfg.google_client_id,
        client_secret=_cfg.google_client_secret,
        server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
        client_kwargs={"scope": "openid email profile"},
    )
    logger.info("Google OAuth provider registered")


# ---------------------------------------------------------------------------
# Provider metadata
# ---------------------------------------------------------------------------

_LABELS: dict[Provider, str] = {
    Provider.github: "GitHub",
    Provider.google: "Google",
}


def get_enabled_providers() -> list[dict]:
    """Return {"name", "label"} for every provider with credentials configured."""
    cfg = get_settings()
    configured = {
        Provider.github: bool(cfg.github_client_id and cfg.github_client_secret),
        Provider.google: bool(cfg.google_client_id and cfg.google_client_secret),
    }
    return [{"name": p.value, "label": _LABELS[p]} for p in Provider if configured[p]]


def parse_provider(raw: str) -> Provider | None:
    """Map a raw path segment onto the closed Provider enum, or None."""
    try:
        return Provider(raw)
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Identity extraction -- provider-specific normalization [H1]
# ---------------------------------------------------------------------------


async def fetch_external_user(client, provider: Provider, token: dict) -> ExternalUser:
    """Normalize a provider token response into an ExternalUser.

    Args:
        client:   The authlib OAuth client for this provider.
        provider: Provider the token came from.
        token:    The token dict returned by authlib after code exchange.

    Raises:
        ValueError: If a verified email or a subject id cannot be confirmed.
    """
    if provider is Provider.github:
        return await _get_github_user(client, token)
    if provider is Provider.google:
        return _get_oidc_user(token, provider)
    raise ValueError(f"Unknown OAuth provider: {provider!r}")


async def _get_github_user(client, token: dict) -> ExternalUser:
    """Build an ExternalUser from GitHub's /user and /user/emails endpoints.

    GitHub does not include the email in the access token, so two API calls
    are required. [H1] Only the entry with primary=true AND verified=true is
    accepted.
    """
    resp = await client.get("user", token=token)
    resp.raise_for_status()
    profile = resp.json()
    subject_id = str(profile["id"])

    emails_resp = await client.get("user/emails", token=token)
    emails_resp.raise_for_status()

    email: str | None = None
    for entry in emails_resp.json():
        if entry.get("primary") and entry.get("verified"):
            email = entry["email"]
            break

    if not email:
        raise ValueError(
            "GitHub OAuth: no primary verified email found. "
            "The user must verify their email address on GitHub before logging in."
        )

    name = profile.get("name") or profile.get("login") or email.split("@", 1)[0]
    return ExternalUser(subject_id=subject_id, email=email, name=name)


def _get_oidc_user(token: dict, provider: Provider) -> ExternalUser:
    """Build an ExternalUser from an OIDC id_token's userinfo claims.

    [H1] The email claim is only accepted when email_verified is True. A
    missing email_verified claim is treated as unverified.
    """
    userinfo = token.get("userinfo")
    if not userinfo:
        raise ValueError(f"{provider.value} OAuth: no userinfo in token response")

    if not userinfo.get("email_verified", False):
        raise ValueError(
            f"{provider.value} OAuth: email is not verified. "
            "The provider must confirm email ownership before login is allowed."
        )

    email = userinfo.get("email")
    subject_id = userinfo.get("sub")
    if not email or not subject_id:
        raise ValueError(f"{provider.value} OAuth: missing email or sub claim in userinfo")

    name = userinfo.get("name") or userinfo.get("given_name") or email.split("@", 1)[0]
    return ExternalUser(subject_id=str(subject_id), email=email, name=name)
