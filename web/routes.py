"""
web/routes.py -- Browser-facing OAuth routes for Snipshare.

These routes drive the redirect-based OAuth flow. They share app.state with
the API routes (same UserStore, SessionManager, IdentityLinker) but answer
with redirects instead of JSON.

Routes:
  GET /auth/oauth/{provider}     -- redirect to the provider's authorization page
  GET /auth/callback/{provider}  -- OAuth callback; link identity, set cookie

Failure contract:
  Unknown provider, missing code, token-exchange failure, unverified email
  and linking failure all produce the same 302 to
      /auth?tab=signin&oauthError=Failed to connect. Please try again.
  The browser never learns which step failed; the log does.

Success: session cookie (never "remembered") + 302 to /home.
"""

import logging
from urllib.parse import urlencode

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Request
from fastapi.responses import RedirectResponse

from auth.linking import OAUTH_FAILURE_MESSAGE, IdentityLinker
from auth.oauth import fetch_external_user, get_enabled_providers, parse_provider

logger = logging.getLogger("snipshare.web")

router = APIRouter()

HOME_PATH = "/home"
AUTH_PATH = "/auth"


def _oauth_error_redirect() -> RedirectResponse:
    """Redirect back to the sign-in tab with the single generic OAuth message."""
    query = urlencode({"tab": "signin", "oauthError": OAUTH_FAILURE_MESSAGE})
    return RedirectResponse(f"{AUTH_PATH}?{query}", status_code=302)


def _enabled(provider_name: str) -> bool:
    return provider_name in {p["name"] for p in get_enabled_providers()}


@router.get("/auth/oauth/{provider}")
async def oauth_redirect(request: Request, provider: str) -> RedirectResponse:
    """Redirect the browser to the OAuth provider's authorization page.

    The provider is parsed into the closed Provider enum and checked against
    the configured providers before any redirect is built.
    """
    parsed = parse_provider(provider)
    if parsed is None or not _enabled(parsed.value):
        return _oauth_error_redirect()

    client = request.app.state.oauth.create_client(parsed.value)
    redirect_uri = str(request.url_for("oauth_callback", provider=parsed.value))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/auth/callback/{provider}", name="oauth_callback")
async def oauth_callback(request: Request, provider: str) -> RedirectResponse:
    """Handle the OAuth provider callback and issue a session cookie.

    Flow:
      1. Validate provider (closed enum) and presence of ?code=.
      2. Exchange the code for a token (authlib checks the CSRF state).
      3. Normalize the token into an ExternalUser -- raises ValueError if
         the email is unverified [H1].
      4. IdentityLinker finds-or-creates the user and links the identity.
      5. Set the cookie from the outcome, redirect to /home.
    """
    parsed = parse_provider(provider)
    if parsed is None or not _enabled(parsed.value):
        logger.warning("OAuth callback for unknown or disabled provider %r", provider)
        return _oauth_error_redirect()

    code = request.query_params.get("code")
    if not code:
        logger.warning("OAuth callback for %s without code", parsed.value)
        return _oauth_error_redirect()

    client = request.app.state.oauth.create_client(parsed.value)

    # Step 2: Exchange code for token
    try:
        token = await client.authorize_access_token(request)
    except OAuthError:
        logger.exception("OAuth token exchange failed for provider %s", parsed.value)
        return _oauth_error_redirect()

    # Step 3: Extract verified email, stable subject ID and display name [H1]
    try:
        external_user = await fetch_external_user(client, parsed, token)
    except Exception:
        logger.exception("OAuth identity exchange failed for provider %s", parsed.value)
        return _oauth_error_redirect()

    # Step 4: Link
    linker: IdentityLinker = request.app.state.identity_linker
    result = linker.link_external_identity(external_user, parsed)
    if not result.ok:
        return _oauth_error_redirect()

    # Step 5: Cookie + redirect
    resp = RedirectResponse(HOME_PATH, status_code=302)
    result.value.cookie.apply(resp)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp
