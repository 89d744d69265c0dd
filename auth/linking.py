"""
auth/linking.py -- Find-or-create local users for external (OAuth) identities.

One call runs one transaction:
  1. Find the user by email, or create an OAuth-only user (no password/salt)
     with default preferences.
  2. Upsert the (provider, subject_id) account link via INSERT ... ON CONFLICT
     DO NOTHING. Never check-then-insert: two concurrent first logins for the
     same identity must not produce two rows.
  3. Read the link back. If it belongs to a different local user (the
     provider now reports another email for a subject that is already
     linked), the whole transaction is rolled back and the call fails. No
     orphan user and no second account row survive.
  4. Issue a non-remembered session for the resulting user.

Repeating a call with the same (provider, subject_id, email) is a no-op apart
from issuing a fresh session.

Two concurrent first logins for the same new email can both miss the lookup
in step 1. UNIQUE(email) rejects the second INSERT; that transaction is rolled
back and retried once, at which point the lookup finds the winner's row.

Every failure, expected or not, is reported as the same OAUTH_FAILURE so the
callback never reveals provider or store internals to the browser.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from auth.credentials import AuthOutcome, normalize_email
from auth.errors import AuthError, Err, ErrorKind, Ok, Result
from auth.models import Account, ExternalUser, Provider, PublicUser, User
from auth.session import SessionManager
from auth.store import UserStore

logger = logging.getLogger("snipshare.auth")

OAUTH_FAILURE_MESSAGE = "Failed to connect. Please try again."

_MAX_ATTEMPTS = 2


class IdentityLinker:
    def __init__(self, store: UserStore, sessions: SessionManager) -> None:
        self._store = store
        self._sessions = sessions

    def link_external_identity(self, external_user: ExternalUser, provider: Provider) -> Result[AuthOutcome]:
        """Link external_user to a local user and issue a session.

        Returns Ok(AuthOutcome) or Err(OAUTH_FAILURE, OAUTH_FAILURE_MESSAGE).
        """
        try:
            provider = Provider(provider)
            email = normalize_email(external_user.email or "")
            if not email or not external_user.subject_id:
                raise AuthError(ErrorKind.OAUTH_FAILURE, "external identity is missing email or subject")

            for attempt in range(1, _MAX_ATTEMPTS + 1):
                try:
                    user = self._link(email, external_user, provider)
                    break
                except IntegrityError:
                    if attempt == _MAX_ATTEMPTS:
                        raise
                    logger.info("Concurrent OAuth link for %s detected, retrying", provider.value)

            public = PublicUser.from_user(user)
            cookie = self._sessions.create_user_session(public.id, remember=False)
        except AuthError as exc:
            logger.warning("OAuth link rejected for %s: %s", provider, exc.message)
            return Err(ErrorKind.OAUTH_FAILURE, OAUTH_FAILURE_MESSAGE)
        except Exception:
            logger.exception("OAuth link failed for %s", provider)
            return Err(ErrorKind.OAUTH_FAILURE, OAUTH_FAILURE_MESSAGE)

        return Ok(AuthOutcome(user=public, cookie=cookie))

    def _link(self, email: str, external_user: ExternalUser, provider: Provider) -> User:
        with self._store.begin() as tx:
            user = self._store.get_by_email(email, tx=tx)
            if user is None:
                username = external_user.name or email.split("@", 1)[0]
                user_id = self._store.create_user(User(email=email, username=username), tx=tx)
                user = self._store.get_by_id(user_id, tx=tx)
                logger.info("Created OAuth-only user %d via %s", user_id, provider.value)

            self._store.upsert_account(
                Account(
                    user_id=user.id,
                    provider=provider.value,
                    provider_account_id=external_user.subject_id,
                ),
                tx=tx,
            )
            account = self._store.get_account(provider.value, external_user.subject_id, tx=tx)
            if account is None or account.user_id != user.id:
                raise AuthError(ErrorKind.OAUTH_FAILURE, "external identity is linked to another user")
        return user
