"""
auth/credentials.py -- Email + password sign-up and sign-in.

Per-request state machine: Received -> Validated -> {Conflict | Authenticated
| InternalError}. Input validation (field presence, lengths, email syntax) is
done by the API layer's Pydantic models before this service is called.

Security:
  [C1] Sign-in always runs one bcrypt verification, against DUMMY_HASH when
       the email is unknown or belongs to an OAuth-only account. Both failure
       paths return the same "Wrong credentials" message and cost the same
       work, so neither message nor timing reveals whether the email exists.

  Race on sign-up: the email lookup is a fast path only. Two concurrent
       sign-ups can both miss it; UNIQUE(email) then rejects the second
       INSERT and the resulting IntegrityError is reported as a conflict.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError

from auth.errors import AuthError, Err, ErrorKind, Ok, Result
from auth.models import EmailVerificationToken, PublicUser, User
from auth.passwords import DUMMY_HASH, DUMMY_SALT, generate_salt, hash_password, verify_password
from auth.session import SealedCookie, SessionManager
from auth.store import UserStore

logger = logging.getLogger("snipshare.auth")

VERIFICATION_TOKEN_TTL = timedelta(hours=1)

_EMAIL_IN_USE = "Email already in use"
_WRONG_CREDENTIALS = "Wrong credentials"
_SIGNUP_FAILED = "Failed to create a user"
_SIGNIN_FAILED = "Failed to sign in"


@dataclass(frozen=True)
class AuthOutcome:
    """Successful authentication: who signed in and the cookie to set."""

    user: PublicUser
    cookie: SealedCookie


def normalize_email(email: str) -> str:
    return email.strip().lower()


class CredentialAuthService:
    def __init__(self, store: UserStore, sessions: SessionManager) -> None:
        self._store = store
        self._sessions = sessions

    def sign_up(self, username: str, email: str, password: str) -> Result[AuthOutcome]:
        """Create a local account, its verification token, and a session.

        Returns Err(CONFLICT) when the email is taken and Err(INTERNAL_ERROR)
        for anything unexpected. Nothing is written unless every step succeeds.
        """
        email = normalize_email(email)
        try:
            if self._store.get_by_email(email) is not None:
                raise AuthError(ErrorKind.CONFLICT, _EMAIL_IN_USE)

            salt = generate_salt()
            hashed = hash_password(password, salt)

            with self._store.begin() as tx:
                try:
                    user_id = self._store.create_user(
                        User(email=email, username=username, password=hashed, salt=salt),
                        tx=tx,
                    )
                except IntegrityError as exc:
                    # Lost the race against a concurrent sign-up for this email.
                    raise AuthError(ErrorKind.CONFLICT, _EMAIL_IN_USE) from exc
                self._store.create_verification_token(
                    EmailVerificationToken(
                        user_id=user_id,
                        email=email,
                        token=secrets.token_hex(32),
                        expires_at=(datetime.now(timezone.utc) + VERIFICATION_TOKEN_TTL).isoformat(),
                    ),
                    tx=tx,
                )

            user = PublicUser(id=user_id, username=username, email=email)
            cookie = self._sessions.create_user_session(user_id, remember=False)
        except AuthError as exc:
            logger.info("Sign-up rejected (%s)", exc.kind.value)
            return Err(exc.kind, exc.message)
        except Exception:
            logger.exception("Sign-up failed unexpectedly")
            return Err(ErrorKind.INTERNAL_ERROR, _SIGNUP_FAILED)

        logger.info("User %d signed up", user_id)
        return Ok(AuthOutcome(user=user, cookie=cookie))

    def sign_in(self, email: str, password: str, remember: bool = False) -> Result[AuthOutcome]:
        """Verify email + password and issue a session honouring remember.

        Unknown email and wrong password both return the same
        Err(BAD_REQUEST, "Wrong credentials").
        """
        email = normalize_email(email)
        try:
            user = self._store.get_credentials(email)
            if user is None or user.password is None:
                # Equalize timing -- do NOT return before running bcrypt [C1]
                verify_password(password, DUMMY_SALT, DUMMY_HASH)
                raise AuthError(ErrorKind.BAD_REQUEST, _WRONG_CREDENTIALS)
            if not verify_password(password, user.salt, user.password):
                raise AuthError(ErrorKind.BAD_REQUEST, _WRONG_CREDENTIALS)

            cookie = self._sessions.create_user_session(user.id, remember=remember)
        except AuthError as exc:
            logger.info("Sign-in rejected (%s)", exc.kind.value)
            return Err(exc.kind, exc.message)
        except Exception:
            logger.exception("Sign-in failed unexpectedly")
            return Err(ErrorKind.INTERNAL_ERROR, _SIGNIN_FAILED)

        logger.info("User %d signed in (remember=%s)", user.id, remember)
        return Ok(AuthOutcome(user=PublicUser(id=user.id, username=user.username, email=user.email), cookie=cookie))
