"""
auth/session.py -- Stateless, cookie-carried user sessions.

Security design decisions:
  Sealing: the session payload is encrypted and authenticated as a compact
       JWE (python-jose, "dir" key management + A256GCM). The client can
       neither read nor forge it. The 256-bit content key is derived once
       from SECRET_KEY with SHA-256 under a fixed context label, so rotating
       SECRET_KEY invalidates every outstanding session.

  Seal/unseal is an injected SessionSealer capability rather than a hidden
       library call. Swapping JweSealer for a server-side session store does
       not change SessionManager's contract.

  Expiry is carried inside the sealed payload ("exp") as well as in the
       cookie's Max-Age, so a cookie replayed after the browser should have
       dropped it is still rejected.

  Reading never raises. Any tampered, truncated, expired or foreign cookie
       reads back as None and the request is treated as anonymous.

  Cookie attributes: httponly always; samesite=lax; secure only when the
       environment is production-like (or SECURE_COOKIES forces it).

Layer rule: no imports from api/ or web/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Protocol

from jose import jwe

from core.config import Settings

logger = logging.getLogger("snipshare.auth")

_KEY_CONTEXT = b"snipshare.session.v1:"


class SealError(Exception):
    """Raised by a SessionSealer when a blob cannot be unsealed."""


class SessionSealer(Protocol):
    def seal(self, payload: dict) -> str: ...

    def unseal(self, token: str) -> dict: ...


class JweSealer:
    """Encrypt-and-authenticate session payloads as compact JWE strings."""

    _ALGORITHM = "dir"
    _ENCRYPTION = "A256GCM"

    def __init__(self, secret_key: str) -> None:
        self._key = hashlib.sha256(_KEY_CONTEXT + secret_key.encode("utf-8")).digest()

    def seal(self, payload: dict) -> str:
        plaintext = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        token = jwe.encrypt(plaintext, self._key, algorithm=self._ALGORITHM, encryption=self._ENCRYPTION)
        return token.decode("ascii") if isinstance(token, bytes) else token

    def unseal(self, token: str) -> dict:
        try:
            plaintext = jwe.decrypt(token, self._key)
            payload = json.loads(plaintext)
        except Exception as exc:
            raise SealError("session blob could not be unsealed") from exc
        if not isinstance(payload, dict):
            raise SealError("session payload is not an object")
        return payload


@dataclass(frozen=True)
class SessionData:
    user_id: int
    issued_at: datetime
    expires_at: datetime
    remember: bool = False


@dataclass(frozen=True)
class SealedCookie:
    """A cookie ready to be written onto a response."""

    name: str
    value: str
    max_age: int
    secure: bool
    httponly: bool = True
    samesite: str = "lax"

    def apply(self, response) -> None:
        """Write (or, for a revocation cookie, delete) the cookie on a Starlette response."""
        if self.max_age <= 0:
            response.delete_cookie(
                self.name,
                httponly=self.httponly,
                secure=self.secure,
                samesite=self.samesite,
            )
            return
        response.set_cookie(
            self.name,
            value=self.value,
            max_age=self.max_age,
            httponly=self.httponly,
            secure=self.secure,
            samesite=self.samesite,
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionManager:
    """Issue, read and revoke sealed session cookies.

    Usage:
        manager = SessionManager.from_settings(get_settings())
        cookie = manager.create_user_session(user_id, remember=False)
        cookie.apply(response)
        session = manager.read_session(request.cookies.get(manager.cookie_name))
    """

    def __init__(
        self,
        sealer: SessionSealer,
        cookie_name: str,
        secure: bool,
        default_ttl: int,
        remember_ttl: int,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._sealer = sealer
        self.cookie_name = cookie_name
        self._secure = secure
        self._default_ttl = default_ttl
        self._remember_ttl = remember_ttl
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, sealer: SessionSealer | None = None) -> SessionManager:
        return cls(
            sealer=sealer or JweSealer(settings.secret_key),
            cookie_name=settings.cookie_session_key,
            secure=settings.cookie_secure,
            default_ttl=settings.session_expire_seconds,
            remember_ttl=settings.remember_expire_seconds,
        )

    def ttl_for(self, remember: bool) -> int:
        return self._remember_ttl if remember else self._default_ttl

    def create_user_session(self, user_id: int, remember: bool = False) -> SealedCookie:
        """Seal a session for user_id and return the cookie carrying it."""
        ttl = self.ttl_for(remember)
        now = self._clock()
        payload = {
            "user": {"id": user_id},
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=ttl)).timestamp()),
            "remember": bool(remember),
        }
        return SealedCookie(
            name=self.cookie_name,
            value=self._sealer.seal(payload),
            max_age=ttl,
            secure=self._secure,
        )

    def read_session(self, cookie_value: str | None) -> SessionData | None:
        """Unseal and validate a cookie value. Returns None on any failure."""
        if not cookie_value:
            return None
        try:
            payload = self._sealer.unseal(cookie_value)
        except SealError:
            logger.debug("Rejected session cookie that failed to unseal")
            return None

        user = payload.get("user")
        user_id = user.get("id") if isinstance(user, dict) else None
        iat = payload.get("iat")
        exp = payload.get("exp")
        if not isinstance(user_id, int) or isinstance(user_id, bool):
            return None
        if not isinstance(iat, int) or not isinstance(exp, int):
            return None

        now = self._clock()
        if exp <= now.timestamp():
            return None
        return SessionData(
            user_id=user_id,
            issued_at=datetime.fromtimestamp(iat, tz=timezone.utc),
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
            remember=bool(payload.get("remember", False)),
        )

    def revoke(self) -> SealedCookie:
        """Return a cookie that overwrites and expires the client's session."""
        return SealedCookie(name=self.cookie_name, value="", max_age=0, secure=self._secure)
