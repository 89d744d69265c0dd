"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; stores and services do the work.

Layer rule: no imports from api/, web/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Provider(str, Enum):
    """Closed set of supported OAuth providers.

    The HTTP boundary parses the raw path segment into this enum before any
    core code runs, so an unknown provider never reaches IdentityLinker.
    """

    github = "github"
    google = "google"


@dataclass
class User:
    """Represents a local identity in Snipshare.

    password and salt are None for OAuth-only users (they have no local
    password). When set, salt is the bcrypt salt the password hash was
    computed with; both columns are written together.

    email_verified is an ISO 8601 timestamp, or None until the verification
    flow confirms the address.
    """

    email: str
    username: str
    id: int | None = None
    password: str | None = None  # bcrypt hash, None = OAuth-only user
    salt: str | None = None
    email_verified: str | None = None
    image: str | None = None
    created_at: str | None = None


@dataclass
class Account:
    """One external identity (provider, provider_account_id) bound to one user.

    UNIQUE(provider, provider_account_id) is enforced by the schema, so a
    single external subject maps to at most one local user.
    """

    user_id: int
    provider: str
    provider_account_id: str
    id: int | None = None
    created_at: str | None = None


@dataclass
class EmailVerificationToken:
    """Opaque single-purpose token issued at signup.

    token is 32 random bytes hex-encoded. expires_at is an absolute ISO 8601
    timestamp one hour after issuance. Consumption belongs to the email
    verification flow, which lives outside this package.
    """

    user_id: int
    email: str
    token: str
    expires_at: str
    id: int | None = None


@dataclass(frozen=True)
class ExternalUser:
    """Normalized record returned by the OAuth identity exchange."""

    subject_id: str
    email: str
    name: str


@dataclass(frozen=True)
class PublicUser:
    """Projection of User that is safe to hand to the HTTP boundary."""

    id: int
    username: str
    email: str
    image: str | None = None
    email_verified: str | None = None

    @classmethod
    def from_user(cls, user: User) -> PublicUser:
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            image=user.image,
            email_verified=user.email_verified,
        )
