"""
API request and response models for Snipshare auth endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Request models are the schema-validation collaborator: by the time a body
reaches CredentialAuthService, field presence, lengths and email syntax have
already been checked here.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from auth.passwords import MAX_PASSWORD_BYTES

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


def _check_password_bytes(value: str) -> str:
    # bcrypt cannot hash more than 72 bytes; multi-byte characters count fully.
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes.")
    return value


class SignUpRequest(BaseModel):
    """Request body for POST /api/v1/auth/signup."""

    username: str = Field(min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(min_length=6, max_length=MAX_PASSWORD_BYTES)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


class SignInRequest(BaseModel):
    """Request body for POST /api/v1/auth/signin."""

    email: EmailStr
    password: str = Field(min_length=1, max_length=MAX_PASSWORD_BYTES)
    remember: bool = False

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public projection of a user."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str
    image: Optional[str] = None
    email_verified: Optional[str] = None


class AuthResponse(BaseModel):
    """Response for successful sign-up and sign-in."""

    model_config = ConfigDict(frozen=True)

    message: str
    user: UserResponse


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class OAuthProviderInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    label: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
