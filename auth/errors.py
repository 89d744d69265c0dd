"""
auth/errors.py -- Result type and error taxonomy for the auth services.

Service operations never let exceptions escape to the HTTP boundary. They
return either Ok(value) or Err(kind, message), and callers branch on
result.ok / result.kind rather than catching by type.

Inside a service, AuthError is raised to abort a unit of work with an
expected outcome (e.g. a duplicate email). The service converts it into an
Err at its boundary. Anything else is unexpected: it is logged and replaced
with a generic INTERNAL_ERROR (or OAUTH_FAILURE for the linker) so no store
or library detail reaches a response.

Layer rule: no imports from api/, web/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class ErrorKind(str, Enum):
    CONFLICT = "conflict"
    BAD_REQUEST = "bad_request"
    OAUTH_FAILURE = "oauth_failure"
    INTERNAL_ERROR = "internal_error"


class AuthError(Exception):
    """Expected business failure raised inside a service operation."""

    def __init__(self, kind: ErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T
    ok = True


@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    message: str
    ok = False


Result = Union[Ok[T], Err]
