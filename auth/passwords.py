"""
auth/passwords.py -- Salted bcrypt password hashing and verification.

Security design decisions:
  bcrypt is used directly (no passlib wrapper). Its cost factor makes each
  guess deliberately expensive, which is what low-entropy secrets need. A
  fast general-purpose digest is never used for passwords.

  The salt is generated and stored separately from the hash so the users
  table keeps the (password, salt) pair the sign-up flow writes. bcrypt
  salts carry 16 random bytes plus the cost factor, so a stored salt also
  pins the work factor the hash was produced with.

  verify_password() recomputes the hash and compares with
  hmac.compare_digest(), which does not short-circuit on the first
  mismatching byte. Any malformed input yields False instead of an error.

  Passwords longer than 72 bytes cannot be hashed by bcrypt. hash_password()
  rejects them with ValueError; the API layer caps the field length so this
  only fires for direct callers.

Layer rule: no imports from api/, web/ or core/. No I/O.
"""

from __future__ import annotations

import hmac

import bcrypt

_ROUNDS = 12
MAX_PASSWORD_BYTES = 72


def generate_salt() -> str:
    """Return a fresh bcrypt salt (16 random bytes + cost factor)."""
    return bcrypt.gensalt(rounds=_ROUNDS).decode("ascii")


def hash_password(password: str, salt: str) -> str:
    """Return the bcrypt hash of password under salt.

    Deterministic for a given (password, salt) pair.
    """
    raw = password.encode("utf-8")
    if len(raw) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password exceeds {MAX_PASSWORD_BYTES} bytes.")
    return bcrypt.hashpw(raw, salt.encode("ascii")).decode("ascii")


def verify_password(password: str, salt: str | None, hashed: str | None) -> bool:
    """Return True if password hashed under salt equals hashed."""
    if not password or not salt or not hashed:
        return False
    try:
        candidate = hash_password(password, salt)
        return hmac.compare_digest(candidate.encode("ascii"), hashed.encode("utf-8"))
    except Exception:
        return False


# Timing equalization dummy pair [C1].
# Computed once at module load so the first sign-in attempt is not measurably
# slower than subsequent ones. Sign-in verifies against this pair when the
# email is unknown, so both failure paths pay the same bcrypt cost.
DUMMY_SALT: str = generate_salt()
DUMMY_HASH: str = hash_password("snipshare_timing_dummy", DUMMY_SALT)
