"""Password hashing helpers for stored user credentials."""
from __future__ import annotations

from passlib.context import CryptContext

PASSWORD_SCHEME = "pbkdf2_sha256"

_pwd_context = CryptContext(schemes=[PASSWORD_SCHEME], deprecated="auto")


def hash_password(password: str) -> str:
    """Return a salted one-way hash suitable for credential storage."""

    if not password:
        raise ValueError("Password must not be empty")
    return _pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    """Check ``password`` against a stored hash. Used to assert how credentials are stored."""

    if not hashed:
        return False
    try:
        return _pwd_context.verify(password, hashed)
    except ValueError:
        return False


__all__ = ["PASSWORD_SCHEME", "hash_password"]
