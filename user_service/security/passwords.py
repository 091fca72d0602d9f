"""Password hashing utilities.

bcrypt embeds the salt and cost factor in every hash, so verification always
runs with the parameters the hash was created with. Plaintext secrets never
leave this module in any stored or logged form.
"""

from __future__ import annotations

import time

import bcrypt

from ..config import get_settings

# bcrypt only looks at the first 72 bytes
_MAX_PASSWORD_BYTES = 72


def _encode(password: str) -> bytes:
    return password.encode("utf-8")[:_MAX_PASSWORD_BYTES]


def hash_password(password: str, rounds: int | None = None) -> str:
    """Hash a password with bcrypt using the configured work factor."""
    salt = bcrypt.gensalt(rounds=rounds or get_settings().bcrypt_rounds)
    return bcrypt.hashpw(_encode(password), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Return ``True`` when ``password`` matches the stored bcrypt hash.

    A malformed stored hash verifies as ``False`` rather than raising.
    """
    try:
        return bcrypt.checkpw(_encode(password), password_hash.encode("utf-8"))
    except (ValueError, TypeError):
        return False


def placeholder_hash(rounds: int | None = None) -> str:
    """Hash the current epoch milliseconds for accounts that must not log in yet.

    The plaintext is discarded immediately, so nobody can present it.
    """
    return hash_password(str(int(time.time() * 1000)), rounds=rounds)
