"""
Password hashing and validation using argon2id.

Hashes carry their own parameters, so a change to the hasher configuration is
picked up on the next successful login via ``check_needs_rehash``.
"""

from __future__ import annotations

import argon2

from mindcase.config import get_settings

_hasher = argon2.PasswordHasher(
    time_cost=2,
    memory_cost=65536,  # 64 MB
    parallelism=1,
    hash_len=32,
    salt_len=16,
    type=argon2.Type.ID,
)


class PasswordStrengthError(ValueError):
    """Raised when a password does not meet the length rules."""


def hash_password(password: str) -> str:
    """Hash a password using argon2id. Returns the full encoded hash string."""
    return _hasher.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify a password against its argon2id hash.

    Returns False on mismatch or on a malformed hash; never raises for those.
    """
    try:
        return _hasher.verify(password_hash, password)
    except (argon2.exceptions.VerifyMismatchError, argon2.exceptions.InvalidHashError):
        return False


def check_needs_rehash(password_hash: str) -> bool:
    """Check if the hash was produced with outdated parameters."""
    return _hasher.check_needs_rehash(password_hash)


def validate_password_strength(password: str) -> None:
    """
    Validate a new password.

    Raises PasswordStrengthError when the password is blank, shorter than
    ``password_min_length`` or longer than ``password_max_length`` (the upper
    bound keeps argon2 input size bounded).
    """
    settings = get_settings()
    if not password or not password.strip():
        msg = "Password cannot be empty"
        raise PasswordStrengthError(msg)
    if len(password) < settings.password_min_length:
        msg = f"Password must be at least {settings.password_min_length} characters"
        raise PasswordStrengthError(msg)
    if len(password) > settings.password_max_length:
        msg = f"Password must not exceed {settings.password_max_length} characters"
        raise PasswordStrengthError(msg)
