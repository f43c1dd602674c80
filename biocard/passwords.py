"""
Argon2id password hashing with fixed parameters.

Hashes and salts are stored base64-encoded next to each other on the account
row, so verification has to recompute the raw hash rather than parse a PHC
string.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import secrets

from argon2.low_level import ARGON2_VERSION, Type, hash_secret_raw

SALT_SIZE = 16
HASH_SIZE = 32
TIME_COST = 3
MEMORY_COST_KIB = 64 * 1024
PARALLELISM = 4


def _derive(password: str, salt: bytes) -> bytes:
    return hash_secret_raw(
        secret=password.encode("utf-8"),
        salt=salt,
        time_cost=TIME_COST,
        memory_cost=MEMORY_COST_KIB,
        parallelism=PARALLELISM,
        hash_len=HASH_SIZE,
        type=Type.ID,
        version=ARGON2_VERSION,
    )


def hash_password(password: str) -> tuple[str, str]:
    """Return ``(hash, salt)``, both base64 encoded."""
    salt = secrets.token_bytes(SALT_SIZE)
    digest = _derive(password, salt)
    return (
        base64.b64encode(digest).decode("ascii"),
        base64.b64encode(salt).decode("ascii"),
    )


def verify_password(password: str, stored_hash: str, stored_salt: str) -> bool:
    """
    Check ``password`` against a stored hash/salt pair in constant time.

    Anything that cannot be decoded counts as a mismatch.
    """
    try:
        salt = base64.b64decode(stored_salt or "", validate=True)
        expected = base64.b64decode(stored_hash or "", validate=True)
    except (binascii.Error, ValueError):
        return False
    if len(salt) < 8 or not expected:
        return False

    digest = _derive(password, salt)
    return hmac.compare_digest(digest, expected)
