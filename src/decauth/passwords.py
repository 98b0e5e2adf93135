"""
passwords.py — Verification hashes and per-user secrets

The verification hash is bcrypt over the user key + password. bcrypt only
reads the first 72 bytes of its input, so the concatenation is first reduced
to a fixed-length SHA-256 digest (base64, 44 bytes).

The per-user secret that seals ``sensitiveData`` is PBKDF2 over the same
material, salted with the master account address and the user key, so it is
stable across processes and sessions.
"""

from __future__ import annotations
import base64
import hashlib

import bcrypt

from .sealing import derive_field_key


def _material(user_key: str, pass_key: str) -> bytes:
    digest = hashlib.sha256((user_key + pass_key).encode("utf-8")).digest()
    return base64.b64encode(digest)


def hash_pass_key(user_key: str, pass_key: str, rounds: int = 12) -> str:
    """Return the bcrypt verification hash for a user key/password pair."""
    hashed = bcrypt.hashpw(_material(user_key, pass_key), bcrypt.gensalt(rounds=rounds))
    return hashed.decode("utf-8")


def check_pass_key(user_key: str, pass_key: str, hashed: object) -> bool:
    """Return ``True`` iff ``hashed`` was produced from this pair.

    Malformed or missing hashes verify as ``False``.
    """
    if not isinstance(hashed, str) or not hashed:
        return False
    try:
        return bcrypt.checkpw(_material(user_key, pass_key), hashed.encode("utf-8"))
    except ValueError:
        return False


def derive_encrypt_secret(
    account_address: str,
    user_key: str,
    pass_key: str,
    iterations: int,
) -> bytes:
    """Return the 32-byte key that seals one user's sensitive data."""
    salt = hashlib.sha256(f"{account_address}:{user_key}".encode("utf-8")).digest()
    return derive_field_key(_material(user_key, pass_key), salt, iterations)

