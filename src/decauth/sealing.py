"""
sealing.py — Record and field encryption for decauth

Two layers of AES-GCM sealing:
- Record layer: every ledger message is sealed under a key derived (HKDF)
  from an X25519 exchange between the master identity's private key and the
  directory-wide public key. Readable with the master identity alone.
- Field layer: ``sensitiveData`` is additionally sealed under a per-user key
  derived (PBKDF2) from the user key and password.

Sealed tokens are ``base64(nonce || ciphertext)`` strings.
"""

from __future__ import annotations
import base64
import binascii
import hashlib
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import x25519
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import DecryptError

RECORD_KDF_INFO = b"decauth-record-v1"
_NONCE_BYTES = 12


def identity_private_key(passphrase: str) -> x25519.X25519PrivateKey:
    """Derive the master identity's X25519 key from its passphrase."""
    seed = hashlib.sha256(passphrase.encode("utf-8")).digest()
    return x25519.X25519PrivateKey.from_private_bytes(seed)


def public_key_b64(private_key: x25519.X25519PrivateKey) -> str:
    raw = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return base64.b64encode(raw).decode("utf-8")


def load_public_key(public_key: str) -> x25519.X25519PublicKey:
    """Parse a base64 X25519 public key.

    Raises:
        DecryptError: If the value is not base64 or not a 32-byte key.
    """
    try:
        raw = base64.b64decode(public_key, validate=True)
        return x25519.X25519PublicKey.from_public_bytes(raw)
    except (binascii.Error, ValueError, TypeError) as exc:
        raise DecryptError(f"invalid public key: {exc}") from exc


def record_key(private_key: x25519.X25519PrivateKey, public_key: str) -> bytes:
    """Derive the 32-byte record-layer key for an identity/public-key pair."""
    shared = private_key.exchange(load_public_key(public_key))
    return HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=None,
        info=RECORD_KDF_INFO,
    ).derive(shared)


def derive_field_key(secret: bytes, salt: bytes, iterations: int) -> bytes:
    """Stretch a per-user secret into a 32-byte field-layer key."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(secret)


def seal(key: bytes, plaintext: str) -> str:
    nonce = os.urandom(_NONCE_BYTES)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
    return base64.b64encode(nonce + ciphertext).decode("utf-8")


def unseal(key: bytes, token: str) -> str:
    """Reverse ``seal``.

    Raises:
        DecryptError: On malformed tokens, wrong keys or tampered ciphertext.
    """
    try:
        blob = base64.b64decode(token, validate=True)
    except (binascii.Error, ValueError, TypeError) as exc:
        raise DecryptError(f"token is not base64: {exc}") from exc
    if len(blob) <= _NONCE_BYTES:
        raise DecryptError("token too short")
    nonce, ciphertext = blob[:_NONCE_BYTES], blob[_NONCE_BYTES:]
    try:
        plaintext = AESGCM(key).decrypt(nonce, ciphertext, None)
    except InvalidTag as exc:
        raise DecryptError("authentication tag mismatch") from exc
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecryptError("plaintext is not UTF-8") from exc
