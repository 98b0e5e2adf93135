"""
client.py — Capability client for one ledger identity

A capability client is scoped to the master ledger identity and, optionally,
one user's encryption secret. The core consumes it only through the
``CapabilityClient`` protocol; ``LedgerClient`` is the implementation that
seals records with ``decauth.sealing`` and ships them over a
``LedgerTransport``.
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional, Protocol

from .canonical_json import canonical_dumps
from .errors import ConfigurationError, DecryptError
from .ledger import LedgerTransport, RawTransaction
from .sealing import identity_private_key, record_key, seal, unseal


class CapabilityClient(Protocol):
    """Protocol for ledger capability handles."""
    address: str
    public_key: Optional[str]

    def list_transactions(self) -> List[RawTransaction]: ...
    def decrypt_record(self, ciphertext: str) -> str: ...
    def decrypt(self, ciphertext: str) -> str: ...
    def encrypt(self, plaintext: str) -> str: ...
    def append(self, payload: Dict[str, Any]) -> Dict[str, Any]: ...
    def resolve_public_key(self) -> str: ...


class LedgerClient:
    """Handle bound to the master identity and an optional user secret."""

    def __init__(
        self,
        transport: LedgerTransport,
        server: str,
        address: str,
        passphrase: str,
        public_key: Optional[str] = None,
        encrypt_secret: Optional[bytes] = None,
    ):
        if not address or not passphrase:
            raise ConfigurationError("LedgerClient requires an address and passphrase.")
        self.transport = transport
        self.server = server
        self.address = address
        self.public_key = public_key
        self.encrypt_secret = encrypt_secret
        self._private_key = identity_private_key(passphrase)
        self._passphrase = passphrase
        self._record_key: Optional[bytes] = None

    def __repr__(self) -> str:
        return (
            f"LedgerClient(server={self.server!r}, address={self.address!r}, "
            f"public_key={'set' if self.public_key else None}, "
            f"user_secret={'set' if self.encrypt_secret else None})"
        )

    def with_public_key(self, public_key: str) -> "LedgerClient":
        """Return a copy of this handle built with ``public_key``."""
        return LedgerClient(
            self.transport,
            self.server,
            self.address,
            self._passphrase,
            public_key=public_key,
            encrypt_secret=self.encrypt_secret,
        )

    # ------------------------------------------------------------------
    # Ledger access
    # ------------------------------------------------------------------

    def list_transactions(self) -> List[RawTransaction]:
        return self.transport.transactions(self.address)

    def resolve_public_key(self) -> str:
        return self.transport.account_public_key(self.address)

    def append(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Seal ``payload`` at the record layer and broadcast it to self."""
        message = seal(self._get_record_key(), canonical_dumps(payload))
        return self.transport.broadcast(self.address, self.address, message)

    # ------------------------------------------------------------------
    # Record layer
    # ------------------------------------------------------------------

    def _get_record_key(self) -> bytes:
        if self._record_key is None:
            if not self.public_key:
                raise ConfigurationError("The directory public key has not been resolved.")
            self._record_key = record_key(self._private_key, self.public_key)
        return self._record_key

    def decrypt_record(self, ciphertext: str) -> str:
        return unseal(self._get_record_key(), ciphertext)

    # ------------------------------------------------------------------
    # User field layer
    # ------------------------------------------------------------------

    def encrypt(self, plaintext: str) -> str:
        if self.encrypt_secret is None:
            raise ConfigurationError("This handle carries no user encryption secret.")
        return seal(self.encrypt_secret, plaintext)

    def decrypt(self, ciphertext: str) -> str:
        if self.encrypt_secret is None:
            raise DecryptError("handle carries no user encryption secret")
        return unseal(self.encrypt_secret, ciphertext)
