"""
sessions.py — Identity session registry

Maps a user key to the capability handle last built for that identity and
the last account snapshot that session observed. One registry lives as long
as its ``AccountManager``; there is no module-level registry.

The directory public key is resolved at most once per registry. Resolution
is single-flight: concurrent first callers wait on one lookup, and every
registered handle is rebuilt with the resolved key before any caller gets a
handle back.
"""

from __future__ import annotations
import hmac
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Optional, Set

from .client import CapabilityClient, LedgerClient
from .config import DirectoryConfig, check_public_key
from .ledger import LedgerTransport
from .passwords import derive_encrypt_secret
from .reducer import Account

logger = logging.getLogger(__name__)

ClientFactory = Callable[..., CapabilityClient]


@dataclass
class SessionEntry:
    user_key: str
    client: CapabilityClient
    secret: bytes = field(repr=False)
    snapshot: Optional[Account] = None


class SessionRegistry:
    """Process-local, lifetime-scoped cache of per-identity handles."""

    def __init__(
        self,
        config: DirectoryConfig,
        transport: LedgerTransport,
        client_factory: ClientFactory = LedgerClient,
    ):
        self._config = config
        self._transport = transport
        self._factory = client_factory
        self._public_key: Optional[str] = config.public_key
        self._entries: Dict[str, SessionEntry] = {}
        self._pending_tombstones: Set[str] = set()
        self._lock = threading.RLock()
        self._key_lock = threading.Lock()
        self.key_resolutions = 0

    @property
    def config(self) -> DirectoryConfig:
        return self._config

    @property
    def public_key(self) -> Optional[str]:
        return self._public_key

    def reconfigure(self, config: DirectoryConfig) -> None:
        """Bind to a new master identity, dropping every cached session."""
        with self._key_lock, self._lock:
            self._config = config
            self._public_key = config.public_key
            self._entries.clear()
            self._pending_tombstones.clear()

    # ------------------------------------------------------------------
    # Handles
    # ------------------------------------------------------------------

    def _build(self, secret: Optional[bytes]) -> CapabilityClient:
        cfg = self._config
        return self._factory(
            self._transport,
            cfg.server_url,
            cfg.account_address,
            cfg.passphrase,
            public_key=self._public_key,
            encrypt_secret=secret,
        )

    def ensure_public_key(self) -> str:
        """Resolve the directory public key once, then rebuild cached handles."""
        key = self._public_key
        if key:
            return key
        with self._key_lock:
            if self._public_key:
                return self._public_key
            resolved = self._build(None).resolve_public_key()
            check_public_key(resolved)
            self.key_resolutions += 1
            with self._lock:
                self._public_key = resolved
                for entry in self._entries.values():
                    entry.client = self._build(entry.secret)
            logger.info("Resolved directory public key for %s", self._config.account_address)
            return resolved

    def get_client(self, user_key: Optional[str], pass_key: Optional[str]) -> CapabilityClient:
        """Return a handle for ``user_key``.

        Without a password the handle is built fresh and not registered; it
        can read and append records but not touch sensitive data.

        Raises:
            ConfigurationError: If the master identity is not configured
                or the resolved public key is malformed.
            LedgerError: If the public key lookup fails.
        """
        self._config.require_identity()
        self.ensure_public_key()

        if pass_key is None or user_key is None:
            return self._build(None)

        secret = derive_encrypt_secret(
            str(self._config.account_address),
            user_key,
            pass_key,
            self._config.kdf_iterations,
        )
        with self._lock:
            entry = self._entries.get(user_key)
            if entry is not None and hmac.compare_digest(entry.secret, secret):
                return entry.client
            client = self._build(secret)
            self._entries[user_key] = SessionEntry(
                user_key=user_key,
                client=client,
                secret=secret,
                snapshot=entry.snapshot if entry is not None else None,
            )
            return client

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def remember(self, user_key: str, account: Account) -> bool:
        """Cache ``account`` on the session for ``user_key``, if one exists."""
        with self._lock:
            entry = self._entries.get(user_key)
            if entry is None:
                return False
            entry.snapshot = account.copy()
            return True

    def snapshot(self, user_key: str) -> Optional[Account]:
        with self._lock:
            entry = self._entries.get(user_key)
            if entry is None or entry.snapshot is None:
                return None
            return entry.snapshot.copy()

    def invalidate(self, user_key: str, account_id: Optional[str] = None) -> None:
        """Drop the snapshot for ``user_key`` (only if it is ``account_id``, when given)."""
        with self._lock:
            entry = self._entries.get(user_key)
            if entry is None or entry.snapshot is None:
                return
            if account_id is None or entry.snapshot.account_id == account_id:
                entry.snapshot = None

    def record_tombstone(self, user_key: str, account_id: str) -> None:
        """Note a tombstone this process appended, until the ledger shows it."""
        with self._lock:
            self._pending_tombstones.add(account_id)
        self.invalidate(user_key, account_id)

    def pending_tombstones(self) -> Set[str]:
        with self._lock:
            return set(self._pending_tombstones)

    def settle_tombstones(self, confirmed: Iterable[str]) -> None:
        """Forget pending tombstones the ledger read already reflects."""
        with self._lock:
            self._pending_tombstones.difference_update(confirmed)

    def snapshots(self) -> Dict[str, Account]:
        with self._lock:
            return {
                uk: entry.snapshot.copy()
                for uk, entry in self._entries.items()
                if entry.snapshot is not None
            }

    def forget(self, user_key: str) -> None:
        with self._lock:
            self._entries.pop(user_key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, user_key: Any) -> bool:
        with self._lock:
            return user_key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
