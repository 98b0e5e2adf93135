"""
accounts.py — Account lifecycle over an append-only ledger

Every write is a log append: create appends a record, delete appends a
tombstone, and every change is tombstone-then-recreate under a fresh
``accountId``. Reads replay the ledger (decode → merge → reconcile) and pick
the entry for a user key.

Failure policy:
  - Invalid (non-string or empty) user keys and passwords fail before any
    ledger call.
  - A wrong password and an unknown user look the same to the caller
    (``None`` / ``False``).
  - Ledger failures are logged and reported as ``False`` / ``None``.
  - Only ``ConfigurationError`` (no master identity, or a malformed
    directory public key) propagates. Data that does not encode as JSON
    fails like invalid input, before any ledger call.

There is no lock across the tombstone and recreate steps of a change. A
concurrent reader in between sees the account as absent, never twice.
"""

from __future__ import annotations
import functools
import json
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional, TypeVar

from .canonical_json import canonical_dumps
from .client import CapabilityClient, LedgerClient
from .config import DirectoryConfig
from .errors import ConfigurationError, DecryptError, LedgerError
from .ledger import LedgerTransport
from .passwords import check_pass_key, hash_pass_key
from .reconcile import reconcile
from .records import (
    RECORD_KEY,
    OP_KEY,
    create_record,
    decode_transactions,
    tombstone_record,
)
from .reducer import Account, AccountReducer
from .sessions import ClientFactory, SessionRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_valid_entry(value: Any) -> bool:
    """A user key or password must be a non-empty string."""
    return isinstance(value, str) and bool(value)


def is_serializable(*values: Any) -> bool:
    """Account data must encode as canonical JSON (no NaN, Infinity or foreign types)."""
    try:
        canonical_dumps(list(values))
    except (TypeError, ValueError) as exc:
        logger.warning("Account data cannot be stored: %s", exc)
        return False
    return True


def _ledger_guard(default: Any) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Turn ``LedgerError`` into ``default`` (called if it is a factory)."""
    def wrap(fn: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(fn)
        def inner(self: "AccountManager", *args: Any, **kwargs: Any) -> T:
            try:
                return fn(self, *args, **kwargs)
            except LedgerError as exc:
                logger.warning("%s failed on ledger access: %s", fn.__name__, exc)
                return default() if callable(default) else default
        return inner
    return wrap


class AccountManager:
    """Account directory bound to one master ledger identity."""

    def __init__(
        self,
        config: Optional[DirectoryConfig] = None,
        transport: Optional[LedgerTransport] = None,
        *,
        sessions: Optional[SessionRegistry] = None,
        client_factory: ClientFactory = LedgerClient,
    ):
        if sessions is None:
            if transport is None:
                raise ConfigurationError("AccountManager needs a ledger transport or a session registry.")
            sessions = SessionRegistry(config or DirectoryConfig(), transport, client_factory)
        self.sessions = sessions

    @property
    def config(self) -> DirectoryConfig:
        return self.sessions.config

    def configure(
        self,
        server_url: Optional[str],
        account_address: str,
        passphrase: str,
        public_key: Optional[str] = None,
    ) -> None:
        """Bind the directory to a funded master ledger account.

        Args:
            server_url: Ledger node URL, or ``None`` to keep the current one.
            account_address: Master account identifier.
            passphrase: Master account passphrase.
            public_key: Master public key; resolved lazily when omitted.
        """
        self.sessions.reconfigure(
            self.config.with_identity(server_url, account_address, passphrase, public_key)
        )

    # ------------------------------------------------------------------
    # Directory replay
    # ------------------------------------------------------------------

    def _load_directory(self) -> List[Account]:
        client = self.sessions.get_client(None, None)
        decoded = decode_transactions(
            client.list_transactions(),
            client,
            workers=self.config.decode_workers,
        )
        reducer = AccountReducer()
        reducer.apply_patches(decoded.patches)
        confirmed = reducer.tombstoned()
        self.sessions.settle_tombstones(confirmed)
        return reconcile(
            reducer.export_accounts(),
            self.sessions.snapshots(),
            set(confirmed) | self.sessions.pending_tombstones(),
        )

    def _find(self, user_key: str) -> Optional[Account]:
        for account in self._load_directory():
            if account.user_key == user_key:
                return account
        return None

    def _append(self, client: CapabilityClient, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        receipt = client.append(payload)
        if not receipt.get("broadcasted"):
            logger.warning("Ledger did not broadcast %s record", payload.get(OP_KEY))
            return None
        return receipt

    def _tombstone(self, account: Account) -> bool:
        client = self.sessions.get_client(account.user_key, None)
        if self._append(client, tombstone_record(account.account_id)) is None:
            return False
        self.sessions.record_tombstone(account.user_key, account.account_id)
        logger.info("Tombstoned account %s", account.account_id)
        return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @_ledger_guard(False)
    def check_availability(self, user_key: Any) -> bool:
        """Return ``True`` iff no live account uses ``user_key``."""
        if not is_valid_entry(user_key):
            return False
        return self._find(user_key) is None

    @_ledger_guard(None)
    def retrieve_account(
        self,
        user_key: Any,
        pass_key: Any = None,
        keep_encrypted: bool = False,
    ) -> Optional[Account]:
        """Fetch the live account for ``user_key``.

        Without a password the account comes back with ``sensitive_data``
        set to ``None`` (or still sealed, with ``keep_encrypted``). With a
        password the sensitive data is decrypted, provided the password
        matches; otherwise the result is ``None``, the same as for an
        unknown user.
        """
        if not is_valid_entry(user_key):
            return None
        if pass_key is not None and not is_valid_entry(pass_key):
            return None

        account = self._find(user_key)
        if account is None:
            return None

        if pass_key is None:
            if not keep_encrypted:
                account.sensitive_data = None
            return account

        if not check_pass_key(user_key, pass_key, account.encrypted_pass_key):
            return None

        client = self.sessions.get_client(user_key, pass_key)
        self.sessions.remember(user_key, account)
        if account.sensitive_data is None:
            return account
        try:
            account.sensitive_data = json.loads(client.decrypt(account.sensitive_data))
        except (DecryptError, ValueError) as exc:
            logger.warning("Sensitive data of account %s is unreadable: %s", account.account_id, exc)
            return None
        return account

    @_ledger_guard(list)
    def retrieve_all_accounts(self) -> List[Account]:
        """Every live account. Sensitive data is left sealed."""
        return self._load_directory()

    def retrieve_account_data(self, user_key: Any, pass_key: Any = None) -> Optional[Dict[str, Any]]:
        account = self.retrieve_account(user_key, pass_key)
        if account is None:
            return None
        return {"metaData": account.meta_data, "sensitiveData": account.sensitive_data}

    def retrieve_account_meta_data(self, user_key: Any) -> Any:
        """Metadata only; never needs a password."""
        account = self.retrieve_account(user_key, None)
        return account.meta_data if account is not None else None

    def retrieve_account_sensitive_data(self, user_key: Any, pass_key: Any) -> Any:
        account = self.retrieve_account(user_key, pass_key)
        return account.sensitive_data if account is not None else None

    def verify_identity(self, user_key: Any, pass_key: Any) -> bool:
        """Return ``True`` iff ``pass_key`` is the current password of ``user_key``.

        The password-gated read can fail for reasons other than the
        password, so the final hash comparison is the deciding check.
        """
        if not is_valid_entry(user_key) or not is_valid_entry(pass_key):
            return False
        if self.retrieve_account(user_key, None) is None:
            return False
        decrypted = self.retrieve_account(user_key, pass_key)
        if decrypted is None:
            return False
        return check_pass_key(user_key, pass_key, decrypted.encrypted_pass_key)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @_ledger_guard(False)
    def create_account(
        self,
        user_key: Any,
        pass_key: Any,
        meta_data: Any = None,
        sensitive_data: Any = None,
        pre_crypted: bool = False,
    ) -> bool:
        """Append a create record for a new account.

        Args:
            user_key: Unique user name, e.g. an email address.
            pass_key: Password, or with ``pre_crypted`` the stored
                verification hash of an existing account.
            meta_data: JSON data readable without the password.
            sensitive_data: JSON data sealed under the password. With
                ``pre_crypted`` it must already be a sealed token (or ``None``)
                and is stored untouched.
            pre_crypted: Carry over hash and sealed data from a previous
                version of the account instead of deriving them.

        Returns:
            ``True`` iff the ledger broadcast the record. Data that does not
            encode as JSON fails before any ledger call.
        """
        if not is_valid_entry(user_key) or not is_valid_entry(pass_key):
            return False
        if not is_serializable(meta_data, sensitive_data):
            return False
        if not self.check_availability(user_key):
            return False

        if pre_crypted:
            client = self.sessions.get_client(user_key, None)
            pass_hash = pass_key
            sealed = sensitive_data
        else:
            client = self.sessions.get_client(user_key, pass_key)
            pass_hash = hash_pass_key(user_key, pass_key, self.config.bcrypt_rounds)
            sealed = None if sensitive_data is None else client.encrypt(canonical_dumps(sensitive_data))

        payload = create_record(str(uuid.uuid4()), user_key, meta_data, sealed, pass_hash)
        receipt = self._append(client, payload)
        if receipt is None:
            return False

        record = {k: v for k, v in payload.items() if k not in (RECORD_KEY, OP_KEY)}
        self.sessions.remember(user_key, Account.from_record(record, int(receipt.get("sequence", -1))))
        logger.info("Created account %s", payload["accountId"])
        return True

    def _replace(
        self,
        account: Account,
        user_key: str,
        pass_key: str,
        meta_data: Any,
        sensitive_data: Any,
        pre_crypted: bool = False,
    ) -> bool:
        if not is_serializable(meta_data, sensitive_data):
            return False
        if not self._tombstone(account):
            return False
        created = self.create_account(user_key, pass_key, meta_data, sensitive_data, pre_crypted)
        if not created:
            logger.error(
                "Account %s was tombstoned but its replacement was not created",
                account.account_id,
            )
        return created

    @_ledger_guard(False)
    def change_password(self, user_key: Any, pass_key: Any, new_pass_key: Any) -> bool:
        """Re-create the account under a new password, re-sealing its sensitive data."""
        if not is_valid_entry(new_pass_key):
            return False
        if not self.verify_identity(user_key, pass_key):
            return False
        account = self.retrieve_account(user_key, pass_key)
        if account is None:
            return False
        return self._replace(account, user_key, new_pass_key, account.meta_data, account.sensitive_data)

    @_ledger_guard(False)
    def change_username(self, user_key: Any, new_user_key: Any, pass_key: Any) -> bool:
        """Move the account to ``new_user_key``. The new key must be free."""
        if not is_valid_entry(user_key) or not is_valid_entry(pass_key):
            return False
        if not self.check_availability(new_user_key):
            return False
        if not self.verify_identity(user_key, pass_key):
            return False
        account = self.retrieve_account(user_key, pass_key)
        if account is None:
            return False
        changed = self._replace(account, new_user_key, pass_key, account.meta_data, account.sensitive_data)
        if changed:
            self.sessions.forget(user_key)
        return changed

    @_ledger_guard(False)
    def change_data(self, user_key: Any, pass_key: Any, new_meta_data: Any, new_sensitive_data: Any) -> bool:
        if not self.verify_identity(user_key, pass_key):
            return False
        account = self.retrieve_account(user_key, None)
        if account is None:
            return False
        return self._replace(account, user_key, pass_key, new_meta_data, new_sensitive_data)

    @_ledger_guard(False)
    def change_sensitive_data(self, user_key: Any, pass_key: Any, new_sensitive_data: Any) -> bool:
        if not self.verify_identity(user_key, pass_key):
            return False
        # The old sensitive data is being replaced, no need to decrypt it.
        account = self.retrieve_account(user_key, None)
        if account is None:
            return False
        return self._replace(account, user_key, pass_key, account.meta_data, new_sensitive_data)

    @_ledger_guard(False)
    def change_meta_data(self, user_key: Any, new_meta_data: Any) -> bool:
        """Replace metadata without the password.

        Sensitive data is carried over sealed, byte for byte, together with
        the stored verification hash.
        """
        account = self.retrieve_account(user_key, None, keep_encrypted=True)
        if account is None or not is_valid_entry(account.encrypted_pass_key):
            return False
        return self._replace(
            account,
            user_key,
            str(account.encrypted_pass_key),
            new_meta_data,
            account.sensitive_data,
            pre_crypted=True,
        )

    @_ledger_guard(False)
    def remove_account(self, user_key: Any, pass_key: Any = None, force: bool = False) -> bool:
        """Tombstone the account. ``force`` skips password verification."""
        if not is_valid_entry(user_key):
            return False
        if not force and not self.verify_identity(user_key, pass_key):
            return False
        account = self.retrieve_account(user_key, None)
        if account is None:
            return False
        if not self._tombstone(account):
            return False
        self.sessions.forget(account.user_key)
        return True

    @_ledger_guard(0)
    def delete_all_accounts(self) -> int:
        """Tombstone every live account under the master identity's authority.

        Returns:
            Number of tombstones the ledger broadcast.
        """
        removed = 0
        for account in self._load_directory():
            if self._tombstone(account):
                self.sessions.forget(account.user_key)
                removed += 1
        logger.info("Deleted %d accounts", removed)
        return removed
