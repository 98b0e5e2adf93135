"""decauth public API.

User accounts kept as encrypted records on an append-only ledger. The
``AccountManager`` facade replays the ledger into current account state and
manages the account lifecycle as log appends.

Example:
    from decauth import AccountManager, DirectoryConfig, InMemoryLedger

    ledger = InMemoryLedger()
    ledger.open_account("MASTER-1", "master passphrase")
    accounts = AccountManager(
        DirectoryConfig(account_address="MASTER-1", passphrase="master passphrase"),
        ledger,
    )
    accounts.create_account("ada@example.com", "s3cret", {"plan": "pro"}, {"ssn": "..."})
    print(accounts.retrieve_account_meta_data("ada@example.com"))
"""

from .accounts import AccountManager, is_valid_entry
from .canonical_json import canonical_dumps, canonical_hash, canonical_bytes
from .client import CapabilityClient, LedgerClient
from .config import DirectoryConfig
from .errors import (
    DecAuthError,
    ConfigurationError,
    DecryptError,
    RecordDecodeError,
    LedgerError,
)
from .ledger import InMemoryLedger, LedgerTransport, RawTransaction
from .passwords import check_pass_key, hash_pass_key
from .reconcile import reconcile
from .records import (
    RECORD_KEY,
    AccountPatch,
    DecodeFailure,
    DecodeResult,
    PatchKind,
    decode_transaction,
    decode_transactions,
)
from .reducer import Account, AccountReducer, merge_fields, merge_patches
from .sessions import SessionEntry, SessionRegistry

__version__ = "1.0.0"
__all__ = [
    "AccountManager",
    "is_valid_entry",
    "Account",
    "AccountReducer",
    "merge_fields",
    "merge_patches",
    "AccountPatch",
    "DecodeFailure",
    "DecodeResult",
    "PatchKind",
    "RECORD_KEY",
    "decode_transaction",
    "decode_transactions",
    "reconcile",
    "SessionEntry",
    "SessionRegistry",
    "CapabilityClient",
    "LedgerClient",
    "LedgerTransport",
    "InMemoryLedger",
    "RawTransaction",
    "DirectoryConfig",
    "hash_pass_key",
    "check_pass_key",
    "canonical_dumps",
    "canonical_hash",
    "canonical_bytes",
    "DecAuthError",
    "ConfigurationError",
    "DecryptError",
    "RecordDecodeError",
    "LedgerError",
]
