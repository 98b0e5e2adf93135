"""
reducer.py — Deterministic account-state reducer

Core invariants:
  1. Records are immutable. Changes are new records.
  2. Merge is last-write-wins per field, in ledger order (height, sequence).
     A later metadata-only patch never erases fields an earlier patch set.
  3. Tombstones are sticky: once any patch sets ``isDeleted`` for an
     ``accountId``, that id stays deleted. Later patches for it are ignored.
  4. Deterministic: same patches in the same order give the same state hash.

This reducer does NOT decrypt or verify anything. Patches come from
``decauth.records``.
"""

from __future__ import annotations
import copy
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .canonical_json import canonical_hash
from .records import (
    AccountPatch,
    PatchKind,
    F_ACCOUNT_ID,
    F_IS_DELETED,
    F_META_DATA,
    F_PASS_KEY,
    F_SENSITIVE_DATA,
    F_USER_KEY,
)

REDUCER_NAME = "AccountReducer"
REDUCER_VERSION = "1.0.0"


# ---------------------------------------------------------------------------
# Account
# ---------------------------------------------------------------------------

@dataclass
class Account:
    account_id: str
    user_key: str
    meta_data: Any = None
    sensitive_data: Any = None
    encrypted_pass_key: Optional[str] = None
    is_deleted: bool = False
    sequence: int = -1

    def to_record(self) -> Dict[str, Any]:
        """Wire-format (camelCase) view of the account."""
        return {
            F_ACCOUNT_ID: self.account_id,
            F_USER_KEY: self.user_key,
            F_META_DATA: self.meta_data,
            F_SENSITIVE_DATA: self.sensitive_data,
            F_PASS_KEY: self.encrypted_pass_key,
            F_IS_DELETED: self.is_deleted,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any], sequence: int = -1) -> "Account":
        return cls(
            account_id=str(record[F_ACCOUNT_ID]),
            user_key=str(record[F_USER_KEY]),
            meta_data=copy.deepcopy(record.get(F_META_DATA)),
            sensitive_data=copy.deepcopy(record.get(F_SENSITIVE_DATA)),
            encrypted_pass_key=record.get(F_PASS_KEY),
            is_deleted=bool(record.get(F_IS_DELETED, False)),
            sequence=sequence,
        )

    def copy(self) -> "Account":
        return copy.deepcopy(self)


# ---------------------------------------------------------------------------
# Pure merge rules
# ---------------------------------------------------------------------------

def is_tombstoned(fields: Dict[str, Any]) -> bool:
    return fields.get(F_IS_DELETED) is True


def merge_fields(current: Dict[str, Any], patch: AccountPatch) -> Dict[str, Any]:
    """Shallow-merge ``patch`` over ``current`` without mutating either.

    Later fields win per key; keys absent from the patch are untouched;
    ``isDeleted`` can only go from False to True.
    """
    merged = dict(current)
    merged.update(patch.fields)
    if is_tombstoned(current) or patch.kind is PatchKind.TOMBSTONE:
        merged[F_IS_DELETED] = True
    return merged


# ---------------------------------------------------------------------------
# Reducer
# ---------------------------------------------------------------------------

class AccountReducer:
    """
    Folds ordered account patches into ``{accountId: fields}``.

    Keeps a per-account history of (sequence, kind) so the append-only
    log behind every logical account stays inspectable.
    """

    def __init__(self) -> None:
        self._fields: Dict[str, Dict[str, Any]] = {}
        self._last_sequence: Dict[str, int] = {}
        self._history: Dict[str, List[Tuple[int, PatchKind]]] = {}
        self.patch_count = 0
        self.ignored_after_tombstone = 0
        self.last_sequence: Optional[int] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def apply_patches(self, patches: Iterable[AccountPatch]) -> None:
        """Apply patches in ledger order, regardless of input order."""
        for patch in sorted(patches, key=lambda p: p.order_key):
            self.apply_patch(patch)

    def apply_patch(self, patch: AccountPatch) -> None:
        """Apply one patch. Callers feeding patches one by one own the ordering."""
        account_id = patch.account_id
        self.patch_count += 1
        self.last_sequence = patch.sequence
        self._history.setdefault(account_id, []).append((patch.sequence, patch.kind))

        current = self._fields.get(account_id, {})
        if is_tombstoned(current):
            self.ignored_after_tombstone += 1
            return

        self._fields[account_id] = merge_fields(current, patch)
        self._last_sequence[account_id] = patch.sequence

    def export_accounts(self) -> Dict[str, Account]:
        """Non-deleted accounts, keyed by accountId, in first-seen order.

        Accounts that never received a ``userKey`` (amends for an unknown
        id) are not addressable and are left out.
        """
        out: Dict[str, Account] = {}
        for account_id, fields in self._fields.items():
            if is_tombstoned(fields):
                continue
            if not isinstance(fields.get(F_USER_KEY), str):
                continue
            out[account_id] = Account.from_record(fields, self._last_sequence[account_id])
        return out

    def tombstoned(self) -> List[str]:
        return [aid for aid, fields in self._fields.items() if is_tombstoned(fields)]

    def history(self, account_id: str) -> List[Tuple[int, PatchKind]]:
        return list(self._history.get(account_id, []))

    def export_state(self) -> Dict[str, Any]:
        """Deterministic, JSON-serializable snapshot of the reduced directory."""
        accounts = {
            aid: acc.to_record() for aid, acc in sorted(self.export_accounts().items())
        }
        body = {
            "accounts": accounts,
            "tombstoned": sorted(self.tombstoned()),
            "metadata_partial": {
                "patch_count": self.patch_count,
                "last_sequence": self.last_sequence,
                "reducer": {"name": REDUCER_NAME, "version": REDUCER_VERSION},
            },
        }
        return {
            "accounts": accounts,
            "tombstoned": body["tombstoned"],
            "metadata": dict(body["metadata_partial"], state_hash=canonical_hash(body)),
        }


def merge_patches(patches: Iterable[AccountPatch]) -> Dict[str, Account]:
    """Fold ``patches`` and return the non-deleted accounts."""
    reducer = AccountReducer()
    reducer.apply_patches(patches)
    return reducer.export_accounts()
