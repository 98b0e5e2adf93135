"""
reconcile.py — Overlay session snapshots on ledger-derived state

A session that already observed an account (usually because it just wrote
it) may know a version the ledger read has not caught up with yet. The
directory view prefers that snapshot when it is at least as fresh as the
merged ledger entry, and surfaces snapshots whose user key the ledger read
does not show at all.

The trade-off: a caller can briefly see a session's snapshot instead of the
newest ledger truth. Snapshots are invalidated on tombstone by the session
registry, so deleted accounts are not resurrected.
"""

from __future__ import annotations
from typing import Iterable, List, Mapping, Set

from .reducer import Account


def is_fresher(snapshot: Account, ledger_account: Account) -> bool:
    return snapshot.sequence >= ledger_account.sequence


def reconcile(
    accounts: Mapping[str, Account] | Iterable[Account],
    snapshots: Mapping[str, Account],
    tombstoned: Iterable[str] = (),
) -> List[Account]:
    """Return the directory list with session snapshots applied.

    Args:
        accounts: Merged, non-deleted accounts (mapping by id or a sequence).
        snapshots: Cached account per user key.
        tombstoned: Account ids known to be deleted, by the ledger or by a
            tombstone this process appended that the read does not show yet.
            Neither merged entries nor snapshots with those ids are returned.

    Returns:
        Copies of the merged accounts (substituted where a session holds a
        fresher snapshot), followed by snapshots missing from the ledger view.
    """
    merged = list(accounts.values()) if isinstance(accounts, Mapping) else list(accounts)
    dead = set(tombstoned)
    live = {uk: s for uk, s in snapshots.items() if s.account_id not in dead}

    result: List[Account] = []
    seen: Set[str] = set()
    for account in merged:
        if account.account_id in dead:
            continue
        seen.add(account.user_key)
        snap = live.get(account.user_key)
        if snap is not None and is_fresher(snap, account):
            result.append(snap.copy())
        else:
            result.append(account.copy())

    for user_key, snap in live.items():
        if user_key not in seen:
            result.append(snap.copy())
    return result
