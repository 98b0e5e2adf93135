"""
ledger.py — Ledger transport interface and in-process append-only ledger

``LedgerTransport`` is the boundary to the external ledger network. The core
only needs three things from it: broadcast an opaque message, list an
address's transactions in ledger order, and look up an account public key.

``InMemoryLedger`` is an arena of immutable ``RawTransaction`` records with
ledger-assigned sequence numbers. It backs the test-suite and local
development, and can simulate read latency (``read_lag``) and a node that
refuses broadcasts (``accepting``).
"""

from __future__ import annotations
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from .errors import LedgerError
from .sealing import identity_private_key, public_key_b64


@dataclass(frozen=True)
class RawTransaction:
    transaction_id: str
    sequence: int
    height: int
    sender: str
    recipient: str
    encrypted_message: str
    timestamp: str

    @property
    def order_key(self) -> tuple[int, int]:
        return (self.height, self.sequence)


class LedgerTransport(Protocol):
    """What the capability client needs from a ledger node."""
    def broadcast(self, sender: str, recipient: str, encrypted_message: str) -> Dict[str, Any]: ...
    def transactions(self, address: str) -> List[RawTransaction]: ...
    def account_public_key(self, address: str) -> str: ...


@dataclass(eq=False)
class InMemoryLedger:
    """Thread-safe append-only ledger held in process memory."""

    block_size: int = 1
    read_lag: int = 0
    accepting: bool = True
    _records: List[RawTransaction] = field(default_factory=list, repr=False)
    _public_keys: Dict[str, str] = field(default_factory=dict, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    public_key_lookups: int = 0

    def open_account(self, address: str, passphrase: str) -> str:
        """Register an account and return its public key."""
        key = public_key_b64(identity_private_key(passphrase))
        with self._lock:
            self._public_keys[address] = key
        return key

    def broadcast(self, sender: str, recipient: str, encrypted_message: str) -> Dict[str, Any]:
        with self._lock:
            if sender not in self._public_keys:
                raise LedgerError(f"unknown sender account {sender}")
            if not self.accepting:
                return {"broadcasted": False}
            tx = self._append_locked(sender, recipient, encrypted_message)
        return {
            "broadcasted": True,
            "transaction": tx.transaction_id,
            "sequence": tx.sequence,
        }

    def transactions(self, address: str) -> List[RawTransaction]:
        with self._lock:
            visible = self._records[: max(len(self._records) - self.read_lag, 0)]
            return [
                tx for tx in visible
                if tx.recipient == address or tx.sender == address
            ]

    def account_public_key(self, address: str) -> str:
        with self._lock:
            self.public_key_lookups += 1
            key = self._public_keys.get(address)
        if key is None:
            raise LedgerError(f"no public key registered for {address}")
        return key

    def inject(self, address: str, encrypted_message: str) -> RawTransaction:
        """Append a message addressed to ``address`` from an outside sender."""
        with self._lock:
            return self._append_locked("external", address, encrypted_message)

    def _append_locked(self, sender: str, recipient: str, encrypted_message: str) -> RawTransaction:
        sequence = len(self._records)
        tx = RawTransaction(
            transaction_id=uuid.uuid4().hex,
            sequence=sequence,
            height=sequence // max(self.block_size, 1),
            sender=sender,
            recipient=recipient,
            encrypted_message=encrypted_message,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
        self._records.append(tx)
        return tx

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def records(self) -> List[RawTransaction]:
        """Every record, ignoring ``read_lag``."""
        with self._lock:
            return list(self._records)

    def last(self) -> Optional[RawTransaction]:
        with self._lock:
            return self._records[-1] if self._records else None
