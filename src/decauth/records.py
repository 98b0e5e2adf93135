"""
records.py — Account record codec

Turns raw ledger transactions into typed account patches, and builds the
payloads the lifecycle manager appends.

Decoding never raises. A transaction either becomes:
  - an ``AccountPatch`` (CREATE / AMEND / TOMBSTONE),
  - a ``DecodeFailure`` marker (corrupt or undecryptable record), or
  - ``None`` (decrypts fine but lacks the record marker: unrelated traffic).

One bad record costs one slot; it never aborts a directory scan.
"""

from __future__ import annotations
import enum
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Union

from .canonical_json import loads_object
from .client import CapabilityClient
from .errors import DecryptError, RecordDecodeError
from .ledger import RawTransaction

logger = logging.getLogger(__name__)

RECORD_KEY = "decAuthRecord"
OP_KEY = "op"

# Wire field names
F_ACCOUNT_ID = "accountId"
F_USER_KEY = "userKey"
F_META_DATA = "metaData"
F_SENSITIVE_DATA = "sensitiveData"
F_PASS_KEY = "encryptedPassKey"
F_IS_DELETED = "isDeleted"


class PatchKind(str, enum.Enum):
    CREATE = "create"
    AMEND = "amend"
    TOMBSTONE = "tombstone"


@dataclass(frozen=True)
class AccountPatch:
    kind: PatchKind
    account_id: str
    fields: Dict[str, Any]
    sequence: int = 0
    height: int = 0
    transaction_id: str = ""

    @property
    def order_key(self) -> tuple[int, int]:
        return (self.height, self.sequence)


@dataclass(frozen=True)
class DecodeFailure:
    transaction_id: str
    sequence: int
    reason: str
    height: int = 0


@dataclass
class DecodeResult:
    patches: List[AccountPatch] = field(default_factory=list)
    failures: List[DecodeFailure] = field(default_factory=list)
    foreign: int = 0


Decoded = Union[AccountPatch, DecodeFailure, None]


def classify(record: Dict[str, Any], op: Any = None) -> PatchKind:
    """Pick the patch variant for a marker-stripped record."""
    if op is not None:
        try:
            return PatchKind(str(op))
        except ValueError:
            raise RecordDecodeError(f"unknown record op {op!r}") from None
    if record.get(F_IS_DELETED) is True:
        return PatchKind.TOMBSTONE
    if F_USER_KEY in record and F_PASS_KEY in record:
        return PatchKind.CREATE
    return PatchKind.AMEND


def parse_record(plaintext: str, record_key: str = RECORD_KEY) -> Optional[tuple[PatchKind, Dict[str, Any]]]:
    """Parse decrypted message text into ``(kind, fields)``.

    Returns ``None`` for messages without the record marker.

    Raises:
        RecordDecodeError: If the text is not a usable account record.
    """
    try:
        record = loads_object(plaintext)
    except ValueError as exc:
        raise RecordDecodeError(str(exc)) from exc

    if not record.get(record_key):
        return None

    record = dict(record)
    del record[record_key]
    op = record.pop(OP_KEY, None)
    kind = classify(record, op)

    account_id = record.get(F_ACCOUNT_ID)
    if not isinstance(account_id, str) or not account_id:
        raise RecordDecodeError("record has no accountId")
    if kind is PatchKind.TOMBSTONE:
        record[F_IS_DELETED] = True
    return kind, record


def decode_transaction(
    tx: RawTransaction,
    client: CapabilityClient,
    record_key: str = RECORD_KEY,
) -> Decoded:
    try:
        plaintext = client.decrypt_record(tx.encrypted_message)
        parsed = parse_record(plaintext, record_key)
    except (DecryptError, RecordDecodeError) as exc:
        return DecodeFailure(
            transaction_id=tx.transaction_id,
            sequence=tx.sequence,
            reason=exc.message if not exc.context else f"{exc.message} ({exc.context})",
            height=tx.height,
        )
    if parsed is None:
        return None
    kind, fields = parsed
    return AccountPatch(
        kind=kind,
        account_id=fields[F_ACCOUNT_ID],
        fields=fields,
        sequence=tx.sequence,
        height=tx.height,
        transaction_id=tx.transaction_id,
    )


def decode_transactions(
    transactions: Iterable[RawTransaction],
    client: CapabilityClient,
    workers: int = 0,
    record_key: str = RECORD_KEY,
) -> DecodeResult:
    """Decode a batch of transactions, returning results in ledger order.

    With ``workers > 1`` decryption fans out over a thread pool; the merge
    step downstream still sees patches strictly ordered by (height, sequence).
    """
    txs = sorted(transactions, key=lambda t: t.order_key)
    if workers > 1 and len(txs) > 1:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            decoded = list(pool.map(lambda t: decode_transaction(t, client, record_key), txs))
    else:
        decoded = [decode_transaction(t, client, record_key) for t in txs]

    result = DecodeResult()
    for item in decoded:
        if item is None:
            result.foreign += 1
        elif isinstance(item, DecodeFailure):
            logger.warning(
                "Dropping undecodable ledger record %s (seq %d): %s",
                item.transaction_id, item.sequence, item.reason,
            )
            result.failures.append(item)
        else:
            result.patches.append(item)
    if result.foreign:
        logger.debug("Skipped %d foreign ledger messages", result.foreign)
    return result


# ---------------------------------------------------------------------------
# Outgoing payloads
# ---------------------------------------------------------------------------

def create_record(
    account_id: str,
    user_key: str,
    meta_data: Any,
    sensitive_data: Optional[str],
    encrypted_pass_key: str,
    record_key: str = RECORD_KEY,
) -> Dict[str, Any]:
    """Payload for a create transaction. ``sensitive_data`` is already sealed."""
    return {
        record_key: True,
        OP_KEY: PatchKind.CREATE.value,
        F_ACCOUNT_ID: account_id,
        F_USER_KEY: user_key,
        F_META_DATA: meta_data,
        F_SENSITIVE_DATA: sensitive_data,
        F_PASS_KEY: encrypted_pass_key,
        F_IS_DELETED: False,
    }


def tombstone_record(account_id: str, record_key: str = RECORD_KEY) -> Dict[str, Any]:
    return {
        record_key: True,
        OP_KEY: PatchKind.TOMBSTONE.value,
        F_ACCOUNT_ID: account_id,
        F_IS_DELETED: True,
    }
