"""
Tests for the account record codec: classification, decoding, and
tolerance of corrupt or unrelated ledger traffic.
"""

import logging

import pytest

from decauth.errors import RecordDecodeError
from decauth.records import (
    RECORD_KEY,
    AccountPatch,
    DecodeFailure,
    PatchKind,
    classify,
    create_record,
    decode_transaction,
    decode_transactions,
    parse_record,
    tombstone_record,
)


# ---------------------------------------------------------------------------
# classify / parse_record
# ---------------------------------------------------------------------------

def test_classify_explicit_op():
    assert classify({}, "create") is PatchKind.CREATE
    assert classify({}, "amend") is PatchKind.AMEND
    assert classify({}, "tombstone") is PatchKind.TOMBSTONE
    with pytest.raises(RecordDecodeError):
        classify({}, "explode")


def test_classify_legacy_records():
    assert classify({"isDeleted": True}) is PatchKind.TOMBSTONE
    assert classify({"userKey": "u", "encryptedPassKey": "h"}) is PatchKind.CREATE
    assert classify({"metaData": {"a": 1}}) is PatchKind.AMEND
    # Only the literal True deletes.
    assert classify({"isDeleted": "yes"}) is PatchKind.AMEND


def test_parse_record_strips_marker_and_op():
    kind, fields = parse_record('{"decAuthRecord":true,"op":"create","accountId":"a1","userKey":"u"}')
    assert kind is PatchKind.CREATE
    assert fields == {"accountId": "a1", "userKey": "u"}


def test_parse_record_without_marker_is_foreign():
    assert parse_record('{"accountId":"a1","userKey":"u"}') is None
    assert parse_record('{"decAuthRecord":false,"accountId":"a1"}') is None


def test_parse_record_custom_marker():
    assert parse_record('{"decAuthRecord":true,"accountId":"a"}', record_key="other") is None
    kind, fields = parse_record('{"other":true,"accountId":"a"}', record_key="other")
    assert kind is PatchKind.AMEND
    assert fields == {"accountId": "a"}


@pytest.mark.parametrize("text", [
    "not json",
    "[1,2,3]",
    '{"decAuthRecord":true}',
    '{"decAuthRecord":true,"accountId":""}',
    '{"decAuthRecord":true,"accountId":7}',
    '{"decAuthRecord":true,"op":"bogus","accountId":"a"}',
])
def test_parse_record_rejects_bad_records(text):
    with pytest.raises(RecordDecodeError):
        parse_record(text)


def test_tombstone_always_deletes():
    kind, fields = parse_record('{"decAuthRecord":true,"op":"tombstone","accountId":"a","isDeleted":false}')
    assert kind is PatchKind.TOMBSTONE
    assert fields["isDeleted"] is True


def test_builders():
    rec = create_record("id1", "ada", {"m": 1}, "sealed", "$2b$hash")
    assert rec[RECORD_KEY] is True
    assert rec["op"] == "create"
    assert rec["isDeleted"] is False
    assert rec["sensitiveData"] == "sealed"
    assert tombstone_record("id1") == {
        RECORD_KEY: True, "op": "tombstone", "accountId": "id1", "isDeleted": True,
    }


# ---------------------------------------------------------------------------
# decode over a ledger
# ---------------------------------------------------------------------------

def test_decode_transaction_variants(ledger, master_client):
    master_client.append(create_record("id1", "ada", None, None, "h"))
    ledger.inject(master_client.address, "garbage")
    master_client.append({"unrelated": "message"})

    created, broken, foreign = ledger.records()
    patch = decode_transaction(created, master_client)
    assert isinstance(patch, AccountPatch)
    assert patch.kind is PatchKind.CREATE
    assert patch.account_id == "id1"
    assert patch.sequence == created.sequence
    assert patch.transaction_id == created.transaction_id

    failure = decode_transaction(broken, master_client)
    assert isinstance(failure, DecodeFailure)
    assert failure.sequence == broken.sequence

    assert decode_transaction(foreign, master_client) is None


def test_decode_transactions_skips_bad_records(ledger, master_client, caplog):
    master_client.append(create_record("id1", "ada", None, None, "h"))
    ledger.inject(master_client.address, "bm90IGEgdmFsaWQgdG9rZW4=")
    master_client.append({"chat": "hello"})
    master_client.append(tombstone_record("id1"))

    with caplog.at_level(logging.WARNING, logger="decauth.records"):
        result = decode_transactions(ledger.transactions(master_client.address), master_client)

    assert [p.kind for p in result.patches] == [PatchKind.CREATE, PatchKind.TOMBSTONE]
    assert len(result.failures) == 1
    assert result.foreign == 1
    assert "Dropping undecodable ledger record" in caplog.text


def test_decode_transactions_reorders_input(ledger, master_client):
    for i in range(5):
        master_client.append(create_record(f"id{i}", f"user{i}", None, None, "h"))
    txs = list(reversed(ledger.transactions(master_client.address)))
    result = decode_transactions(txs, master_client)
    assert [p.sequence for p in result.patches] == [0, 1, 2, 3, 4]


def test_parallel_decode_matches_serial(ledger, master_client):
    for i in range(20):
        master_client.append(create_record(f"id{i}", f"user{i}", {"n": i}, None, "h"))
        if i % 5 == 0:
            ledger.inject(master_client.address, "junk")
    txs = ledger.transactions(master_client.address)
    serial = decode_transactions(txs, master_client)
    parallel = decode_transactions(txs, master_client, workers=4)
    assert parallel.patches == serial.patches
    assert parallel.failures == serial.failures
    assert [p.fields["metaData"]["n"] for p in parallel.patches] == list(range(20))
