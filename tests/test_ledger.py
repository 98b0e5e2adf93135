"""
Tests for the in-memory ledger transport and the capability client.
"""

import unittest

import pytest

from decauth.client import LedgerClient
from decauth.errors import ConfigurationError, DecryptError, LedgerError
from decauth.ledger import InMemoryLedger

MASTER = "JUP-TEST-MASTER"
PASSPHRASE = "correct horse battery staple"


class TestInMemoryLedger(unittest.TestCase):

    def setUp(self):
        self.ledger = InMemoryLedger()
        self.public_key = self.ledger.open_account("A", "pass-a")

    def test_broadcast_assigns_sequence(self):
        r1 = self.ledger.broadcast("A", "A", "m1")
        r2 = self.ledger.broadcast("A", "A", "m2")
        self.assertTrue(r1["broadcasted"])
        self.assertEqual(r1["sequence"], 0)
        self.assertEqual(r2["sequence"], 1)
        self.assertEqual(len(self.ledger), 2)
        self.assertEqual(self.ledger.last().encrypted_message, "m2")

    def test_unknown_sender_raises(self):
        with self.assertRaises(LedgerError):
            self.ledger.broadcast("nobody", "A", "m")

    def test_not_accepting(self):
        self.ledger.accepting = False
        self.assertEqual(self.ledger.broadcast("A", "A", "m"), {"broadcasted": False})
        self.assertEqual(len(self.ledger), 0)
        self.assertIsNone(self.ledger.last())

    def test_transactions_filtered_by_address(self):
        self.ledger.open_account("B", "pass-b")
        self.ledger.broadcast("A", "A", "a")
        self.ledger.broadcast("B", "B", "b")
        self.ledger.inject("A", "from outside")
        msgs = [tx.encrypted_message for tx in self.ledger.transactions("A")]
        self.assertEqual(msgs, ["a", "from outside"])

    def test_read_lag_hides_newest(self):
        self.ledger.read_lag = 1
        self.ledger.broadcast("A", "A", "m1")
        self.ledger.broadcast("A", "A", "m2")
        self.assertEqual([tx.encrypted_message for tx in self.ledger.transactions("A")], ["m1"])
        self.assertEqual(len(self.ledger.records()), 2)

    def test_block_size_groups_heights(self):
        self.ledger.block_size = 2
        for i in range(4):
            self.ledger.broadcast("A", "A", f"m{i}")
        heights = [tx.height for tx in self.ledger.records()]
        self.assertEqual(heights, [0, 0, 1, 1])

    def test_public_key_lookup(self):
        self.assertEqual(self.ledger.account_public_key("A"), self.public_key)
        self.assertEqual(self.ledger.public_key_lookups, 1)
        with self.assertRaises(LedgerError):
            self.ledger.account_public_key("missing")


def test_client_requires_identity(ledger):
    with pytest.raises(ConfigurationError):
        LedgerClient(ledger, "memory://", "", PASSPHRASE)
    with pytest.raises(ConfigurationError):
        LedgerClient(ledger, "memory://", MASTER, None)


def test_client_without_public_key_cannot_seal(ledger):
    client = LedgerClient(ledger, "memory://", MASTER, PASSPHRASE)
    with pytest.raises(ConfigurationError):
        client.append({"x": 1})


def test_append_and_decrypt_record(ledger, master_client):
    receipt = master_client.append({"b": 2, "a": 1})
    assert receipt["broadcasted"]
    tx = ledger.last()
    assert tx.sender == MASTER and tx.recipient == MASTER
    assert master_client.decrypt_record(tx.encrypted_message) == '{"a":1,"b":2}'


def test_other_identity_cannot_read_records(ledger, master_client):
    master_client.append({"secret": True})
    ledger.open_account("OTHER", "other passphrase")
    other = LedgerClient(ledger, "memory://", "OTHER", "other passphrase")
    other = other.with_public_key(other.resolve_public_key())
    with pytest.raises(DecryptError):
        other.decrypt_record(ledger.last().encrypted_message)


def test_user_layer_needs_secret(master_client):
    with pytest.raises(ConfigurationError):
        master_client.encrypt("data")
    with pytest.raises(DecryptError):
        master_client.decrypt("data")


def test_user_layer_roundtrip(ledger, master_client):
    alice = LedgerClient(
        ledger, "memory://", MASTER, PASSPHRASE,
        public_key=master_client.public_key, encrypt_secret=b"\x01" * 32,
    )
    mallory = LedgerClient(
        ledger, "memory://", MASTER, PASSPHRASE,
        public_key=master_client.public_key, encrypt_secret=b"\x02" * 32,
    )
    token = alice.encrypt('{"ssn":"123"}')
    assert alice.decrypt(token) == '{"ssn":"123"}'
    with pytest.raises(DecryptError):
        mallory.decrypt(token)


def test_repr_hides_secrets(master_client):
    text = repr(master_client)
    assert PASSPHRASE not in text
    assert "public_key=set" in text
