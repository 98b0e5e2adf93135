import pytest

from decauth import AccountManager, DirectoryConfig, InMemoryLedger, LedgerClient

MASTER = "JUP-TEST-MASTER"
PASSPHRASE = "correct horse battery staple"


@pytest.fixture
def ledger():
    led = InMemoryLedger()
    led.open_account(MASTER, PASSPHRASE)
    return led


@pytest.fixture
def config():
    # Minimum bcrypt cost and a short KDF.
    return DirectoryConfig(
        account_address=MASTER,
        passphrase=PASSPHRASE,
        bcrypt_rounds=4,
        kdf_iterations=1000,
    )


@pytest.fixture
def manager(config, ledger):
    return AccountManager(config, ledger)


@pytest.fixture
def master_client(ledger):
    """Record-layer handle without a user secret."""
    client = LedgerClient(ledger, "memory://", MASTER, PASSPHRASE)
    return client.with_public_key(client.resolve_public_key())
