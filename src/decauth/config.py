"""
config.py — Master identity configuration for decauth

Configuration is read from keyword arguments or from environment variables
(``DirectoryConfig.from_env``). It must hold the master ledger identity before
any lifecycle operation runs.

Environment variable mapping:
    DECAUTH_SERVER_URL      -> server_url
    DECAUTH_ACCOUNT         -> account_address
    DECAUTH_PASSPHRASE      -> passphrase
    DECAUTH_PUBLIC_KEY      -> public_key
    DECAUTH_BCRYPT_ROUNDS   -> bcrypt_rounds
    DECAUTH_KDF_ITERATIONS  -> kdf_iterations
    DECAUTH_DECODE_WORKERS  -> decode_workers
"""

from __future__ import annotations
import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional

from .errors import ConfigurationError, DecryptError
from .sealing import load_public_key

DEFAULT_SERVER_URL = "https://jpr.gojupiter.tech"
DEFAULT_BCRYPT_ROUNDS = 12
DEFAULT_KDF_ITERATIONS = 200_000

# bcrypt.gensalt accepts 4..31
_MIN_BCRYPT_ROUNDS = 4
_MAX_BCRYPT_ROUNDS = 31


@dataclass(frozen=True)
class DirectoryConfig:
    """Settings for one account directory bound to a master ledger identity."""

    server_url: str = DEFAULT_SERVER_URL
    account_address: Optional[str] = None
    passphrase: Optional[str] = None
    public_key: Optional[str] = None
    bcrypt_rounds: int = DEFAULT_BCRYPT_ROUNDS
    kdf_iterations: int = DEFAULT_KDF_ITERATIONS
    decode_workers: int = 0

    def __post_init__(self) -> None:
        if not _MIN_BCRYPT_ROUNDS <= self.bcrypt_rounds <= _MAX_BCRYPT_ROUNDS:
            raise ConfigurationError(
                f"bcrypt_rounds must be between {_MIN_BCRYPT_ROUNDS} and "
                f"{_MAX_BCRYPT_ROUNDS}, got {self.bcrypt_rounds}"
            )
        if self.kdf_iterations < 1:
            raise ConfigurationError(f"kdf_iterations must be >= 1, got {self.kdf_iterations}")
        if self.decode_workers < 0:
            raise ConfigurationError(f"decode_workers must be >= 0, got {self.decode_workers}")
        if self.public_key is not None:
            check_public_key(self.public_key)

    @property
    def has_identity(self) -> bool:
        return bool(self.account_address) and bool(self.passphrase)

    def require_identity(self) -> None:
        """Raise ``ConfigurationError`` unless the master identity is set."""
        if not self.account_address:
            raise ConfigurationError("Cannot get a ledger client without an account address.")
        if not self.passphrase:
            raise ConfigurationError("Cannot get a ledger client without the account passphrase.")

    def with_identity(
        self,
        server_url: Optional[str],
        account_address: str,
        passphrase: str,
        public_key: Optional[str] = None,
    ) -> "DirectoryConfig":
        """Return a copy bound to a different master identity.

        A ``None`` server URL keeps the current one.
        """
        return replace(
            self,
            server_url=server_url if server_url is not None else self.server_url,
            account_address=account_address,
            passphrase=passphrase,
            public_key=public_key,
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "DirectoryConfig":
        env = os.environ if environ is None else environ
        return cls(
            server_url=env.get("DECAUTH_SERVER_URL") or DEFAULT_SERVER_URL,
            account_address=env.get("DECAUTH_ACCOUNT") or None,
            passphrase=env.get("DECAUTH_PASSPHRASE") or None,
            public_key=env.get("DECAUTH_PUBLIC_KEY") or None,
            bcrypt_rounds=_env_int(env, "DECAUTH_BCRYPT_ROUNDS", DEFAULT_BCRYPT_ROUNDS),
            kdf_iterations=_env_int(env, "DECAUTH_KDF_ITERATIONS", DEFAULT_KDF_ITERATIONS),
            decode_workers=_env_int(env, "DECAUTH_DECODE_WORKERS", 0),
        )


def check_public_key(public_key: str) -> None:
    """Raise ``ConfigurationError`` unless ``public_key`` is a usable directory key."""
    try:
        load_public_key(public_key)
    except DecryptError as exc:
        raise ConfigurationError(f"directory public key is malformed ({exc.context})") from None


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None
