"""Wallet accounts loaded from the delimited ``PRIVATE_KEYS`` setting."""

from collections.abc import Iterable
from dataclasses import dataclass

import structlog
from eth_account import Account as EthAccount
from pydantic import SecretStr

from autotx.config import get_settings
from autotx.exceptions import ConfigurationError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Account:
    """An opaque credential plus the public address derived from it."""

    secret: SecretStr
    address: str

    @classmethod
    def from_secret(cls, secret: str) -> "Account":
        """Build an account, deriving its address from the secret.

        Raises:
            ConfigurationError: If no address can be derived from the secret.
        """
        try:
            address = EthAccount.from_key(secret).address
        except (ValueError, TypeError) as e:
            # The secret itself must never reach the message
            raise ConfigurationError(f"Invalid account secret: {type(e).__name__}") from e
        return cls(secret=SecretStr(secret), address=address)

    def short(self) -> str:
        """Abbreviated address for log lines."""
        return f"{self.address[:6]}…{self.address[-4:]}"


def split_secrets(raw: str, delimiter: str = ",") -> list[str]:
    """Split a delimited list, trimming entries and dropping empty ones."""
    return [part.strip() for part in raw.split(delimiter) if part.strip()]


def parse_accounts(secrets: Iterable[str]) -> list[Account]:
    """Turn raw secrets into accounts, preserving order."""
    return [Account.from_secret(secret) for secret in secrets]


def load_accounts(raw: str | None = None) -> list[Account]:
    """Load the configured accounts.

    Args:
        raw: Delimited secrets. Defaults to the ``PRIVATE_KEYS`` setting.

    Returns:
        Accounts in configuration order.

    Raises:
        ConfigurationError: If no accounts are configured or one is invalid.
    """
    if raw is None:
        raw = get_settings().private_keys.get_secret_value()

    accounts = parse_accounts(split_secrets(raw))
    if not accounts:
        raise ConfigurationError("No accounts configured (PRIVATE_KEYS is empty)")

    logger.info(
        "accounts_loaded",
        count=len(accounts),
        addresses=[account.short() for account in accounts],
    )
    return accounts
