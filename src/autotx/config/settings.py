"""Configuration settings for autotx."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Flat settings read from environment variables or a ``.env`` file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Accounts (comma-delimited secrets, parsed by autotx.accounts)
    private_keys: SecretStr = Field(
        default=SecretStr(""), validation_alias="PRIVATE_KEYS"
    )
    account_env_var: str = Field(default="CURRENT_PK", validation_alias="ACCOUNT_ENV_VAR")

    # Ledger RPC
    rpc_url: str = Field(
        default="https://testnet-rpc.monad.xyz", validation_alias="RPC_URL"
    )
    rpc_timeout: float = Field(default=15.0, validation_alias="RPC_TIMEOUT")
    balance_symbol: str = Field(default="MON", validation_alias="BALANCE_SYMBOL")
    balance_max_attempts: int = Field(default=3, ge=1, validation_alias="BALANCE_MAX_ATTEMPTS")
    balance_retry_delay: float = Field(default=3.0, ge=0, validation_alias="BALANCE_RETRY_DELAY")

    # Telegram
    telegram_bot_token: SecretStr | None = Field(
        default=None, validation_alias="TELEGRAM_BOT_TOKEN"
    )
    telegram_chat_id: str | None = Field(default=None, validation_alias="TELEGRAM_CHAT_ID")
    telegram_api_url: str = Field(
        default="https://api.telegram.org", validation_alias="TELEGRAM_API_URL"
    )
    notify_timeout: float = Field(default=10.0, validation_alias="NOTIFY_TIMEOUT")

    # Pacing (seconds)
    inter_task_delay: float = Field(default=30.0, ge=0, validation_alias="INTER_TASK_DELAY")
    inter_account_delay: float = Field(
        default=30.0, ge=0, validation_alias="INTER_ACCOUNT_DELAY"
    )

    # Task processes
    task_runtime: str = Field(default="node", validation_alias="TASK_RUNTIME")
    tasks_dir: Path = Field(default=Path("modul"), validation_alias="TASKS_DIR")

    # Admission control
    lock_file: Path = Field(default=Path("main.lock"), validation_alias="LOCK_FILE")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", validation_alias="LOG_LEVEL"
    )
    log_format: Literal["json", "console"] = Field(
        default="console", validation_alias="LOG_FORMAT"
    )

    @property
    def telegram_enabled(self) -> bool:
        """Whether both the bot token and chat id are configured."""
        return bool(self.telegram_bot_token and self.telegram_chat_id)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
