"""
Process settings, read from environment variables.

Blank or unparseable values fall back to defaults; `Settings.validate()`
rejects values that are parseable but out of range.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from .errors import ConfigError

MIN_SYNC_INTERVAL_S = 10

DEFAULT_LEDGER_RPC_URL = "https://api.devnet.solana.com"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _env_str(name: str, default: str) -> str:
    return os.environ.get(name, "").strip() or default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if raw in _TRUE_VALUES:
        return True
    if raw in _FALSE_VALUES:
        return False
    return default


@dataclass(frozen=True)
class Settings:
    database_url: str
    ledger_rpc_url: str = DEFAULT_LEDGER_RPC_URL
    ledger_timeout_s: float = 30.0
    sync_enabled: bool = True
    sync_interval_s: int = 300
    sync_inter_asset_delay_s: float = 0.1
    sync_single_flight: bool = False
    sync_fetch_retries: int = 0
    sync_retry_backoff_s: float = 1.0
    listen_port: int = 8090
    shutdown_grace_s: float = 10.0
    log_level: str = "INFO"
    db_pool_min: int = 1
    db_pool_max: int = 10

    def validate(self) -> "Settings":
        if not self.database_url:
            raise ConfigError("DATABASE_URL is not set.")
        if not self.ledger_rpc_url:
            raise ConfigError("LEDGER_RPC_URL is empty.")
        if self.sync_interval_s < MIN_SYNC_INTERVAL_S:
            raise ConfigError(
                f"SYNC_INTERVAL_S must be >= {MIN_SYNC_INTERVAL_S} seconds, got {self.sync_interval_s}."
            )
        if self.ledger_timeout_s <= 0:
            raise ConfigError("LEDGER_TIMEOUT_S must be positive.")
        if self.sync_inter_asset_delay_s < 0:
            raise ConfigError("SYNC_INTER_ASSET_DELAY_S must not be negative.")
        if self.sync_fetch_retries < 0:
            raise ConfigError("SYNC_FETCH_RETRIES must not be negative.")
        if self.sync_retry_backoff_s < 0:
            raise ConfigError("SYNC_RETRY_BACKOFF_S must not be negative.")
        if not 1 <= self.listen_port <= 65535:
            raise ConfigError("LISTEN_PORT must be within 1-65535.")
        if self.shutdown_grace_s <= 0:
            raise ConfigError("SHUTDOWN_GRACE_S must be positive.")
        if self.db_pool_min < 1 or self.db_pool_max < self.db_pool_min:
            raise ConfigError("DB_POOL_MIN/DB_POOL_MAX must satisfy 1 <= min <= max.")
        return self


def load_settings() -> Settings:
    return Settings(
        database_url=os.environ.get("DATABASE_URL", "").strip(),
        ledger_rpc_url=_env_str("LEDGER_RPC_URL", DEFAULT_LEDGER_RPC_URL),
        ledger_timeout_s=_env_float("LEDGER_TIMEOUT_S", 30.0),
        sync_enabled=_env_bool("SYNC_ENABLED", True),
        sync_interval_s=_env_int("SYNC_INTERVAL_S", 300),
        sync_inter_asset_delay_s=_env_float("SYNC_INTER_ASSET_DELAY_S", 0.1),
        sync_single_flight=_env_bool("SYNC_SINGLE_FLIGHT", False),
        sync_fetch_retries=_env_int("SYNC_FETCH_RETRIES", 0),
        sync_retry_backoff_s=_env_float("SYNC_RETRY_BACKOFF_S", 1.0),
        listen_port=_env_int("LISTEN_PORT", 8090),
        shutdown_grace_s=_env_float("SHUTDOWN_GRACE_S", 10.0),
        log_level=_env_str("LOG_LEVEL", "INFO").upper(),
        db_pool_min=_env_int("DB_POOL_MIN", 1),
        db_pool_max=_env_int("DB_POOL_MAX", 10),
    ).validate()
