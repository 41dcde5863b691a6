"""
Runtime settings and secrets.

Priority:
1. Process environment (highest)
2. .env file at ORACLE_SECRETS_PATH (default: ./.env)

Usage:
    from oracle_validator.settings import load_settings, get_secret

    settings = load_settings()
    token = get_secret("TELEGRAM_BOT_TOKEN", required=False)
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from dotenv import dotenv_values

logger = logging.getLogger(__name__)

SECRETS_PATH_ENV = "ORACLE_SECRETS_PATH"
DEFAULT_SECRETS_PATH = Path(".env")


class MissingSecretError(Exception):
    """Raised when a required secret is missing (fail-closed)."""
    pass


def secrets_path() -> Path:
    return Path(os.environ.get(SECRETS_PATH_ENV) or DEFAULT_SECRETS_PATH)


def load_env(path: Optional[Path] = None) -> Dict[str, str]:
    """
    Merge .env values with the environment; the environment wins.
    """
    path = path or secrets_path()
    values: Dict[str, str] = {}

    if path.is_file():
        values.update({k: v for k, v in dotenv_values(path).items() if v is not None})
        logger.debug("Loaded %d values from %s", len(values), path)
    else:
        logger.debug("No secrets file at %s", path)

    values.update(os.environ)
    return values


def get_secret(key: str, required: bool = True, path: Optional[Path] = None) -> Optional[str]:
    """
    Raises:
        MissingSecretError: If required and missing or empty
    """
    value = load_env(path).get(key, "").strip()
    if not value:
        if required:
            raise MissingSecretError(f"FAIL-CLOSED: required secret {key} is not set")
        return None
    return value


@dataclass(frozen=True)
class Settings:
    state_dir: Path
    host: str
    port: int
    signing_key: Optional[str]
    blockfrost_mainnet: Optional[str]
    blockfrost_preprod: Optional[str]
    telegram_token: Optional[str]
    telegram_chat_id: Optional[str]

    @property
    def db_path(self) -> Path:
        return self.state_dir / "config.sqlite3"

    @property
    def events_path(self) -> Path:
        return self.state_dir / "events.jsonl"

    def blockfrost_key(self, network: str) -> Optional[str]:
        return self.blockfrost_mainnet if network == "mainnet" else self.blockfrost_preprod


def load_settings(path: Optional[Path] = None) -> Settings:
    env = load_env(path)

    def opt(key: str) -> Optional[str]:
        value = env.get(key, "").strip()
        return value or None

    try:
        port = int(env.get("ORACLE_PORT", "8080"))
    except ValueError:
        logger.warning("Invalid ORACLE_PORT %r, using 8080", env.get("ORACLE_PORT"))
        port = 8080

    return Settings(
        state_dir=Path(env.get("ORACLE_STATE_DIR") or "state/oracle"),
        host=env.get("ORACLE_HOST") or "127.0.0.1",
        port=port,
        signing_key=opt("ORACLE_SIGNING_KEY"),
        blockfrost_mainnet=opt("BLOCKFROST_MAINNET_KEY"),
        blockfrost_preprod=opt("BLOCKFROST_PREPROD_KEY"),
        telegram_token=opt("TELEGRAM_BOT_TOKEN"),
        telegram_chat_id=opt("TELEGRAM_CHAT_ID"),
    )
