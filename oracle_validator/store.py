"""
Device configuration store (sqlite3 key/value).

Each operation opens its own connection and closes it on every path,
including errors. Values are stored as JSON.

Keys:
    deviceId, privateKey, isPrimary, subscription, lastSync,
    secrets:<stage>, lastHeartbeat:<stage>
"""
from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import closing
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from .contracts import Secrets

logger = logging.getLogger(__name__)

_SCHEMA = "CREATE TABLE IF NOT EXISTS config (key TEXT PRIMARY KEY, value TEXT NOT NULL)"


class ConfigStore:
    """
    Usage:
        store = ConfigStore(Path("state/oracle/config.sqlite3"))
        store.set_device_id(42)
        device_id = store.device_id()
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with closing(self._connect()) as conn:
            with conn:
                conn.execute(_SCHEMA)

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.db_path))

    # === raw access ===

    def get(self, key: str, default: Any = None) -> Any:
        with closing(self._connect()) as conn:
            row = conn.execute("SELECT value FROM config WHERE key = ?", (key,)).fetchone()
        if row is None:
            return default
        try:
            return json.loads(row[0])
        except json.JSONDecodeError:
            logger.warning("Corrupt config value for %s, using default", key)
            return default

    def set(self, key: str, value: Any) -> None:
        with closing(self._connect()) as conn:
            with conn:
                if value is None:
                    conn.execute("DELETE FROM config WHERE key = ?", (key,))
                else:
                    conn.execute(
                        "INSERT OR REPLACE INTO config (key, value) VALUES (?, ?)",
                        (key, json.dumps(value)),
                    )

    def keys(self) -> List[str]:
        with closing(self._connect()) as conn:
            return [r[0] for r in conn.execute("SELECT key FROM config ORDER BY key")]

    # === typed accessors ===

    def device_id(self) -> int:
        return int(self.get("deviceId", 0))

    def set_device_id(self, device_id: int) -> None:
        self.set("deviceId", int(device_id))

    def private_key(self) -> str:
        return self.get("privateKey", "")

    def set_private_key(self, private_key: str) -> None:
        self.set("privateKey", private_key)

    def is_primary(self) -> bool:
        return bool(self.get("isPrimary", False))

    def set_is_primary(self, is_primary: bool) -> None:
        self.set("isPrimary", bool(is_primary))

    def secrets(self, stage: str) -> Optional[Secrets]:
        raw = self.get(f"secrets:{stage}")
        if raw is None:
            return None
        try:
            return Secrets.model_validate(raw)
        except PydanticValidationError as e:
            logger.warning("Stored secrets for %s are invalid: %s", stage, e)
            return None

    def set_secrets(self, stage: str, secrets: Optional[Secrets]) -> None:
        self.set(f"secrets:{stage}", secrets.to_wire() if secrets else None)

    def subscription(self) -> Optional[str]:
        return self.get("subscription")

    def set_subscription(self, subscription: Optional[str]) -> None:
        self.set("subscription", subscription)

    def last_heartbeat(self, stage: str) -> int:
        return int(self.get(f"lastHeartbeat:{stage}", 0))

    def set_last_heartbeat(self, stage: str, timestamp: int) -> None:
        self.set(f"lastHeartbeat:{stage}", int(timestamp))

    def last_heartbeats(self) -> Dict[str, int]:
        prefix = "lastHeartbeat:"
        return {k[len(prefix):]: int(self.get(k, 0)) for k in self.keys() if k.startswith(prefix)}

    def last_sync(self) -> int:
        return int(self.get("lastSync", 0))

    def set_last_sync(self, timestamp: int) -> None:
        self.set("lastSync", int(timestamp))
