"""
Feed events: one record per sign attempt, appended to a JSONL log.
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeedEvent:
    stage: str
    hash: str
    timestamp: int
    prices: Mapping[str, float] = field(default_factory=dict)
    message: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["prices"] = dict(self.prices)
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FeedEvent":
        return cls(
            stage=data.get("stage", ""),
            hash=data["hash"],
            timestamp=int(data["timestamp"]),
            prices=dict(data.get("prices") or {}),
            message=data.get("message"),
            error=data.get("error"),
        )


def format_prices(prices: Mapping[str, float]) -> str:
    parts = [f"{ticker}/ADA={price:.6f}" for ticker, price in prices.items()]
    if not parts:
        return "empty groups"
    return ", ".join(parts)


class EventLog:
    """Append-only JSONL event log."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def append(self, event: FeedEvent) -> None:
        line = json.dumps(event.to_dict(), ensure_ascii=False, separators=(",", ":"))
        with open(self.path, "a", encoding="utf-8", newline="\n") as f:
            f.write(line + "\n")
            f.flush()
            os.fsync(f.fileno())
        logger.debug("Event saved: %s %s", event.stage, event.hash)

    def list(self) -> List[FeedEvent]:
        if not self.path.exists():
            return []

        events = []
        with open(self.path, "r", encoding="utf-8") as f:
            for n, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(FeedEvent.from_dict(json.loads(line)))
                except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                    logger.warning("Skipping invalid event line %d: %s", n, e)
        return events
