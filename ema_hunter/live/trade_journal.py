"""Append-only JSONL journal of executed trading actions.

Protection state is deliberately not persisted; only an audit trail of
what the loop sent to the exchange.
"""
import json
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, List


class TradeJournal:
    """Writes one JSON object per executed action."""

    def __init__(self, journal_file: str = "state/trade_log.jsonl"):
        self.journal_file = Path(journal_file)
        self.journal_file.parent.mkdir(parents=True, exist_ok=True)

    def record(self, event: Dict):
        """Append an event; adds a UTC ``time`` field when missing."""
        entry = {k: self._plain(v) for k, v in event.items()}
        entry.setdefault('time', datetime.now(timezone.utc).isoformat())
        with open(self.journal_file, 'a') as f:
            f.write(json.dumps(entry, default=str) + '\n')

    def read(self, limit: int = 100) -> List[Dict]:
        """Most recent ``limit`` events, oldest first."""
        if not self.journal_file.exists():
            return []
        with open(self.journal_file, 'r') as f:
            lines = [line for line in f if line.strip()]
        return [json.loads(line) for line in lines[-limit:]]

    @staticmethod
    def _plain(value):
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, datetime):
            return value.isoformat()
        return value
