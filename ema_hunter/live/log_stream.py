"""Severity-tagged log stream for the dashboard/CLI.

Every entry goes to loguru as well as to a bounded in-memory buffer.
"""
import itertools
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Deque, List

from loguru import logger

LEVELS = ('INFO', 'SUCCESS', 'WARNING', 'TRADE', 'ERROR')

# Custom level between INFO (20) and SUCCESS (25)
logger.level('TRADE', no=22, color='<magenta><bold>')


@dataclass(frozen=True)
class LogEntry:
    id: int
    timestamp: datetime
    level: str
    message: str

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'timestamp': self.timestamp.isoformat(),
            'type': self.level,
            'message': self.message,
        }


class LogStream:
    """Bounded log buffer mirrored to loguru."""

    def __init__(self, max_entries: int = 500):
        self._entries: Deque[LogEntry] = deque(maxlen=max_entries)
        self._ids = itertools.count(1)

    def log(self, level: str, message: str) -> LogEntry:
        if level not in LEVELS:
            raise ValueError(f"Unknown log level {level}, use one of {LEVELS}")
        entry = LogEntry(next(self._ids), datetime.now(timezone.utc), level, message)
        self._entries.append(entry)
        logger.opt(depth=2).log(level, message)
        return entry

    def info(self, message: str) -> LogEntry:
        return self.log('INFO', message)

    def success(self, message: str) -> LogEntry:
        return self.log('SUCCESS', message)

    def warning(self, message: str) -> LogEntry:
        return self.log('WARNING', message)

    def trade(self, message: str) -> LogEntry:
        return self.log('TRADE', message)

    def error(self, message: str) -> LogEntry:
        return self.log('ERROR', message)

    def entries(self, limit: int = None) -> List[LogEntry]:
        items = list(self._entries)
        return items[-limit:] if limit else items

    def __len__(self) -> int:
        return len(self._entries)
