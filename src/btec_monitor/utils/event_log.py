"""Capped in-memory generation log."""

from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Deque, Iterator, List, Optional

DEFAULT_LOG_SIZE = 50


@dataclass
class LogEntry:
    time: datetime
    message: str

    def format(self) -> str:
        return f"[{self.time.strftime('%H:%M:%S')}] {self.message}"


class EventLog:
    """Keeps the most recent entries, dropping the oldest."""

    def __init__(self, maxlen: int = DEFAULT_LOG_SIZE, clock: Optional[Callable[[], datetime]] = None):
        self.entries: Deque[LogEntry] = deque(maxlen=maxlen)
        self.clock = clock or datetime.now

    def add(self, message: str) -> LogEntry:
        entry = LogEntry(time=self.clock(), message=message)
        self.entries.append(entry)
        return entry

    def messages(self) -> List[str]:
        return [entry.message for entry in self.entries]

    def count(self, message: str) -> int:
        """Number of entries with exactly this message."""
        return sum(1 for entry in self.entries if entry.message == message)

    def recent(self, n: int) -> List[LogEntry]:
        return list(self.entries)[-n:]

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[LogEntry]:
        return iter(self.entries)
