"""Bounded live progress feed for a pipeline run.

Entries are tagged with a presentation category derived from the leading
symbol of the message. This is a best-effort feed, not an audit trail; the
durable record of gate decisions lives in the audit log table.
"""

from collections import deque
from itertools import count
from threading import Lock
from typing import Callable

from jobpilot.agents.state import ActivityEntry
from jobpilot.core.enums import ActivityCategory

CATEGORY_PREFIXES: list[tuple[str, ActivityCategory]] = [
    ("✅", ActivityCategory.SUCCESS),
    ("❌", ActivityCategory.ERROR),
    ("⚠", ActivityCategory.WARNING),
    ("🔍", ActivityCategory.SEARCH),
    ("📧", ActivityCategory.EMAIL),
    ("📄", ActivityCategory.DOCUMENT),
    ("⏸", ActivityCategory.APPROVAL),
]

DEFAULT_LIMIT = 80


def categorize(message: str) -> ActivityCategory:
    text = (message or "").lstrip()
    for prefix, category in CATEGORY_PREFIXES:
        if text.startswith(prefix):
            return category
    return ActivityCategory.INFO


class ActivityLog:
    def __init__(self, limit: int = DEFAULT_LIMIT) -> None:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        self._entries: deque[ActivityEntry] = deque(maxlen=limit)
        self._ids = count(1)
        self._lock = Lock()
        self._listeners: list[Callable[[ActivityEntry], None]] = []

    def append(self, message: str) -> ActivityEntry:
        with self._lock:
            entry = ActivityEntry(id=next(self._ids), message=message, category=categorize(message))
            self._entries.append(entry)
            listeners = list(self._listeners)
        for listener in listeners:
            listener(entry)
        return entry

    def entries(self, since_id: int = 0) -> list[ActivityEntry]:
        with self._lock:
            return [entry.model_copy() for entry in self._entries if entry.id > since_id]

    def subscribe(self, listener: Callable[[ActivityEntry], None]) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
