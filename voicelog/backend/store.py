"""Persistence boundary for accepted entries.

The real application stores entries elsewhere; the pipeline only needs
``save`` and ``query``. ``InMemoryEntryStore`` backs the console and tests.
"""

from __future__ import annotations

import threading
import uuid
from datetime import date as _date, datetime, timezone
from typing import Protocol

from .forms import StoredEntry, TimeEntry


class EntryStore(Protocol):
    def save(self, entry: TimeEntry) -> StoredEntry: ...

    def query(self, start: _date, end: _date) -> list[StoredEntry]: ...


class InMemoryEntryStore:
    """Thread-safe list of stored entries, kept in insertion order."""

    def __init__(self, entries: list[StoredEntry] | None = None) -> None:
        self._entries: list[StoredEntry] = list(entries or [])
        self._lock = threading.Lock()

    def save(self, entry: TimeEntry) -> StoredEntry:
        stored = StoredEntry(
            date=entry.date,
            project_name=entry.project_name,
            hours=entry.hours,
            description=entry.description,
            id=uuid.uuid4().hex,
            created_at=datetime.now(timezone.utc),
        )
        with self._lock:
            self._entries.append(stored)
        return stored

    def query(self, start: _date, end: _date) -> list[StoredEntry]:
        """Entries dated within ``[start, end]``; the list is a copy."""
        with self._lock:
            return [e for e in self._entries if start <= e.date <= end]

    def all(self) -> list[StoredEntry]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
