from __future__ import annotations

from dataclasses import replace
import itertools
import threading
from typing import Any, Mapping

from micronforce.storage.base import (
    DEFAULT_LOG_LIMIT,
    LogEntry,
    LogStore,
    Settings,
    SettingsStore,
    clamp_limit,
    clean_settings_patch,
)


class MemorySettingsStore(SettingsStore):
    def __init__(self, defaults: Settings) -> None:
        self._settings = replace(defaults)
        self._lock = threading.Lock()

    def get(self) -> Settings:
        with self._lock:
            return replace(self._settings)

    def update(self, patch: Mapping[str, Any]) -> Settings:
        changes = clean_settings_patch(patch)
        with self._lock:
            self._settings = replace(self._settings, **changes)
            return replace(self._settings)


class MemoryLogStore(LogStore):
    """Process-lifetime log list; restarting the process drops every entry."""

    def __init__(self) -> None:
        self._entries: list[LogEntry] = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def append(self, entry: LogEntry) -> int:
        with self._lock:
            stored = replace(entry, id=next(self._ids), messages=list(entry.messages))
            self._entries.append(stored)
            return stored.id

    def query(self, q: str | None = None, limit: int | None = DEFAULT_LOG_LIMIT) -> list[LogEntry]:
        limit = clamp_limit(limit)
        with self._lock:
            entries = list(reversed(self._entries))
        if q:
            entries = [entry for entry in entries if entry.matches(q)]
        return [replace(entry) for entry in entries[:limit]]
