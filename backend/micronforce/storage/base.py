from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
import json
from typing import Any, Literal, Mapping

Scope = Literal["super", "user"]

SETTINGS_FIELDS = ("model", "tts_engine", "tts_voice", "system_prompt")
DEFAULT_LOG_LIMIT = 50
MAX_LOG_LIMIT = 200


@dataclass
class Settings:
    model: str
    tts_engine: str
    tts_voice: str
    system_prompt: str = ""

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


@dataclass
class LogEntry:
    actor: str
    scope: Scope
    messages: list[dict[str, Any]]
    reply: str
    tokens_prompt: int | None = None
    tokens_completion: int | None = None
    created_at: str = field(default_factory=lambda: utc_now_iso())
    id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def matches(self, needle: str) -> bool:
        needle = needle.lower()
        return needle in self.reply.lower() or needle in serialize_messages(self.messages).lower()


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def serialize_messages(messages: list[dict[str, Any]]) -> str:
    return json.dumps(messages, ensure_ascii=False)


def clean_settings_patch(patch: Mapping[str, Any]) -> dict[str, str]:
    """Keep only known fields that carry a non-empty value.

    Absent, ``None`` and blank values leave the stored field untouched.
    """
    cleaned: dict[str, str] = {}
    for name in SETTINGS_FIELDS:
        value = patch.get(name)
        if value is None or not str(value).strip():
            continue
        cleaned[name] = str(value)
    if "tts_engine" in cleaned:
        cleaned["tts_engine"] = cleaned["tts_engine"].strip().lower()
    return cleaned


def clamp_limit(limit: int | None) -> int:
    if limit is None:
        return DEFAULT_LOG_LIMIT
    return max(1, min(int(limit), MAX_LOG_LIMIT))


class SettingsStore(ABC):
    """Single-row chat configuration."""

    @abstractmethod
    def get(self) -> Settings:
        raise NotImplementedError

    @abstractmethod
    def update(self, patch: Mapping[str, Any]) -> Settings:
        raise NotImplementedError


class LogStore(ABC):
    """Append-only record of chat exchanges."""

    @abstractmethod
    def append(self, entry: LogEntry) -> int:
        raise NotImplementedError

    @abstractmethod
    def query(self, q: str | None = None, limit: int | None = DEFAULT_LOG_LIMIT) -> list[LogEntry]:
        """Most-recent-first entries, optionally filtered by a case-insensitive substring."""
        raise NotImplementedError
