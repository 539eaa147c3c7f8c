"""
SQLite persistence for settings and chat logs.

``chat_settings`` holds exactly one row (``id = 1`` is enforced by a CHECK
constraint). ``chat_logs`` is an append-only ledger; nothing here issues an
UPDATE or DELETE against it.
"""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any, Mapping

from micronforce.storage.base import (
    DEFAULT_LOG_LIMIT,
    LogEntry,
    LogStore,
    Settings,
    SettingsStore,
    clamp_limit,
    clean_settings_patch,
    serialize_messages,
)

_SCHEMA = """
create table if not exists chat_settings (
    id integer primary key check (id = 1),
    model text not null,
    tts_engine text not null,
    tts_voice text not null,
    system_prompt text not null default ''
);

create table if not exists chat_logs (
    id integer primary key autoincrement,
    actor text not null,
    scope text not null check (scope in ('super', 'user')),
    messages text not null,
    reply text not null,
    tokens_prompt integer,
    tokens_completion integer,
    created_at text not null
);
"""


def get_connection(db_path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(str(Path(db_path)))
    conn.row_factory = sqlite3.Row
    # SQLite lower() folds ASCII only; log search must match str.lower().
    conn.create_function("py_lower", 1, _py_lower, deterministic=True)
    return conn


def _py_lower(value: str | None) -> str | None:
    return value.lower() if value is not None else None


def initialize_schema(db_path: str, defaults: Settings) -> None:
    """Create both tables and seed the settings row if it is missing."""
    conn = get_connection(db_path)
    try:
        conn.execute("PRAGMA journal_mode = WAL")
        conn.executescript(_SCHEMA)
        conn.execute(
            """
            insert into chat_settings (id, model, tts_engine, tts_voice, system_prompt)
            values (1, :model, :tts_engine, :tts_voice, :system_prompt)
            on conflict(id) do nothing
            """,
            defaults.to_dict(),
        )
        conn.commit()
    finally:
        conn.close()


class SqliteSettingsStore(SettingsStore):
    def __init__(self, db_path: str) -> None:
        self.db_path = db_path

    def get(self) -> Settings:
        conn = get_connection(self.db_path)
        try:
            return self._read(conn)
        finally:
            conn.close()

    def update(self, patch: Mapping[str, Any]) -> Settings:
        changes = clean_settings_patch(patch)
        params = {name: changes.get(name) for name in ("model", "tts_engine", "tts_voice", "system_prompt")}
        conn = get_connection(self.db_path)
        try:
            with conn:
                conn.execute(
                    """
                    update chat_settings set
                        model = coalesce(:model, model),
                        tts_engine = coalesce(:tts_engine, tts_engine),
                        tts_voice = coalesce(:tts_voice, tts_voice),
                        system_prompt = coalesce(:system_prompt, system_prompt)
                    where id = 1
                    """,
                    params,
                )
            return self._read(conn)
        finally:
            conn.close()

    @staticmethod
    def _read(conn: sqlite3.Connection) -> Settings:
        row = conn.execute(
            "select model, tts_engine, tts_voice, system_prompt from chat_settings where id = 1"
        ).fetchone()
        if row is None:
            raise RuntimeError("chat_settings row is missing; initialize_schema was not run")
        return Settings(
            model=row["model"],
            tts_engine=row["tts_engine"],
            tts_voice=row["tts_voice"],
            system_prompt=row["system_prompt"] or "",
        )


class SqliteLogStore(LogStore):
    def __init__(self, db_path: str) -> None:
        self.db_path = db_path

    def append(self, entry: LogEntry) -> int:
        conn = get_connection(self.db_path)
        try:
            with conn:
                cursor = conn.execute(
                    """
                    insert into chat_logs
                        (actor, scope, messages, reply, tokens_prompt, tokens_completion, created_at)
                    values (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        entry.actor,
                        entry.scope,
                        serialize_messages(entry.messages),
                        entry.reply,
                        entry.tokens_prompt,
                        entry.tokens_completion,
                        entry.created_at,
                    ),
                )
            return int(cursor.lastrowid)
        finally:
            conn.close()

    def query(self, q: str | None = None, limit: int | None = DEFAULT_LOG_LIMIT) -> list[LogEntry]:
        limit = clamp_limit(limit)
        sql = "select * from chat_logs"
        params: list[Any] = []
        if q:
            pattern = f"%{_escape_like(q.lower())}%"
            sql += " where py_lower(reply) like ? escape '\\' or py_lower(messages) like ? escape '\\'"
            params.extend([pattern, pattern])
        sql += " order by id desc limit ?"
        params.append(limit)

        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(sql, params).fetchall()
        finally:
            conn.close()
        return [
            LogEntry(
                id=row["id"],
                actor=row["actor"],
                scope=row["scope"],
                messages=json.loads(row["messages"]),
                reply=row["reply"],
                tokens_prompt=row["tokens_prompt"],
                tokens_completion=row["tokens_completion"],
                created_at=row["created_at"],
            )
            for row in rows
        ]


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
