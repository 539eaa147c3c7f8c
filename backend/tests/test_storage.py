"""
Settings and log store behaviour, run against both backings.
"""

import pytest

from micronforce.storage.base import LogEntry, Settings
from micronforce.storage.memory import MemoryLogStore, MemorySettingsStore
from micronforce.storage.sqlite import (
    SqliteLogStore,
    SqliteSettingsStore,
    get_connection,
    initialize_schema,
)

DEFAULTS = Settings(model="gpt-4o-mini", tts_engine="openai", tts_voice="alloy", system_prompt="Be brief.")


@pytest.fixture(params=["memory", "sqlite"])
def settings_store(request, tmp_path):
    if request.param == "memory":
        return MemorySettingsStore(DEFAULTS)
    db_path = str(tmp_path / "settings.sqlite")
    initialize_schema(db_path, DEFAULTS)
    return SqliteSettingsStore(db_path)


@pytest.fixture(params=["memory", "sqlite"])
def log_store(request, tmp_path):
    if request.param == "memory":
        return MemoryLogStore()
    db_path = str(tmp_path / "logs.sqlite")
    initialize_schema(db_path, DEFAULTS)
    return SqliteLogStore(db_path)


def _entry(reply: str, content: str = "hi", scope: str = "user") -> LogEntry:
    return LogEntry(
        actor="ip:127.0.0.1",
        scope=scope,
        messages=[{"role": "user", "content": content}],
        reply=reply,
        tokens_prompt=3,
        tokens_completion=1,
    )


class TestSettingsStore:
    def test_defaults(self, settings_store):
        assert settings_store.get() == DEFAULTS

    def test_partial_update_keeps_other_fields(self, settings_store):
        updated = settings_store.update({"tts_voice": "x"})
        assert updated.tts_voice == "x"
        assert updated.model == DEFAULTS.model
        assert updated.system_prompt == DEFAULTS.system_prompt
        assert settings_store.get() == updated

    def test_empty_and_missing_values_are_ignored(self, settings_store):
        updated = settings_store.update({"model": "", "system_prompt": None, "tts_voice": "   "})
        assert updated == DEFAULTS

    def test_engine_is_normalized(self, settings_store):
        assert settings_store.update({"tts_engine": "Browser"}).tts_engine == "browser"

    def test_unknown_fields_are_ignored(self, settings_store):
        assert settings_store.update({"temperature": "2"}) == DEFAULTS


def test_sqlite_keeps_exactly_one_settings_row(tmp_path):
    db_path = str(tmp_path / "one-row.sqlite")
    initialize_schema(db_path, DEFAULTS)
    store = SqliteSettingsStore(db_path)
    store.update({"model": "gpt-4o"})
    initialize_schema(db_path, DEFAULTS)

    conn = get_connection(db_path)
    try:
        count = conn.execute("select count(*) from chat_settings").fetchone()[0]
    finally:
        conn.close()
    assert count == 1
    assert SqliteSettingsStore(db_path).get().model == "gpt-4o"


class TestLogStore:
    def test_append_returns_increasing_ids(self, log_store):
        first = log_store.append(_entry("one"))
        second = log_store.append(_entry("two"))
        assert second > first

    def test_query_is_most_recent_first_and_limited(self, log_store):
        for i in range(5):
            log_store.append(_entry(f"reply {i}"))
        entries = log_store.query(limit=2)
        assert [e.reply for e in entries] == ["reply 4", "reply 3"]

    def test_default_limit_is_fifty(self, log_store):
        for i in range(55):
            log_store.append(_entry(f"r{i}"))
        assert len(log_store.query()) == 50

    def test_limit_is_capped(self, log_store):
        for i in range(205):
            log_store.append(_entry(f"r{i}"))
        assert len(log_store.query(limit=1000)) == 200

    def test_filter_matches_reply_case_insensitively(self, log_store):
        log_store.append(_entry("The Weather is nice"))
        log_store.append(_entry("Something else"))
        entries = log_store.query(q="weather")
        assert [e.reply for e in entries] == ["The Weather is nice"]

    def test_filter_matches_message_history(self, log_store):
        log_store.append(_entry("ok", content="Tell me about PYTHON"))
        log_store.append(_entry("ok", content="Tell me about rust"))
        entries = log_store.query(q="python")
        assert len(entries) == 1
        assert entries[0].messages == [{"role": "user", "content": "Tell me about PYTHON"}]

    def test_filter_folds_non_ascii_case(self, log_store):
        log_store.append(_entry("ok", content="Привет, как дела?"))
        log_store.append(_entry("Ärger im Büro"))
        log_store.append(_entry("nothing here"))

        by_message = log_store.query(q="привет")
        by_reply = log_store.query(q="ärger")

        assert [e.messages[0]["content"] for e in by_message] == ["Привет, как дела?"]
        assert [e.reply for e in by_reply] == ["Ärger im Büro"]

    def test_filter_treats_wildcards_literally(self, log_store):
        log_store.append(_entry("100% sure"))
        log_store.append(_entry("1000 sure"))
        assert [e.reply for e in log_store.query(q="0%")] == ["100% sure"]

    def test_entries_round_trip_fields(self, log_store):
        entry = _entry("hello", scope="super")
        entry_id = log_store.append(entry)
        stored = log_store.query(limit=1)[0]
        assert stored.id == entry_id
        assert stored.scope == "super"
        assert stored.tokens_prompt == 3
        assert stored.tokens_completion == 1
        assert stored.created_at == entry.created_at
