from __future__ import annotations

from dataclasses import dataclass
import logging
import time
from typing import Any

from fastapi.concurrency import run_in_threadpool

from micronforce.services.openai_client import OpenAIClient
from micronforce.storage.base import LogEntry, LogStore, Scope, Settings, SettingsStore, utc_now_iso

logger = logging.getLogger(__name__)


@dataclass
class ChatResult:
    reply: str
    usage: dict[str, Any]
    created_at: str
    log_id: int | None


def build_upstream_messages(settings: Settings, messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
    final_messages: list[dict[str, Any]] = []
    if settings.system_prompt and settings.system_prompt.strip():
        final_messages.append({"role": "system", "content": settings.system_prompt})
    final_messages.extend(messages)
    return final_messages


class ChatService:
    def __init__(
        self,
        upstream: OpenAIClient,
        settings_store: SettingsStore,
        log_store: LogStore,
        default_model: str,
        temperature: float = 0.7,
    ) -> None:
        self._upstream = upstream
        self._settings_store = settings_store
        self._log_store = log_store
        self._default_model = default_model
        self._temperature = temperature

    async def send(self, *, messages: list[dict[str, Any]], actor: str, scope: Scope) -> ChatResult:
        settings = await run_in_threadpool(self._settings_store.get)
        final_messages = build_upstream_messages(settings, messages)
        model = settings.model or self._default_model

        start = time.perf_counter()
        completion = await self._upstream.complete_chat(model, final_messages, self._temperature)
        upstream_ms = (time.perf_counter() - start) * 1000

        usage = completion.usage
        entry = LogEntry(
            actor=actor,
            scope=scope,
            messages=final_messages,
            reply=completion.reply,
            tokens_prompt=usage.get("prompt_tokens") or None,
            tokens_completion=usage.get("completion_tokens") or None,
            created_at=utc_now_iso(),
        )
        log_id = None
        try:
            log_id = await run_in_threadpool(self._log_store.append, entry)
        except Exception:
            # The reply already exists upstream; the caller still gets it.
            logger.exception("Chat log append failed: scope=%s actor=%s", scope, actor)

        logger.info(
            "Chat completed scope=%s model=%s upstream_ms=%.1f prompt_tokens=%s completion_tokens=%s",
            scope,
            model,
            upstream_ms,
            entry.tokens_prompt,
            entry.tokens_completion,
        )
        return ChatResult(
            reply=completion.reply,
            usage=usage,
            created_at=entry.created_at,
            log_id=log_id,
        )
