from __future__ import annotations

from dataclasses import dataclass, field
import logging

from fastapi import Request

from micronforce.config import ServerConfig
from micronforce.errors import ConfigurationError
from micronforce.services.chat import ChatService
from micronforce.services.openai_client import OpenAIClient
from micronforce.services.rate_limiter import RateLimiter
from micronforce.storage.base import LogStore, Settings, SettingsStore
from micronforce.storage.memory import MemoryLogStore, MemorySettingsStore
from micronforce.storage.sqlite import SqliteLogStore, SqliteSettingsStore, initialize_schema

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Everything a request handler needs, owned by one application instance."""

    config: ServerConfig
    settings_store: SettingsStore
    log_store: LogStore
    upstream: OpenAIClient
    rate_limiter: RateLimiter = field(default_factory=RateLimiter)

    @property
    def chat(self) -> ChatService:
        return ChatService(
            upstream=self.upstream,
            settings_store=self.settings_store,
            log_store=self.log_store,
            default_model=self.config.chat_model,
            temperature=self.config.chat_temperature,
        )


def default_settings(config: ServerConfig) -> Settings:
    return Settings(
        model=config.chat_model,
        tts_engine=config.tts_engine,
        tts_voice=config.tts_voice,
        system_prompt="",
    )


def build_app_context(config: ServerConfig) -> AppContext:
    if config.storage_backend == "memory":
        settings_store: SettingsStore = MemorySettingsStore(default_settings(config))
        log_store: LogStore = MemoryLogStore()
    else:
        initialize_schema(config.database_path, default_settings(config))
        settings_store = SqliteSettingsStore(config.database_path)
        log_store = SqliteLogStore(config.database_path)

    upstream = OpenAIClient(
        api_key=config.openai_api_key,
        base_url=config.openai_base_url,
        tts_model=config.tts_model,
        stt_model=config.stt_model,
    )
    logger.info(
        "App context ready: storage=%s chat_model=%s tts_engine=%s bypass_enabled=%s jwt_verification=%s",
        config.storage_backend,
        config.chat_model,
        config.tts_engine,
        bool(config.admin_bypass_token),
        bool(config.jwt_secret),
    )
    return AppContext(
        config=config,
        settings_store=settings_store,
        log_store=log_store,
        upstream=upstream,
    )


def get_app_context(request: Request) -> AppContext:
    context = getattr(request.app.state, "context", None)
    if context is None:
        raise ConfigurationError("not_configured", "Application context is not initialized.")
    return context
