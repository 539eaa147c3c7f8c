from __future__ import annotations

from dataclasses import replace
from typing import Any

import pytest
from fastapi.testclient import TestClient

from micronforce.config import RateLimits, ServerConfig
from micronforce.context import AppContext, default_settings
from micronforce.errors import UpstreamError
from micronforce.main import create_app
from micronforce.services.openai_client import ChatCompletion
from micronforce.storage.memory import MemoryLogStore, MemorySettingsStore

BYPASS_TOKEN = "test-bypass"
JWT_SECRET = "test-jwt-secret"


class FakeUpstreamClient:
    def __init__(self) -> None:
        self.chat_calls: list[dict[str, Any]] = []
        self.tts_calls: list[dict[str, Any]] = []
        self.stt_calls: list[dict[str, Any]] = []
        self.completion = ChatCompletion(
            reply="hello", usage={"prompt_tokens": 3, "completion_tokens": 1}
        )
        self.audio = b"ID3-fake-mp3"
        self.transcription: dict[str, Any] = {"text": "ni hao"}
        self.error: Exception | None = None

    async def complete_chat(
        self, model: str, messages: list[dict[str, Any]], temperature: float = 0.7
    ) -> ChatCompletion:
        self.chat_calls.append({"model": model, "messages": messages, "temperature": temperature})
        if self.error:
            raise self.error
        return self.completion

    async def synthesize_speech(self, text: str, voice: str) -> bytes:
        self.tts_calls.append({"text": text, "voice": voice})
        if self.error:
            raise self.error
        return self.audio

    async def transcribe_audio(
        self,
        audio_bytes: bytes,
        filename: str = "audio.webm",
        content_type: str = "application/octet-stream",
    ) -> dict[str, Any]:
        self.stt_calls.append(
            {"bytes": audio_bytes, "filename": filename, "content_type": content_type}
        )
        if self.error:
            raise self.error
        return self.transcription

    async def aclose(self) -> None:
        return None


def upstream_error(status_code: int, body: bytes) -> UpstreamError:
    return UpstreamError(status_code=status_code, body=body, content_type="application/json")


def make_config(**overrides: Any) -> ServerConfig:
    config = ServerConfig(
        openai_api_key="test-key",
        admin_bypass_token=BYPASS_TOKEN,
        jwt_secret=JWT_SECRET,
        storage_backend="memory",
    )
    return replace(config, **overrides)


def make_context(upstream: Any, **config_overrides: Any) -> AppContext:
    config = make_config(**config_overrides)
    return AppContext(
        config=config,
        settings_store=MemorySettingsStore(default_settings(config)),
        log_store=MemoryLogStore(),
        upstream=upstream,
    )


@pytest.fixture
def upstream() -> FakeUpstreamClient:
    return FakeUpstreamClient()


@pytest.fixture
def context(upstream: FakeUpstreamClient) -> AppContext:
    return make_context(upstream)


@pytest.fixture
def client(context: AppContext) -> TestClient:
    return TestClient(create_app(context))


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-Admin": BYPASS_TOKEN}


@pytest.fixture
def tight_limits() -> RateLimits:
    return RateLimits(window_seconds=60, super_chat=2, user_chat=2, tts=1, stt=1)
