from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any

import httpx

from micronforce.errors import UpstreamError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"


@dataclass
class ChatCompletion:
    reply: str
    usage: dict[str, Any] = field(default_factory=dict)


class OpenAIClient:
    """Single-attempt client for chat, speech synthesis and transcription.

    Non-success responses raise :class:`UpstreamError` carrying the provider's
    status and body untouched. Transport failures propagate as ``httpx`` errors.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        tts_model: str = "gpt-4o-mini-tts",
        stt_model: str = "whisper-1",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("OpenAI API key not configured.")
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._tts_model = tts_model
        self._stt_model = stt_model
        self._client = client or httpx.AsyncClient(timeout=60.0)  # reuse connections

    @property
    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}"}

    async def complete_chat(
        self, model: str, messages: list[dict[str, Any]], temperature: float = 0.7
    ) -> ChatCompletion:
        response = await self._client.post(
            f"{self._base_url}/chat/completions",
            headers=self._auth_headers,
            json={"model": model, "messages": messages, "temperature": temperature},
        )
        _raise_for_upstream(response, "chat")

        data = response.json()
        reply = (
            (data.get("choices") or [{}])[0]
            .get("message", {})
            .get("content")
        )
        return ChatCompletion(reply=reply or "", usage=data.get("usage") or {})

    async def synthesize_speech(self, text: str, voice: str) -> bytes:
        response = await self._client.post(
            f"{self._base_url}/audio/speech",
            headers=self._auth_headers,
            json={
                "model": self._tts_model,
                "voice": voice,
                "input": text,
                "response_format": "mp3",
            },
        )
        _raise_for_upstream(response, "tts")
        return response.content

    async def transcribe_audio(
        self,
        audio_bytes: bytes,
        filename: str = "audio.webm",
        content_type: str = "application/octet-stream",
    ) -> dict[str, Any]:
        response = await self._client.post(
            f"{self._base_url}/audio/transcriptions",
            headers=self._auth_headers,
            data={"model": self._stt_model},
            files={"file": (filename, audio_bytes, content_type)},
        )
        _raise_for_upstream(response, "stt")
        return response.json()

    async def aclose(self) -> None:
        await self._client.aclose()


def _raise_for_upstream(response: httpx.Response, operation: str) -> None:
    if response.is_success:
        return
    logger.warning(
        "Upstream %s call failed: status=%s bytes=%s",
        operation,
        response.status_code,
        len(response.content),
    )
    raise UpstreamError(
        status_code=response.status_code,
        body=response.content,
        content_type=response.headers.get("content-type"),
    )
