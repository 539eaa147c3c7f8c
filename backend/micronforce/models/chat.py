from __future__ import annotations

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class ChatMessage(BaseModel):
    """One role/content pair, forwarded to the provider exactly as received."""

    model_config = ConfigDict(extra="allow")

    role: str = Field(..., min_length=1)
    content: str | list[dict[str, Any]] | None = None


class SuperChatRequest(BaseModel):
    messages: list[ChatMessage] = Field(default_factory=list)
    admin_user: str = "superadmin"


class UserChatRequest(BaseModel):
    messages: list[ChatMessage] = Field(default_factory=list)
    user_id: str | None = None


class ChatResponse(BaseModel):
    reply: str
    usage: dict[str, Any] = Field(default_factory=dict)
    created_at: str


class SettingsResponse(BaseModel):
    model: str
    tts_engine: str
    tts_voice: str
    system_prompt: str = ""


class SettingsUpdate(BaseModel):
    model: str | None = None
    tts_engine: str | None = Field(
        default=None, validation_alias=AliasChoices("tts_engine", "ttsEngine")
    )
    tts_voice: str | None = Field(
        default=None, validation_alias=AliasChoices("tts_voice", "ttsVoice", "voice")
    )
    system_prompt: str | None = Field(
        default=None, validation_alias=AliasChoices("system_prompt", "systemPrompt")
    )


class LogEntryResponse(BaseModel):
    id: int
    actor: str
    scope: Literal["super", "user"]
    messages: list[dict[str, Any]]
    reply: str
    tokens_prompt: int | None = None
    tokens_completion: int | None = None
    created_at: str


def dump_messages(messages: list[ChatMessage]) -> list[dict[str, Any]]:
    dumped = []
    for message in messages:
        data = message.model_dump(exclude_unset=True)
        data.update(message.model_extra or {})
        dumped.append(data)
    return dumped
