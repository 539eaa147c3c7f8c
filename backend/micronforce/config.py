from __future__ import annotations

from dataclasses import dataclass, field
import os

from micronforce.errors import ConfigurationError

TTS_ENGINES = ("openai", "browser")
STORAGE_BACKENDS = ("sqlite", "memory")
LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


@dataclass(frozen=True)
class RateLimits:
    window_seconds: int = 60
    super_chat: int = 60
    user_chat: int = 30
    tts: int = 30
    stt: int = 20


@dataclass(frozen=True)
class ServerConfig:
    openai_api_key: str
    openai_base_url: str = "https://api.openai.com/v1"
    host: str = "0.0.0.0"
    port: int = 8080
    admin_bypass_token: str = ""
    chat_model: str = "gpt-4o-mini"
    chat_temperature: float = 0.7
    tts_engine: str = "openai"
    tts_voice: str = "alloy"
    tts_model: str = "gpt-4o-mini-tts"
    stt_model: str = "whisper-1"
    jwt_secret: str = ""
    jwt_issuer: str = ""
    storage_backend: str = "sqlite"
    database_path: str = "./micronforce_gpt.sqlite"
    max_audio_bytes: int = 20 * 1024 * 1024
    cors_origins: list[str] = field(default_factory=list)
    log_level: str = "INFO"
    rate_limits: RateLimits = field(default_factory=RateLimits)

    @classmethod
    def from_env(cls) -> "ServerConfig":
        api_key = os.getenv("OPENAI_API_KEY", "").strip()
        if not api_key:
            raise ConfigurationError("missing_api_key", "Missing OPENAI_API_KEY in environment.")

        tts_engine = os.getenv("TTS_ENGINE", "openai").strip().lower()
        if tts_engine not in TTS_ENGINES:
            raise ConfigurationError("invalid_config", f"TTS_ENGINE must be one of {TTS_ENGINES}.")
        storage_backend = os.getenv("STORAGE_BACKEND", "sqlite").strip().lower()
        if storage_backend not in STORAGE_BACKENDS:
            raise ConfigurationError(
                "invalid_config", f"STORAGE_BACKEND must be one of {STORAGE_BACKENDS}."
            )

        log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper()
        if log_level not in LOG_LEVELS:
            raise ConfigurationError("invalid_config", f"LOG_LEVEL must be one of {LOG_LEVELS}.")

        raw_origins = os.getenv("CORS_ALLOWED_ORIGINS", "")
        return cls(
            openai_api_key=api_key,
            openai_base_url=os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1").rstrip("/"),
            host=os.getenv("HOST", "0.0.0.0"),
            port=_int_env("PORT", 8080),
            admin_bypass_token=os.getenv("ADMIN_BYPASS_TOKEN", ""),
            chat_model=os.getenv("CHAT_MODEL", "gpt-4o-mini"),
            chat_temperature=_float_env("CHAT_TEMPERATURE", 0.7),
            tts_engine=tts_engine,
            tts_voice=os.getenv("TTS_VOICE", "alloy"),
            tts_model=os.getenv("TTS_MODEL", "gpt-4o-mini-tts"),
            stt_model=os.getenv("STT_MODEL", "whisper-1"),
            jwt_secret=os.getenv("AUTH_JWT_SECRET", ""),
            jwt_issuer=os.getenv("AUTH_JWT_ISSUER", ""),
            storage_backend=storage_backend,
            database_path=os.getenv("DATABASE_PATH", "./micronforce_gpt.sqlite"),
            max_audio_bytes=_int_env("MAX_AUDIO_BYTES", 20 * 1024 * 1024),
            cors_origins=[o.strip() for o in raw_origins.split(",") if o.strip()],
            log_level=log_level,
            rate_limits=RateLimits(
                window_seconds=_int_env("RATE_LIMIT_WINDOW_SECONDS", 60),
                super_chat=_int_env("SUPER_CHAT_RATE_LIMIT", 60),
                user_chat=_int_env("USER_CHAT_RATE_LIMIT", 30),
                tts=_int_env("TTS_RATE_LIMIT", 30),
                stt=_int_env("STT_RATE_LIMIT", 20),
            ),
        )


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError("invalid_config", f"{name} must be an integer, got {raw!r}.")


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError("invalid_config", f"{name} must be a number, got {raw!r}.")
