from __future__ import annotations
from dotenv import load_dotenv

load_dotenv()

from contextlib import asynccontextmanager
import logging
import os
from typing import Any, AsyncIterator

from fastapi import (
    APIRouter,
    Depends,
    FastAPI,
    File,
    Query,
    Request,
    UploadFile,
)
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from micronforce.config import TTS_ENGINES, ServerConfig
from micronforce.context import AppContext, build_app_context, get_app_context
from micronforce.errors import (
    ApiError,
    ConfigurationError,
    InternalError,
    RateLimitError,
    UpstreamError,
    ValidationError,
)
from micronforce.models.chat import (
    ChatResponse,
    LogEntryResponse,
    SettingsResponse,
    SettingsUpdate,
    SuperChatRequest,
    UserChatRequest,
    dump_messages,
)
from micronforce.security import (
    AuthContext,
    add_redaction_filter,
    client_ip,
    require_superadmin,
    resolve_caller,
)
from micronforce.storage.base import Scope, clamp_limit

add_redaction_filter()

logger = logging.getLogger(__name__)

STT_PATHS = {"/api/super/stt", "/api/stt"}
# Room for the multipart envelope around the audio part.
MULTIPART_OVERHEAD_BYTES = 64 * 1024


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    if getattr(app.state, "context", None) is None:
        app.state.context = build_app_context(ServerConfig.from_env())
    yield
    await app.state.context.upstream.aclose()


def _cors_origins() -> list[str]:
    raw = os.getenv("CORS_ALLOWED_ORIGINS", "")
    return [o.strip() for o in raw.split(",") if o.strip()]


def rate_limit(bucket: str, limit_name: str):
    async def _check(request: Request, ctx: AppContext = Depends(get_app_context)) -> None:
        limits = ctx.config.rate_limits
        ip = client_ip(request)
        if not ctx.rate_limiter.allow(f"{ip}:{bucket}", getattr(limits, limit_name), limits.window_seconds):
            logger.warning("Rate limit exceeded: bucket=%s ip=%s", bucket, ip)
            raise RateLimitError()

    return _check


router = APIRouter(prefix="/api")


@router.get("/health")
async def health() -> dict[str, bool]:
    return {"ok": True}


# === Superadmin ===


@router.get(
    "/super/settings",
    response_model=SettingsResponse,
    dependencies=[Depends(require_superadmin)],
)
def get_settings(ctx: AppContext = Depends(get_app_context)) -> SettingsResponse:
    return SettingsResponse(**ctx.settings_store.get().to_dict())


@router.put(
    "/super/settings",
    response_model=SettingsResponse,
    dependencies=[Depends(require_superadmin)],
)
def update_settings(
    payload: SettingsUpdate | None = None,
    ctx: AppContext = Depends(get_app_context),
) -> SettingsResponse:
    patch = (payload or SettingsUpdate()).model_dump()
    engine = (patch.get("tts_engine") or "").strip().lower()
    if engine and engine not in TTS_ENGINES:
        raise ValidationError("invalid_settings", f"tts_engine must be one of {', '.join(TTS_ENGINES)}.")
    settings = ctx.settings_store.update(patch)
    logger.info("Settings updated: fields=%s", sorted(k for k, v in patch.items() if v))
    return SettingsResponse(**settings.to_dict())


@router.post(
    "/super/chat",
    response_model=ChatResponse,
    dependencies=[Depends(rate_limit("super_chat", "super_chat")), Depends(require_superadmin)],
)
async def super_chat(
    payload: SuperChatRequest | None = None,
    ctx: AppContext = Depends(get_app_context),
) -> ChatResponse:
    payload = payload or SuperChatRequest()
    return await _run_chat(
        ctx,
        messages=dump_messages(payload.messages),
        actor=payload.admin_user or "superadmin",
        scope="super",
    )


@router.get(
    "/super/tts",
    dependencies=[Depends(rate_limit("super_tts", "tts")), Depends(require_superadmin)],
)
async def super_tts(
    text: str = "",
    voice: str | None = None,
    ctx: AppContext = Depends(get_app_context),
) -> Response:
    return await _synthesize(ctx, text, voice)


@router.post(
    "/super/stt",
    dependencies=[Depends(rate_limit("super_stt", "stt")), Depends(require_superadmin)],
)
async def super_stt(
    audio: UploadFile | None = File(None),
    ctx: AppContext = Depends(get_app_context),
) -> JSONResponse:
    return await _transcribe(ctx, audio)


@router.get(
    "/super/logs",
    response_model=list[LogEntryResponse],
    dependencies=[Depends(require_superadmin)],
)
def list_logs(
    q: str | None = Query(None),
    limit: int | None = Query(None),
    ctx: AppContext = Depends(get_app_context),
) -> list[dict[str, Any]]:
    entries = ctx.log_store.query(q=q or None, limit=clamp_limit(limit))
    return [entry.to_dict() for entry in entries]


# === Users ===
# resolve_caller only tags the actor; it never rejects a request.


@router.post(
    "/chat/user/send",
    response_model=ChatResponse,
    dependencies=[Depends(rate_limit("user_chat", "user_chat"))],
)
async def user_chat(
    request: Request,
    payload: UserChatRequest | None = None,
    caller: AuthContext = Depends(resolve_caller),
    ctx: AppContext = Depends(get_app_context),
) -> ChatResponse:
    payload = payload or UserChatRequest()
    if payload.user_id:
        actor = f"user:{payload.user_id}"
    elif caller.subject:
        actor = f"user:{caller.subject}"
    else:
        actor = f"ip:{client_ip(request)}"
    return await _run_chat(ctx, messages=dump_messages(payload.messages), actor=actor, scope="user")


@router.get("/tts", dependencies=[Depends(rate_limit("user_tts", "tts"))])
async def user_tts(
    text: str = "",
    voice: str | None = None,
    _: AuthContext = Depends(resolve_caller),
    ctx: AppContext = Depends(get_app_context),
) -> Response:
    return await _synthesize(ctx, text, voice)


@router.post("/stt", dependencies=[Depends(rate_limit("user_stt", "stt"))])
async def user_stt(
    audio: UploadFile | None = File(None),
    _: AuthContext = Depends(resolve_caller),
    ctx: AppContext = Depends(get_app_context),
) -> JSONResponse:
    return await _transcribe(ctx, audio)


async def _run_chat(
    ctx: AppContext, *, messages: list[dict[str, Any]], actor: str, scope: Scope
) -> ChatResponse:
    try:
        result = await ctx.chat.send(messages=messages, actor=actor, scope=scope)
    except (ApiError, UpstreamError):
        raise
    except Exception as exc:  # noqa: BLE001
        logger.exception("Chat failed: scope=%s", scope)
        raise InternalError("chat_failed", exc) from exc
    return ChatResponse(reply=result.reply, usage=result.usage, created_at=result.created_at)


async def _synthesize(ctx: AppContext, text: str, voice: str | None) -> Response:
    try:
        settings = await run_in_threadpool(ctx.settings_store.get)
        engine = (settings.tts_engine or ctx.config.tts_engine).lower()
        if engine == "browser":
            raise ConfigurationError("browser_tts_enabled")
        resolved_voice = voice or settings.tts_voice or ctx.config.tts_voice
        audio = await ctx.upstream.synthesize_speech(str(text), resolved_voice)
    except (ApiError, UpstreamError):
        raise
    except Exception as exc:  # noqa: BLE001
        logger.exception("TTS failed")
        raise InternalError("tts_failed", exc) from exc
    return Response(content=audio, media_type="audio/mpeg")


async def _transcribe(ctx: AppContext, audio: UploadFile | None) -> JSONResponse:
    if audio is None:
        raise ValidationError("audio file required")
    audio_bytes = await audio.read()
    if not audio_bytes:
        raise ValidationError("audio file required")
    if len(audio_bytes) > ctx.config.max_audio_bytes:
        raise ValidationError("audio_too_large", "Audio upload too large.", status_code=413)
    logger.info(
        "STT upload received: filename=%s content_type=%s bytes=%s",
        audio.filename,
        audio.content_type,
        len(audio_bytes),
    )
    try:
        result = await ctx.upstream.transcribe_audio(
            audio_bytes,
            filename=audio.filename or "audio.webm",
            content_type=audio.content_type or "application/octet-stream",
        )
    except (ApiError, UpstreamError):
        raise
    except Exception as exc:  # noqa: BLE001
        logger.exception("STT failed")
        raise InternalError("stt_failed", exc) from exc
    return JSONResponse(content=result)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_body())

    @app.exception_handler(UpstreamError)
    async def handle_upstream_error(request: Request, exc: UpstreamError) -> Response:
        return Response(content=exc.body, status_code=exc.status_code, media_type=exc.content_type)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        detail = "; ".join(
            f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg')}"
            for error in exc.errors()
        )
        return JSONResponse(status_code=400, content={"error": "validation_error", "detail": detail})

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error: path=%s", request.url.path)
        return JSONResponse(
            status_code=500,
            content={"error": "internal_error", "detail": f"{type(exc).__name__}: {exc}"},
        )


def create_app(context: AppContext | None = None) -> FastAPI:
    """Build the API around ``context``; without one it is built from the environment at startup."""
    app = FastAPI(title="MicronForce GPT API", version="0.1.0", lifespan=lifespan)
    app.state.context = context

    @app.middleware("http")
    async def body_limit_middleware(request: Request, call_next):
        ctx = getattr(request.app.state, "context", None)
        if ctx is not None and request.url.path in STT_PATHS:
            content_length = request.headers.get("content-length")
            if (
                content_length
                and content_length.isdigit()
                and int(content_length) > ctx.config.max_audio_bytes + MULTIPART_OVERHEAD_BYTES
            ):
                return JSONResponse(
                    status_code=413,
                    content={"error": "audio_too_large", "detail": "Audio upload too large."},
                )
        return await call_next(request)

    # Added last so CORS headers also wrap the early 413 response.
    origins = context.config.cors_origins if context is not None else _cors_origins()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_origin_regex=None if origins else ".*",
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept", "X-Admin"],
    )

    register_exception_handlers(app)
    app.include_router(router)
    return app


app = create_app()


def _configure_logging(level: str) -> None:
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    add_redaction_filter()


def run() -> None:
    import uvicorn

    try:
        config = ServerConfig.from_env()
    except ConfigurationError as exc:
        _configure_logging("INFO")
        logger.error("Refusing to start: %s", exc)
        raise SystemExit(1)
    _configure_logging(config.log_level)

    logger.info("MicronForce GPT server on :%s", config.port)
    uvicorn.run(create_app(build_app_context(config)), host=config.host, port=config.port)


if __name__ == "__main__":
    run()
