from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import hmac
import logging
import re
from typing import Any, Literal

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from micronforce.config import ServerConfig
from micronforce.context import AppContext, get_app_context
from micronforce.errors import AuthError

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

ACCESS_COOKIE = "access"
BYPASS_HEADER = "x-admin"
SUPERADMIN = "superadmin"


@dataclass
class AuthContext:
    role: str | None
    subject: str | None = None
    via: Literal["token", "bypass"] | None = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def create_access_token(
    subject: str,
    role: str,
    secret: str,
    issuer: str | None = None,
    ttl_minutes: int = 15,
) -> str:
    issued_at = _now()
    payload: dict[str, Any] = {
        "sub": subject,
        "role": role,
        "iat": int(issued_at.timestamp()),
        "exp": int((issued_at + timedelta(minutes=ttl_minutes)).timestamp()),
    }
    if issuer:
        payload["iss"] = issuer
    return jwt.encode(payload, secret, algorithm="HS256")


def _decode_jwt(token: str, secret: str, issuer: str | None) -> dict[str, Any]:
    if issuer:
        return jwt.decode(token, secret, algorithms=["HS256"], issuer=issuer)
    return jwt.decode(token, secret, algorithms=["HS256"])


def _credential(request: Request, credentials: HTTPAuthorizationCredentials | None) -> str | None:
    token = request.cookies.get(ACCESS_COOKIE)
    if token:
        return token
    if credentials and credentials.scheme.lower() == "bearer":
        return credentials.credentials
    return None


def resolve_auth(
    request: Request,
    config: ServerConfig,
    credentials: HTTPAuthorizationCredentials | None = None,
) -> AuthContext:
    """Decode the role claim of the caller's credential; never raises."""
    token = _credential(request, credentials)
    if not token or not config.jwt_secret:
        return AuthContext(role=None)
    try:
        payload = _decode_jwt(token, config.jwt_secret, config.jwt_issuer or None)
    except jwt.PyJWTError as exc:
        logger.info("Rejected access credential: %s", type(exc).__name__)
        return AuthContext(role=None)
    role = payload.get("role")
    subject = payload.get("sub")
    return AuthContext(
        role=str(role) if role else None,
        subject=str(subject) if subject else None,
        via="token",
    )


def _bypass_matches(request: Request, expected: str) -> bool:
    if not expected:
        return False
    presented = request.headers.get(BYPASS_HEADER)
    if presented is None:
        return False
    return hmac.compare_digest(presented.encode(), expected.encode())


def require_superadmin(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    ctx: AppContext = Depends(get_app_context),
) -> AuthContext:
    auth = resolve_auth(request, ctx.config, credentials)
    if auth.role == SUPERADMIN:
        return auth
    if _bypass_matches(request, ctx.config.admin_bypass_token):
        return AuthContext(role=SUPERADMIN, subject=auth.subject, via="bypass")
    logger.warning("Superadmin check failed: path=%s ip=%s", request.url.path, client_ip(request))
    raise AuthError()


def resolve_caller(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    ctx: AppContext = Depends(get_app_context),
) -> AuthContext:
    """Best-effort caller identity for user routes, used only to tag logs.

    This is not an authorization gate: anonymous callers pass through with
    ``role=None``. Deployments that need real user enforcement must put it
    in front of these routes.
    """
    return resolve_auth(request, ctx.config, credentials)


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


class RedactFilter(logging.Filter):
    _pattern = re.compile(
        r"(Bearer\s+)[A-Za-z0-9\-._~+/]+=*"
        r"|(access=)[^;\s]+"
        r"|(x-admin[:=]\s*)\S+"
        r"|()sk-[A-Za-z0-9\-_]{8,}",
        re.IGNORECASE,
    )

    @classmethod
    def _redact(cls, value: str) -> str:
        return cls._pattern.sub(
            lambda m: (m.group(1) or m.group(2) or m.group(3) or "") + "[REDACTED]", value
        )

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self._redact(record.msg)
        if record.args and isinstance(record.args, tuple):
            record.args = tuple(
                self._redact(arg) if isinstance(arg, str) else arg for arg in record.args
            )
        return True


def add_redaction_filter() -> None:
    """Attach the redaction filter to the root logger and its handlers.

    Logger-level filters do not see records propagated from child loggers,
    so handlers installed before this call get their own copy.
    """
    root = logging.getLogger()
    for target in [root, *root.handlers]:
        if not any(isinstance(f, RedactFilter) for f in target.filters):
            target.addFilter(RedactFilter())
