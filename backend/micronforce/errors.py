from __future__ import annotations

from fastapi import HTTPException, status


class ApiError(HTTPException):
    """HTTP error rendered as ``{"error": code, "detail": detail}``."""

    def __init__(self, code: str, detail: str | None = None, status_code: int = 500) -> None:
        super().__init__(status_code=status_code, detail=detail)
        self.code = code
        # HTTPException substitutes the status phrase for a missing detail.
        self.error_detail = detail

    def to_body(self) -> dict[str, str]:
        body = {"error": self.code}
        if self.error_detail:
            body["detail"] = self.error_detail
        return body


class AuthError(ApiError):
    def __init__(self, code: str = "Superadmin required", detail: str | None = None) -> None:
        super().__init__(code, detail, status_code=status.HTTP_401_UNAUTHORIZED)


class RateLimitError(ApiError):
    def __init__(self, detail: str | None = None) -> None:
        super().__init__("rate_limited", detail, status_code=status.HTTP_429_TOO_MANY_REQUESTS)


class ValidationError(ApiError):
    def __init__(
        self, code: str, detail: str | None = None, status_code: int = status.HTTP_400_BAD_REQUEST
    ) -> None:
        super().__init__(code, detail, status_code=status_code)


class ConfigurationError(ApiError):
    """Raised for a disabled feature on a route, or a bad environment at startup."""

    def __init__(self, code: str, detail: str | None = None) -> None:
        super().__init__(code, detail, status_code=status.HTTP_400_BAD_REQUEST)

    def __str__(self) -> str:
        return f"{self.code}: {self.error_detail}" if self.error_detail else self.code


class InternalError(ApiError):
    def __init__(self, code: str, cause: BaseException) -> None:
        super().__init__(code, _describe(cause), status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


class UpstreamError(Exception):
    """Non-success response from the provider, forwarded to the caller verbatim."""

    def __init__(self, status_code: int, body: bytes, content_type: str | None = None) -> None:
        super().__init__(f"Upstream returned {status_code}")
        self.status_code = status_code
        self.body = body
        self.content_type = content_type or "application/json"


def _describe(exc: BaseException) -> str:
    message = str(exc)
    return f"{type(exc).__name__}: {message}" if message else type(exc).__name__
