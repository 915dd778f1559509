"""Domain errors and their HTTP rendering."""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

logger = logging.getLogger(__name__)


class AuthError(Exception):
    """Base error. ``reason`` is the stable machine-readable code."""

    status_code = 400
    reason = "error"
    message = "Request could not be completed"

    def __init__(self, message: str | None = None, **extra):
        self.message = message or self.message
        self.extra = extra
        super().__init__(self.message)

    def to_payload(self) -> dict:
        return {"error": self.reason, "message": self.message, **self.extra}


class Unauthorized(AuthError):
    status_code = 401
    reason = "unauthorized"
    message = "Authentication required"


class NotFound(AuthError):
    status_code = 404
    reason = "not-found"
    message = "Not found"


class InvalidOperation(AuthError):
    status_code = 400
    reason = "invalid-operation"
    message = "Operation not allowed"


class InvalidOrExpiredToken(AuthError):
    status_code = 400
    reason = "invalid-or-expired-token"
    message = "Invalid or expired token"


class InvalidCode(AuthError):
    status_code = 400
    reason = "invalid-code"
    message = "Invalid verification code"


class RateLimited(AuthError):
    status_code = 429
    reason = "rate-limited"
    message = "Too many requests. Please try again later."


class AttemptsExceeded(AuthError):
    status_code = 403
    reason = "attempts-exceeded"
    message = "Maximum attempts reached. Request a new code."


class InvalidCredentials(AuthError):
    status_code = 401
    reason = "invalid-credentials"
    message = "Incorrect email or password"


class TwoFactorNotEnabled(AuthError):
    status_code = 400
    reason = "two-factor-not-enabled"
    message = "Two-factor authentication is not enabled"


class NoCurrentSession(AuthError):
    status_code = 404
    reason = "no-current-session"
    message = "Current session not found"


class PasswordResetTooSoon(AuthError):
    status_code = 429
    reason = "password-reset-too-soon"
    message = "You can only reset your password once per day"


class PasswordChangeRejected(AuthError):
    status_code = 400
    reason = "password-change-rejected"


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


async def store_unavailable_handler(request: Request, exc: OperationalError) -> JSONResponse:
    logger.error(f"Store unavailable during {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=503,
        content={
            "error": "server-error",
            "message": "Service temporarily unavailable",
            "retryable": True,
        },
    )


def register_error_handlers(app: FastAPI) -> None:
    """Render domain errors as structured JSON responses."""
    app.add_exception_handler(AuthError, auth_error_handler)
    app.add_exception_handler(OperationalError, store_unavailable_handler)
