from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

log = logging.getLogger(__name__)

INTERNAL_ERROR_MESSAGE = "Internal server error"


class AuthError(Exception):
    """Base class for failures turned into an error envelope at the request boundary."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    message: str = "Bad request"

    def __init__(self, message: str | None = None, data: Any = None):
        super().__init__(message or self.message)
        if message:
            self.message = message
        self.data = data


class ValidationError(AuthError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Validation failed"


class DuplicateAccount(AuthError):
    status_code = status.HTTP_409_CONFLICT
    message = "Email already registered"


class InvalidCredentials(AuthError):
    # unknown email and wrong password share this message
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Invalid credentials"


class Unauthorized(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Unauthorized"


class Forbidden(AuthError):
    status_code = status.HTTP_403_FORBIDDEN
    message = "Forbidden"


class InvalidToken(AuthError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Invalid or expired token"


class NotFound(AuthError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Token not found"


def error_response(status_code: int, message: str, data: Any = None) -> JSONResponse:
    content: dict[str, Any] = {"success": False, "message": message}
    if data is not None:
        content["data"] = data
    headers = None
    if status_code == status.HTTP_401_UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AuthError)
    async def handle_auth_error(request: Request, exc: AuthError):
        log.info(
            "%s %s -> %s %s",
            request.method,
            request.url.path,
            exc.status_code,
            type(exc).__name__,
        )
        return error_response(exc.status_code, exc.message, exc.data)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        details = [
            {"field": ".".join(str(p) for p in err.get("loc", ())[1:]), "message": err.get("msg")}
            for err in exc.errors()
        ]
        return await handle_auth_error(request, ValidationError(data=details))

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        log.exception("%s %s -> unhandled error", request.method, request.url.path)
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, INTERNAL_ERROR_MESSAGE)
