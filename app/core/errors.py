from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Domain failure with a stable machine-readable ``code``.

    Services raise it; HTTP routes render it as an error envelope and the
    realtime layer turns it into an ``error`` frame with the same code.
    """

    def __init__(
        self,
        *,
        status_code: int,
        code: str,
        message: str,
        details: object | None = None,
    ) -> None:
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details
        super().__init__(message)


class AuthError(APIError):
    """Credential rejected. ``code`` is one of no_token, token_expired, token_invalid."""

    NO_TOKEN = "no_token"
    TOKEN_EXPIRED = "token_expired"
    TOKEN_INVALID = "token_invalid"

    def __init__(self, code: str, message: str) -> None:
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, code=code, message=message)


def error_body(*, code: str, message: str, details: object | None = None) -> dict[str, object]:
    body: dict[str, object] = {"code": code, "message": message}
    if details is not None:
        body["details"] = details
    return body


def success_response(data: object, status_code: int = status.HTTP_200_OK) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"data": data})


def error_response(
    *,
    status_code: int,
    code: str,
    message: str,
    details: object | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error_body(code=code, message=message, details=details)},
    )


def add_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(APIError)
    async def handle_api_error(request: Request, exc: APIError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("API error path=%s code=%s", request.url.path, exc.code)
        return error_response(
            status_code=exc.status_code,
            code=exc.code,
            message=exc.message,
            details=exc.details,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
        return error_response(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            code="validation_error",
            message="Request validation failed",
            details=jsonable_encoder(exc.errors()),
        )

    @app.exception_handler(HTTPException)
    async def handle_http_error(_: Request, exc: HTTPException) -> JSONResponse:
        # The bearer scheme raises a bare 401 when no Authorization header is sent.
        if exc.status_code == status.HTTP_401_UNAUTHORIZED:
            return error_response(status_code=exc.status_code, code=AuthError.NO_TOKEN, message="No token provided")
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return error_response(
            status_code=exc.status_code,
            code="http_error",
            message=message,
            details=None if isinstance(exc.detail, str) else exc.detail,
        )

    @app.exception_handler(SQLAlchemyError)
    async def handle_store_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.exception("Store failure path=%s", request.url.path, exc_info=exc)
        return error_response(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            code="store_failure",
            message="Action could not be saved",
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error path=%s", request.url.path, exc_info=exc)
        return error_response(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            code="internal_error",
            message="Internal server error",
        )
