"""Translation of domain exceptions into JSON error responses."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..domain.errors import (
    AuthenticationError,
    DuplicateTaxIdError,
    FieldIssue,
    InsufficientFundsError,
    NotFoundError,
    TokenCreationError,
    TooManyAttemptsError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def _error(
    status_code: int,
    code: str,
    title: str,
    detail: str,
    headers: dict[str, str] | None = None,
    **extra: Any,
) -> JSONResponse:
    body: dict[str, Any] = {"code": code, "title": title, "detail": detail, **extra}
    return JSONResponse(status_code=status_code, content=body, headers=headers)


def _validation_response(issues: list[FieldIssue]) -> JSONResponse:
    return _error(
        status.HTTP_400_BAD_REQUEST,
        "invalid_request",
        "Request data is invalid",
        "check the listed fields and try again",
        errors=[{"field": issue.field, "message": issue.message} for issue in issues],
    )


async def _handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    issues = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part != "body"]
        issues.append(FieldIssue(field=".".join(location) or "body", message=error.get("msg", "invalid")))
    return _validation_response(issues)


async def _handle_validation(request: Request, exc: ValidationError) -> JSONResponse:
    return _validation_response(exc.issues)


async def _handle_not_found(request: Request, exc: NotFoundError) -> JSONResponse:
    return _error(status.HTTP_404_NOT_FOUND, "not_found", "Resource not found", str(exc))


async def _handle_duplicate_tax_id(request: Request, exc: DuplicateTaxIdError) -> JSONResponse:
    return _error(status.HTTP_400_BAD_REQUEST, "duplicate_tax_id", "Tax id already registered", str(exc))


async def _handle_insufficient_funds(request: Request, exc: InsufficientFundsError) -> JSONResponse:
    return _error(
        status.HTTP_400_BAD_REQUEST,
        "insufficient_funds",
        "Insufficient funds for this operation",
        str(exc),
        balance=str(exc.balance),
    )


async def _handle_authentication(request: Request, exc: AuthenticationError) -> JSONResponse:
    return _error(
        status.HTTP_401_UNAUTHORIZED,
        "authentication_failed",
        "Authentication failed",
        str(exc),
        headers={"WWW-Authenticate": "Bearer"},
    )


async def _handle_too_many_attempts(request: Request, exc: TooManyAttemptsError) -> JSONResponse:
    return _error(status.HTTP_429_TOO_MANY_REQUESTS, "rate_limited", "Too many attempts", str(exc))


async def _handle_internal(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return _error(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "internal_error",
        "Internal server error",
        "an unexpected error occurred, try again later",
    )


def install_error_handlers(app: FastAPI) -> None:
    """Register the service's exception handlers on ``app``."""
    app.add_exception_handler(RequestValidationError, _handle_request_validation)
    app.add_exception_handler(ValidationError, _handle_validation)
    app.add_exception_handler(NotFoundError, _handle_not_found)
    app.add_exception_handler(DuplicateTaxIdError, _handle_duplicate_tax_id)
    app.add_exception_handler(InsufficientFundsError, _handle_insufficient_funds)
    app.add_exception_handler(AuthenticationError, _handle_authentication)
    app.add_exception_handler(TooManyAttemptsError, _handle_too_many_attempts)
    app.add_exception_handler(TokenCreationError, _handle_internal)
    app.add_exception_handler(Exception, _handle_internal)
