from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class CallbackError(Exception):
    """Terminal failure of the Discord callback flow.

    Each subclass maps to the coarse error code appended to the browser
    redirect. The message is logged server-side and never sent to the client.
    """

    redirect_code = "discord_callback_failed"


class ProviderDenied(CallbackError):
    redirect_code = "discord_auth_failed"


class MissingCode(CallbackError):
    redirect_code = "no_code"


class UpstreamExchangeFailed(CallbackError):
    pass


class StoreWriteFailed(CallbackError):
    pass


class ProviderNotConfigured(Exception):
    pass


def api_error(detail: str, *, error_code: str, status_code: int) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"detail": detail, "error_code": error_code},
    )


def _status_title(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Error"


def _normalize_detail(detail: Any, status_code: int) -> tuple[str, str]:
    if isinstance(detail, dict):
        text = str(detail.get("detail", "Request failed"))
        code = str(detail.get("error_code") or f"http_{status_code}")
        return text, code
    if detail is None:
        return "Request failed", f"http_{status_code}"
    return str(detail), f"http_{status_code}"


def problem_response(
    *,
    request: Request,
    status_code: int,
    detail: str,
    error_code: str,
    headers: dict[str, str] | None = None,
    extra: dict[str, Any] | None = None,
) -> JSONResponse:
    payload: dict[str, Any] = {
        "type": "about:blank",
        "title": _status_title(status_code),
        "status": status_code,
        "detail": detail,
        "instance": str(request.url.path),
        "error_code": error_code,
    }
    if extra:
        payload.update(extra)
    return JSONResponse(
        status_code=status_code,
        content=payload,
        headers=headers,
        media_type="application/problem+json",
    )


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(HTTPException)
    @app.exception_handler(StarletteHTTPException)
    async def _http_exception_handler(
        request: Request, exc: HTTPException | StarletteHTTPException
    ) -> JSONResponse:
        detail, error_code = _normalize_detail(exc.detail, exc.status_code)
        return problem_response(
            request=request,
            status_code=exc.status_code,
            detail=detail,
            error_code=error_code,
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return problem_response(
            request=request,
            status_code=422,
            detail="Request validation failed",
            error_code="validation_error",
            extra={"errors": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(ProviderNotConfigured)
    async def _provider_not_configured_handler(
        request: Request, exc: ProviderNotConfigured
    ) -> JSONResponse:
        logger.error("Discord OAuth is not configured: %s", exc)
        return problem_response(
            request=request,
            status_code=500,
            detail="Failed to initialize Discord OAuth",
            error_code="discord_oauth_not_configured",
        )

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.exception("Unhandled error on %s", request.url.path, exc_info=exc)
        return problem_response(
            request=request,
            status_code=500,
            detail="Internal Server Error",
            error_code="http_500",
        )
