"""Global error handlers ensuring request_id is included in JSON responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from pinquiz.api.request_id import get_request_id
from pinquiz.domain.crowdsource.service import CrowdsourceError
from pinquiz.domain.games.policy import GamePolicyError
from pinquiz.infra.documents import StoreError
from pinquiz.infra.errors import InputValidationError, classify_error, friendly_message
from pinquiz.infra.functions import FunctionError, RemoteCallError

logger = logging.getLogger(__name__)

DOMAIN_ERRORS = (
    GamePolicyError,
    CrowdsourceError,
    InputValidationError,
    StoreError,
    RemoteCallError,
    FunctionError,
)


def error_payload(request: Request, exc: Exception) -> dict:
    return {
        "detail": exc.detail,  # type: ignore[attr-defined]
        "code": exc.code,  # type: ignore[attr-defined]
        "kind": classify_error(exc).value,
        "message": friendly_message(exc),
        "request_id": get_request_id(request),
    }


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
        rid = get_request_id(request)
        payload = {"detail": exc.detail, "request_id": rid}
        return JSONResponse(status_code=exc.status_code, content=payload)

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
        rid = get_request_id(request)
        payload = {"detail": "validation_error", "errors": exc.errors(), "request_id": rid}
        return JSONResponse(status_code=422, content=payload)

    for error_type in DOMAIN_ERRORS:

        @app.exception_handler(error_type)
        async def domain_exc_handler(request: Request, exc: Exception):  # type: ignore[override]
            status_code = int(getattr(exc, "status_code", 400))
            if status_code >= 500:
                logger.warning(
                    "request failed",
                    extra={"path": request.url.path, "code": getattr(exc, "code", None), "status": status_code},
                )
            return JSONResponse(status_code=status_code, content=error_payload(request, exc))
