"""Middleware to bind a request id to request.state, the logging context and response headers."""

from __future__ import annotations

import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from pinquiz.api.request_id import REQUEST_ID_ATTR
from pinquiz.obs import logging as obs_logging


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        rid = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        setattr(request.state, REQUEST_ID_ATTR, rid)
        tokens = obs_logging.bind_context(request_id=rid)
        try:
            response = await call_next(request)
        finally:
            obs_logging.reset_context(tokens)
        if "X-Request-Id" not in response.headers:
            response.headers["X-Request-Id"] = rid
        return response
