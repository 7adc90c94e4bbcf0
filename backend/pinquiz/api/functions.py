"""Callable endpoint for the trusted compute functions.

``POST /functions/{name}`` takes ``{"data": {...}}`` and answers with
``{"result": {...}}`` or ``{"error": {"status": code, "message": ...}}``;
the same envelope :class:`HttpFunctionsClient` speaks.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse

from pinquiz.domain.compute.registry import build_registry
from pinquiz.infra.auth import AuthenticatedUser, get_optional_user
from pinquiz.infra.functions import FunctionError, FunctionsRegistry

router = APIRouter(prefix="/functions", tags=["functions"])

_registry: Optional[FunctionsRegistry] = None


def get_registry() -> FunctionsRegistry:
	global _registry
	if _registry is None:
		_registry = build_registry()
	return _registry


@router.post("/{name}")
async def call_function_endpoint(
	name: str,
	body: Optional[Dict[str, Any]] = Body(default=None),
	auth_user: Optional[AuthenticatedUser] = Depends(get_optional_user),
	registry: FunctionsRegistry = Depends(get_registry),
) -> JSONResponse:
	payload = (body or {}).get("data")
	if not isinstance(payload, dict):
		payload = {}
	try:
		result = await registry.invoke(name, payload, auth_user)
	except FunctionError as exc:
		return JSONResponse(
			status_code=exc.status_code,
			content={"error": {"status": exc.code, "message": exc.detail}},
		)
	return JSONResponse(status_code=200, content={"result": result})
