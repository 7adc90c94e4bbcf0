"""Identity helpers for FastAPI endpoints and in-process callers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from pinquiz.infra import jwt as jwt_helper
from pinquiz.settings import settings


@dataclass(slots=True)
class AuthenticatedUser:
	id: str
	email: Optional[str] = None
	is_anonymous: bool = False
	display_name: Optional[str] = None


_bearer_scheme = HTTPBearer(auto_error=False)


def verify_access_jwt(token: str) -> AuthenticatedUser:
	try:
		payload = jwt_helper.decode_access(token)
	except Exception:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")

	email = payload.get("email")
	name = payload.get("name")
	return AuthenticatedUser(
		id=str(payload["sub"]).strip(),
		email=str(email) if email else None,
		is_anonymous=bool(payload.get("anon", False)),
		display_name=str(name) if name else None,
	)


async def get_current_user(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	x_user_anonymous: Optional[str] = Header(default=None, alias="X-User-Anonymous"),
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthenticatedUser:
	"""Resolve the caller.

	Bearer tokens are always accepted; the ``X-User-Id`` header only in dev.
	"""
	if credentials and credentials.scheme.lower() == "bearer":
		return verify_access_jwt(credentials.credentials)

	if settings.is_dev() and x_user_id:
		anonymous = (x_user_anonymous or "").strip().lower() in ("1", "true", "yes")
		return AuthenticatedUser(id=x_user_id, is_anonymous=anonymous)

	raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")


async def get_optional_user(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	x_user_anonymous: Optional[str] = Header(default=None, alias="X-User-Anonymous"),
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> Optional[AuthenticatedUser]:
	try:
		return await get_current_user(x_user_id, x_user_anonymous, credentials)
	except HTTPException:
		return None
