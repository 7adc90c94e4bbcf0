"""Error classification shared by the API layer and host controllers."""

from __future__ import annotations

from enum import Enum

from pinquiz.infra.documents import PermissionDeniedError, StoreError
from pinquiz.infra.functions import FunctionError, RemoteCallError


class InputValidationError(RuntimeError):
	"""Malformed question, answer or request shape; never reaches the store."""

	def __init__(self, code: str = "invalid_input", *, message: str | None = None, status_code: int = 400) -> None:
		super().__init__(message or code)
		self.code = code
		self.status_code = status_code
		self.detail = message or code


class ErrorKind(str, Enum):
	VALIDATION = "validation"
	PERMISSION = "permission"
	STORE = "store"
	REMOTE = "remote"
	POLICY = "policy"
	UNKNOWN = "unknown"


RETRYABLE_CODES = frozenset({"unavailable", "deadline-exceeded", "aborted", "resource-exhausted"})

_FRIENDLY_MESSAGES = {
	"permission_denied": "You don't have permission to perform this action.",
	"permission-denied": "You don't have permission to perform this action.",
	"unauthenticated": "Please sign in to continue.",
	"not_found": "The requested item could not be found.",
	"not-found": "The requested item could not be found.",
	"unavailable": "The service is temporarily unavailable. Please try again.",
	"deadline-exceeded": "The request took too long. Please try again.",
	"resource-exhausted": "Too many requests. Please wait a moment and try again.",
	"aborted": "The operation was interrupted by another change. Please try again.",
	"invalid_state": "This action is not available right now.",
	"not_host": "Only the host can control this session.",
}

_DEFAULT_MESSAGE = "Something went wrong. Please try again."


def is_permission_error(exc: BaseException) -> bool:
	if isinstance(exc, PermissionDeniedError):
		return True
	return getattr(exc, "code", None) in ("permission_denied", "permission-denied")


def classify_error(exc: BaseException) -> ErrorKind:
	if is_permission_error(exc):
		return ErrorKind.PERMISSION
	if isinstance(exc, InputValidationError):
		return ErrorKind.VALIDATION
	if isinstance(exc, StoreError):
		return ErrorKind.STORE
	if isinstance(exc, (RemoteCallError, FunctionError)):
		return ErrorKind.REMOTE
	if hasattr(exc, "code") and hasattr(exc, "status_code"):
		return ErrorKind.POLICY
	return ErrorKind.UNKNOWN


def is_retryable_error(exc: BaseException) -> bool:
	if isinstance(exc, (ConnectionError, TimeoutError)):
		return True
	return getattr(exc, "code", None) in RETRYABLE_CODES


def friendly_message(exc: BaseException) -> str:
	code = getattr(exc, "code", None)
	if code in _FRIENDLY_MESSAGES:
		return _FRIENDLY_MESSAGES[code]
	if isinstance(exc, InputValidationError):
		return exc.detail
	return _DEFAULT_MESSAGE
