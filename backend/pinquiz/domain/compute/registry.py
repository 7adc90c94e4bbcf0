"""Named trusted functions and the default client used to reach them."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Optional

from pinquiz.domain.compute.ai import TextGenerator
from pinquiz.domain.compute.answers import submit_answer
from pinquiz.domain.compute.evaluation import evaluate_submissions
from pinquiz.domain.compute.rankings import compute_ranking_results
from pinquiz.domain.compute.results import compute_question_results
from pinquiz.domain.compute.topics import extract_topics
from pinquiz.infra.auth import AuthenticatedUser
from pinquiz.infra.documents import DocumentStore, get_document_store
from pinquiz.infra.functions import FunctionsClient, FunctionsRegistry, HttpFunctionsClient, LocalFunctionsClient
from pinquiz.settings import settings

FUNCTION_NAMES: tuple[str, ...] = (
	"submitAnswer",
	"computeQuestionResults",
	"computeRankingResults",
	"evaluateSubmissions",
	"extractTopics",
)

_Function = Callable[..., Awaitable[Dict[str, Any]]]


def _bind(func: _Function, store: DocumentStore | None, **kwargs: Any):
	async def _handler(payload: Dict[str, Any], user: Optional[AuthenticatedUser]) -> Dict[str, Any]:
		return await func(store or get_document_store(), payload, user, **kwargs)

	_handler.__name__ = func.__name__
	return _handler


def build_registry(store: DocumentStore | None = None, generator: TextGenerator | None = None) -> FunctionsRegistry:
	"""Register every trusted function; ``store`` defaults to the process-wide store at call time."""
	registry = FunctionsRegistry()
	registry.register("submitAnswer", _bind(submit_answer, store))
	registry.register("computeQuestionResults", _bind(compute_question_results, store))
	registry.register("computeRankingResults", _bind(compute_ranking_results, store))
	registry.register("evaluateSubmissions", _bind(evaluate_submissions, store, generator=generator))
	registry.register("extractTopics", _bind(extract_topics, store, generator=generator))
	return registry


_default_client: FunctionsClient | None = None


def get_functions_client() -> FunctionsClient:
	global _default_client
	if _default_client is None:
		if settings.functions_base_url:
			_default_client = HttpFunctionsClient(
				settings.functions_base_url,
				timeout=settings.functions_timeout_seconds,
			)
		else:
			_default_client = LocalFunctionsClient(build_registry())
	return _default_client


def set_functions_client(client: FunctionsClient | None) -> None:
	global _default_client
	_default_client = client
