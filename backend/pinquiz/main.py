"""FastAPI application entrypoint."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pinquiz.api import functions as functions_api
from pinquiz.api import games as games_api
from pinquiz.api.errors import install_error_handlers
from pinquiz.api.middleware_request_id import RequestIdMiddleware
from pinquiz.domain.games.jobs import run_cleanup
from pinquiz.infra.documents import PermissionDeniedError, RedisDocumentStore, get_document_store
from pinquiz.infra.emitter import PERMISSION_ERROR, error_emitter
from pinquiz.infra.scheduler import JobScheduler
from pinquiz.obs.logging import configure_logging
from pinquiz.settings import settings

logger = logging.getLogger(__name__)


def _log_permission_error(error: PermissionDeniedError) -> None:
	logger.warning("permission error", extra=error.context)


@asynccontextmanager
async def lifespan(app: FastAPI):
	configure_logging()
	unsubscribe = error_emitter.on(PERMISSION_ERROR, _log_permission_error)
	scheduler: JobScheduler | None = None
	if settings.cleanup_jobs_enabled:
		scheduler = JobScheduler()
		scheduler.start()
		scheduler.schedule_hourly("games-retention-cleanup", run_cleanup, hours=settings.cleanup_interval_hours)
	app.state.scheduler = scheduler
	try:
		yield
	finally:
		if scheduler is not None:
			scheduler.shutdown()
		unsubscribe()
		store = get_document_store()
		if isinstance(store, RedisDocumentStore):
			await store.close()


app = FastAPI(title="pinquiz", lifespan=lifespan)
install_error_handlers(app)

allow_origins = list(getattr(settings, "cors_allow_origins", []))
if not allow_origins:
	allow_origins = ["http://localhost:3000"] if settings.is_dev() else []

app.add_middleware(
	CORSMiddleware,
	allow_origins=allow_origins,
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)
app.add_middleware(RequestIdMiddleware)


@app.get("/health")
async def health() -> dict:
	return {"status": "ok", "service": settings.service_name, "env": settings.environment, "commit": settings.git_commit}


app.include_router(games_api.router, tags=["games"])
app.include_router(functions_api.router, tags=["functions"])
