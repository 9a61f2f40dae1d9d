"""FastAPI application entrypoint."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from intake.api import ops
from intake.api.errors import install_error_handlers
from intake.api.middleware_request_id import RequestIdMiddleware
from intake.feedback import router as feedback_router
from intake.feedback.domain import container
from intake.feedback.infra.event_sink import PostgresEventSink
from intake.infra import postgres
from intake.infra.rate_limit import RedisRateLimitStore
from intake.infra.redis import redis_client
from intake.obs import init as obs_init
from intake.settings import settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
	if settings.storage_backend == "postgres":
		pool = await postgres.init_pool()
		redis_conn = redis_client if settings.rate_limit_backend == "redis" else None
		container.configure_postgres(pool, redis_conn=redis_conn)
	elif settings.rate_limit_backend == "redis":
		container.configure(rate_limit_store=RedisRateLimitStore(redis_client))
	logger.info(
		"feedback intake started",
		extra={"storage_backend": settings.storage_backend, "rate_limit_backend": settings.rate_limit_backend},
	)
	try:
		yield
	finally:
		sink = container.get_service().events
		if isinstance(sink, PostgresEventSink):
			await sink.drain()
		await postgres.close_pool()


app = FastAPI(title="Feedback Intake", lifespan=lifespan)
install_error_handlers(app)
obs_init(app)
# Ensure every request carries an X-Request-Id and make it available on request.state
app.add_middleware(RequestIdMiddleware)

app.include_router(ops.router)
app.include_router(feedback_router)
