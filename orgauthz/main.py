from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI

from orgauthz.authz.cache import DecisionCache, InMemoryCacheBackend, RedisCacheBackend
from orgauthz.authz.recorder import QueueDecisionRecorder
from orgauthz.db.check_log import CheckLogSink
from orgauthz.db.init_db import init_db
from orgauthz.db.resilience import CircuitBreaker
from orgauthz.db.session import SessionLocal
from orgauthz.logging_config import configure_app_logging
from orgauthz.routers import admin, departments, health, users
from orgauthz.security.config import load_authz_config
from orgauthz.security.dependencies import enforce_permissions
from orgauthz.settings import get_settings

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        settings = get_settings()
        configure_app_logging(settings.log_level)
        logger.info("App startup beginning")

        config = load_authz_config(settings.resolved_authz_config_path())
        app.state.authz_config = config
        logger.info("Loaded authz config: %s", settings.resolved_authz_config_path())

        init_db()
        logger.info("Database initialized (tables ensured + seed if needed)")

        app.state.circuit_breaker = CircuitBreaker()

        redis_backend: RedisCacheBackend | None = None
        if settings.cache_backend == "redis":
            redis_backend = RedisCacheBackend.from_url(settings.redis_url)
            backend = redis_backend
        else:
            backend = InMemoryCacheBackend()
        app.state.decision_cache = DecisionCache(
            backend,
            decision_ttl_seconds=config.cache.decision_ttl_seconds,
            bypass_ttl_seconds=config.cache.bypass_ttl_seconds,
        )
        logger.info("Decision cache backend: %s", settings.cache_backend)

        recorder = QueueDecisionRecorder(CheckLogSink(SessionLocal), queue_size=config.recorder.queue_size)
        recorder.start()
        app.state.decision_recorder = recorder

        yield

        # Shutdown: flush pending check logs, then release the cache connection.
        await recorder.stop()
        if redis_backend is not None:
            await redis_backend.close()
        logger.info("App shutdown complete")

    # Global dependency: every route is authorized with zero changes to handlers.
    app = FastAPI(dependencies=[Depends(enforce_permissions)], lifespan=lifespan)

    app.include_router(health.router)
    app.include_router(users.router)
    app.include_router(departments.router)
    app.include_router(admin.router)

    return app


app = create_app()
