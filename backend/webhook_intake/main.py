"""FastAPI application factory and ASGI entry point.

Run with `uvicorn webhook_intake.main:app`. Tests build their own app through
`create_app(settings=..., processor=...)`.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import APIRouter, FastAPI

from webhook_intake.api.queue import router as queue_router
from webhook_intake.api.webhooks import router as webhooks_router
from webhook_intake.core.config import Settings
from webhook_intake.core.config import settings as default_settings
from webhook_intake.core.error_handling import install_error_handling
from webhook_intake.core.logging import configure_logging, get_logger
from webhook_intake.db.session import Database
from webhook_intake.services.webhooks.factory import build_ingress, build_store, build_worker

if TYPE_CHECKING:
    from webhook_intake.services.webhooks.processor import EventProcessor

logger = get_logger(__name__)


def create_app(
    settings: Settings | None = None,
    *,
    processor: EventProcessor | None = None,
) -> FastAPI:
    config = settings if settings is not None else default_settings
    configure_logging(config.log_level, config.log_format)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        database = Database.from_url(config.database_url)
        if config.db_auto_create:
            await database.create_all()
        store = build_store(database)
        app.state.settings = config
        app.state.database = database
        app.state.store = store
        app.state.ingress = build_ingress(config, store)
        app.state.worker = build_worker(config, store, processor)
        logger.info("app.lifecycle.started", extra={"environment": config.environment})
        try:
            yield
        finally:
            await database.dispose()
            logger.info("app.lifecycle.stopped")

    app = FastAPI(title="Webhook Intake", version="0.1.0", lifespan=lifespan)
    install_error_handling(
        app,
        slow_request_ms=config.request_log_slow_ms,
        include_health_logs=config.request_log_include_health,
    )

    @app.get("/healthz", tags=["health"])
    def healthz() -> dict[str, bool]:
        return {"ok": True}

    api_v1 = APIRouter(prefix="/api/v1")
    api_v1.include_router(queue_router)
    app.include_router(webhooks_router)
    app.include_router(api_v1)
    return app


app = create_app()
