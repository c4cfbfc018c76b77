from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.api.dependencies import get_event_source, get_http_client, get_sync_service
from app.api.router import api_router
from app.core.config import settings
from app.core.logger import configure_logging, get_logger
from app.services.cache_store import CacheNotConfiguredError, CacheReadError, CacheStoreError
from app.workers.health_poller import build_poller

configure_logging(settings)
logger = get_logger(component="FastAPI")

# Global reference to poller for graceful shutdown
_poller_task: asyncio.Task | None = None
_poller_instance = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the health poller on startup and stop it on shutdown."""
    global _poller_task, _poller_instance

    try:
        poller = build_poller(settings, get_sync_service())
        if poller:
            _poller_instance = poller
            _poller_task = asyncio.create_task(poller.run_forever())
            logger.info("Health poller started as background task")
        else:
            logger.info("Health poller not started (disabled or not configured)")
    except Exception as exc:
        logger.exception("Failed to start health poller", error=str(exc))

    yield

    if _poller_instance and _poller_task:
        logger.info("Shutting down health poller")
        try:
            await _poller_instance.shutdown()
            _poller_task.cancel()
            try:
                await _poller_task
            except asyncio.CancelledError:
                pass
            logger.info("Health poller shutdown complete")
        except Exception as exc:
            logger.exception("Error during poller shutdown", error=str(exc))
        _poller_task = None
        _poller_instance = None

    await get_http_client().aclose()
    for provider in (get_http_client, get_event_source, get_sync_service):
        provider.cache_clear()


def create_app() -> FastAPI:
    app = FastAPI(title=settings.project_name, version="1.0.0", lifespan=lifespan)

    @app.exception_handler(CacheNotConfiguredError)
    async def handle_not_configured(_: Request, exc: CacheNotConfiguredError) -> JSONResponse:
        logger.error("Cache read attempted without storage configuration", error=str(exc))
        return JSONResponse(status_code=500, content={"error": str(exc)})

    @app.exception_handler(CacheReadError)
    async def handle_read_error(_: Request, exc: CacheReadError) -> JSONResponse:
        logger.error("Failed to read cached snapshot", error=str(exc))
        return JSONResponse(status_code=500, content={"error": str(exc)})

    @app.exception_handler(CacheStoreError)
    async def handle_store_error(_: Request, exc: CacheStoreError) -> JSONResponse:
        logger.error("Cache storage error", error=str(exc))
        return JSONResponse(status_code=500, content={"error": str(exc)})

    app.include_router(api_router, prefix=settings.api_v1_prefix)

    @app.get("/healthz", tags=["health"])
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
