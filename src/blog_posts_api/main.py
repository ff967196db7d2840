"""FastAPI application entrypoint."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from blog_posts_api.config import Settings
from blog_posts_api.errors import StoreError
from blog_posts_api.post_store import PostStore, create_post_store
from blog_posts_api.routes import register_error_handlers
from blog_posts_api.routes import router as posts_router
from blog_posts_api.telemetry import (
    add_trace_context,
    emit_to_otel_logs,
    init_telemetry,
    shutdown_telemetry,
)

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_trace_context,  # type: ignore[list-item]
        emit_to_otel_logs,  # type: ignore[list-item]
        structlog.processors.format_exc_info,
        structlog.dev.ConsoleRenderer(),
    ],
)

log = structlog.get_logger()


async def open_store(settings: Settings) -> PostStore:
    """Create the configured store and verify it is reachable."""
    store = create_post_store(settings.database_url, settings.redis_key)
    try:
        await store.ping()
    except StoreError:
        await store.aclose()
        raise
    await log.ainfo("store_opened", backend=type(store).__name__)
    return store


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the store unless one was injected; close only what we opened."""
    init_telemetry()
    settings: Settings | None = getattr(app.state, "settings", None)
    if settings is None:
        settings = Settings()
        app.state.settings = settings

    injected: PostStore | None = getattr(app.state, "post_store", None)
    store = injected if injected is not None else await open_store(settings)
    app.state.post_store = store

    await log.ainfo("service started", store=type(store).__name__)
    try:
        yield
    finally:
        if injected is None:
            await store.aclose()
            del app.state.post_store
        await log.ainfo("service stopped")
        shutdown_telemetry()


async def health() -> dict[str, str]:
    return {"status": "ok"}


def create_app(store: PostStore | None = None, settings: Settings | None = None) -> FastAPI:
    """Build the app.

    An injected *store* is used as-is and left open on shutdown. Without
    *settings* the lifespan loads them from the environment.
    """
    application = FastAPI(title="Blog Posts API", lifespan=lifespan)
    if settings is not None:
        application.state.settings = settings
    if store is not None:
        application.state.post_store = store
    application.include_router(posts_router)
    application.add_api_route("/health", health, methods=["GET"])
    register_error_handlers(application)
    FastAPIInstrumentor.instrument_app(application)
    return application


app = create_app()
