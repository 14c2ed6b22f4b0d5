from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from .api.routes import router as api_router
from .controller import ToolController
from .core.config import Settings, get_settings
from .core.logging import configure_logging, get_logger

settings = get_settings()
configure_logging(settings.observability.log_level, fmt=settings.observability.log_format)
logger = get_logger(name=__name__)


def create_app(app_settings: Settings | None = None, *, controller: ToolController | None = None) -> FastAPI:
    app_settings = app_settings or settings

    @asynccontextmanager
    async def app_lifespan(app: FastAPI):
        runtime = controller or ToolController(app_settings)
        app.state.controller = runtime
        async with runtime.lifecycle():
            try:
                yield
            finally:
                app.state.controller = None

    app = FastAPI(title="Tool Call Controller", version="0.1.0", lifespan=app_lifespan)
    app.state.controller = None
    app.include_router(api_router, prefix=app_settings.api_v1_prefix)

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    if app_settings.observability.prometheus_enabled:

        @app.get("/metrics", tags=["observability"])
        async def metrics() -> Response:
            return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


app = create_app(settings)
