from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator

import uvicorn
from fastapi import FastAPI

from app.api import router
from logging_config import configure_logging
from services.dashboard import build_default_dashboard
from services.offsets import build_default_manager
from settings import get_settings


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    dashboard = build_default_dashboard()
    try:
        yield
    finally:
        dashboard.shutdown()
        build_default_dashboard.cache_clear()
        build_default_manager.cache_clear()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="River Monitor",
        description="River water-quality readings with calibration offsets and malfunction flags.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app


def run() -> None:
    """Serve the API with uvicorn using the configured host and port."""
    settings = get_settings()
    uvicorn.run(
        "app.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_config=None,
    )


app = create_app()
