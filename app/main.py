from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.api import router
from logging_config import configure_logging
from services.monitor import build_default_monitor


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    monitor = build_default_monitor()
    try:
        yield
    finally:
        monitor.shutdown()
        build_default_monitor.cache_clear()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="AquaGuard",
        description="Water-quality readings, risk tiers and bilingual AI analysis.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app

app = create_app()
