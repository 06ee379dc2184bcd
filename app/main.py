from __future__ import annotations
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from app.api import router
from logging_config import configure_logging
from services.channel import build_default_channel
from services.ingestor import build_default_ingestor
from services.lifecycle import build_default_coordinator
from services.query import build_default_query_service
from settings import get_settings
from storage.readings import build_default_store


def _reset_factories() -> None:
    for factory in (
        build_default_coordinator,
        build_default_query_service,
        build_default_ingestor,
        build_default_channel,
        build_default_store,
    ):
        factory.cache_clear()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    coordinator = build_default_coordinator()
    try:
        coordinator.start()
        yield
    finally:
        coordinator.shutdown()
        _reset_factories()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Energy Monitor",
        description="Stores MQTT energy-consumption readings and serves recent history.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)

    static_dir = get_settings().static_dir
    if static_dir and Path(static_dir).is_dir():
        app.mount("/", StaticFiles(directory=static_dir, html=True), name="static")
    return app

app = create_app()
