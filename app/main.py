from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from app.api import router
from logging_config import configure_logging
from services.assembler import build_default_assembler
from services.upstream import build_default_client


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    client = build_default_client()
    try:
        yield
    finally:
        await client.aclose()
        build_default_assembler.cache_clear()
        build_default_client.cache_clear()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Sonde Chart Service",
        description="Normalizes radiosonde telemetry into chart-ready series and rendered charts.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])
    app.add_middleware(GZipMiddleware)
    app.include_router(router)
    return app

app = create_app()
