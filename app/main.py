"""
FastAPI Application Entry Point
"""

from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException

from app.api.v1.router import api_router
from app.core.config import settings
from app.core.errors import (
    AppError,
    app_exception_handler,
    general_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from app.core.logging import RequestIDMiddleware, get_logger, setup_logging
from app.infra.db import AsyncSessionLocal, close_db_connection, init_models
from app.infra.hot_cache import HotCache
from app.infra.redis import close_redis_pool, get_redis_client, init_redis_pool
from app.services.transcripts.factory import build_resolver

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    setup_logging()
    await init_redis_pool()

    if settings.db_auto_create:
        # Don't fail startup if the database is down; stores fail open
        try:
            await init_models()
        except SQLAlchemyError as e:
            logger.warning(f"Failed to create database tables: {e}")

    http = httpx.AsyncClient(
        timeout=settings.upstream_timeout_seconds,
        headers={"User-Agent": "transcript-gateway/0.1"},
    )
    hot_cache = HotCache(get_redis_client())
    app.state.http = http
    app.state.resolver = build_resolver(settings, hot_cache, AsyncSessionLocal, http)
    logger.info(
        f"Transcript service ready (mode={settings.strategy_mode}, "
        f"paid={settings.paid_enabled}, ai={settings.ai_enabled})"
    )

    yield

    # Shutdown
    await app.state.resolver.background.drain()
    await http.aclose()
    await close_redis_pool()
    await close_db_connection()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Transcript Gateway",
        description="Transcript resolution and caching service",
        version="0.1.0",
        openapi_url=f"{settings.api_prefix}/openapi.json",
        lifespan=lifespan,
    )

    # Middleware
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_credentials,
        allow_methods=settings.cors_methods,
        allow_headers=settings.cors_headers,
    )

    # Routes
    app.include_router(api_router, prefix=settings.api_prefix)

    # Exception Handlers
    app.add_exception_handler(AppError, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    return app


app = create_app()
