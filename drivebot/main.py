from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from .config import settings
from .logging import setup_logging, RequestIdMiddleware
from .auth.service_account import TokenCache
from .routes.telegram import router as telegram_router
from .routes.integrations import router as integrations_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    # One connection pool and one token cache per process; uploads only read them
    app.state.http_client = httpx.AsyncClient(timeout=settings.http_timeout_s)
    app.state.token_cache = TokenCache(leeway_s=settings.token_leeway_s)
    try:
        yield
    finally:
        await app.state.http_client.aclose()


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)

    # Routers
    app.include_router(telegram_router)
    app.include_router(integrations_router)

    # Metrics
    Instrumentator().instrument(app).expose(app)

    return app


app = create_app()
