from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse
from fastapi.staticfiles import StaticFiles

from ekatan import __version__
from ekatan.api.middleware import SessionMiddleware
from ekatan.api.pages import router as pages_router
from ekatan.api.routes import health
from ekatan.common.system_logger import get_logger
from ekatan.config import APP_DESCRIPTION, APP_NAME, STATIC_DIR, Settings, get_settings
from ekatan.core.auth import LoginRequired

logger = get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings: Settings = app.state.settings
    owns_client = getattr(app.state, "http", None) is None
    if owns_client:
        app.state.http = httpx.AsyncClient(timeout=settings.SUPABASE_TIMEOUT_SECONDS)
    logger.info("%s %s started (auth server: %s)", APP_NAME, __version__, settings.supabase_base_url)
    try:
        yield
    finally:
        if owns_client:
            await app.state.http.aclose()
            app.state.http = None
        logger.info("%s stopped", APP_NAME)


def create_app(settings: Optional[Settings] = None, http: Optional[httpx.AsyncClient] = None) -> FastAPI:
    settings = settings or get_settings()
    logger.configure_logging(settings)

    app = FastAPI(title=APP_NAME, description=APP_DESCRIPTION, version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.http = http

    app.include_router(health.router)
    app.include_router(pages_router)
    app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")

    # Registered first so it runs innermost, after CORS and request logging.
    app.add_middleware(SessionMiddleware)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info(f"Request: {request.method} {request.url.path}")
        response = await call_next(request)
        logger.info(f"Response: {response.status_code} for {request.method} {request.url.path}")
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LoginRequired)
    async def login_required_handler(request: Request, exc: LoginRequired):
        logger.info(f"Access to {request.url.path} denied ({exc.reason}); redirecting to login")
        return RedirectResponse(url=settings.LOGIN_PATH, status_code=307)

    return app
