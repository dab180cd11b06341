"""
Main FastAPI application factory.
Wires the reconciler, error handling and the startup sync with Caddy.
"""
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from caddy_panel.config import settings
from caddy_panel.errors import AppError, to_response_body
from caddy_panel.persistence.db import init_db
from caddy_panel.services.reconciler import Reconciler
from caddy_panel.web import api

logger = logging.getLogger(__name__)


async def _startup_sync(reconciler: Reconciler) -> None:
    try:
        await reconciler.initialize()
    except Exception as e:
        # the panel keeps serving; the operator can trigger /api/reconcile later
        logger.error(f"[startup] Caddy configuration was not applied: {e}")


def create_app(reconciler: Reconciler | None = None, reconcile_on_startup: bool | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if reconcile_on_startup is None:
        reconcile_on_startup = settings.RECONCILE_ON_STARTUP

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_db()
        task = None
        if reconcile_on_startup:
            task = asyncio.create_task(_startup_sync(app.state.reconciler))
        yield
        if task is not None and not task.done():
            task.cancel()

    app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)
    app.state.reconciler = reconciler or Reconciler()

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error(f"[api] {request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(to_response_body(exc), status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = {".".join(str(p) for p in err["loc"][1:]) or "_form": err["msg"] for err in exc.errors()}
        return JSONResponse({"error": "Invalid request", "errors": errors}, status_code=400)

    app.include_router(api.router)
    return app
