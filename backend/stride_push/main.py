"""FastAPI application factory with middleware, routers, and lifespan."""

import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from .api_v1 import api_v1_router
from .config import settings, setup_logging
from .database.base import SessionLocal, get_db
from .dependencies import get_processor
from .errors import AuthorizationError, ValidationError
from .integrations.cache import create_cache_service
from .integrations.push_gateway import ExpoPushClient
from .queue.processor import QueueProcessor
from .rate_limit import limiter
from .realtime.notifier import RealtimeNotifier, install_insert_listener

logger = logging.getLogger(__name__)

_startup_time: float = 0.0


def _run_migrations() -> None:
    """Run Alembic migrations (upgrade head) on startup."""
    from alembic import command
    from alembic.config import Config

    alembic_cfg = Config()
    alembic_cfg.set_main_option("script_location", str(Path(__file__).parent.parent / "alembic"))
    alembic_cfg.set_main_option("sqlalchemy.url", settings.effective_database_url)
    command.upgrade(alembic_cfg, "head")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup/shutdown lifecycle."""
    global _startup_time
    _startup_time = time.time()

    setup_logging()
    _run_migrations()

    app.state.cache = create_cache_service()
    app.state.session_factory = SessionLocal
    app.state.notifier = RealtimeNotifier()
    remove_listener = install_insert_listener(SessionLocal, app.state.notifier)

    app.state.processor = None
    gateway = None
    if settings.queue_processor_enabled:
        gateway = ExpoPushClient()
        processor = QueueProcessor(SessionLocal, gateway)
        # start() runs the first cycle synchronously
        await run_in_threadpool(processor.start)
        app.state.processor = processor

    try:
        yield
    finally:
        if app.state.processor is not None:
            await run_in_threadpool(app.state.processor.stop)
        if gateway is not None:
            gateway.close()
        remove_listener()


def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> Response:
    retry_after = "60"
    return JSONResponse(
        {"success": False, "error": "Too many requests", "detail": str(exc.detail), "retry_after": int(retry_after)},
        status_code=429,
        headers={"Retry-After": retry_after},
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Stride Push Notification Service",
        lifespan=lifespan,
    )

    # --- Exception handlers ---
    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return JSONResponse({"success": False, "error": str(exc), "errors": exc.errors}, status_code=400)

    @app.exception_handler(AuthorizationError)
    async def authorization_error_handler(request: Request, exc: AuthorizationError):
        return JSONResponse({"success": False, "error": str(exc)}, status_code=403)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [f"{'.'.join(str(p) for p in e['loc'][1:])}: {e['msg']}" for e in exc.errors()]
        return JSONResponse({"success": False, "error": "Invalid request", "errors": errors}, status_code=400)

    app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse({"success": False, "error": exc.detail}, status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return JSONResponse({"success": False, "error": "Internal server error"}, status_code=500)

    # --- Middleware stack (LIFO: last added = outermost) ---

    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    if settings.trusted_hosts_list != ["*"]:
        app.add_middleware(
            TrustedHostMiddleware,
            allowed_hosts=settings.trusted_hosts_list,
        )

    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=["*"])

    # --- API v1 (all JSON endpoints) ---
    app.include_router(api_v1_router)

    # --- Health check ---
    @app.get("/health")
    def health(db: Session = Depends(get_db), processor=Depends(get_processor)):
        try:
            db.execute(text("SELECT 1"))
            db_status = "ok"
        except Exception:
            logger.warning("Health check: database unreachable", exc_info=True)
            db_status = "unreachable"

        if processor is None:
            processor_status = "disabled"
        else:
            processor_status = "running" if processor.running else "stopped"

        degraded = db_status != "ok" or processor_status == "stopped"
        return {
            "status": "degraded" if degraded else "ok",
            "db": db_status,
            "processor": processor_status,
            "version": "1.0.0",
            "uptime_seconds": round(time.time() - _startup_time, 1) if _startup_time else 0.0,
        }

    return app


app = create_app()
