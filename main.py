"""POS Pairing — FastAPI Backend

Device pairing via one-time activation codes, and access/refresh session
issuance for merchants and paired devices.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from pos_pairing.api import admin, pairing, sessions
from pos_pairing.core.clock import Clock, utcnow
from pos_pairing.core.config import Settings, settings as default_settings
from pos_pairing.core.errors import PairingError, StorageFailure
from pos_pairing.database.engine import create_db_engine, create_session_factory
from pos_pairing.database.session import init_db
from pos_pairing.observability import setup_structured_logging
from pos_pairing.services.device_auth import DeviceAuthService

logger = logging.getLogger(__name__)


def create_app(config: Optional[Settings] = None, clock: Clock = utcnow) -> FastAPI:
    config = config or default_settings
    engine = create_db_engine(config.DATABASE_URL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("POS Pairing starting up")
        if config.AUTO_CREATE_TABLES:
            init_db(engine)
        yield
        engine.dispose()
        logger.info("POS Pairing shutting down")

    app = FastAPI(
        title="POS Pairing API",
        description="Activation-code device pairing and session issuance "
                    "for point-of-sale devices and merchants.",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Constructed once, shared by every request, never mutated.
    app.state.settings = config
    app.state.engine = engine
    app.state.session_factory = create_session_factory(engine)
    app.state.auth_service = DeviceAuthService.from_settings(config, clock=clock)

    # -----------------------------------------------------------------------
    # Middleware
    # -----------------------------------------------------------------------

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    # -----------------------------------------------------------------------
    # Exception handlers
    # -----------------------------------------------------------------------

    @app.exception_handler(PairingError)
    async def pairing_error_handler(request: Request, exc: PairingError):
        request_id = getattr(request.state, "request_id", "unknown")
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "detail": exc.message,
                "error": exc.error_code,
                "request_id": request_id,
            },
        )

    @app.exception_handler(StorageFailure)
    async def storage_failure_handler(request: Request, exc: StorageFailure):
        request_id = getattr(request.state, "request_id", "unknown")
        logger.error(
            "Storage failure",
            exc_info=exc.cause,
            extra={"request_id": request_id, "operation": exc.operation},
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "request_id": request_id},
        )

    @app.exception_handler(500)
    async def internal_error_handler(request: Request, exc: Exception):
        request_id = getattr(request.state, "request_id", "unknown")
        logger.error("Internal error", exc_info=exc, extra={"request_id": request_id})
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "request_id": request_id},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        request_id = getattr(request.state, "request_id", "unknown")
        return JSONResponse(
            status_code=422,
            content={
                "detail": exc.errors(),
                "request_id": request_id,
            },
        )

    # -----------------------------------------------------------------------
    # Routers
    # -----------------------------------------------------------------------

    app.include_router(pairing.router, prefix=config.API_V1_PREFIX)
    app.include_router(sessions.router, prefix=config.API_V1_PREFIX)
    app.include_router(admin.router, prefix=config.API_V1_PREFIX)

    # -----------------------------------------------------------------------
    # Prometheus
    # -----------------------------------------------------------------------

    Instrumentator().instrument(app).expose(app, include_in_schema=False)

    # -----------------------------------------------------------------------
    # Health check
    # -----------------------------------------------------------------------

    @app.get("/health", tags=["system"])
    def health():
        return {"status": "ok"}

    return app


setup_structured_logging()
app = create_app()
