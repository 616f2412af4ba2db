"""
FastAPI application entry point.
Configures routes, error mapping, and lifecycle events.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from confpay.config import settings
from confpay.database import close_db, init_db
from confpay.errors import AppError
from confpay.logging_config import configure_logging
from confpay.services.mail_service import Mailer
from confpay.services.onepay_client import OnePayClient

from confpay.api.payments import router as payments_router
from confpay.api.admin.checkin import router as checkin_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifecycle manager."""
    # Startup
    configure_logging()
    logger.info("Starting up confpay...")
    if settings.is_development:
        await init_db()

    # Process-wide collaborators, injected into handlers via app.state
    app.state.gateway = OnePayClient.from_settings(settings)
    app.state.mailer = Mailer.from_settings(settings)

    yield

    # Shutdown
    await app.state.gateway.aclose()
    await app.state.mailer.aclose()
    await close_db()
    logger.info("Shutting down...")


app = FastAPI(
    title="confpay",
    description="Conference registration payment reconciliation",
    version="1.0.0",
    lifespan=lifespan,
    debug=settings.debug,
)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.http_status >= 500:
        logger.error(f"{exc.kind} on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


# Global Exception Handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Global exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"kind": "INTERNAL", "message": "Internal Server Error"},
    )


# The registration site calls the status endpoint from the browser
origins = settings.cors_origin_list
if settings.is_development:
    origins.append("*")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "env": settings.app_env,
        "gateway_configured": bool(settings.onepay_app_id and settings.onepay_base_url),
    }


app.include_router(
    payments_router,
    prefix="/payments",
    tags=["payments"],
)
app.include_router(
    checkin_router,
    prefix="/admin",
    tags=["admin"],
)
