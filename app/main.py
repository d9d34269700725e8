from contextlib import asynccontextmanager

import httpx
import structlog
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from core.config import MailConfig, settings
from core.database import AsyncDatabaseConfig, db_manager
from core.logging_config import configure_logging
from metrics.metrics import get_metrics
from routes import payments, system
from services.email_services import create_email_service
from services.rental_store import RentalTransactionStore
from services.scan_lock import create_redis_client
from utils.exceptions import (
    NotFoundError,
    RenderError,
    StorageError,
    TransportError,
    ValidationError,
)

configure_logging()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: database, mail transport and services."""
    logger.info("application_starting", app=settings.app_name)

    await db_manager.initialize(config=AsyncDatabaseConfig.from_env())
    health = await db_manager.health_check()
    if health["status"] != "healthy":
        raise RuntimeError(f"Database unhealthy: {health}")

    mail_config = MailConfig.from_env()
    metrics = get_metrics()
    http_client = httpx.AsyncClient(timeout=mail_config.http_timeout)
    email_service = create_email_service(mail_config, metrics=metrics, http_client=http_client)

    # a failed SMTP verify is logged but never blocks startup
    if email_service.transport.configured:
        await email_service.transport.verify()

    rental_store = RentalTransactionStore(db_manager.database)
    await rental_store.ensure_indexes()

    # shared by every scan lock; None keeps scans unlocked
    redis = create_redis_client(settings.redis_url)

    app.state.metrics = metrics
    app.state.redis = redis
    app.state.email_service = email_service
    app.state.rental_store = rental_store
    logger.info("application_started", email_provider=email_service.transport.name)

    yield

    if redis is not None:
        await redis.aclose()
    await http_client.aclose()
    await db_manager.close()
    logger.info("application_stopped")


app = FastAPI(
    title=settings.app_name,
    description="Rental payment reconciliation and notification service",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Exception handlers
def _error_response(request: Request, status_code: int, exc: Exception, **extra) -> JSONResponse:
    logger.warning(
        "request_failed",
        status_code=status_code,
        error_type=type(exc).__name__,
        detail=str(exc),
        path=request.url.path,
        method=request.method,
    )
    return JSONResponse(status_code=status_code, content={"detail": str(exc), **extra})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return _error_response(request, 404, exc)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return _error_response(request, 422, exc)


@app.exception_handler(RenderError)
async def render_error_handler(request: Request, exc: RenderError):
    return _error_response(request, 422, exc, field=exc.field)


@app.exception_handler(TransportError)
async def transport_error_handler(request: Request, exc: TransportError):
    return _error_response(request, 502, exc, code=exc.code)


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    return _error_response(request, 503, exc)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions with proper logging"""
    logger.warning(
        "http_exception",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
        method=request.method
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions"""
    logger.error(
        "unexpected_exception",
        error=str(exc),
        path=request.url.path,
        method=request.method,
        exc_info=True
    )
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


app.include_router(system.router)
app.include_router(payments.router)


@app.get("/")
async def root():
    return {
        "service": settings.app_name,
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs",
    }
