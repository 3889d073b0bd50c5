"""FastAPI application."""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from .config import settings
from .database import engine
from .domain_errors import DomainError, StoreUnavailable
from .problem_details import build_problem_details_response
from .routers import attachments, auth, messages, projects

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Create app
app = FastAPI(
    title="HomeBids Messaging",
    version="1.0.0",
    description="Backend API for contractor messaging on HomeBids projects"
)

# Production safety checks.
if settings.ENV.lower() == "production" and settings.JWT_SECRET_KEY == "change-me-in-production":
    raise RuntimeError("JWT_SECRET_KEY must be set in production.")
if settings.ENV.lower() == "production" and any(origin.strip() == "*" for origin in settings.cors_origins):
    raise RuntimeError("ALLOWED_ORIGINS must be explicit in production (no wildcard when using credentials).")

# CORS
cors_methods = ["GET", "POST", "OPTIONS"]
cors_headers = ["Authorization", "Content-Type", "Last-Event-ID"]
if settings.ENV.lower() != "production":
    cors_headers = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=cors_methods,
    allow_headers=cors_headers,
)


@app.exception_handler(DomainError)
async def _handle_domain_error(_: Request, exc: DomainError):
    return build_problem_details_response(exc)


@app.exception_handler(OperationalError)
async def _handle_store_unavailable(_: Request, exc: OperationalError):
    logger.error("database unavailable: %s", exc.__class__.__name__)
    return build_problem_details_response(StoreUnavailable())


# Include routers
app.include_router(auth.router, prefix="/api/v1")
app.include_router(projects.router, prefix="/api/v1")
app.include_router(messages.router, prefix="/api/v1")
app.include_router(attachments.router, prefix="/api/v1")


@app.get("/api/v1/system/health")
def health_check():
    """Health check endpoint."""
    database = "ok"
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        database = "unavailable"
    return {
        "status": "ok" if database == "ok" else "degraded",
        "version": "1.0.0",
        "database": database,
        "realtime": settings.REALTIME_BACKEND,
    }


@app.get("/")
def root():
    """Root endpoint."""
    return {
        "message": "HomeBids Messaging API",
        "version": "1.0.0",
        "docs": "/docs"
    }
