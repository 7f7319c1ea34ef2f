"""
Studio Entitlements - FastAPI Application

Main entry point for the backend API.
Provides endpoints for purchases, subscriptions, credits and gateway webhooks.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from app.config.settings import settings
from app.api.dependencies import SessionDep
from app.infrastructure.exceptions import EntitlementEngineError

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    logger.info(f"Studio Entitlements backend starting in {settings.environment} mode...")

    if settings.database_url:
        from app.infrastructure.db.database import init_db
        await init_db()
        logger.info("SQLModel database connection pool initialized")
    else:
        logger.warning("DATABASE_URL not set; entitlements are kept in memory")

    yield

    # Shutdown
    if settings.database_url:
        from app.infrastructure.db.database import close_db
        await close_db()
        logger.info("SQLModel database connection pool closed")

    logger.info("Studio Entitlements backend shutting down...")


app = FastAPI(
    title="Studio Entitlements",
    description="Payments, subscriptions and class credits for fitness brands",
    version="1.0.0",
    lifespan=lifespan,
    debug=settings.debug,
)

# CORS configuration from Settings
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Exception Handlers
# ============================================================================

@app.exception_handler(EntitlementEngineError)
async def entitlement_error_handler(request: Request, exc: EntitlementEngineError):
    """Map application errors to their HTTP status and stable error code."""
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    """Any other failure becomes a generic 500; details stay in the log."""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "InternalServerError",
            "code": "INTERNAL_ERROR",
            "message": "An unexpected error occurred",
            "details": {},
        },
    )


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "studio-entitlements"}


@app.get("/health/db")
async def database_health_check(session: SessionDep):
    """Readiness check: the database answers a trivial query."""
    await session.execute(text("SELECT 1"))
    return {"status": "healthy", "database": "reachable"}


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Studio Entitlements API",
        "version": "1.0.0",
        "docs": "/docs",
    }


# ============================================================================
# Import and register routers
# ============================================================================

from app.api.routes import payments, subscriptions, credits, webhooks  # noqa: E402

app.include_router(payments.router, prefix="/api", tags=["Payments"])
app.include_router(subscriptions.router, prefix="/api", tags=["Subscriptions"])
app.include_router(credits.router, prefix="/api", tags=["Credits"])
app.include_router(webhooks.router, prefix="/api", tags=["Webhooks"])
