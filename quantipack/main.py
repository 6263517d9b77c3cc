"""
QuantiPackAI - FastAPI Application

Main entry point for the billing backend.
Provides the Stripe webhook, user sync, subscription and token endpoints.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from quantipack.config.settings import settings
from quantipack.infrastructure.exceptions import (
    QuantiPackError,
    ValidationError,
    NotFoundError,
    BillingNotConfiguredError,
    BillingProviderError,
)

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
    logger.info(f"QuantiPackAI Backend starting in {settings.environment} mode...")

    if not settings.stripe_configured:
        logger.warning("Stripe is not fully configured; checkout and portal will answer 503")

    if settings.database_url:
        try:
            from quantipack.infrastructure.db.database import init_db
            await init_db()
            logger.info("Database connection pool initialized")
        except Exception as e:
            logger.warning(f"Database initialization skipped: {e}")

    yield

    # Shutdown
    if settings.database_url:
        try:
            from quantipack.infrastructure.db.database import close_db
            await close_db()
            logger.info("Database connection pool closed")
        except Exception as e:
            logger.warning(f"Database shutdown error: {e}")

    logger.info("QuantiPackAI Backend shutting down...")


app = FastAPI(
    title="QuantiPackAI",
    description="Subscription and token entitlement service",
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

@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    """Handle validation errors."""
    return JSONResponse(
        status_code=400,
        content=exc.to_dict(),
    )


@app.exception_handler(NotFoundError)
async def not_found_error_handler(request: Request, exc: NotFoundError):
    """Handle not found errors."""
    return JSONResponse(
        status_code=404,
        content=exc.to_dict(),
    )


@app.exception_handler(BillingNotConfiguredError)
async def billing_not_configured_handler(request: Request, exc: BillingNotConfiguredError):
    """Billing is switched off in this deployment."""
    return JSONResponse(
        status_code=503,
        content=exc.to_dict(),
    )


@app.exception_handler(BillingProviderError)
async def billing_provider_error_handler(request: Request, exc: BillingProviderError):
    """Stripe rejected or failed the request."""
    logger.error(f"Billing provider error: {exc.message}")
    return JSONResponse(
        status_code=502,
        content=exc.to_dict(),
    )


@app.exception_handler(QuantiPackError)
async def general_error_handler(request: Request, exc: QuantiPackError):
    """Handle all other application errors."""
    logger.error(f"Unhandled application error: {exc.message}")
    return JSONResponse(
        status_code=500,
        content=exc.to_dict(),
    )


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "quantipackai",
        "billing_configured": settings.stripe_configured,
    }


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "QuantiPackAI API",
        "version": "1.0.0",
        "docs": "/docs",
    }


# ============================================================================
# Import and register routers
# ============================================================================

from quantipack.api.routes import subscriptions, tokens, users, webhooks

app.include_router(users.router, prefix="/api", tags=["Users"])
app.include_router(subscriptions.router, prefix="/api", tags=["Subscriptions"])
app.include_router(tokens.router, prefix="/api", tags=["Tokens"])
app.include_router(webhooks.router, prefix="/api", tags=["Webhooks"])
