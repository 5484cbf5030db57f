"""
FastAPI application factory and entry point.

This module creates and configures the FastAPI application:
  1. Lifespan manager — logging setup, DB table creation, cleanup
  2. CORS middleware — allows frontend origins to make cross-origin requests
  3. Exception handlers — maps domain errors to HTTP responses
  4. Router registration — mounts the auth and bank-account endpoints

Running locally:
    uvicorn app.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app import models  # noqa: F401  (registers every table on Base.metadata)
from app.config import settings
from app.database import engine, Base
from app.exceptions import register_exception_handlers
from app.logging_config import setup_logging
from app.routers import auth, bank_accounts


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup:
      Configures logging and creates all database tables if they don't
      exist. In production, schema changes belong in migrations.

    Shutdown:
      Disposes of the database engine, closing all connections cleanly.
    """
    # --- Startup ---
    setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("%s %s started", settings.APP_NAME, settings.APP_VERSION)
    yield
    # --- Shutdown ---
    await engine.dispose()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Payout bank account registration with one-time-code verification",
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------

register_exception_handlers(app)

# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(auth.router, prefix="/auth", tags=["Auth"])
app.include_router(bank_accounts.router, prefix="/bank-accounts", tags=["Bank Accounts"])


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@app.get("/health", tags=["Health"])
async def health_check():
    """Liveness probe for load balancers and orchestrators."""
    return {"status": "ok", "version": settings.APP_VERSION}
