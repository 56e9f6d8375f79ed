"""PACER — FastAPI Application Entry Point.

Paid-Ads Contract & Engagement Reconciler.
"""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pacer.database import init_db, test_connection
from pacer.scheduler.jobs import start_scheduler, stop_scheduler
from pacer.api.goal_routes import router as goal_router
from pacer.api.sync_routes import router as sync_router
from pacer.core.logging import get_logger

logger = get_logger("main")


IS_SERVERLESS = bool(
    os.environ.get("VERCEL") or os.environ.get("AWS_LAMBDA_FUNCTION_NAME")
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    logger.info("🚀 PACER starting up...")
    logger.info(f"🌍 Environment: {'SERVERLESS' if IS_SERVERLESS else 'LOCAL'}")
    if test_connection():
        init_db()
    else:
        logger.error("❌ Database NOT connected; endpoints will fail")
    if not IS_SERVERLESS:
        start_scheduler()
    yield
    if not IS_SERVERLESS:
        stop_scheduler()
    logger.info("PACER shut down")


app = FastAPI(
    title="PACER",
    description="Paid-Ads Contract & Engagement Reconciler: syncs Meta ad data and tracks contracted lead goals.",
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

app.include_router(sync_router)
app.include_router(goal_router)


@app.get("/health", tags=["System"])
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "pacer",
        "version": "1.0.0",
    }
