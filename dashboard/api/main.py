"""
Cloudinha Analytics — API Server
===================================

Analytics API for the Cloudinha chatbot dashboard. Every endpoint
recomputes its numbers from the Supabase source tables on request.

Route groups:
  /api/health                          - Health check
  /api/analytics/funnel|activity|users - Funnel, activity chart, conversations
  /api/analytics/stats|rankings|errors - KPI cards, top users, error log
  /api/analytics/*-export              - CRM exports (JSON or CSV)
  /api/analytics/insights              - AI product insights
"""

import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from scripts.lib.logger import setup_logger

load_dotenv()

logger = setup_logger("api")

VERSION = "1.0.0"


# ─── Lifespan ─────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app):
    """Application startup and shutdown."""
    logger.info("Starting Cloudinha Analytics...")

    # Supabase connection check
    try:
        from scripts.lib.supabase_client import get_client
        get_client()
        logger.info("Supabase connected")
    except Exception as e:
        logger.warning("Supabase not available: %s", e)

    logger.info("Cloudinha Analytics ready")
    yield
    logger.info("Shutting down Cloudinha Analytics...")


# ─── App Setup ────────────────────────────────────────────────

cors_origins = os.getenv(
    "CORS_ORIGINS", "http://localhost:3000,http://localhost:5173"
).split(",")

app = FastAPI(
    title="Cloudinha Analytics",
    version=VERSION,
    description="Operational analytics for the Cloudinha education-matching chatbot",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─── Include Routers ──────────────────────────────────────────

from dashboard.api.routers.analytics import router as analytics_router
from dashboard.api.routers.exports import router as exports_router
from dashboard.api.routers.insights import router as insights_router

app.include_router(analytics_router)
app.include_router(exports_router)
app.include_router(insights_router)


# ─── Health ───────────────────────────────────────────────────

@app.get("/api/health", tags=["system"])
async def health():
    """Health check with datastore status."""
    supabase_ok = False
    try:
        from scripts.lib.supabase_client import get_client
        get_client()
        supabase_ok = True
    except Exception as e:
        logger.debug("Supabase unavailable for health check: %s", e)

    return {
        "status": "healthy",
        "service": "Cloudinha Analytics",
        "version": VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "integrations": {
            "supabase": supabase_ok,
            "ai_provider": os.getenv("AI_PROVIDER", "groq"),
        },
    }
