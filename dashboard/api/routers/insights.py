"""
Cloudinha Analytics — Insights Router
========================================

Endpoints:
  POST /api/analytics/insights  - Cached or freshly generated AI insights
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from dashboard.api.dependencies import get_completion_fn, get_insight_cache, get_repository
from models.analytics_models import InsightsRequest, InsightsResponse
from scripts.analytics.insights import generate_insights
from scripts.analytics.repository import AnalyticsRepository
from scripts.lib.errors import AIProviderError
from scripts.lib.logger import setup_logger

logger = setup_logger("insights_router")

router = APIRouter(prefix="/api/analytics", tags=["insights"])


@router.post("/insights", response_model=InsightsResponse)
async def insights(
    req: Optional[InsightsRequest] = None,
    repo: AnalyticsRepository = Depends(get_repository),
    cache=Depends(get_insight_cache),
    complete_fn=Depends(get_completion_fn),
):
    """
    Categorised product insights (alert, bottleneck, pattern, opportunity).

    Served from cache within 24h unless forceRefresh is set; a forced
    refresh inside the cooldown still returns the cached entry.
    """
    force_refresh = req.force_refresh if req else False
    try:
        return await generate_insights(
            repo, cache, force_refresh=force_refresh, complete_fn=complete_fn,
        )
    except AIProviderError as e:
        logger.error("AI provider failed: %s", e)
        raise HTTPException(status_code=502, detail="AI provider unavailable")
    except Exception as e:
        logger.error("Insight generation failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to generate insights")
