"""
Cloudinha Analytics — Analytics Router
=========================================

Dashboard aggregations computed on request from the source tables.

Endpoints:
  POST /api/analytics/funnel        - Cumulative funnel (optional drill-down)
  GET  /api/analytics/activity      - Messages per weekday / hour / 15-min slot
  POST /api/analytics/users         - User list or a single conversation
  GET  /api/analytics/stats         - KPI cards with week-over-week change
  GET  /api/analytics/rankings      - Top users, cities, courses or program shares
  GET  /api/analytics/errors        - Recent agent errors
  GET  /api/analytics/opportunities - Program split, idle seats, offer counts
"""
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from dashboard.api.dependencies import get_repository
from models.analytics_models import (
    ActivityBucketResponse,
    AgentErrorEntry,
    ConversationResponse,
    CourseCount,
    FunnelItem,
    FunnelRequest,
    LocationCount,
    OpportunitiesResponse,
    PreferenceShare,
    RankingEntry,
    StatsResponse,
    UserListResponse,
    UsersRequest,
)
from scripts.analytics import conversations, reports
from scripts.analytics.reports import RankingType
from scripts.analytics.repository import AnalyticsRepository
from scripts.analytics.time_buckets import BucketMode
from scripts.lib.logger import setup_logger

logger = setup_logger("analytics_router")

router = APIRouter(prefix="/api/analytics", tags=["analytics"])

RANKING_MODELS = {
    RankingType.USERS: RankingEntry,
    RankingType.LOCATIONS: LocationCount,
    RankingType.LOCATION_PREFERENCES: LocationCount,
    RankingType.COURSES: CourseCount,
    RankingType.PREFERENCES: PreferenceShare,
}


@router.post(
    "/funnel",
    response_model=List[FunnelItem],
    response_model_exclude_none=True,
)
async def funnel(
    req: Optional[FunnelRequest] = None,
    repo: AnalyticsRepository = Depends(get_repository),
):
    """
    Funnel counts in canonical order: registered, active/inactive (7d),
    activated, onboarded, preferences, match started/completed, favorited.
    """
    include_details = req.include_details if req else False
    try:
        return await reports.funnel_report(repo, include_details=include_details)
    except Exception as e:
        logger.error("Funnel report failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to compute funnel")


@router.get("/activity", response_model=List[ActivityBucketResponse])
async def activity(
    mode: BucketMode = Query(BucketMode.WEEK, description="day | week"),
    zoom_hour: Optional[int] = Query(None, alias="zoomHour", description="0-23, day mode only"),
    repo: AnalyticsRepository = Depends(get_repository),
):
    """Message and distinct-user counts per local-time bucket (UTC-3)."""
    try:
        return await reports.activity_report(repo, mode=mode, zoom_hour=zoom_hour)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except Exception as e:
        logger.error("Activity report failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to compute activity")


@router.post("/users")
async def users(
    req: UsersRequest,
    repo: AnalyticsRepository = Depends(get_repository),
):
    """
    mode=list: users with messages in [startDate, endDate), newest activity first.
    mode=conversation: one page of userId's messages with hasMore.
    """
    try:
        if req.mode == "conversation":
            if not req.user_id:
                raise ValueError("userId is required in conversation mode")
            result = await conversations.conversation(
                repo, req.user_id, offset=req.offset, limit=req.limit or 20,
            )
            return ConversationResponse(**result)

        result = await conversations.user_list(
            repo, start=req.start_date, end=req.end_date, limit=req.limit,
        )
        return UserListResponse(**result)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except Exception as e:
        logger.error("Users request (%s) failed: %s", req.mode, e)
        raise HTTPException(status_code=500, detail="Failed to fetch users")


@router.get("/stats", response_model=StatsResponse)
async def stats(repo: AnalyticsRepository = Depends(get_repository)):
    """Users, activity, messages, favorites, errors and power users."""
    try:
        return await reports.stats_report(repo)
    except Exception as e:
        logger.error("Stats report failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to compute stats")


@router.get("/rankings")
async def rankings(
    type: RankingType = Query(RankingType.USERS),
    limit: Optional[int] = Query(None, ge=1, le=500, description="Defaults per ranking type"),
    repo: AnalyticsRepository = Depends(get_repository),
):
    """
    type=users: messages (7d) + 3 x favorites.
    type=locations | location_preferences: users per city.
    type=courses: searches per course.
    type=preferences: program preference share in percent.
    """
    try:
        rows = await reports.rankings_report(repo, ranking_type=type, limit=limit)
    except Exception as e:
        logger.error("Rankings report (%s) failed: %s", type.value, e)
        raise HTTPException(status_code=500, detail="Failed to compute rankings")
    model = RANKING_MODELS[type]
    return [model(**row) for row in rows]


@router.get("/errors", response_model=List[AgentErrorEntry])
async def errors(
    limit: int = Query(10, ge=1, le=100),
    type: Optional[str] = Query(None, description="error | warning | info"),
    status: Optional[str] = Query(None, description="resolved | unresolved"),
    repo: AnalyticsRepository = Depends(get_repository),
):
    """Latest agent errors, newest first."""
    try:
        return await reports.errors_report(repo, limit=limit, error_kind=type, status=status)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except Exception as e:
        logger.error("Errors report failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to fetch agent errors")


@router.get("/opportunities", response_model=OpportunitiesResponse)
async def opportunities(repo: AnalyticsRepository = Depends(get_repository)):
    """SISU / ProUni preference split, idle seats by modality and offer counts."""
    try:
        return await reports.opportunities_report(repo)
    except Exception as e:
        logger.error("Opportunities report failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to compute opportunities")
