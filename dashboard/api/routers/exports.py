"""
Cloudinha Analytics — Export Router
======================================

CRM contact lists as JSON or CSV downloads.

Endpoints:
  GET /api/analytics/segmented-export    - Three disjoint CRM tabs
  GET /api/analytics/power-users-export  - Users with 2+ sessions in 7d
  GET /api/analytics/inactive-export     - Users with no activity in 7d
  GET /api/analytics/top-users-export    - Top 100 matched users by messages (30d)
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response

from dashboard.api.dependencies import get_repository
from models.analytics_models import (
    InactiveExportResponse,
    PowerUsersExportResponse,
    SegmentedExportResponse,
    TopUsersExportResponse,
)
from scripts.analytics import exports
from scripts.analytics.repository import AnalyticsRepository
from scripts.analytics.segmentation import SEGMENT_ORDER
from scripts.lib.csv_export import (
    CRM_COLUMNS,
    POWER_USER_COLUMNS,
    SEGMENTED_COLUMNS,
    TOP_USER_COLUMNS,
    render_csv,
    segmented_rows,
)
from scripts.lib.logger import setup_logger

logger = setup_logger("exports_router")

router = APIRouter(prefix="/api/analytics", tags=["exports"])

ExportFormat = Literal["json", "csv"]


def _csv_response(body: str, name: str) -> Response:
    filename = f"{name}_{datetime.now(timezone.utc).date().isoformat()}.csv"
    return Response(
        content=body,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/segmented-export", response_model=SegmentedExportResponse)
async def segmented_export(
    format: ExportFormat = Query("json"),
    repo: AnalyticsRepository = Depends(get_repository),
):
    """engagedFocus / engagedAll / disengagedFocus tabs plus summary counts."""
    try:
        result = await exports.segmented_export(repo)
    except Exception as e:
        logger.error("Segmented export failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to build segmented export")

    if format == "csv":
        rows = segmented_rows(result, [s.value for s in SEGMENT_ORDER])
        return _csv_response(render_csv(rows, SEGMENTED_COLUMNS), "segmentos_crm")
    return result


@router.get("/power-users-export", response_model=PowerUsersExportResponse)
async def power_users_export(
    format: ExportFormat = Query("json"),
    repo: AnalyticsRepository = Depends(get_repository),
):
    """Power users, most sessions first."""
    try:
        result = await exports.power_users_export(repo)
    except Exception as e:
        logger.error("Power users export failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to build power users export")

    if format == "csv":
        return _csv_response(render_csv(result["users"], POWER_USER_COLUMNS), "power_users")
    return result


@router.get("/inactive-export", response_model=InactiveExportResponse)
async def inactive_export(
    format: ExportFormat = Query("json"),
    repo: AnalyticsRepository = Depends(get_repository),
):
    """Users with no message, favorite or preference update in 7d."""
    try:
        result = await exports.inactive_export(repo)
    except Exception as e:
        logger.error("Inactive export failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to build inactive export")

    if format == "csv":
        return _csv_response(render_csv(result["users"], CRM_COLUMNS), "usuarios_inativos")
    return result


@router.get("/top-users-export", response_model=TopUsersExportResponse)
async def top_users_export(
    format: ExportFormat = Query("json"),
    repo: AnalyticsRepository = Depends(get_repository),
):
    """Users who completed a match, most user messages in the last 30 days first."""
    try:
        result = await exports.top_users_export(repo)
    except Exception as e:
        logger.error("Top users export failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to build top users export")

    if format == "csv":
        return _csv_response(
            render_csv(result["users"], TOP_USER_COLUMNS), "top_users_match_realizado",
        )
    return result
