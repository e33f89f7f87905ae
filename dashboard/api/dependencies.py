"""
Shared FastAPI dependencies.

Routers receive the repository, insight cache and completion function
through Depends() so tests can swap them with app.dependency_overrides.
"""
from __future__ import annotations

from scripts.analytics.repository import AnalyticsRepository
from scripts.lib.ai_provider import ai_complete
from scripts.lib.supabase_client import SupabaseInsightCache, SupabaseRowSource


def get_repository() -> AnalyticsRepository:
    return AnalyticsRepository(SupabaseRowSource())


def get_insight_cache() -> SupabaseInsightCache:
    return SupabaseInsightCache()


def get_completion_fn():
    return ai_complete
