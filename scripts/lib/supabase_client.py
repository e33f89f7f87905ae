"""
Supabase Client Helper for Cloudinha Analytics.
Provides the connection plus the datastore and insight-cache adapters.

Usage:
    from scripts.lib.supabase_client import SupabaseRowSource, SupabaseInsightCache

    repo = AnalyticsRepository(SupabaseRowSource())
    cache = SupabaseInsightCache()
"""
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from dotenv import load_dotenv

from scripts.analytics.row_fetcher import FilterOp, OrderBy, RowFilter
from scripts.lib.errors import BatchTooLargeError, DataFetchError
from scripts.lib.logger import setup_logger

logger = setup_logger(__name__)

# Load .env from project root
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(PROJECT_ROOT / ".env")

SUPABASE_URL = os.environ.get("SUPABASE_URL", "")
SUPABASE_KEY = (
    os.environ.get("SUPABASE_SERVICE_ROLE_KEY", "")
    or os.environ.get("SUPABASE_KEY", "")
)

INSIGHTS_TABLE = "ai_insights"

# Status codes and gateway messages for a request rejected by size
SIZE_STATUS_CODES = {"413", "414"}
SIZE_MESSAGES = ("uri too long", "uri too large", "entity too large", "header too large")

_client = None


def get_client():
    """Create and return a Supabase client (singleton)."""
    global _client
    if _client is not None:
        return _client

    if not SUPABASE_URL or not SUPABASE_KEY:
        raise RuntimeError(
            "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set in .env"
        )

    from supabase import create_client
    _client = create_client(SUPABASE_URL, SUPABASE_KEY)
    logger.info("Supabase client connected to %s", SUPABASE_URL)
    return _client


def apply_filters(query, filters: Sequence[RowFilter]):
    """Translate RowFilters into PostgREST filter calls."""
    for f in filters:
        if f.op == FilterOp.EQ:
            query = query.eq(f.column, f.value)
        elif f.op == FilterOp.NEQ:
            query = query.neq(f.column, f.value)
        elif f.op == FilterOp.GT:
            query = query.gt(f.column, f.value)
        elif f.op == FilterOp.GTE:
            query = query.gte(f.column, f.value)
        elif f.op == FilterOp.LT:
            query = query.lt(f.column, f.value)
        elif f.op == FilterOp.LTE:
            query = query.lte(f.column, f.value)
        elif f.op == FilterOp.IN:
            query = query.in_(f.column, list(f.value))
        elif f.op == FilterOp.IS_NOT_NULL:
            query = query.not_.is_(f.column, "null")
        else:
            raise ValueError(f"Unsupported filter operator: {f.op}")
    return query


def is_size_failure(error: Exception) -> bool:
    """True when the request was refused because the URL or body was too big."""
    code = str(getattr(error, "code", "") or "")
    if code in SIZE_STATUS_CODES:
        return True
    response = getattr(error, "response", None)
    if str(getattr(response, "status_code", "")) in SIZE_STATUS_CODES:
        return True
    text = str(error).lower()
    return any(m in text for m in SIZE_MESSAGES)


class SupabaseRowSource:
    """RowSource backed by the supabase-py client (sync, one HTTP call per method)."""

    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = get_client()
        return self._client

    def fetch_page(
        self,
        table: str,
        columns: str,
        filters: Sequence[RowFilter],
        offset: int,
        limit: int,
        order_by: Optional[OrderBy] = None,
    ) -> List[Dict[str, Any]]:
        try:
            query = apply_filters(self.client.table(table).select(columns), filters)
            if order_by is not None:
                query = query.order(order_by.column, desc=order_by.desc)
            result = query.range(offset, offset + limit - 1).execute()
        except Exception as e:
            if any(f.op == FilterOp.IN for f in filters) and is_size_failure(e):
                logger.info("Id-list query on %s rejected as too large", table)
                raise BatchTooLargeError(
                    f"Id list too large for {table}", source=table, cause=e,
                ) from e
            logger.error("Supabase query failed on %s: %s", table, e)
            raise DataFetchError(f"Query failed on {table}", source=table, cause=e) from e
        return result.data or []

    def count_rows(self, table: str, filters: Sequence[RowFilter]) -> int:
        try:
            query = self.client.table(table).select("*", count="exact", head=True)
            result = apply_filters(query, filters).execute()
        except Exception as e:
            logger.error("Supabase count failed on %s: %s", table, e)
            raise DataFetchError(f"Count failed on {table}", source=table, cause=e) from e
        return result.count or 0

    def list_auth_users(self, page: int, per_page: int) -> List[Dict[str, Any]]:
        try:
            users = self.client.auth.admin.list_users(page=page, per_page=per_page)
        except Exception as e:
            logger.error("Auth admin listing failed (page %d): %s", page, e)
            raise DataFetchError("Auth user listing failed", source="auth.users", cause=e) from e
        return [
            {
                "id": u.id,
                "phone": getattr(u, "phone", None),
                "created_at": getattr(u, "created_at", None),
            }
            for u in users or []
        ]


class SupabaseInsightCache:
    """InsightCache stored as append-only rows in ai_insights."""

    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = get_client()
        return self._client

    def latest(self, since: datetime) -> Optional[Dict[str, Any]]:
        """Newest cached entry created at or after `since`, or None."""
        try:
            result = (
                self.client.table(INSIGHTS_TABLE)
                .select("insights, data_context, data_hash, created_at")
                .gte("created_at", since.isoformat())
                .order("created_at", desc=True)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error("Insight cache read failed: %s", e)
            raise DataFetchError("Insight cache read failed", source=INSIGHTS_TABLE, cause=e) from e
        if result.data:
            return result.data[0]
        return None

    def put(self, entry: Dict[str, Any]) -> None:
        self.client.table(INSIGHTS_TABLE).insert(entry).execute()
        logger.info("Insights cached (hash %s)", entry.get("data_hash"))
