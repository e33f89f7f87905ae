"""
Cloudinha Analytics — Repository
===================================

Async read access to the source tables, built on the Row Fetcher.

The supabase-py client is synchronous, so each full fetch runs in a worker
thread; reports gather several fetches at once and only start computing
after all of them have returned.

Usage:
    repo = AnalyticsRepository(SupabaseRowSource())
    messages, favorites = await asyncio.gather(
        repo.messages(since=week_ago), repo.favorites(),
    )
"""
from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from scripts.analytics.row_fetcher import (
    BatchResult,
    FilterOp,
    OrderBy,
    RowFilter,
    RowSource,
    fetch_all_rows,
    fetch_rows_by_ids,
    list_all_auth_users,
)
from scripts.lib.settings import PAGE_SIZE
from scripts.lib.utils import parse_timestamp

MESSAGES_TABLE = "chat_messages"
PROFILES_TABLE = "user_profiles"
PREFERENCES_TABLE = "user_preferences"
FAVORITES_TABLE = "user_favorites"
ERRORS_TABLE = "agent_errors"
OPPORTUNITIES_TABLE = "opportunities"
VACANCIES_TABLE = "opportunitiessisuvacancies"

MESSAGE_COLUMNS = "user_id, workflow, created_at"
MESSAGE_DETAIL_COLUMNS = "id, user_id, content, sender, workflow, created_at"
PROFILE_COLUMNS = "id, full_name, city, onboarding_completed, created_at"
PROFILE_DETAIL_COLUMNS = "id, full_name, city, age, education, active_workflow, created_at"
PREFERENCE_COLUMNS = (
    "user_id, updated_at, workflow_data, course_interest, "
    "state_preference, location_preference"
)
FAVORITE_COLUMNS = "user_id, created_at"
VACANCY_COLUMNS = "vagas_ociosas_2025, ds_mod_concorrencia"


def _range_filters(column: str, since: Optional[datetime], until: Optional[datetime]) -> List[RowFilter]:
    filters = []
    if since is not None:
        filters.append(RowFilter(column, FilterOp.GTE, parse_timestamp(since).isoformat()))
    if until is not None:
        filters.append(RowFilter(column, FilterOp.LT, parse_timestamp(until).isoformat()))
    return filters


class AnalyticsRepository:
    """Read-only view of the analytics source tables."""

    def __init__(self, source: RowSource, page_size: int = PAGE_SIZE):
        self.source = source
        self.page_size = page_size

    # ─── Generic ────────────────────────────────────────────

    async def rows(
        self,
        table: str,
        columns: str,
        filters: Sequence[RowFilter] = (),
        order_by: Optional[OrderBy] = None,
    ) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(
            fetch_all_rows, self.source, table, columns, tuple(filters),
            self.page_size, order_by,
        )

    async def rows_by_ids(
        self,
        table: str,
        columns: str,
        id_column: str,
        ids: Sequence[Any],
        filters: Sequence[RowFilter] = (),
    ) -> BatchResult:
        return await asyncio.to_thread(
            fetch_rows_by_ids, self.source, table, columns, id_column,
            list(ids), tuple(filters), self.page_size,
        )

    async def page(
        self,
        table: str,
        columns: str,
        filters: Sequence[RowFilter] = (),
        offset: int = 0,
        limit: int = 50,
        order_by: Optional[OrderBy] = None,
    ) -> List[Dict[str, Any]]:
        """A single bounded page (limit must stay under the row cap)."""
        rows = await asyncio.to_thread(
            self.source.fetch_page, table, columns, tuple(filters), offset, limit, order_by,
        )
        return rows or []

    async def count(self, table: str, filters: Sequence[RowFilter] = ()) -> int:
        return await asyncio.to_thread(self.source.count_rows, table, tuple(filters))

    # ─── Source Tables ──────────────────────────────────────

    async def auth_users(self) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(list_all_auth_users, self.source, self.page_size)

    async def profiles(self, columns: str = PROFILE_COLUMNS) -> List[Dict[str, Any]]:
        return await self.rows(PROFILES_TABLE, columns)

    async def profiles_by_ids(
        self, ids: Sequence[str], columns: str = PROFILE_DETAIL_COLUMNS,
    ) -> BatchResult:
        return await self.rows_by_ids(PROFILES_TABLE, columns, "id", ids)

    async def messages(
        self,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        columns: str = MESSAGE_COLUMNS,
        sender: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        filters = [RowFilter("user_id", FilterOp.IS_NOT_NULL)]
        filters += _range_filters("created_at", since, until)
        if sender is not None:
            filters.append(RowFilter("sender", FilterOp.EQ, sender))
        return await self.rows(MESSAGES_TABLE, columns, filters, OrderBy("created_at"))

    async def messages_for_users(
        self, user_ids: Sequence[str], columns: str = MESSAGE_COLUMNS,
    ) -> BatchResult:
        return await self.rows_by_ids(MESSAGES_TABLE, columns, "user_id", user_ids)

    async def conversation_page(self, user_id: str, offset: int, limit: int) -> List[Dict[str, Any]]:
        return await self.page(
            MESSAGES_TABLE,
            MESSAGE_DETAIL_COLUMNS,
            [RowFilter("user_id", FilterOp.EQ, user_id)],
            offset=offset,
            limit=limit,
            order_by=OrderBy("created_at"),
        )

    async def preferences(
        self,
        updated_since: Optional[datetime] = None,
        updated_until: Optional[datetime] = None,
        columns: str = PREFERENCE_COLUMNS,
    ) -> List[Dict[str, Any]]:
        return await self.rows(
            PREFERENCES_TABLE, columns, _range_filters("updated_at", updated_since, updated_until),
        )

    async def favorites(
        self,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        return await self.rows(
            FAVORITES_TABLE, FAVORITE_COLUMNS, _range_filters("created_at", since, until),
        )

    async def agent_errors(
        self,
        limit: int,
        error_types: Optional[Sequence[str]] = None,
        resolved: Optional[bool] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        filters = _range_filters("created_at", since, until)
        if error_types:
            filters.append(RowFilter("error_type", FilterOp.IN, list(error_types)))
        if resolved is not None:
            filters.append(RowFilter("resolved", FilterOp.EQ, resolved))
        return await self.page(
            ERRORS_TABLE, "*", filters, limit=limit, order_by=OrderBy("created_at", desc=True),
        )

    async def count_errors(self, since: datetime, until: datetime, resolved: bool = False) -> int:
        filters = _range_filters("created_at", since, until)
        filters.append(RowFilter("resolved", FilterOp.EQ, resolved))
        return await self.count(ERRORS_TABLE, filters)

    # ─── Rankings / Opportunities ──────────────────────────

    async def column_values(self, table: str, column: str) -> List[Any]:
        """Every non-null value of one column."""
        rows = await self.rows(table, column, [RowFilter(column, FilterOp.IS_NOT_NULL)])
        return [row[column] for row in rows if row.get(column) is not None]

    async def idle_vacancies(self) -> List[Dict[str, Any]]:
        """Course offers with unfilled seats left over from the last intake."""
        return await self.rows(
            VACANCIES_TABLE,
            VACANCY_COLUMNS,
            [
                RowFilter("vagas_ociosas_2025", FilterOp.IS_NOT_NULL),
                RowFilter("vagas_ociosas_2025", FilterOp.GT, 0),
            ],
        )

    async def count_opportunities(self, opportunity_type: str) -> int:
        return await self.count(
            OPPORTUNITIES_TABLE, [RowFilter("opportunity_type", FilterOp.EQ, opportunity_type)],
        )
