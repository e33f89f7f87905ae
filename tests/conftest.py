"""Shared fixtures: an in-memory datastore and a small seeded user base."""

from datetime import datetime, timedelta, timezone

import pytest

from scripts.analytics.repository import AnalyticsRepository
from scripts.analytics.row_fetcher import FilterOp
from scripts.lib.errors import BatchTooLargeError
from scripts.lib.utils import parse_timestamp

NOW = datetime(2026, 10, 14, 15, 0, tzinfo=timezone.utc)  # Wed 12:00 local (UTC-3)


def iso(dt):
    return dt.isoformat()


def _comparable(value):
    if isinstance(value, str):
        parsed = parse_timestamp(value)
        if parsed is not None:
            return parsed
    return value


def _matches(row, f):
    value = row.get(f.column)
    if f.op == FilterOp.IS_NOT_NULL:
        return value is not None
    if f.op == FilterOp.IN:
        return value in f.value
    if f.op == FilterOp.EQ:
        return value == f.value
    if f.op == FilterOp.NEQ:
        return value != f.value
    if value is None:
        return False
    left, right = _comparable(value), _comparable(f.value)
    if f.op == FilterOp.GT:
        return left > right
    if f.op == FilterOp.GTE:
        return left >= right
    if f.op == FilterOp.LT:
        return left < right
    if f.op == FilterOp.LTE:
        return left <= right
    raise AssertionError(f"unhandled operator {f.op}")


class InMemoryRowSource:
    """
    RowSource over plain dicts.

    max_in_size: IN filters longer than this raise BatchTooLargeError, like
        an id list overflowing the request URL.
    oversized_ids: IN filters containing any of these are always rejected
        as too large.
    in_query_error: when set, every IN query raises it (an outage that has
        nothing to do with batch size).
    """

    def __init__(self, tables=None, auth_users=None, max_in_size=None,
                 oversized_ids=(), in_query_error=None):
        self.tables = {name: list(rows) for name, rows in (tables or {}).items()}
        self.auth_users = list(auth_users or [])
        self.max_in_size = max_in_size
        self.oversized_ids = set(oversized_ids)
        self.in_query_error = in_query_error
        self.page_calls = []
        self.auth_calls = []

    def _check_in_filters(self, table, filters):
        for f in filters:
            if f.op != FilterOp.IN:
                continue
            if self.in_query_error is not None:
                raise self.in_query_error
            if self.max_in_size is not None and len(f.value) > self.max_in_size:
                raise BatchTooLargeError("414 URI Too Long", source=table)
            if self.oversized_ids.intersection(f.value):
                raise BatchTooLargeError("414 URI Too Long", source=table)

    def _select(self, table, filters):
        return [
            dict(row) for row in self.tables.get(table, [])
            if all(_matches(row, f) for f in filters)
        ]

    def fetch_page(self, table, columns, filters, offset, limit, order_by=None):
        self.page_calls.append((table, offset, limit))
        self._check_in_filters(table, filters)
        rows = self._select(table, filters)
        if order_by is not None:
            rows.sort(key=lambda r: _comparable(r.get(order_by.column)), reverse=order_by.desc)
        return rows[offset:offset + limit]

    def count_rows(self, table, filters):
        return len(self._select(table, filters))

    def list_auth_users(self, page, per_page):
        self.auth_calls.append((page, per_page))
        start = (page - 1) * per_page
        return [dict(u) for u in self.auth_users[start:start + per_page]]


class FakeInsightCache:
    """InsightCache holding entries in a list; `now` stamps new entries."""

    def __init__(self, now=NOW):
        self.now = now
        self.entries = []

    def latest(self, since):
        fresh = [e for e in self.entries if parse_timestamp(e["created_at"]) >= since]
        if not fresh:
            return None
        return max(fresh, key=lambda e: parse_timestamp(e["created_at"]))

    def put(self, entry):
        self.entries.append({**entry, "created_at": iso(self.now)})


def seed_tables():
    """
    Five users:
      u1 Ana    - PB, 2 sessions in 7d, match completed, 2 favorites
      u2 Bruno  - São Paulo, 2 sessions in 7d, messages only
      u3 Carla  - prefers BA, one old message, empty workflow_data
      u4        - auth only, never interacted
      u5 Diego  - profile only, onboarding flag set, Recife - PE
    """
    auth_users = [
        {"id": "u1", "phone": "5583999990001", "created_at": iso(NOW - timedelta(days=40))},
        {"id": "u2", "phone": "5511988887777", "created_at": iso(NOW - timedelta(days=30))},
        {"id": "u3", "phone": "7133334444", "created_at": iso(NOW - timedelta(days=25))},
        {"id": "u4", "phone": "11987654321", "created_at": iso(NOW - timedelta(days=10))},
    ]
    profiles = [
        {"id": "u1", "full_name": "Ana", "city": "João Pessoa - PB",
         "age": 18, "education": "Ensino Médio", "active_workflow": "match_workflow",
         "onboarding_completed": False, "created_at": iso(NOW - timedelta(days=40))},
        {"id": "u2", "full_name": "Bruno", "city": "São Paulo",
         "onboarding_completed": False, "created_at": iso(NOW - timedelta(days=30))},
        {"id": "u3", "full_name": "Carla", "city": "Salvador",
         "onboarding_completed": False, "created_at": iso(NOW - timedelta(days=25))},
        {"id": "u5", "full_name": "Diego", "city": "Recife - PE",
         "onboarding_completed": True, "created_at": iso(NOW - timedelta(days=30))},
    ]
    messages = [
        {"id": 1, "user_id": "u1", "content": "Oi, quero saber do SISU", "sender": "user",
         "workflow": "onboarding_workflow", "created_at": iso(NOW - timedelta(days=2))},
        {"id": 2, "user_id": "u1", "content": None, "sender": None,
         "workflow": "match_workflow", "created_at": iso(NOW - timedelta(days=2) + timedelta(minutes=10))},
        {"id": 3, "user_id": "u1", "content": "Obrigada!", "sender": "user",
         "workflow": "match_workflow", "created_at": iso(NOW - timedelta(days=1))},
        {"id": 4, "user_id": "u2", "content": "Qual a nota de corte?", "sender": "user",
         "workflow": None, "created_at": iso(NOW - timedelta(days=5))},
        {"id": 5, "user_id": "u2", "content": "Resposta", "sender": "assistant",
         "workflow": None, "created_at": iso(NOW - timedelta(days=4))},
        {"id": 6, "user_id": "u3", "content": "Oi", "sender": "user",
         "workflow": None, "created_at": iso(NOW - timedelta(days=20))},
        {"id": 7, "user_id": None, "content": "orphan", "sender": "user",
         "workflow": None, "created_at": iso(NOW - timedelta(hours=3))},
    ]
    preferences = [
        {"user_id": "u1", "updated_at": iso(NOW - timedelta(days=2)),
         "workflow_data": {"matches": 3}, "course_interest": ["Medicina"],
         "state_preference": "PB", "location_preference": "João Pessoa",
         "program_preference": "sisu"},
        {"user_id": "u3", "updated_at": iso(NOW - timedelta(days=20)),
         "workflow_data": {}, "course_interest": ["Direito", "Letras"],
         "state_preference": "BA", "location_preference": None,
         "program_preference": "both"},
    ]
    favorites = [
        {"user_id": "u1", "created_at": iso(NOW - timedelta(days=3))},
        {"user_id": "u1", "created_at": iso(NOW - timedelta(days=3, hours=1))},
    ]
    agent_errors = [
        {"id": "e1", "error_type": "api_error", "error_message": "Timeout calling MEC",
         "resolved": False, "recovery_attempted": True, "created_at": iso(NOW - timedelta(hours=1))},
        {"id": "e2", "error_type": "parsing_error", "error_message": None,
         "resolved": True, "recovery_attempted": False, "created_at": iso(NOW - timedelta(hours=2))},
        {"id": "e3", "error_type": "api_error", "error_message": "Rate limited",
         "resolved": False, "recovery_attempted": False,
         "created_at": iso(datetime(2026, 10, 13, 12, 0, tzinfo=timezone.utc))},
    ]
    tables = {
        "user_profiles": profiles,
        "chat_messages": messages,
        "user_preferences": preferences,
        "user_favorites": favorites,
        "agent_errors": agent_errors,
    }
    return tables, auth_users


@pytest.fixture
def seeded_source():
    tables, auth_users = seed_tables()
    return InMemoryRowSource(tables=tables, auth_users=auth_users)


@pytest.fixture
def seeded_repo(seeded_source):
    return AnalyticsRepository(seeded_source, page_size=2)


@pytest.fixture
def insight_cache():
    return FakeInsightCache()
