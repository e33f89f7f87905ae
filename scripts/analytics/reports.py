"""
Cloudinha Analytics — Dashboard Reports
==========================================

Request-level aggregations for the dashboard cards and charts. Each report
fetches its source tables concurrently, joins them into UserFacts and runs
the pure components over the snapshot.

Functions:
  funnel_report()        - Cumulative funnel counts with optional drill-down
  activity_report()      - Messages and distinct users per local-time bucket
  stats_report()         - KPI cards with week-over-week change
  rankings_report()      - Top users, cities, courses or program preferences
  errors_report()        - Recent agent errors for the error log panel
  opportunities_report() - Program preference split, idle seats and offer counts
"""
from __future__ import annotations

import asyncio
from collections import Counter
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, Iterable, List, Optional

from scripts.analytics.funnel import (
    FUNNEL_STEP_ORDER,
    STEP_DESCRIPTIONS,
    STEP_LABELS,
    STEP_SIGNALS,
    FunnelStep,
)
from scripts.analytics.repository import PREFERENCES_TABLE, PROFILES_TABLE, AnalyticsRepository
from scripts.analytics.sessions import (
    ENGAGEMENT_WINDOW,
    count_sessions,
    is_power_user,
    is_power_user_sessions,
)
from scripts.analytics.snapshot import UserFacts, build_user_facts, in_period
from scripts.analytics.time_buckets import BucketMode, bucket_events, covered_range
from scripts.lib.logger import setup_logger
from scripts.lib.settings import UTC_OFFSET_HOURS
from scripts.lib.utils import (
    calc_change,
    format_local_datetime,
    format_phone,
    local_day_start,
    normalize_city,
    parse_timestamp,
    percent_of,
    relative_time_label,
)

logger = setup_logger("reports")

POWER_USERS_LIST_LIMIT = 50
MESSAGE_WEIGHT = 1
FAVORITE_WEIGHT = 3

ERROR_TYPE_GROUPS = {
    "error": ("matching_error", "api_error", "timeout_error"),
    "warning": ("parsing_error", "validation_error"),
    "info": ("moderation_error", "info"),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _user_detail(facts: UserFacts) -> dict:
    return {
        "id": facts.entity_id,
        "name": facts.display_name,
        "phone": format_phone(facts.phone),
        "city": facts.city or "",
        "registered_at": format_local_datetime(facts.registered_at, UTC_OFFSET_HOURS),
        "course_interest": facts.course,
    }


# ─── Funnel ─────────────────────────────────────────────────

async def funnel_report(
    repo: AnalyticsRepository,
    include_details: bool = False,
    now: Optional[datetime] = None,
) -> List[dict]:
    """
    Cumulative funnel: each step counts every user holding that signal.

    Steps come back in FUNNEL_STEP_ORDER. Active/inactive use the trailing
    engagement window (any message, favorite or preference update).
    """
    now = now or _utcnow()
    auth_users, profiles, messages, preferences, favorites = await asyncio.gather(
        repo.auth_users(),
        repo.profiles(),
        repo.messages(),
        repo.preferences(),
        repo.favorites(),
    )
    logger.info(
        "Funnel snapshot: %d auth users, %d profiles, %d messages, %d preferences, %d favorites",
        len(auth_users), len(profiles), len(messages), len(preferences), len(favorites),
    )

    facts = build_user_facts(auth_users, profiles, messages, preferences, favorites)
    window_start = now - ENGAGEMENT_WINDOW

    step_ids: Dict[FunnelStep, List[str]] = {step: [] for step in FUNNEL_STEP_ORDER}
    for uid, user in facts.items():
        step_ids[FunnelStep.REGISTERED].append(uid)
        if user.was_active(window_start):
            step_ids[FunnelStep.ACTIVE].append(uid)
        else:
            step_ids[FunnelStep.INACTIVE].append(uid)

        signals = user.signals()
        for step, signal in STEP_SIGNALS.items():
            if signals.is_set(signal):
                step_ids[step].append(uid)

    funnel = []
    for step in FUNNEL_STEP_ORDER:
        ids = step_ids[step]
        item = {
            "step": step.value,
            "stage_label": STEP_LABELS[step],
            "count": len(ids),
            "description": STEP_DESCRIPTIONS[step],
        }
        if include_details:
            item["entity_ids"] = ids
            item["users"] = [_user_detail(facts[uid]) for uid in ids]
        funnel.append(item)

    logger.info("Funnel: %s", ", ".join(f"{f['step']}={f['count']}" for f in funnel))
    return funnel


# ─── Activity ───────────────────────────────────────────────

async def activity_report(
    repo: AnalyticsRepository,
    mode: BucketMode = BucketMode.WEEK,
    zoom_hour: Optional[int] = None,
    now: Optional[datetime] = None,
) -> List[dict]:
    """Messages and distinct users per bucket (7 weekdays, 24 hours or 4 quarter-hours)."""
    now = now or _utcnow()
    start, end = covered_range(mode, now, UTC_OFFSET_HOURS, zoom_hour)

    messages = await repo.messages(
        since=start.astimezone(timezone.utc), until=end.astimezone(timezone.utc),
    )
    events = [(parse_timestamp(m.get("created_at")), m.get("user_id")) for m in messages]
    buckets = bucket_events(events, mode, now, UTC_OFFSET_HOURS, zoom_hour)

    logger.info(
        "Activity (%s%s): %d messages in %d buckets",
        BucketMode(mode).value,
        f" zoom {zoom_hour:02d}h" if zoom_hour is not None else "",
        sum(b.event_count for b in buckets), len(buckets),
    )
    return [b.to_dict() for b in buckets]


# ─── Stats ──────────────────────────────────────────────────

def _period_activity(
    facts: Dict[str, UserFacts], start: datetime, end: Optional[datetime] = None,
) -> dict:
    """Message senders and catalog-only users (favorites/preferences, no messages)."""
    senders = set()
    catalog = set()
    for uid, user in facts.items():
        if user.sent_message_between(start, end):
            senders.add(uid)
        elif user.browsed_catalog_between(start, end):
            catalog.add(uid)
    return {"senders": senders, "catalog": catalog}


async def stats_report(repo: AnalyticsRepository, now: Optional[datetime] = None) -> dict:
    """KPI cards: users, activity, messages, favorites, errors and power users."""
    now = now or _utcnow()
    week_ago = now - ENGAGEMENT_WINDOW
    two_weeks_ago = now - 2 * ENGAGEMENT_WINDOW
    today = local_day_start(now, UTC_OFFSET_HOURS)
    yesterday = today - timedelta(days=1)

    (
        auth_users, profiles, messages, preferences, favorites,
        errors_today, errors_yesterday,
    ) = await asyncio.gather(
        repo.auth_users(),
        repo.profiles(),
        repo.messages(),
        repo.preferences(),
        repo.favorites(),
        repo.count_errors(today, today + timedelta(days=1)),
        repo.count_errors(yesterday, today),
    )
    facts = build_user_facts(auth_users, profiles, messages, preferences, favorites)

    current = _period_activity(facts, week_ago)
    previous = _period_activity(facts, two_weeks_ago, week_ago)
    active = len(current["senders"]) + len(current["catalog"])
    active_prev = len(previous["senders"]) + len(previous["catalog"])

    def in_range(times, start, end=None):
        return sum(1 for ts in times if in_period(ts, start, end))

    all_message_times = [ts for u in facts.values() for ts in u.message_times]
    all_favorite_times = [ts for u in facts.values() for ts in u.favorite_times]
    messages_week = in_range(all_message_times, week_ago)
    messages_prev = in_range(all_message_times, two_weeks_ago, week_ago)
    favorites_week = in_range(all_favorite_times, week_ago)
    favorites_prev = in_range(all_favorite_times, two_weeks_ago, week_ago)

    power_users = []
    power_users_prev = 0
    for uid, user in facts.items():
        sessions = user.recent_sessions(now)
        if is_power_user_sessions(sessions):
            power_users.append({
                "user_id": uid,
                "name": user.display_name,
                "phone": format_phone(user.phone),
                "sessions": sessions,
            })
        if is_power_user(user.message_times, week_ago):
            power_users_prev += 1
    power_users.sort(key=lambda p: (-p["sessions"], p["user_id"]))

    stats = {
        "total_registered": len(facts),
        "active_users": active,
        "active_users_with_messages": len(current["senders"]),
        "catalog_users": len(current["catalog"]),
        "active_users_change": calc_change(active, active_prev),
        "catalog_users_change": calc_change(len(current["catalog"]), len(previous["catalog"])),
        "total_messages": sum(u.message_count for u in facts.values()),
        "messages_change": calc_change(messages_week, messages_prev),
        "total_favorites": sum(u.favorites_count for u in facts.values()),
        "favorites_change": calc_change(favorites_week, favorites_prev),
        "errors_today": errors_today,
        "errors_change": calc_change(errors_today, errors_yesterday),
        "power_users": len(power_users),
        "power_users_change": calc_change(len(power_users), power_users_prev),
        "power_users_list": power_users[:POWER_USERS_LIST_LIMIT],
    }
    logger.info(
        "Stats: registered=%d active=%d (catalog %d) power=%d",
        stats["total_registered"], active, stats["catalog_users"], stats["power_users"],
    )
    return stats


# ─── Rankings ───────────────────────────────────────────────

class RankingType(str, Enum):
    USERS = "users"
    LOCATIONS = "locations"
    COURSES = "courses"
    PREFERENCES = "preferences"
    LOCATION_PREFERENCES = "location_preferences"


RANKING_LIMITS = {
    RankingType.USERS: 100,
    RankingType.LOCATIONS: 10,
    RankingType.COURSES: 6,
    RankingType.PREFERENCES: 5,
    RankingType.LOCATION_PREFERENCES: 8,
}

PROGRAM_LABELS = {"sisu": "SISU", "prouni": "ProUni", "both": "Ambos"}


def program_label(value: str) -> str:
    return PROGRAM_LABELS.get(value, value)


def _top_counts(names: Iterable[str], limit: int, key: str = "count") -> List[dict]:
    """Most frequent non-empty names; ties broken alphabetically."""
    counts = Counter(name for name in names if name)
    ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [{"name": name, key: count} for name, count in ordered[:limit]]


async def _user_ranking(repo: AnalyticsRepository, limit: int, now: datetime) -> List[dict]:
    profiles, messages, favorites = await asyncio.gather(
        repo.profiles(),
        repo.messages(since=now - ENGAGEMENT_WINDOW),
        repo.favorites(),
    )
    facts = build_user_facts(profiles=profiles, messages=messages, favorites=favorites)

    ranked = []
    for uid, user in facts.items():
        ranked.append({
            "id": uid,
            "name": user.display_name,
            "messages": user.message_count,
            "favorites": user.favorites_count,
            "score": user.message_count * MESSAGE_WEIGHT + user.favorites_count * FAVORITE_WEIGHT,
            "sessions": count_sessions(user.message_times),
        })
    ranked.sort(key=lambda r: (-r["score"], r["id"]))
    return ranked[:limit]


async def rankings_report(
    repo: AnalyticsRepository,
    ranking_type: RankingType = RankingType.USERS,
    limit: Optional[int] = None,
    now: Optional[datetime] = None,
) -> List[dict]:
    """
    Ranked lists for the dashboard charts.

    users                - score = messages in window x 1 + favorites x 3,
                           sessions over the same messages
    locations            - where users live (profile city), {name, count}
    courses              - courses of interest, {name, searches}
    preferences          - program preference share in percent, {name, value}
    location_preferences - where users want to study, {name, count}

    Cities are merged across spellings ("São Paulo - SP" == "são paulo").
    """
    ranking_type = RankingType(ranking_type)
    limit = limit or RANKING_LIMITS[ranking_type]
    now = now or _utcnow()

    if ranking_type == RankingType.USERS:
        ranking = await _user_ranking(repo, limit, now)

    elif ranking_type == RankingType.LOCATIONS:
        cities = await repo.column_values(PROFILES_TABLE, "city")
        ranking = _top_counts((normalize_city(c) for c in cities), limit)

    elif ranking_type == RankingType.LOCATION_PREFERENCES:
        places = await repo.column_values(PREFERENCES_TABLE, "location_preference")
        ranking = _top_counts((normalize_city(p) for p in places), limit)

    elif ranking_type == RankingType.COURSES:
        interests = await repo.column_values(PREFERENCES_TABLE, "course_interest")
        courses = (
            course.strip()
            for courses in interests if isinstance(courses, list)
            for course in courses if isinstance(course, str)
        )
        ranking = _top_counts(courses, limit, key="searches")

    else:
        programs = await repo.column_values(PREFERENCES_TABLE, "program_preference")
        shares = _top_counts((program_label(p) for p in programs), len(programs))
        ranking = [
            {"name": share["name"], "value": percent_of(share["count"], len(programs))}
            for share in shares[:limit]
        ]

    logger.info("Rankings (%s): %d entries", ranking_type.value, len(ranking))
    return ranking


# ─── Agent Errors ───────────────────────────────────────────

def _error_kind(error_type: Optional[str]) -> str:
    for kind, types in ERROR_TYPE_GROUPS.items():
        if error_type in types:
            return kind
    return "error"


async def errors_report(
    repo: AnalyticsRepository,
    limit: int = 10,
    error_kind: Optional[str] = None,
    status: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[dict]:
    """
    Latest agent errors, newest first.

    Args:
        error_kind: "error" | "warning" | "info" (groups of error_type values).
        status: "resolved" | "unresolved".
    """
    if error_kind is not None and error_kind not in ERROR_TYPE_GROUPS:
        raise ValueError(f"Unknown error type filter: {error_kind}")
    if status not in (None, "resolved", "unresolved"):
        raise ValueError(f"Unknown status filter: {status}")

    now = now or _utcnow()
    resolved = None if status is None else status == "resolved"
    rows = await repo.agent_errors(
        limit=limit,
        error_types=ERROR_TYPE_GROUPS.get(error_kind) if error_kind else None,
        resolved=resolved,
    )

    return [
        {
            "id": row.get("id"),
            "type": _error_kind(row.get("error_type")),
            "message": row.get("error_message") or row.get("error_type") or "",
            "time": relative_time_label(row.get("created_at"), now),
            "error_type": row.get("error_type"),
            "resolved": bool(row.get("resolved")),
            "recovery_attempted": bool(row.get("recovery_attempted")),
            "stack_trace": row.get("stack_trace"),
            "metadata": row.get("metadata"),
            "session_id": row.get("session_id"),
            "user_id": row.get("user_id"),
            "created_at": row.get("created_at"),
        }
        for row in rows
    ]


# ─── Opportunities ──────────────────────────────────────────

MODALITY_LIMIT = 6
UNSPECIFIED_MODALITY = "Não especificado"


async def opportunities_report(repo: AnalyticsRepository) -> dict:
    """
    Opportunity-type panel.

    program_preferences - SISU / ProUni / Ambos split of user preferences
    idle_vacancies      - unfilled seats in total and by admission modality
    total_opportunities - number of SISU and ProUni offers in the catalog
    """
    programs, vacancies, sisu, prouni = await asyncio.gather(
        repo.column_values(PREFERENCES_TABLE, "program_preference"),
        repo.idle_vacancies(),
        repo.count_opportunities("sisu"),
        repo.count_opportunities("prouni"),
    )

    total_prefs = len(programs)
    program_preferences = [
        {
            "name": share["name"],
            "count": share["count"],
            "percentage": percent_of(share["count"], total_prefs),
        }
        for share in _top_counts((program_label(p) for p in programs), total_prefs)
    ]

    by_modality: Counter = Counter()
    for row in vacancies:
        seats = int(row.get("vagas_ociosas_2025") or 0)
        by_modality[row.get("ds_mod_concorrencia") or UNSPECIFIED_MODALITY] += seats
    modalities = sorted(by_modality.items(), key=lambda item: (-item[1], item[0]))

    result = {
        "program_preferences": program_preferences,
        "idle_vacancies": {
            "total": sum(by_modality.values()),
            "by_modality": [
                {"name": name, "count": count} for name, count in modalities[:MODALITY_LIMIT]
            ],
        },
        "total_opportunities": {"sisu": sisu, "prouni": prouni},
    }
    logger.info(
        "Opportunities: %d preferences, %d idle seats, %d SISU / %d ProUni offers",
        total_prefs, result["idle_vacancies"]["total"], sisu, prouni,
    )
    return result
