"""
Cloudinha Analytics — CRM Exports
====================================

Contact lists for CRM / WhatsApp campaigns:

  segmented_export()   - three disjoint tabs from the Segmentation Engine
  power_users_export() - users with 2+ sessions in the trailing window
  inactive_export()    - users with no activity in the trailing window
  top_users_export()   - matched users who wrote the most in the last 30 days

All of them label users with the shared FunnelPolicy so a user carries the
same stage here as on the funnel chart.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from scripts.analytics.funnel import DEFAULT_POLICY, FunnelPolicy
from scripts.analytics.repository import (
    FAVORITE_COLUMNS,
    FAVORITES_TABLE,
    PROFILE_COLUMNS,
    AnalyticsRepository,
)
from scripts.analytics.segmentation import (
    DEFAULT_FOCUS_REGION,
    CrmRecord,
    FocusRegion,
    SegmentCandidate,
    segment_population,
)
from scripts.analytics.sessions import ENGAGEMENT_WINDOW, engagement_tier, is_power_user_sessions
from scripts.analytics.snapshot import UserFacts, build_user_facts
from scripts.lib.logger import setup_logger
from scripts.lib.settings import UTC_OFFSET_HOURS
from scripts.lib.utils import format_local_datetime, format_phone

logger = setup_logger("exports")

TOP_USERS_LIMIT = 100
TOP_USERS_WINDOW = timedelta(days=30)


def crm_record_for(user: UserFacts, policy: FunnelPolicy = DEFAULT_POLICY) -> CrmRecord:
    return CrmRecord(
        name=user.display_name,
        phone=format_phone(user.phone),
        city=user.city or "",
        course=user.course,
        stage=user.stage(policy).label,
        registered_at=format_local_datetime(user.registered_at, UTC_OFFSET_HOURS),
    )


async def _snapshot(repo: AnalyticsRepository) -> Dict[str, UserFacts]:
    auth_users, profiles, messages, preferences, favorites = await asyncio.gather(
        repo.auth_users(),
        repo.profiles(),
        repo.messages(),
        repo.preferences(),
        repo.favorites(),
    )
    logger.info(
        "Export snapshot: %d auth users, %d profiles, %d messages",
        len(auth_users), len(profiles), len(messages),
    )
    return build_user_facts(auth_users, profiles, messages, preferences, favorites)


async def segmented_export(
    repo: AnalyticsRepository,
    now: Optional[datetime] = None,
    policy: FunnelPolicy = DEFAULT_POLICY,
    region: FocusRegion = DEFAULT_FOCUS_REGION,
) -> dict:
    """
    Split every user into the three CRM tabs.

    A user is in the focus region when the city, state preference or
    location preference mentions a focus token.
    """
    now = now or datetime.now(timezone.utc)
    facts = await _snapshot(repo)

    candidates = (
        SegmentCandidate(
            entity_id=uid,
            in_focus_region=region.contains(
                user.city, user.state_preference, user.location_preference,
            ),
            tier=engagement_tier(user.recent_sessions(now)),
            record=crm_record_for(user, policy),
        )
        for uid, user in facts.items()
    )
    result = segment_population(candidates)

    export = {
        segment.value: [record.to_dict() for record in records]
        for segment, records in result.segments.items()
    }
    export["summary"] = result.summary()
    return export


async def power_users_export(
    repo: AnalyticsRepository,
    now: Optional[datetime] = None,
    policy: FunnelPolicy = DEFAULT_POLICY,
) -> dict:
    """Power users, most sessions first, with contact and preference details."""
    now = now or datetime.now(timezone.utc)
    facts = await _snapshot(repo)

    users = []
    for uid, user in facts.items():
        sessions = user.recent_sessions(now)
        if not is_power_user_sessions(sessions):
            continue
        users.append({
            "user_id": uid,
            "name": user.display_name,
            "phone": format_phone(user.phone),
            "city": user.city or "",
            "location_preference": user.location_preference or "",
            "course": user.course,
            "stage": user.stage(policy).label,
            "favorites": user.favorites_count,
            "sessions": sessions,
        })

    users.sort(key=lambda u: (-u["sessions"], u["user_id"]))
    for user in users:
        del user["user_id"]

    logger.info("Power users export: %d users", len(users))
    return {"users": users, "count": len(users)}


async def inactive_export(
    repo: AnalyticsRepository,
    now: Optional[datetime] = None,
    policy: FunnelPolicy = DEFAULT_POLICY,
) -> dict:
    """Users with no message, favorite or preference update in the window."""
    now = now or datetime.now(timezone.utc)
    facts = await _snapshot(repo)
    window_start = now - ENGAGEMENT_WINDOW

    inactive = [
        crm_record_for(user, policy).to_dict()
        for user in facts.values()
        if not user.was_active(window_start)
    ]
    total = len(facts)

    logger.info("Inactive export: %d of %d users inactive", len(inactive), total)
    return {
        "users": inactive,
        "summary": {
            "total_registered": total,
            "active_users": total - len(inactive),
            "inactive_users": len(inactive),
        },
    }


async def top_users_export(
    repo: AnalyticsRepository,
    now: Optional[datetime] = None,
    policy: FunnelPolicy = DEFAULT_POLICY,
    limit: int = TOP_USERS_LIMIT,
) -> dict:
    """
    Users who already received their match results, ranked by the messages
    they sent in the last 30 days. Users with no message in that window
    are left out.
    """
    now = now or datetime.now(timezone.utc)
    preferences, recent = await asyncio.gather(
        repo.preferences(),
        repo.messages(since=now - TOP_USERS_WINDOW, sender="user"),
    )

    candidates = build_user_facts(
        profiles=[{"id": pref.get("user_id")} for pref in preferences],
        messages=recent,
        preferences=preferences,
    )
    ranked = sorted(
        (u for u in candidates.values() if u.match_completed and u.message_count > 0),
        key=lambda u: (-u.message_count, u.entity_id),
    )[:limit]
    if not ranked:
        logger.info("Top users export: no matched users with recent messages")
        return {"users": [], "count": 0}

    ids = [u.entity_id for u in ranked]
    wanted = set(ids)
    auth_users, profiles, favorites = await asyncio.gather(
        repo.auth_users(),
        repo.profiles_by_ids(ids, columns=PROFILE_COLUMNS),
        repo.rows_by_ids(FAVORITES_TABLE, FAVORITE_COLUMNS, "user_id", ids),
    )
    dropped = len(profiles.failed_ids) + len(favorites.failed_ids)
    if dropped:
        logger.warning("Top users export: %d lookups dropped after batch splitting", dropped)

    facts = build_user_facts(
        auth_users=[u for u in auth_users if u.get("id") in wanted],
        profiles=[{"id": uid} for uid in ids] + list(profiles.rows),
        messages=[m for m in recent if m.get("user_id") in wanted],
        preferences=[p for p in preferences if p.get("user_id") in wanted],
        favorites=favorites.rows,
    )

    users = []
    for uid in ids:
        user = facts[uid]
        users.append({
            "name": user.display_name,
            "phone": format_phone(user.phone),
            "city": user.city or "",
            "location_preference": user.location_preference or "",
            "messages": user.message_count,
            "stage": user.stage(policy).label,
            "course": user.course,
            "favorites": user.favorites_count,
        })

    logger.info("Top users export: %d users", len(users))
    return {"users": users, "count": len(users)}
