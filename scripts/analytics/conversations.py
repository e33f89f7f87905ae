"""
Cloudinha Analytics — Conversations
======================================

Two views over chat_messages for the conversation browser:

  user_list()     - one summary row per user active in a date range
  conversation()  - paged message history of a single user

The list view looks up profiles, preferences, favorites and full message
history only for the users found in range, through id-list queries that
split themselves when the id list gets too long.
"""
from __future__ import annotations

import asyncio
from collections import Counter
from datetime import datetime
from typing import List, Optional

from scripts.analytics.funnel import DEFAULT_POLICY, FunnelPolicy
from scripts.analytics.repository import (
    FAVORITE_COLUMNS,
    FAVORITES_TABLE,
    PREFERENCE_COLUMNS,
    PREFERENCES_TABLE,
    PROFILE_COLUMNS,
    AnalyticsRepository,
)
from scripts.analytics.sessions import count_sessions
from scripts.analytics.snapshot import ANONYMOUS_NAME, build_user_facts
from scripts.lib.logger import setup_logger
from scripts.lib.utils import parse_timestamp

logger = setup_logger("conversations")

MAX_CONVERSATION_PAGE = 100


def _dominant_workflow(workflows: List[str]) -> Optional[str]:
    """Most frequent workflow; ties go to the one seen first."""
    counts = Counter(w for w in workflows if w)
    if not counts:
        return None
    return counts.most_common(1)[0][0]


async def user_list(
    repo: AnalyticsRepository,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: Optional[int] = None,
    policy: FunnelPolicy = DEFAULT_POLICY,
) -> dict:
    """
    Summarise every user with at least one message in [start, end).

    Counts, sessions and dominant workflow cover the range only; the funnel
    stage uses the user's whole history and is reported by its label, as
    in the CRM exports.
    """
    # Naive bounds are taken as UTC
    start, end = parse_timestamp(start), parse_timestamp(end)
    if start is not None and end is not None and start >= end:
        raise ValueError("start must be before end")

    in_range = await repo.messages(since=start, until=end)

    by_user = {}
    for msg in in_range:
        ts = parse_timestamp(msg.get("created_at"))
        if ts is None:
            continue
        entry = by_user.setdefault(msg["user_id"], {"times": [], "workflows": []})
        entry["times"].append(ts)
        entry["workflows"].append(msg.get("workflow"))

    user_ids = list(by_user)
    if not user_ids:
        return {"users": [], "count": 0}

    profiles, history, preferences, favorites = await asyncio.gather(
        repo.profiles_by_ids(user_ids, columns=PROFILE_COLUMNS),
        repo.messages_for_users(user_ids),
        repo.rows_by_ids(PREFERENCES_TABLE, PREFERENCE_COLUMNS, "user_id", user_ids),
        repo.rows_by_ids(FAVORITES_TABLE, FAVORITE_COLUMNS, "user_id", user_ids),
    )
    dropped = sum(
        len(r.failed_ids) for r in (profiles, history, preferences, favorites)
    )
    if dropped:
        logger.warning("User list: %d lookups dropped after batch splitting", dropped)

    # Users without a profile row still appear, under the placeholder name
    placeholders = [{"id": uid} for uid in user_ids]
    facts = build_user_facts(
        profiles=placeholders + list(profiles.rows),
        messages=history.rows,
        preferences=preferences.rows,
        favorites=favorites.rows,
    )

    users = []
    for uid in user_ids:
        times = sorted(by_user[uid]["times"])
        user = facts[uid]
        users.append({
            "user_id": uid,
            "name": user.full_name or ANONYMOUS_NAME,
            "city": user.city or "",
            "total_messages": len(times),
            "sessions": count_sessions(times),
            "first_message_at": times[0].isoformat(),
            "last_message_at": times[-1].isoformat(),
            "dominant_workflow": _dominant_workflow(by_user[uid]["workflows"]),
            "stage": user.stage(policy).label,
        })

    users.sort(key=lambda u: u["last_message_at"], reverse=True)
    if limit is not None:
        users = users[:limit]

    logger.info("User list: %d users with messages in range", len(users))
    return {"users": users, "count": len(users)}


async def conversation(
    repo: AnalyticsRepository,
    user_id: str,
    offset: int = 0,
    limit: int = 20,
) -> dict:
    """
    One page of a user's messages, oldest first.

    Reads limit + 1 rows so has_more is known without a count query.
    """
    if offset < 0:
        raise ValueError("offset must be >= 0")
    if not 1 <= limit <= MAX_CONVERSATION_PAGE:
        raise ValueError(f"limit must be between 1 and {MAX_CONVERSATION_PAGE}")

    rows, profiles = await asyncio.gather(
        repo.conversation_page(user_id, offset, limit + 1),
        repo.profiles_by_ids([user_id]),
    )
    profile = profiles.rows[0] if profiles.rows else {}

    has_more = len(rows) > limit
    messages = [
        {
            "id": m.get("id"),
            "content": m.get("content") or "",
            "sender": m.get("sender") or "user",
            "workflow": m.get("workflow"),
            "created_at": m.get("created_at") or "",
        }
        for m in rows[:limit]
    ]

    return {
        "user_id": user_id,
        "name": profile.get("full_name") or ANONYMOUS_NAME,
        "city": profile.get("city") or "",
        "age": profile.get("age"),
        "education": profile.get("education"),
        "active_workflow": profile.get("active_workflow"),
        "messages": messages,
        "offset": offset,
        "limit": limit,
        "has_more": has_more,
    }
