"""
Cloudinha Analytics — Sessionizer
====================================

Sessions are not stored anywhere. They are rebuilt on every request from
the raw chat message timestamps: a new session starts whenever the gap to
the previous message is strictly longer than SESSION_GAP.

Every tiering decision (power users, rankings, CRM segments) goes through
count_sessions() and engagement_tier() so the thresholds stay identical
across reports.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable, List

from scripts.lib.settings import WINDOW_DAYS, load_policy_config

_POLICY = load_policy_config()

SESSION_GAP = timedelta(minutes=_POLICY["sessions"].get("gap_minutes", 30))
POWER_USER_MIN_SESSIONS = int(_POLICY["sessions"].get("power_user_min_sessions", 2))
ENGAGEMENT_WINDOW = timedelta(days=WINDOW_DAYS)


class EngagementTier(str, Enum):
    ENGAGED = "engaged"
    DISENGAGED = "disengaged"


def count_sessions(timestamps: Iterable[datetime], gap: timedelta = SESSION_GAP) -> int:
    """
    Count sessions in one entity's event timestamps.

    Input order does not matter. A gap of exactly `gap` stays in the same
    session; only a strictly longer gap opens a new one.
    """
    ordered = sorted(timestamps)
    if not ordered:
        return 0

    sessions = 1
    for prev, curr in zip(ordered, ordered[1:]):
        if curr - prev > gap:
            sessions += 1
    return sessions


def within_window(
    timestamps: Iterable[datetime],
    now: datetime,
    window: timedelta = ENGAGEMENT_WINDOW,
) -> List[datetime]:
    """Timestamps in the trailing window [now - window, now]."""
    start = now - window
    return [ts for ts in timestamps if start <= ts <= now]


def recent_session_count(
    timestamps: Iterable[datetime],
    now: datetime,
    window: timedelta = ENGAGEMENT_WINDOW,
    gap: timedelta = SESSION_GAP,
) -> int:
    return count_sessions(within_window(timestamps, now, window), gap)


def is_power_user_sessions(session_count: int) -> bool:
    return session_count >= POWER_USER_MIN_SESSIONS


def is_power_user(
    timestamps: Iterable[datetime],
    now: datetime,
    window: timedelta = ENGAGEMENT_WINDOW,
) -> bool:
    """An entity is a power user with at least two sessions in the window."""
    return is_power_user_sessions(recent_session_count(timestamps, now, window))


def engagement_tier(session_count: int) -> EngagementTier:
    if is_power_user_sessions(session_count):
        return EngagementTier.ENGAGED
    return EngagementTier.DISENGAGED
