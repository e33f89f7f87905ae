"""Tests for session reconstruction and power-user tiering."""

from datetime import datetime, timedelta, timezone

from scripts.analytics.sessions import (
    EngagementTier,
    count_sessions,
    engagement_tier,
    is_power_user,
    recent_session_count,
)

BASE = datetime(2026, 10, 14, 10, 0, tzinfo=timezone.utc)


def at(minutes):
    return BASE + timedelta(minutes=minutes)


class TestCountSessions:
    def test_empty(self):
        assert count_sessions([]) == 0

    def test_single_event(self):
        assert count_sessions([BASE]) == 1

    def test_gap_of_forty_minutes_splits(self):
        # 10:00, 10:10, 10:50
        assert count_sessions([at(0), at(10), at(50)]) == 2

    def test_exact_gap_stays_in_session(self):
        assert count_sessions([at(0), at(30)]) == 1

    def test_just_over_gap_splits(self):
        assert count_sessions([at(0), at(30) + timedelta(seconds=1)]) == 2

    def test_order_does_not_matter(self):
        assert count_sessions([at(50), at(0), at(10)]) == 2

    def test_dense_events_are_one_session(self):
        assert count_sessions([at(i * 29) for i in range(20)]) == 1

    def test_sparse_events_are_one_session_each(self):
        assert count_sessions([at(i * 31) for i in range(6)]) == 6


class TestPowerUsers:
    def test_two_sessions_in_window(self):
        now = BASE + timedelta(days=1)
        assert is_power_user([at(0), at(120)], now) is True

    def test_one_session_is_not_enough(self):
        now = BASE + timedelta(days=1)
        assert is_power_user([at(0), at(5)], now) is False

    def test_events_outside_window_ignored(self):
        now = BASE + timedelta(days=8)
        assert recent_session_count([at(0), at(120)], now) == 0
        assert is_power_user([at(0), at(120)], now) is False

    def test_window_start_is_inclusive(self):
        now = BASE + timedelta(days=7)
        assert recent_session_count([at(0)], now) == 1

    def test_engagement_tier(self):
        assert engagement_tier(2) == EngagementTier.ENGAGED
        assert engagement_tier(1) == EngagementTier.DISENGAGED
        assert engagement_tier(0) == EngagementTier.DISENGAGED
