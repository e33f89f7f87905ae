"""
Cloudinha Analytics — User Snapshot
======================================

Joins the raw rows of one request into per-user facts. Everything the
reports derive (signals, stages, sessions, activity) is computed from
these facts and nothing else.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Set

from scripts.analytics.funnel import DEFAULT_POLICY, FunnelPolicy, FunnelSignals, FunnelStage
from scripts.analytics.sessions import ENGAGEMENT_WINDOW, recent_session_count
from scripts.lib.utils import parse_timestamp

ANONYMOUS_NAME = "Anônimo"

ONBOARDING_WORKFLOW = "onboarding_workflow"
MATCH_WORKFLOW = "match_workflow"


def in_period(ts: Optional[datetime], start: datetime, end: Optional[datetime] = None) -> bool:
    """start <= ts < end; an end of None leaves the period open."""
    if ts is None or ts < start:
        return False
    return end is None or ts < end


@dataclass
class UserFacts:
    """Everything known about one user in the current snapshot."""
    entity_id: str
    full_name: Optional[str] = None
    phone: Optional[str] = None
    city: Optional[str] = None
    registered_at: Optional[datetime] = None
    onboarding_completed: bool = False
    has_preferences: bool = False
    preferences_updated_at: Optional[datetime] = None
    workflow_data: Any = None
    course_interest: List[str] = field(default_factory=list)
    state_preference: Optional[str] = None
    location_preference: Optional[str] = None
    message_count: int = 0
    message_times: List[datetime] = field(default_factory=list)
    workflows: Set[str] = field(default_factory=set)
    favorite_times: List[datetime] = field(default_factory=list)
    favorites_count: int = 0

    @property
    def display_name(self) -> str:
        return self.full_name or ANONYMOUS_NAME

    @property
    def course(self) -> str:
        return ", ".join(self.course_interest)

    @property
    def match_completed(self) -> bool:
        return isinstance(self.workflow_data, dict) and len(self.workflow_data) > 0

    def signals(self) -> FunnelSignals:
        return FunnelSignals(
            saved_favorite=self.favorites_count > 0,
            match_completed=self.match_completed,
            match_started=MATCH_WORKFLOW in self.workflows,
            preferences_defined=self.has_preferences,
            onboarding_completed=self.onboarding_completed or ONBOARDING_WORKFLOW in self.workflows,
            sent_message=self.message_count > 0,
        )

    def stage(self, policy: FunnelPolicy = DEFAULT_POLICY) -> FunnelStage:
        return policy.classify(self.signals())

    def recent_sessions(self, now: datetime, window: timedelta = ENGAGEMENT_WINDOW) -> int:
        return recent_session_count(self.message_times, now, window)

    def sent_message_between(self, start: datetime, end: Optional[datetime] = None) -> bool:
        return any(in_period(ts, start, end) for ts in self.message_times)

    def browsed_catalog_between(self, start: datetime, end: Optional[datetime] = None) -> bool:
        """Saved a favorite or updated preferences in the period."""
        if any(in_period(ts, start, end) for ts in self.favorite_times):
            return True
        return in_period(self.preferences_updated_at, start, end)

    def was_active(self, start: datetime, end: Optional[datetime] = None) -> bool:
        """Any message, favorite or preference update in [start, end)."""
        return self.sent_message_between(start, end) or self.browsed_catalog_between(start, end)


def build_user_facts(
    auth_users: Iterable[Dict[str, Any]] = (),
    profiles: Iterable[Dict[str, Any]] = (),
    messages: Iterable[Dict[str, Any]] = (),
    preferences: Iterable[Dict[str, Any]] = (),
    favorites: Iterable[Dict[str, Any]] = (),
) -> Dict[str, UserFacts]:
    """
    Join raw rows into UserFacts keyed by user id.

    The population is every auth user plus every profile; messages,
    preferences and favorites only enrich users already in it. Dict order
    follows auth users first, then profile-only users.
    """
    facts: Dict[str, UserFacts] = {}

    for user in auth_users:
        uid = user.get("id")
        if not uid:
            continue
        facts[uid] = UserFacts(
            entity_id=uid,
            phone=user.get("phone") or None,
            registered_at=parse_timestamp(user.get("created_at")),
        )

    for profile in profiles:
        uid = profile.get("id")
        if not uid:
            continue
        entry = facts.setdefault(uid, UserFacts(entity_id=uid))
        entry.full_name = profile.get("full_name") or None
        entry.city = profile.get("city") or None
        entry.onboarding_completed = profile.get("onboarding_completed") is True
        if entry.registered_at is None:
            entry.registered_at = parse_timestamp(profile.get("created_at"))

    for pref in preferences:
        entry = facts.get(pref.get("user_id"))
        if entry is None:
            continue
        entry.has_preferences = True
        entry.preferences_updated_at = parse_timestamp(pref.get("updated_at"))
        entry.workflow_data = pref.get("workflow_data")
        entry.course_interest = list(pref.get("course_interest") or [])
        entry.state_preference = pref.get("state_preference")
        entry.location_preference = pref.get("location_preference")

    for msg in messages:
        entry = facts.get(msg.get("user_id"))
        if entry is None:
            continue
        entry.message_count += 1
        ts = parse_timestamp(msg.get("created_at"))
        if ts is not None:
            entry.message_times.append(ts)
        if msg.get("workflow"):
            entry.workflows.add(msg["workflow"])

    for fav in favorites:
        entry = facts.get(fav.get("user_id"))
        if entry is None:
            continue
        entry.favorites_count += 1
        ts = parse_timestamp(fav.get("created_at"))
        if ts is not None:
            entry.favorite_times.append(ts)

    return facts
