"""
Cloudinha Analytics — Pydantic Models
========================================

Request/response models for the analytics API. JSON keys are camelCase
on the wire; requests also accept snake_case field names.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ─── Funnel ─────────────────────────────────────────────────

class FunnelRequest(CamelModel):
    include_details: bool = False


class FunnelUser(CamelModel):
    id: str
    name: str
    phone: str = ""
    city: str = ""
    registered_at: str = ""
    course_interest: str = ""


class FunnelItem(CamelModel):
    """One funnel step. entityIds/users only present when details were requested."""
    step: str
    stage_label: str
    count: int
    description: str
    entity_ids: Optional[List[str]] = None
    users: Optional[List[FunnelUser]] = None


# ─── Activity ───────────────────────────────────────────────

class ActivityBucketResponse(CamelModel):
    label: str
    event_count: int
    distinct_entity_count: int


# ─── Users / Conversations ──────────────────────────────────

class UsersRequest(CamelModel):
    """
    mode="list": users with messages between startDate and endDate.
    mode="conversation": one page of userId's messages.
    """
    mode: Literal["list", "conversation"] = "list"
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    user_id: Optional[str] = None
    offset: int = Field(0, ge=0)
    limit: Optional[int] = Field(None, ge=1)


class UserSummary(CamelModel):
    user_id: str
    name: str
    city: str = ""
    total_messages: int
    sessions: int
    first_message_at: str
    last_message_at: str
    dominant_workflow: Optional[str] = None
    stage: str


class UserListResponse(CamelModel):
    users: List[UserSummary] = Field(default_factory=list)
    count: int = 0


class ConversationMessage(CamelModel):
    id: Optional[Any] = None
    content: str = ""
    sender: str = "user"
    workflow: Optional[str] = None
    created_at: str = ""


class ConversationResponse(CamelModel):
    user_id: str
    name: str
    city: str = ""
    age: Optional[int] = None
    education: Optional[str] = None
    active_workflow: Optional[str] = None
    messages: List[ConversationMessage] = Field(default_factory=list)
    offset: int
    limit: int
    has_more: bool


# ─── Exports ────────────────────────────────────────────────

class CrmRecordResponse(CamelModel):
    name: str
    phone: str = ""
    city: str = ""
    course: str = ""
    stage: str
    registered_at: str = ""


class SegmentSummary(CamelModel):
    total_users: int
    engaged_focus_count: int
    engaged_all_count: int
    disengaged_focus_count: int
    segmented_total: int


class SegmentedExportResponse(CamelModel):
    engaged_focus: List[CrmRecordResponse] = Field(default_factory=list)
    engaged_all: List[CrmRecordResponse] = Field(default_factory=list)
    disengaged_focus: List[CrmRecordResponse] = Field(default_factory=list)
    summary: SegmentSummary


class PowerUserExportRow(CamelModel):
    name: str
    phone: str = ""
    city: str = ""
    location_preference: str = ""
    course: str = ""
    stage: str
    favorites: int = 0
    sessions: int


class PowerUsersExportResponse(CamelModel):
    users: List[PowerUserExportRow] = Field(default_factory=list)
    count: int = 0


class TopUserExportRow(CamelModel):
    name: str
    phone: str = ""
    city: str = ""
    location_preference: str = ""
    messages: int
    stage: str
    course: str = ""
    favorites: int = 0


class TopUsersExportResponse(CamelModel):
    users: List[TopUserExportRow] = Field(default_factory=list)
    count: int = 0


class InactiveSummary(CamelModel):
    total_registered: int
    active_users: int
    inactive_users: int


class InactiveExportResponse(CamelModel):
    users: List[CrmRecordResponse] = Field(default_factory=list)
    summary: InactiveSummary


# ─── Stats / Rankings / Errors ──────────────────────────────

class PowerUserCard(CamelModel):
    user_id: str
    name: str
    phone: str = ""
    sessions: int


class StatsResponse(CamelModel):
    total_registered: int
    active_users: int
    active_users_with_messages: int
    catalog_users: int
    active_users_change: int
    catalog_users_change: int
    total_messages: int
    messages_change: int
    total_favorites: int
    favorites_change: int
    errors_today: int
    errors_change: int
    power_users: int
    power_users_change: int
    power_users_list: List[PowerUserCard] = Field(default_factory=list)


class RankingEntry(CamelModel):
    id: str
    name: str
    messages: int
    favorites: int
    score: int
    sessions: int


class LocationCount(CamelModel):
    name: str
    count: int


class CourseCount(CamelModel):
    name: str
    searches: int


class PreferenceShare(CamelModel):
    """Share of users preferring a program, in whole percent."""
    name: str
    value: int


class AgentErrorEntry(CamelModel):
    id: Optional[Any] = None
    type: str
    message: str
    time: str
    error_type: Optional[str] = None
    resolved: bool = False
    recovery_attempted: bool = False
    stack_trace: Optional[str] = None
    metadata: Optional[Any] = None
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    created_at: Optional[str] = None


# ─── Opportunities ────────────────────────────────────────

class ProgramPreferenceShare(CamelModel):
    name: str
    count: int
    percentage: int


class ModalityVacancies(CamelModel):
    name: str
    count: int


class IdleVacancies(CamelModel):
    total: int = 0
    by_modality: List[ModalityVacancies] = Field(default_factory=list)


class OpportunityTotals(CamelModel):
    sisu: int = 0
    prouni: int = 0


class OpportunitiesResponse(CamelModel):
    program_preferences: List[ProgramPreferenceShare] = Field(default_factory=list)
    idle_vacancies: IdleVacancies
    total_opportunities: OpportunityTotals


# ─── Insights ───────────────────────────────────────────────

class InsightsRequest(CamelModel):
    force_refresh: bool = False


class Insight(CamelModel):
    category: Literal["alert", "bottleneck", "pattern", "opportunity"]
    title: str
    description: str = ""
    action: str = ""
    priority: Literal["high", "medium", "low"] = "medium"


class InsightsResponse(CamelModel):
    insights: List[Insight] = Field(default_factory=list)
    generated_at: Optional[str] = None
    data_context: Dict[str, Any] = Field(default_factory=dict)
    from_cache: bool = False
    data_changed: bool = False
    cooldown: bool = False
