"""
Cloudinha Analytics — Segmentation Engine
============================================

Splits the user base into the three CRM export tabs. Each user lands in
the first tab they qualify for and nowhere else:

  1. engaged_focus     - engaged (2+ sessions in 7d) and in the focus region
  2. engaged_all       - engaged, any region
  3. disengaged_focus  - not engaged, in the focus region

Disengaged users outside the focus region are not CRM targets and appear
in no tab.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from scripts.analytics.sessions import EngagementTier
from scripts.lib.errors import ConfigError
from scripts.lib.logger import setup_logger
from scripts.lib.settings import load_policy_config

logger = setup_logger("segmentation")


class Segment(str, Enum):
    ENGAGED_FOCUS = "engaged_focus"
    ENGAGED_ALL = "engaged_all"
    DISENGAGED_FOCUS = "disengaged_focus"


SEGMENT_ORDER = (Segment.ENGAGED_FOCUS, Segment.ENGAGED_ALL, Segment.DISENGAGED_FOCUS)


@dataclass(frozen=True)
class FocusRegion:
    """Named set of state codes / names matched as upper-case substrings."""
    name: str
    tokens: Tuple[str, ...]

    def contains(self, *values: Optional[str]) -> bool:
        for value in values:
            if not value:
                continue
            upper = value.upper()
            if any(token in upper for token in self.tokens):
                return True
        return False


def focus_region_from_config(config: Dict[str, Any]) -> FocusRegion:
    section = config.get("focus_region") or {}
    tokens = tuple(str(t).upper() for t in section.get("tokens") or [])
    if not tokens:
        raise ConfigError("focus_region.tokens is empty")
    return FocusRegion(name=section.get("name", "focus"), tokens=tokens)


DEFAULT_FOCUS_REGION = focus_region_from_config(load_policy_config())


@dataclass(frozen=True)
class CrmRecord:
    """The fields that leave the engine for CRM import."""
    name: str
    phone: str
    city: str
    course: str
    stage: str
    registered_at: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class SegmentCandidate:
    """A user with the two facets segmentation needs. Never exported as-is."""
    entity_id: str
    in_focus_region: bool
    tier: EngagementTier
    record: CrmRecord


@dataclass
class SegmentationResult:
    segments: Dict[Segment, List[CrmRecord]] = field(
        default_factory=lambda: {segment: [] for segment in SEGMENT_ORDER}
    )
    total_users: int = 0

    def count(self, segment: Segment) -> int:
        return len(self.segments[segment])

    def summary(self) -> dict:
        counts = {segment.value: self.count(segment) for segment in SEGMENT_ORDER}
        return {
            "total_users": self.total_users,
            **{f"{name}_count": value for name, value in counts.items()},
            "segmented_total": sum(counts.values()),
        }


def assign_segment(candidate: SegmentCandidate) -> Optional[Segment]:
    """First matching segment in priority order, or None."""
    engaged = candidate.tier == EngagementTier.ENGAGED
    if engaged and candidate.in_focus_region:
        return Segment.ENGAGED_FOCUS
    if engaged:
        return Segment.ENGAGED_ALL
    if candidate.in_focus_region:
        return Segment.DISENGAGED_FOCUS
    return None


def segment_population(candidates: Iterable[SegmentCandidate]) -> SegmentationResult:
    """
    Partition candidates into disjoint segments.

    A repeated entity_id is only ever placed once (first occurrence wins).
    """
    result = SegmentationResult()
    placed = set()
    seen = set()

    for candidate in candidates:
        if candidate.entity_id in seen:
            continue
        seen.add(candidate.entity_id)

        segment = assign_segment(candidate)
        if segment is None:
            continue
        result.segments[segment].append(candidate.record)
        placed.add(candidate.entity_id)

    result.total_users = len(seen)
    logger.info(
        "Segmented %d users: %s (unplaced %d)",
        result.total_users,
        ", ".join(f"{s.value}={result.count(s)}" for s in SEGMENT_ORDER),
        result.total_users - len(placed),
    )
    return result
