"""
Cloudinha Analytics — Time Bucket Aggregator
===============================================

Groups message timestamps into local-time buckets for the activity chart.

Timestamps are stored in UTC but the audience lives at a fixed UTC-3
offset, so every timestamp is shifted before it is bucketed. Bucketing on
the raw UTC date would push late-evening messages into the next day.

Modes:
  week            - 7 local calendar days ending today, labelled Seg..Dom
  day             - 24 local hours of today, labelled 00h..23h
  day + zoom_hour - 4 quarter-hour slots of one local hour, labelled HH:MM

Empty buckets are always returned with zero counts.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable, List, Optional, Set, Tuple

from scripts.lib.settings import UTC_OFFSET_HOURS
from scripts.lib.utils import local_day_start, to_local


class BucketMode(str, Enum):
    DAY = "day"
    WEEK = "week"


# Indexed by datetime.weekday() (Monday == 0)
WEEKDAY_LABELS = ("Seg", "Ter", "Qua", "Qui", "Sex", "Sáb", "Dom")

ZOOM_SLOT = timedelta(minutes=15)


@dataclass
class ActivityBucket:
    """One labelled local-time interval [start, end)."""
    label: str
    start: datetime
    end: datetime
    event_count: int = 0
    entity_ids: Set[str] = field(default_factory=set)

    @property
    def distinct_entity_count(self) -> int:
        return len(self.entity_ids)

    def to_dict(self) -> dict:
        return {
            "label": self.label,
            "event_count": self.event_count,
            "distinct_entity_count": self.distinct_entity_count,
        }


def _validate(mode: BucketMode, zoom_hour: Optional[int]) -> None:
    if zoom_hour is None:
        return
    if mode != BucketMode.DAY:
        raise ValueError("zoom_hour is only supported in day mode")
    if not 0 <= zoom_hour <= 23:
        raise ValueError(f"zoom_hour must be between 0 and 23, got {zoom_hour}")


def build_buckets(
    mode: BucketMode,
    now: datetime,
    utc_offset_hours: int = UTC_OFFSET_HOURS,
    zoom_hour: Optional[int] = None,
) -> List[ActivityBucket]:
    """Create the empty, contiguous buckets for a mode."""
    mode = BucketMode(mode)
    _validate(mode, zoom_hour)
    today = local_day_start(now, utc_offset_hours)

    if mode == BucketMode.WEEK:
        buckets = []
        for days_back in range(6, -1, -1):
            start = today - timedelta(days=days_back)
            buckets.append(ActivityBucket(
                label=WEEKDAY_LABELS[start.weekday()],
                start=start,
                end=start + timedelta(days=1),
            ))
        return buckets

    if zoom_hour is not None:
        hour_start = today + timedelta(hours=zoom_hour)
        return [
            ActivityBucket(
                label=f"{zoom_hour:02d}:{slot * 15:02d}",
                start=hour_start + slot * ZOOM_SLOT,
                end=hour_start + (slot + 1) * ZOOM_SLOT,
            )
            for slot in range(4)
        ]

    return [
        ActivityBucket(
            label=f"{hour:02d}h",
            start=today + timedelta(hours=hour),
            end=today + timedelta(hours=hour + 1),
        )
        for hour in range(24)
    ]


def covered_range(
    mode: BucketMode,
    now: datetime,
    utc_offset_hours: int = UTC_OFFSET_HOURS,
    zoom_hour: Optional[int] = None,
) -> Tuple[datetime, datetime]:
    """[start, end) spanned by the buckets of a mode, as aware datetimes."""
    buckets = build_buckets(mode, now, utc_offset_hours, zoom_hour)
    return buckets[0].start, buckets[-1].end


def bucket_events(
    events: Iterable[Tuple[datetime, Optional[str]]],
    mode: BucketMode,
    now: datetime,
    utc_offset_hours: int = UTC_OFFSET_HOURS,
    zoom_hour: Optional[int] = None,
) -> List[ActivityBucket]:
    """
    Count events and distinct entities per local-time bucket.

    Args:
        events: (timestamp_utc, entity_id) pairs. Timestamps must be aware.
        mode: BucketMode.DAY or BucketMode.WEEK.
        now: Reference instant; buckets cover the local day/week containing it.
        utc_offset_hours: Fixed local offset (default -3).
        zoom_hour: Local hour to split into 15-minute slots (day mode only).

    Returns:
        Buckets in chronological order. Events outside the covered range are ignored.
    """
    buckets = build_buckets(mode, now, utc_offset_hours, zoom_hour)
    range_start = buckets[0].start
    width = buckets[0].end - buckets[0].start

    for ts, entity_id in events:
        if ts is None:
            continue
        local_ts = to_local(ts, utc_offset_hours)
        if local_ts < range_start:
            continue
        index = int((local_ts - range_start) // width)
        if index >= len(buckets):
            continue
        bucket = buckets[index]
        bucket.event_count += 1
        if entity_id:
            bucket.entity_ids.add(entity_id)

    return buckets
