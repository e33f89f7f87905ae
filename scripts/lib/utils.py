"""
Utility functions for Cloudinha Analytics.
Timestamp parsing, local-time conversion, and display formatting.

Usage:
    from scripts.lib.utils import parse_timestamp, to_local, format_phone
"""
from __future__ import annotations

import math
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

_NON_DIGITS = re.compile(r"\D")
_STATE_SUFFIX = re.compile(r"\s*-\s*[A-Z]{2}$", re.IGNORECASE)


def parse_timestamp(val: Any) -> Optional[datetime]:
    """
    Convert a datastore timestamp to an aware UTC datetime.

    Accepts ISO strings (with "Z" or an explicit offset) and datetimes.
    Naive values are taken as UTC. Returns None for empty or unparsable input.
    """
    if val is None or val == "":
        return None
    if isinstance(val, datetime):
        dt = val
    elif isinstance(val, str):
        text = val.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def local_zone(offset_hours: int) -> timezone:
    """Fixed-offset zone, e.g. -3 for Brasília time."""
    return timezone(timedelta(hours=offset_hours))


def to_local(dt: datetime, offset_hours: int) -> datetime:
    """Shift an aware datetime into the fixed local offset."""
    return dt.astimezone(local_zone(offset_hours))


def local_day_start(now: datetime, offset_hours: int) -> datetime:
    """Midnight of the local calendar day containing now (aware, local zone)."""
    local_now = to_local(now, offset_hours)
    return local_now.replace(hour=0, minute=0, second=0, microsecond=0)


def format_phone(phone: Optional[str]) -> str:
    """
    Format a Brazilian phone number for display.

    5581981846070 -> (81) 98184-6070
    81981846070   -> (81) 98184-6070
    Numbers in any other shape are returned unchanged.
    """
    if not phone:
        return ""
    digits = _NON_DIGITS.sub("", phone)
    if len(digits) == 13 and digits.startswith("55"):
        return f"({digits[2:4]}) {digits[4:9]}-{digits[9:]}"
    if len(digits) == 12 and digits.startswith("55"):
        return f"({digits[2:4]}) {digits[4:8]}-{digits[8:]}"
    if len(digits) == 11:
        return f"({digits[0:2]}) {digits[2:7]}-{digits[7:]}"
    if len(digits) == 10:
        return f"({digits[0:2]}) {digits[2:6]}-{digits[6:]}"
    return phone


def format_local_datetime(val: Any, offset_hours: int) -> str:
    """Render a timestamp as local "dd/mm/YYYY, HH:MM", or "" when missing."""
    dt = parse_timestamp(val)
    if dt is None:
        return ""
    return to_local(dt, offset_hours).strftime("%d/%m/%Y, %H:%M")


def relative_time_label(val: Any, now: datetime) -> str:
    """Short Portuguese "time ago" label used by the error log."""
    dt = parse_timestamp(val)
    if dt is None:
        return ""
    seconds = (now - dt).total_seconds()
    days = int(seconds // 86400)
    hours = int(seconds // 3600)
    minutes = int(seconds // 60)
    if days > 0:
        return f"há {days}d"
    if hours > 0:
        return f"há {hours}h"
    if minutes > 0:
        return f"há {minutes}min"
    return "agora"


def calc_change(current: int, previous: int) -> int:
    """Period-over-period change in whole percent."""
    if previous == 0:
        return 100 if current > 0 else 0
    return round((current - previous) / previous * 100)


def percent_of(count: int, total: int) -> int:
    """Share in whole percent, halves rounded up."""
    if total <= 0:
        return 0
    return math.floor(count / total * 100 + 0.5)


def normalize_city(city: Optional[str]) -> str:
    """
    Merge spellings of the same city for ranking.

    "São Paulo - SP" -> "São Paulo"
    "são paulo"      -> "São Paulo"
    """
    if not city:
        return ""
    name = _STATE_SUFFIX.sub("", city.strip())
    return " ".join(word[:1].upper() + word[1:].lower() for word in name.split(" "))
