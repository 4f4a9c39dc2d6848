"""
Date/time conversions between stored instants, form inputs and the calendar
deep-link stamp, plus recurrence-rule decomposition.

Every function here is total: empty or unparseable input yields an empty
string (or None for rules) instead of raising.
"""

import re
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Any, Optional

from dateutil import parser as dateutil_parser
from dateutil import tz as dateutil_tz

from eventsnap.event_models import RECURRENCE_UNITS

LOCAL_INPUT_FORMAT = "%Y-%m-%dT%H:%M"
INSTANT_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
PROVIDER_STAMP_FORMAT = "%Y%m%dT%H%M%SZ"

DEFAULT_RECURRENCE_UNIT = "WEEKLY"
DEFAULT_RECURRENCE_INTERVAL = 1
MIN_RECURRENCE_INTERVAL = 1
MAX_RECURRENCE_INTERVAL = 999

_FREQ_RE = re.compile(r"FREQ=(DAILY|WEEKLY|MONTHLY|YEARLY)")
_INTERVAL_RE = re.compile(r"INTERVAL=(\d+)")


@dataclass(frozen=True)
class RecurrenceParts:
    unit: str
    interval: int


def _local_tz(local_tz: Optional[tzinfo]) -> tzinfo:
    return local_tz if local_tz is not None else dateutil_tz.tzlocal()


def parse_instant(value: Any, local_tz: Optional[tzinfo] = None) -> Optional[datetime]:
    """
    Parse an instant string into an aware datetime.

    Strings without an offset are read as local civil time, the same way the
    model's "YYYY-MM-DDTHH:mm:ss" output is meant.
    """
    if not value or not isinstance(value, str):
        return None

    now = datetime.now()
    default_dt = datetime(now.year, now.month, now.day)
    try:
        dt = dateutil_parser.parse(value.strip(), default=default_dt)
    except (ValueError, OverflowError):
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=_local_tz(local_tz))
    return dt


def format_in_zone(dt: Optional[datetime], zone: tzinfo, fmt: str) -> str:
    """Convert an aware datetime to zone and format it; '' when it falls outside the datetime range."""
    if dt is None:
        return ""
    try:
        return dt.astimezone(zone).strftime(fmt)
    except (OverflowError, ValueError):
        return ""


def to_local_input(instant: Any, local_tz: Optional[tzinfo] = None) -> str:
    """Render an instant as local 'YYYY-MM-DDTHH:mm'; '' when unset or unparseable."""
    return format_in_zone(parse_instant(instant, local_tz), _local_tz(local_tz), LOCAL_INPUT_FORMAT)


def to_local_date_input(instant: Any, local_tz: Optional[tzinfo] = None) -> str:
    """Date-only form used by all-day editing: the local input truncated at 'T'."""
    return to_local_input(instant, local_tz).split("T")[0]


def from_local_input(local_string: Any, local_tz: Optional[tzinfo] = None) -> str:
    """Interpret a form value as local civil time and serialize it as a UTC instant."""
    return format_in_zone(parse_instant(local_string, local_tz), dateutil_tz.tzutc(), INSTANT_FORMAT)


def to_provider_stamp(instant: Any, local_tz: Optional[tzinfo] = None) -> str:
    """Render an instant as the compact UTC stamp YYYYMMDDTHHMMSSZ."""
    return format_in_zone(parse_instant(instant, local_tz), dateutil_tz.tzutc(), PROVIDER_STAMP_FORMAT)


def parse_rule(
    rule: Any,
    default_unit: str = DEFAULT_RECURRENCE_UNIT,
    default_interval: int = DEFAULT_RECURRENCE_INTERVAL,
) -> Optional[RecurrenceParts]:
    """
    Decompose an RRULE string into unit and interval.

    Returns None for an absent rule. Parts that cannot be read keep the
    supplied defaults rather than failing.
    """
    if not rule or not isinstance(rule, str):
        return None

    freq_match = _FREQ_RE.search(rule)
    interval_match = _INTERVAL_RE.search(rule)
    unit = freq_match.group(1) if freq_match else default_unit
    interval = int(interval_match.group(1)) if interval_match else default_interval
    return RecurrenceParts(unit=unit, interval=interval)


def clamp_interval(interval: Any) -> int:
    try:
        value = int(interval)
    except (TypeError, ValueError):
        return MIN_RECURRENCE_INTERVAL
    return max(MIN_RECURRENCE_INTERVAL, min(MAX_RECURRENCE_INTERVAL, value))


def build_rule(unit: str, interval: Any) -> str:
    """Compose 'RRULE:FREQ=<UNIT>;INTERVAL=<N>' with N clamped to [1, 999]."""
    if unit not in RECURRENCE_UNITS:
        raise ValueError(f"Invalid recurrence unit: {unit}")
    return f"RRULE:FREQ={unit};INTERVAL={clamp_interval(interval)}"
