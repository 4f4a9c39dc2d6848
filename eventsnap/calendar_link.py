"""
Calendar link encoder for Google Calendar "Add Event" deep links.
Encoding is total: any missing or invalid piece falls back to a default.
"""

import re
import webbrowser
from datetime import timedelta, tzinfo
from typing import Optional
from urllib.parse import urlencode

from dateutil import tz as dateutil_tz

from eventsnap.datetime_codec import PROVIDER_STAMP_FORMAT, format_in_zone, parse_instant, to_provider_stamp
from eventsnap.event_models import EventCandidate
from eventsnap.logging_helper import Log

DEFAULT_CALENDAR_HOST = "calendar.google.com"
DEFAULT_LINK_TITLE = "New Event"
DEFAULT_EVENT_DURATION = timedelta(hours=1)

_VALID_RULE_RE = re.compile(r"^RRULE:.*FREQ=(DAILY|WEEKLY|MONTHLY|YEARLY)")


def _text(value) -> str:
    if not value:
        return ""
    return value if isinstance(value, str) else str(value)


def _end_stamp(candidate: EventCandidate, start_stamp: str, local_tz: Optional[tzinfo]) -> str:
    end_stamp = to_provider_stamp(candidate.end_date_time, local_tz)
    if start_stamp and not end_stamp:
        start_dt = parse_instant(candidate.start_date_time, local_tz)
        try:
            end_dt = start_dt + DEFAULT_EVENT_DURATION
        except OverflowError:
            Log.warn(f"Cannot derive an end time from start {candidate.start_date_time!r}; omitting dates")
            return ""
        end_stamp = format_in_zone(end_dt, dateutil_tz.tzutc(), PROVIDER_STAMP_FORMAT)
    return end_stamp


def is_valid_rule(rule) -> bool:
    return isinstance(rule, str) and bool(_VALID_RULE_RE.match(rule.strip()))


def encode(
    candidate: EventCandidate,
    host: str = DEFAULT_CALENDAR_HOST,
    local_tz: Optional[tzinfo] = None,
) -> str:
    """
    Generate a Google Calendar URL with pre-filled event details.

    A start without an end gets an end exactly one hour later. Dates are only
    included when both stamps exist, otherwise the provider defaults to now.
    An end earlier than the start is passed through as-is.

    Args:
        candidate: Event to encode
        host: Calendar provider host
        local_tz: Zone for instants without an offset (system zone when None)

    Returns:
        Deep-link URL string
    """
    params = {
        "action": "TEMPLATE",
        "text": _text(candidate.title) or DEFAULT_LINK_TITLE,
        "details": _text(candidate.description),
        "location": _text(candidate.location),
    }

    start_stamp = to_provider_stamp(candidate.start_date_time, local_tz)
    end_stamp = _end_stamp(candidate, start_stamp, local_tz)
    if start_stamp and end_stamp:
        params["dates"] = f"{start_stamp}/{end_stamp}"

    if is_valid_rule(candidate.recurrence):
        params["recur"] = candidate.recurrence.strip()

    return f"https://{host}/calendar/render?{urlencode(params)}"


def open_calendar_url(url: str) -> bool:
    """
    Open the deep link in a new browser tab.

    Returns:
        True if a browser accepted the URL
    """
    Log.section("Calendar Connector")
    try:
        opened = webbrowser.open_new_tab(url)
    except webbrowser.Error as e:
        Log.warn(f"Failed to open calendar URL: {e}")
        Log.kv({"stage": "calendar", "result": "failed", "error": str(e)})
        return False

    if opened:
        Log.info(f"Opened calendar URL in browser: {url[:100]}...")
        Log.kv({"stage": "calendar", "action": "calendar_url_opened", "url": url})
    else:
        Log.warn("No browser available to open calendar URL")
        Log.kv({"stage": "calendar", "result": "failed", "reason": "no_browser"})
    return opened
