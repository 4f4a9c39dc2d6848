"""
Instruction prompt sent alongside the image to the vision model.
"""

from datetime import datetime
from typing import Optional

from dateutil import tz as dateutil_tz

# Flat duration used when the image states no end time
ESTIMATED_DURATION_HOURS = 2


def build_extraction_prompt(now: Optional[datetime] = None) -> str:
    """
    Build the extraction prompt with the current wall-clock time as context.

    Args:
        now: Context time; defaults to the current time in the system zone

    Returns:
        Prompt text
    """
    if now is None:
        now = datetime.now(dateutil_tz.tzlocal())
    elif now.tzinfo is None:
        now = now.replace(tzinfo=dateutil_tz.tzlocal())

    context_time = now.strftime("%A, %Y-%m-%d %H:%M:%S")
    utc_offset = now.strftime("%z") or "+0000"

    return (
        "You are an expert event extraction assistant. Perform careful OCR and layout analysis on the "
        "provided image (event invitation, flyer, schedule, or timetable) and extract structured event data.\n\n"
        f"CONTEXT: The current date and time is {context_time} (UTC offset {utc_offset}).\n\n"
        "INSTRUCTIONS:\n"
        "1. Read all text carefully, paying close attention to dates, times (AM/PM) and venue names.\n"
        "2. Tables and schedules: emit one event per row. When a heading (for example a date) sits above "
        "several rows, apply that heading to every row beneath it.\n"
        "3. Relative dates: resolve them against the current date above. A weekday name without a calendar "
        "date means the next future occurrence of that weekday after the current date. If the year is "
        "missing, assume the nearest future date.\n"
        f"4. Duration: if no end time is stated, set endDateTime exactly {ESTIMATED_DURATION_HOURS} hours "
        "after startDateTime.\n"
        "5. Recurrence: set recurrence to an RRULE of the form RRULE:FREQ=<DAILY|WEEKLY|MONTHLY|YEARLY>;"
        "INTERVAL=<N> only when the text explicitly states repetition (e.g. \"weekly\", \"every other "
        "Tuesday\") or gives a weekday with no calendar date (use RRULE:FREQ=WEEKLY;INTERVAL=1). A weekday "
        "that comes with a calendar date is a single event. Otherwise use an empty string.\n"
        "6. Do not invent information that is not present in the image.\n\n"
        "OUTPUT: Return ONLY a JSON array, no markdown and no commentary. Each element must have exactly "
        "these keys:\n"
        "- title: string, the event name\n"
        "- startDateTime: string, local time as YYYY-MM-DDTHH:mm:ss\n"
        "- endDateTime: string, local time as YYYY-MM-DDTHH:mm:ss\n"
        "- location: string, venue name or address, empty if unknown\n"
        "- description: string, any other details, empty if none\n"
        "- recurrence: string, RRULE or empty\n"
        "If several events are listed, return all of them as separate objects. "
        "If the image contains no event, return []."
    )
