"""
Event data models for calendar event extraction.
Defines EventCandidate (the unit produced by extraction and edited in review).
"""

from dataclasses import asdict, dataclass, replace
from typing import Any, Dict

DEFAULT_TITLE = "Untitled Event"

RECURRENCE_UNITS = ("DAILY", "WEEKLY", "MONTHLY", "YEARLY")

# Wire keys used by the model output and the relay, mapped to attribute names
WIRE_FIELDS = {
    "title": "title",
    "location": "location",
    "description": "description",
    "startDateTime": "start_date_time",
    "endDateTime": "end_date_time",
    "recurrence": "recurrence",
}


@dataclass
class EventCandidate:
    """
    One extracted, editable, not-yet-committed event.

    Date fields hold instant strings exactly as received or as produced by
    the date codec; an empty string means unset.
    """
    title: Any = DEFAULT_TITLE
    location: Any = ""
    description: Any = ""
    start_date_time: Any = ""
    end_date_time: Any = ""
    recurrence: Any = ""  # RRULE:FREQ=<UNIT>;INTERVAL=<N>, empty when not recurring

    def copy(self) -> "EventCandidate":
        return replace(self)

    def to_wire(self) -> Dict[str, Any]:
        """Serialize using the camelCase keys of the model/relay contract."""
        values = asdict(self)
        return {wire: values[attr] for wire, attr in WIRE_FIELDS.items()}
