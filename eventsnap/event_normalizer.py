"""
Event normalizer for converting raw model text into EventCandidate records.

The model is asked for a JSON array but is not guaranteed to honor it: the
text may carry markdown fences, prose around the JSON, or a single object
instead of an array of one. Shape is handled permissively; a response with
no recoverable JSON at all raises MalformedResponse so callers can tell
"nothing extracted" apart from "response unusable".
"""

import json
import re
from typing import Any, List, Optional

from eventsnap.errors import MalformedResponse
from eventsnap.event_models import DEFAULT_TITLE, WIRE_FIELDS, EventCandidate
from eventsnap.logging_helper import Log

_FENCE_RE = re.compile(r"```[A-Za-z]*")


def strip_code_fences(text: str) -> str:
    """Remove markdown code-fence markers (```json, ```) wherever they appear."""
    return _FENCE_RE.sub("", text)


def _slice_between(text: str, opener: str, closer: str) -> Optional[str]:
    first = text.find(opener)
    last = text.rfind(closer)
    if first == -1 or last == -1 or last < first:
        return None
    return text[first:last + 1]


def _json_candidates(text: str) -> List[str]:
    """
    Substrings worth handing to the JSON parser, most specific first.

    Whichever bracket opens first decides the shape: a bracketed array, or a
    braced object wrapped in a one-element array. The other slice is still
    tried when the first fails to parse, e.g. when prose such as
    "[see below]" precedes the JSON.
    """
    candidates = []
    array_text = _slice_between(text, "[", "]")
    if array_text is not None:
        candidates.append(array_text)
    object_text = _slice_between(text, "{", "}")
    if object_text is not None:
        candidates.append(f"[{object_text}]")
        # A bare object may hold bracketed text such as "Room [2]"
        if array_text is not None and text.find("{") < text.find("["):
            candidates.reverse()
    return candidates


def _to_candidate(item: dict) -> EventCandidate:
    values = {}
    for wire_key, attr in WIRE_FIELDS.items():
        value = item.get(wire_key)
        if not value:
            value = DEFAULT_TITLE if wire_key == "title" else ""
        values[attr] = value
    return EventCandidate(**values)


def coerce_candidates(data: Any) -> List[EventCandidate]:
    """
    Map already-parsed JSON to EventCandidate records.

    Falsy fields get defaults; unknown keys are dropped; non-string values are
    passed through untouched. Elements that are not JSON objects cannot carry
    an event and are skipped.
    """
    if data is None:
        return []
    items = data if isinstance(data, list) else [data]

    candidates = []
    for position, item in enumerate(items):
        if not isinstance(item, dict):
            Log.warn(f"Skipping non-object element at position {position}: {type(item).__name__}")
            continue
        candidates.append(_to_candidate(item))
    return candidates


def normalize(raw_text: str) -> List[EventCandidate]:
    """
    Recover a list of EventCandidate from free-form model text.

    Args:
        raw_text: Text returned by the model or the relay

    Returns:
        List of candidates, possibly empty; never contains None

    Raises:
        MalformedResponse: no JSON array/object could be located or parsed
    """
    Log.section("Event Normalizer")

    if not isinstance(raw_text, str) or not raw_text.strip():
        Log.warn("Empty model response - nothing to normalize")
        Log.kv({"stage": "normalize", "result": "failed", "reason": "empty_text"})
        raise MalformedResponse("Model response was empty", raw_text or "")

    text = strip_code_fences(raw_text).strip()
    candidates = _json_candidates(text)
    if not candidates:
        # Bare JSON null means the model found no event
        if text == "null":
            Log.info("Model reported no events (null)")
            Log.kv({"stage": "normalize", "result": "no_event"})
            return []
        Log.warn(f"No JSON found in response: {text[:100]}")
        Log.kv({"stage": "normalize", "result": "failed", "reason": "no_json"})
        raise MalformedResponse("No JSON array or object found in model response", raw_text)

    last_error = None
    for candidate_text in candidates:
        try:
            data = json.loads(candidate_text)
        except json.JSONDecodeError as err:
            last_error = err
            continue

        events = coerce_candidates(data)
        Log.info(f"Normalized {len(events)} event(s)")
        Log.kv({
            "stage": "normalize",
            "result": "success" if events else "no_event",
            "event_count": len(events),
            "titles": ", ".join(str(event.title) for event in events),
        })
        return events

    Log.warn(f"Could not parse JSON from response: {last_error}")
    Log.kv({"stage": "normalize", "result": "failed", "reason": "json_parse_error", "error": str(last_error)})
    raise MalformedResponse(f"Model response is not valid JSON: {last_error}", raw_text)
