"""
Review session state machine.

Owns the scan lifecycle (IDLE -> PROCESSING -> REVIEW / ERROR), the batch of
extracted candidates, the review queue and the preview resource. The queue
holds indices into the candidate list; it only ever shrinks from the front.

Extraction runs on a background thread. Each capture bumps a generation
token, and a completion carrying an outdated token is dropped, so a reset
during PROCESSING cannot be overwritten by a late result.
"""

import threading
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from eventsnap.calendar_link import DEFAULT_CALENDAR_HOST, encode, open_calendar_url
from eventsnap.datetime_codec import (
    DEFAULT_RECURRENCE_INTERVAL,
    DEFAULT_RECURRENCE_UNIT,
    build_rule,
    from_local_input,
    parse_rule,
    to_local_date_input,
    to_local_input,
)
from eventsnap.errors import ExtractionFailed, MalformedResponse
from eventsnap.event_models import RECURRENCE_UNITS, EventCandidate
from eventsnap.extractor import EventExtractor
from eventsnap.image_capture import CapturedImage, PreviewImage
from eventsnap.logging_helper import Log

GENERIC_ERROR_MESSAGE = "Sorry, we couldn't read the event details. Please try again."

# Front card plus two dimmed cards behind it
MAX_VISIBLE_CARDS = 3
# Time the "Saved" acknowledgment stays up before the card leaves the queue
COMMIT_DISMISS_DELAY = 0.5

TEXT_FIELDS = ("title", "location", "description")


class AppState(Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    REVIEW = "review"
    ERROR = "error"


class EventEditor:
    """
    Edit state for the front candidate: a working copy of the event, the
    decomposed recurrence rule and the all-day toggle.
    """

    def __init__(self, index: int, event: EventCandidate, calendar_host: str = DEFAULT_CALENDAR_HOST, local_tz=None):
        self.index = index
        self.event = event.copy()
        self.calendar_host = calendar_host
        self.local_tz = local_tz
        self.all_day = False

        parts = parse_rule(event.recurrence)
        self.recurrence_enabled = parts is not None
        self.recurrence_unit = parts.unit if parts else DEFAULT_RECURRENCE_UNIT
        self.recurrence_interval = parts.interval if parts else DEFAULT_RECURRENCE_INTERVAL

    def set_field(self, name: str, value: str) -> None:
        if name not in TEXT_FIELDS:
            raise KeyError(name)
        setattr(self.event, name, value)

    def _render(self, instant) -> str:
        if self.all_day:
            return to_local_date_input(instant, self.local_tz)
        return to_local_input(instant, self.local_tz)

    @property
    def start_input(self) -> str:
        return self._render(self.event.start_date_time)

    @property
    def end_input(self) -> str:
        return self._render(self.event.end_date_time)

    def set_start_input(self, value: str) -> None:
        """Accepts 'YYYY-MM-DDTHH:mm', or 'YYYY-MM-DD' (local midnight) for all-day events."""
        self.event.start_date_time = from_local_input(value, self.local_tz)

    def set_end_input(self, value: str) -> None:
        self.event.end_date_time = from_local_input(value, self.local_tz)

    def set_all_day(self, all_day: bool) -> None:
        self.all_day = bool(all_day)

    def set_recurrence(
        self,
        enabled: Optional[bool] = None,
        unit: Optional[str] = None,
        interval: Optional[int] = None,
    ) -> str:
        """
        Update the recurrence controls and recompose the rule.

        Returns:
            The resulting rule string, empty when recurrence is disabled
        """
        if enabled is not None:
            self.recurrence_enabled = bool(enabled)
        if unit is not None:
            if unit not in RECURRENCE_UNITS:
                raise ValueError(f"Invalid recurrence unit: {unit}")
            self.recurrence_unit = unit
        if interval is not None:
            self.recurrence_interval = interval

        if self.recurrence_enabled:
            self.event.recurrence = build_rule(self.recurrence_unit, self.recurrence_interval)
        else:
            self.event.recurrence = ""
        return self.event.recurrence

    @property
    def calendar_url(self) -> str:
        return encode(self.event, host=self.calendar_host, local_tz=self.local_tz)


class ReviewSession:
    """
    Single owned context for one user's scan-and-review session.
    """

    def __init__(
        self,
        extractor: Optional[EventExtractor] = None,
        link_opener: Callable[[str], bool] = open_calendar_url,
        commit_delay: float = COMMIT_DISMISS_DELAY,
        timer_factory=threading.Timer,
        calendar_host: str = DEFAULT_CALENDAR_HOST,
        local_tz=None,
    ):
        self.extractor = extractor if extractor is not None else EventExtractor()
        self.link_opener = link_opener
        self.commit_delay = commit_delay
        self.timer_factory = timer_factory
        self.calendar_host = calendar_host
        self.local_tz = local_tz

        self.state = AppState.IDLE
        self.events: List[EventCandidate] = []
        self.queue: List[int] = []
        self.error_message = ""
        self.preview: Optional[PreviewImage] = None
        self.saved_index: Optional[int] = None

        self._lock = threading.RLock()
        self._generation = 0
        self._worker: Optional[threading.Thread] = None
        self._editors: Dict[int, EventEditor] = {}
        self._pending_timers: list = []

    # -- state helpers -------------------------------------------------------

    def _transition(self, new_state: AppState) -> None:
        previous_state = self.state
        self.state = new_state
        Log.info(f"Session state transition: {previous_state.value} -> {new_state.value}")

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def remaining(self) -> int:
        return len(self.queue)

    @property
    def is_complete(self) -> bool:
        """True once every candidate in the batch has been saved or discarded."""
        return self.state == AppState.REVIEW and not self.queue

    # -- capture and extraction ----------------------------------------------

    def capture(self, image: CapturedImage, background: bool = True) -> int:
        """
        Start extraction for a newly captured image.

        Args:
            image: Captured image
            background: Run extraction on a worker thread

        Returns:
            Generation token of this extraction

        Raises:
            RuntimeError: an extraction is already in flight
        """
        Log.section("Review Session")
        with self._lock:
            if self.state == AppState.PROCESSING:
                raise RuntimeError("An extraction is already in progress")

            self._cancel_timers()
            if self.preview is not None:
                self.preview.release()
            self.preview = PreviewImage(image)

            self.events = []
            self.queue = []
            self._editors = {}
            self.saved_index = None
            self.error_message = ""
            self._generation += 1
            token = self._generation
            self._transition(AppState.PROCESSING)

        Log.kv({"stage": "review", "action": "capture", "generation": token, "mime_type": image.mime_type})

        image_base64 = image.base64
        if background:
            self._worker = threading.Thread(
                target=self._run_extraction,
                args=(token, image_base64, image.mime_type),
                daemon=True,
                name="EventSnapExtractor",
            )
            self._worker.start()
        else:
            self._run_extraction(token, image_base64, image.mime_type)
        return token

    def wait_for_extraction(self, timeout: Optional[float] = None) -> None:
        worker = self._worker
        if worker is not None:
            worker.join(timeout)

    def _run_extraction(self, token: int, image_base64: str, mime_type: str) -> None:
        try:
            events = self.extractor.extract(image_base64, mime_type)
        except MalformedResponse as e:
            Log.error(f"Unusable model response: {e}")
            self.complete_extraction_failure(token, GENERIC_ERROR_MESSAGE)
        except ExtractionFailed as e:
            Log.error(f"Extraction failed: {e} ({e.upstream_message})")
            self.complete_extraction_failure(token, e.upstream_message or GENERIC_ERROR_MESSAGE)
        except Exception as e:
            Log.error(f"Unexpected error during extraction: {e}")
            Log.kv({"stage": "review", "result": "processing_exception", "error": str(e)})
            self.complete_extraction_failure(token, GENERIC_ERROR_MESSAGE)
        else:
            self.complete_extraction_success(token, events)

    def _is_current(self, token: int) -> bool:
        if token != self._generation or self.state != AppState.PROCESSING:
            Log.info(f"Ignoring stale extraction result (generation {token}, current {self._generation})")
            Log.kv({"stage": "review", "result": "stale_completion", "generation": token})
            return False
        return True

    def complete_extraction_success(self, token: int, events: List[EventCandidate]) -> bool:
        """Enter REVIEW with the batch. An empty batch goes straight to the finished view."""
        with self._lock:
            if not self._is_current(token):
                return False
            self.events = list(events)
            self.queue = list(range(len(self.events)))
            self._editors = {}
            self._transition(AppState.REVIEW)
            Log.kv({"stage": "review", "result": "success", "event_count": len(self.events)})
            return True

    def complete_extraction_failure(self, token: int, message: str) -> bool:
        """Enter ERROR. The preview is kept so the user can see what was scanned."""
        with self._lock:
            if not self._is_current(token):
                return False
            self.error_message = message or GENERIC_ERROR_MESSAGE
            self._transition(AppState.ERROR)
            Log.kv({"stage": "review", "result": "failed", "message": self.error_message})
            return True

    # -- review queue --------------------------------------------------------

    def front_editor(self) -> Optional[EventEditor]:
        """Editor for the front candidate, the only one that accepts input."""
        with self._lock:
            if self.state != AppState.REVIEW or not self.queue:
                return None
            index = self.queue[0]
            editor = self._editors.get(index)
            if editor is None:
                editor = EventEditor(index, self.events[index], self.calendar_host, self.local_tz)
                self._editors[index] = editor
            return editor

    def visible_stack(self) -> List[Tuple[int, EventCandidate, bool]]:
        """
        Cards to render, front first, as (index, event, interactive).
        Cards behind the front are read-only.
        """
        with self._lock:
            if self.state != AppState.REVIEW:
                return []
            stack = []
            for position, index in enumerate(self.queue[:MAX_VISIBLE_CARDS]):
                event = self._editors[index].event if index in self._editors else self.events[index]
                stack.append((index, event, position == 0))
            return stack

    def commit(self) -> Optional[str]:
        """
        Save the front candidate: write edits back, open the deep link, mark it
        saved and drop it from the queue after the acknowledgment delay.

        Returns:
            The opened URL, or None when there was nothing to commit
        """
        with self._lock:
            editor = self.front_editor()
            if editor is None:
                Log.info("Commit ignored - no candidate to review")
                return None
            index = editor.index
            if self.saved_index == index:
                Log.info(f"Commit ignored - candidate {index} already saved")
                return None

            self.events[index] = editor.event.copy()
            url = editor.calendar_url
            self.saved_index = index

            timer = self.timer_factory(self.commit_delay, self._dismiss_saved, args=(index, self._generation))
            timer.daemon = True
            self._pending_timers.append(timer)

        Log.kv({"stage": "review", "action": "commit", "index": index, "title": editor.event.title})
        self.link_opener(url)
        timer.start()
        return url

    def _dismiss_saved(self, index: int, token: int) -> None:
        with self._lock:
            if token != self._generation:
                return
            if self.queue and self.queue[0] == index:
                self.queue.pop(0)
                self._editors.pop(index, None)
                Log.kv({"stage": "review", "action": "dismiss_saved", "index": index, "remaining": len(self.queue)})
            if self.saved_index == index:
                self.saved_index = None

    def discard(self) -> Optional[int]:
        """
        Skip the front candidate without opening a link.

        Returns:
            The discarded index, or None when the queue was empty
        """
        with self._lock:
            if self.state != AppState.REVIEW or not self.queue:
                Log.info("Discard ignored - no candidate to review")
                return None
            index = self.queue.pop(0)
            self._editors.pop(index, None)
            if self.saved_index == index:
                self.saved_index = None
            Log.kv({"stage": "review", "action": "discard", "index": index, "remaining": len(self.queue)})
            return index

    # -- reset ---------------------------------------------------------------

    def _cancel_timers(self) -> None:
        for timer in self._pending_timers:
            timer.cancel()
        self._pending_timers = []

    def reset(self) -> None:
        """Return to IDLE from any state and release the preview."""
        with self._lock:
            self._generation += 1
            self._cancel_timers()
            self.events = []
            self.queue = []
            self._editors = {}
            self.saved_index = None
            self.error_message = ""
            if self.preview is not None:
                self.preview.release()
                self.preview = None
            self._transition(AppState.IDLE)
        Log.kv({"stage": "review", "action": "reset", "generation": self._generation})
