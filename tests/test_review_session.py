import json
from urllib.parse import parse_qs, urlparse

import pytest
from dateutil import tz

from eventsnap.errors import ExtractionFailed
from eventsnap.extractor import EventExtractor
from eventsnap.review_session import GENERIC_ERROR_MESSAGE, AppState, ReviewSession

EST = tz.tzoffset("EST", -5 * 3600)

THREE_EVENTS = json.dumps([
    {"title": "Opening", "startDateTime": "2025-06-02T09:00:00"},
    {"title": "Keynote", "startDateTime": "2025-06-02T10:00:00", "endDateTime": "2025-06-02T11:00:00"},
    {"title": "Lunch", "startDateTime": "2025-06-02T12:00:00", "recurrence": "RRULE:FREQ=DAILY;INTERVAL=1"},
])


@pytest.fixture
def make_session(fake_client_factory, link_opener, manual_timers):
    def _make(response_text=THREE_EVENTS, error=None, gate=None, timer_factory=None):
        client = fake_client_factory(response_text, error=error, gate=gate)
        return ReviewSession(
            extractor=EventExtractor(client),
            link_opener=link_opener,
            timer_factory=timer_factory or manual_timers,
            local_tz=EST,
        )
    return _make


def test_capture_enters_review_with_identity_queue(make_session, captured_image):
    session = make_session()
    session.capture(captured_image, background=False)
    assert session.state == AppState.REVIEW
    assert session.queue == [0, 1, 2]
    assert session.remaining == 3
    assert [e.title for e in session.events] == ["Opening", "Keynote", "Lunch"]
    assert session.preview is not None and session.preview.path.exists()


def test_background_capture(make_session, captured_image):
    session = make_session()
    session.capture(captured_image)
    session.wait_for_extraction(5)
    assert session.state == AppState.REVIEW
    assert session.queue == [0, 1, 2]


def test_empty_batch_is_immediately_complete(make_session, captured_image):
    session = make_session("[]")
    session.capture(captured_image, background=False)
    assert session.state == AppState.REVIEW
    assert session.is_complete
    assert session.front_editor() is None


def test_malformed_response_enters_error_and_keeps_preview(make_session, captured_image):
    session = make_session("nothing useful")
    session.capture(captured_image, background=False)
    assert session.state == AppState.ERROR
    assert session.error_message == GENERIC_ERROR_MESSAGE
    assert session.preview is not None and not session.preview.released


def test_transport_failure_surfaces_upstream_message(make_session, captured_image):
    session = make_session(error=ExtractionFailed("failed", upstream_message="Too many requests."))
    session.capture(captured_image, background=False)
    assert session.state == AppState.ERROR
    assert session.error_message == "Too many requests."


def test_transport_failure_without_message_is_generic(make_session, captured_image):
    session = make_session(error=ExtractionFailed("failed"))
    session.capture(captured_image, background=False)
    assert session.error_message == GENERIC_ERROR_MESSAGE


def test_error_then_reset_returns_to_idle(make_session, captured_image):
    session = make_session("nothing useful")
    session.capture(captured_image, background=False)
    preview = session.preview
    session.reset()
    assert session.state == AppState.IDLE
    assert session.error_message == ""
    assert session.preview is None
    assert preview.released and not preview.path.exists()


def test_capture_while_processing_is_rejected(make_session, captured_image, gate):
    session = make_session(gate=gate)
    session.capture(captured_image)
    try:
        with pytest.raises(RuntimeError):
            session.capture(captured_image)
    finally:
        gate.set()
        session.wait_for_extraction(5)
    assert session.state == AppState.REVIEW


def test_late_completion_after_reset_is_ignored(make_session, captured_image, gate):
    session = make_session(gate=gate)
    session.capture(captured_image)
    session.reset()
    gate.set()
    session.wait_for_extraction(5)
    assert session.state == AppState.IDLE
    assert session.events == []
    assert session.queue == []


def test_stale_token_is_rejected(make_session, captured_image):
    session = make_session()
    token = session.capture(captured_image, background=False)
    session.reset()
    assert session.complete_extraction_success(token, []) is False
    assert session.complete_extraction_failure(token, "late") is False
    assert session.state == AppState.IDLE


def test_new_capture_releases_previous_preview(make_session, captured_image):
    session = make_session()
    session.capture(captured_image, background=False)
    first = session.preview
    session.capture(captured_image, background=False)
    assert first.released
    assert session.preview is not first
    assert not session.preview.released


def test_visible_stack_shows_three_with_only_front_interactive(make_session, captured_image):
    session = make_session(json.dumps([{"title": str(i)} for i in range(5)]))
    session.capture(captured_image, background=False)
    stack = session.visible_stack()
    assert [(index, interactive) for index, _, interactive in stack] == [(0, True), (1, False), (2, False)]


def test_discard_removes_front_immediately(make_session, captured_image, link_opener):
    session = make_session()
    session.capture(captured_image, background=False)
    assert session.discard() == 0
    assert session.queue == [1, 2]
    assert link_opener.urls == []


def test_commit_opens_link_then_dismisses_after_delay(make_session, captured_image, link_opener, manual_timers):
    session = make_session()
    session.capture(captured_image, background=False)

    url = session.commit()
    assert link_opener.urls == [url]
    assert session.saved_index == 0
    assert session.queue == [0, 1, 2]

    timer = manual_timers.timers[-1]
    assert timer.started and timer.daemon
    assert timer.interval == session.commit_delay

    timer.fire()
    assert session.queue == [1, 2]
    assert session.saved_index is None


def test_double_commit_opens_link_once(make_session, captured_image, link_opener):
    session = make_session()
    session.capture(captured_image, background=False)
    session.commit()
    assert session.commit() is None
    assert len(link_opener.urls) == 1


def test_commit_and_discard_on_empty_queue_are_noops(make_session, captured_image, link_opener):
    session = make_session("[]")
    assert session.commit() is None
    assert session.discard() is None
    session.capture(captured_image, background=False)
    assert session.commit() is None
    assert session.discard() is None
    assert link_opener.urls == []


def test_three_candidate_walkthrough(make_session, captured_image, manual_timers):
    session = make_session()
    session.capture(captured_image, background=False)

    session.discard()

    editor = session.front_editor()
    assert editor.index == 1
    editor.set_field("title", "Keynote (room B)")
    editor.set_recurrence(enabled=True, unit="WEEKLY", interval=2)
    url = session.commit()
    manual_timers.timers[-1].fire()

    session.discard()

    assert session.queue == []
    assert session.is_complete
    assert session.events[1].title == "Keynote (room B)"
    assert session.events[1].recurrence == "RRULE:FREQ=WEEKLY;INTERVAL=2"
    query = parse_qs(urlparse(url).query)
    assert query["text"] == ["Keynote (room B)"]
    assert query["recur"] == ["RRULE:FREQ=WEEKLY;INTERVAL=2"]


def test_queue_only_shrinks_from_front(make_session, captured_image, manual_timers):
    session = make_session(json.dumps([{"title": str(i)} for i in range(6)]))
    session.capture(captured_image, background=False)
    initial = list(session.queue)
    for action in ("discard", "commit", "discard", "commit", "commit"):
        getattr(session, action)()
        if action == "commit":
            manual_timers.timers[-1].fire()
        assert len(set(session.queue)) == len(session.queue)
        assert session.queue == initial[len(initial) - len(session.queue):]
    assert session.queue == [5]


def test_discard_during_pending_commit_keeps_next_card(make_session, captured_image, manual_timers):
    session = make_session()
    session.capture(captured_image, background=False)
    session.commit()
    session.discard()
    manual_timers.timers[-1].fire()
    assert session.queue == [1, 2]


def test_reset_cancels_pending_commit(make_session, captured_image, manual_timers):
    session = make_session()
    session.capture(captured_image, background=False)
    session.commit()
    session.reset()
    timer = manual_timers.timers[-1]
    assert timer.cancelled
    assert session.queue == []


def test_editor_persists_until_commit(make_session, captured_image):
    session = make_session()
    session.capture(captured_image, background=False)
    session.front_editor().set_field("location", "Hall A")
    assert session.front_editor().event.location == "Hall A"
    assert session.events[0].location == ""


def test_editor_date_inputs_and_all_day(make_session, captured_image):
    session = make_session()
    session.capture(captured_image, background=False)
    editor = session.front_editor()
    assert editor.start_input == "2025-06-02T09:00"
    assert editor.end_input == ""

    editor.set_end_input("2025-06-02T10:30")
    assert editor.event.end_date_time == "2025-06-02T15:30:00Z"

    editor.set_all_day(True)
    assert editor.start_input == "2025-06-02"
    editor.set_start_input("2025-06-03")
    assert editor.event.start_date_time == "2025-06-03T05:00:00Z"


def test_editor_recurrence_decomposition(make_session, captured_image):
    session = make_session()
    session.capture(captured_image, background=False)
    session.discard()
    session.discard()
    editor = session.front_editor()
    assert editor.recurrence_enabled
    assert (editor.recurrence_unit, editor.recurrence_interval) == ("DAILY", 1)

    assert editor.set_recurrence(interval=5000) == "RRULE:FREQ=DAILY;INTERVAL=999"
    assert editor.set_recurrence(enabled=False) == ""
    with pytest.raises(ValueError):
        editor.set_recurrence(unit="HOURLY")


def test_editor_rejects_unknown_field(make_session, captured_image):
    session = make_session()
    session.capture(captured_image, background=False)
    with pytest.raises(KeyError):
        session.front_editor().set_field("organizer", "me")


def test_real_timer_dismisses_saved_card(make_session, captured_image):
    import threading

    session = make_session(timer_factory=threading.Timer)
    session.commit_delay = 0.01
    session.capture(captured_image, background=False)
    session.commit()
    session._pending_timers[-1].join(5)
    assert session.queue == [1, 2]
