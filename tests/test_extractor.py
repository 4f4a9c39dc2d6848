from datetime import datetime

import pytest

from eventsnap.errors import ExtractionFailed, MalformedResponse
from eventsnap.extraction_prompt import build_extraction_prompt
from eventsnap.extractor import EventExtractor, extract_events


def test_extract_normalizes_transport_text(fake_client_factory):
    client = fake_client_factory('```json\n[{"title": "Book Club", "location": "Library"}]\n```')
    events = EventExtractor(client).extract("aW1n", "image/png")
    assert len(events) == 1
    assert events[0].title == "Book Club"
    assert client.calls == [("aW1n", "image/png")]


def test_extract_accepts_pre_normalized_relay_output(fake_client_factory):
    client = fake_client_factory(
        '[{"title": "Gala", "location": "", "description": "", "startDateTime": "", '
        '"endDateTime": "", "recurrence": ""}]'
    )
    events = extract_events("aW1n", "image/png", client)
    assert events[0].title == "Gala"


def test_transport_failure_propagates(fake_client_factory):
    client = fake_client_factory(error=ExtractionFailed("boom", upstream_message="quota exceeded"))
    with pytest.raises(ExtractionFailed) as excinfo:
        EventExtractor(client).extract("aW1n", "image/png")
    assert excinfo.value.upstream_message == "quota exceeded"


def test_empty_transport_text_is_a_failure(fake_client_factory):
    with pytest.raises(ExtractionFailed):
        EventExtractor(fake_client_factory("")).extract("aW1n", "image/png")


def test_missing_image_is_a_failure(fake_client_factory):
    client = fake_client_factory("[]")
    with pytest.raises(ExtractionFailed):
        EventExtractor(client).extract("", "image/png")
    assert client.calls == []


def test_unusable_text_raises_malformed_response(fake_client_factory):
    with pytest.raises(MalformedResponse):
        EventExtractor(fake_client_factory("no events here")).extract("aW1n", "image/png")


def test_prompt_covers_extraction_rules():
    prompt = build_extraction_prompt(datetime(2025, 6, 4, 15, 30))
    assert "Wednesday, 2025-06-04 15:30:00" in prompt
    assert "next future occurrence" in prompt
    assert "one event per row" in prompt
    assert "exactly 2 hours" in prompt
    assert "RRULE:FREQ=" in prompt
    for key in ("title", "startDateTime", "endDateTime", "location", "description", "recurrence"):
        assert f"- {key}:" in prompt
