"""
Extraction orchestrator: image in, EventCandidate list out.

A single attempt with no retry and no partial recovery; any failure
discards the whole batch.
"""

from typing import List, Optional

from eventsnap.errors import ExtractionFailed
from eventsnap.event_models import EventCandidate
from eventsnap.event_normalizer import normalize
from eventsnap.image_llm_client import ImageLLMClient, get_llm_client
from eventsnap.logging_helper import Log


class EventExtractor:
    """Runs one image through the configured transport and the normalizer."""

    def __init__(self, client: Optional[ImageLLMClient] = None):
        self.client = client if client is not None else get_llm_client()

    def extract(self, image_base64: str, mime_type: str) -> List[EventCandidate]:
        """
        Extract events from an image.

        Raises:
            ExtractionFailed: transport failure
            MalformedResponse: no JSON recoverable from the response
        """
        Log.section("Event Extraction")
        Log.info(f"Extracting events via {self.client.name} transport ({mime_type})")

        if not image_base64 or not mime_type:
            Log.kv({"stage": "extract", "result": "failed", "reason": "missing_image"})
            raise ExtractionFailed("Missing image data")

        raw_text = self.client.submit_for_extraction(image_base64, mime_type)
        if not raw_text:
            Log.kv({"stage": "extract", "result": "failed", "reason": "empty_response"})
            raise ExtractionFailed("Missing response text")

        # Relay responses may already be normalized JSON; normalizing again is harmless.
        events = normalize(raw_text)
        Log.kv({"stage": "extract", "result": "success", "transport": self.client.name, "event_count": len(events)})
        return events


def extract_events(image_base64: str, mime_type: str, client: Optional[ImageLLMClient] = None) -> List[EventCandidate]:
    return EventExtractor(client).extract(image_base64, mime_type)
