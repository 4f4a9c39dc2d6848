"""
Image LLM Client interface for submitting images for event extraction.
Supports StubImageLLMClient (offline), GeminiImageLLMClient (direct model
call) and RelayImageLLMClient (server-side relay holding the credential).

Every implementation returns the raw response text; normalization is done
by the caller.
"""

import json
from abc import ABC, abstractmethod
from typing import Optional

import requests

from eventsnap.errors import ConfigurationError, ExtractionFailed
from eventsnap.extraction_prompt import build_extraction_prompt
from eventsnap.logging_helper import Log
from eventsnap.settings_manager import get_app_config

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"
THINKING_BUDGET = 1024


class ImageLLMClient(ABC):
    """Abstract base class for image LLM clients."""

    name = "base"

    @abstractmethod
    def submit_for_extraction(self, image_base64: str, mime_type: str) -> str:
        """
        Submit an image for event extraction.

        Args:
            image_base64: Base64-encoded image bytes
            mime_type: Image MIME type, e.g. "image/png"

        Returns:
            Raw response text, expected to contain a JSON array of events

        Raises:
            ExtractionFailed: on any transport failure or missing response text
        """


def _error_message_from_response(response: requests.Response) -> Optional[str]:
    """Pull a human-readable message out of an error body, if there is one."""
    try:
        body = response.json()
    except ValueError:
        text = response.text.strip()
        return text[:500] if text else None

    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return error.get("message") or json.dumps(error)[:500]
        if error:
            return str(error)
    return None


class StubImageLLMClient(ImageLLMClient):
    """
    Stub LLM client for offline testing.
    Returns a hardcoded response in the real model format, code fences included.
    """

    name = "stub"

    def submit_for_extraction(self, image_base64: str, mime_type: str) -> str:
        Log.section("Stub LLM Client")
        Log.info("Using stub LLM client (offline mode)")
        Log.kv({"stage": "llm", "provider": "stub", "image_base64_length": len(image_base64), "mime_type": mime_type})

        events = [
            {
                "title": "Sample Meeting",
                "startDateTime": "2025-06-02T10:30:00",
                "endDateTime": "2025-06-02T11:30:00",
                "location": "Conference Room A",
                "description": "Quarterly business review. This is a dummy event for stub client.",
                "recurrence": "",
            },
            {
                "title": "Team Standup",
                "startDateTime": "2025-06-03T09:00:00",
                "endDateTime": "",
                "location": "",
                "description": "",
                "recurrence": "RRULE:FREQ=WEEKLY;INTERVAL=1",
            },
        ]
        content = "```json\n" + json.dumps(events, indent=2) + "\n```"
        Log.kv({"stage": "llm", "provider": "stub", "result": "success", "response_length": len(content)})
        return content


class GeminiImageLLMClient(ImageLLMClient):
    """
    Direct mode: calls the Gemini generateContent REST endpoint from the client.
    """

    name = "direct"

    def __init__(self, api_key: str, model: str, timeout: Optional[float] = None):
        """
        Initialize Gemini client.

        Args:
            api_key: Model API key
            model: Model id, e.g. "gemini-2.5-flash"
            timeout: Request timeout in seconds; None waits for the transport to give up
        """
        if not api_key:
            raise ConfigurationError("API key not found. Set EVENTSNAP_API_KEY (or API_KEY) in the environment.")
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.api_url = f"{GEMINI_API_BASE}/{model}:generateContent"

    def build_payload(self, image_base64: str, mime_type: str, prompt: str) -> dict:
        return {
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {"inline_data": {"mime_type": mime_type, "data": image_base64}},
                        {"text": prompt},
                    ],
                }
            ],
            "generationConfig": {
                "responseMimeType": "application/json",
                "thinkingConfig": {"thinkingBudget": THINKING_BUDGET},
            },
        }

    @staticmethod
    def response_text(result: dict) -> str:
        """Concatenate the text parts of the first candidate."""
        candidates = result.get("candidates") or [{}]
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(part.get("text", "") for part in parts if isinstance(part, dict))

    def submit_for_extraction(self, image_base64: str, mime_type: str) -> str:
        Log.section("Gemini LLM Client")
        Log.info(f"Using Gemini API ({self.model})")

        prompt = build_extraction_prompt()
        payload = self.build_payload(image_base64, mime_type, prompt)
        headers = {
            "x-goog-api-key": self.api_key,
            "Content-Type": "application/json",
        }

        Log.kv({
            "stage": "llm",
            "provider": "gemini",
            "model": self.model,
            "status": "requesting",
            "mime_type": mime_type,
            "base64_preview": image_base64[:50] + "..." if len(image_base64) > 50 else image_base64,
        })

        try:
            response = requests.post(self.api_url, headers=headers, json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            Log.error(f"Gemini API request failed: {e}")
            Log.kv({"stage": "llm", "provider": "gemini", "result": "failed", "reason": "api_error", "error": str(e)})
            raise ExtractionFailed("Model request failed", upstream_message=str(e)) from e

        Log.info(f"API response status: {response.status_code}")
        if not response.ok:
            upstream = _error_message_from_response(response)
            Log.error(f"Gemini API error: {upstream}")
            Log.kv({"stage": "llm", "provider": "gemini", "result": "failed", "status": response.status_code})
            raise ExtractionFailed(
                f"Model request failed with status {response.status_code}",
                upstream_message=upstream,
                status_code=response.status_code,
            )

        try:
            content = self.response_text(response.json())
        except (ValueError, AttributeError) as e:
            Log.error(f"Unreadable Gemini response body: {e}")
            raise ExtractionFailed("Unreadable response from model", upstream_message=str(e)) from e

        if not content:
            Log.warn("Empty response from Gemini")
            Log.kv({"stage": "llm", "provider": "gemini", "result": "failed", "reason": "empty_response"})
            raise ExtractionFailed("Empty response from model")

        Log.kv({"stage": "llm", "provider": "gemini", "result": "success", "response_length": len(content)})
        return content


class RelayImageLLMClient(ImageLLMClient):
    """
    Relay mode: posts the image to a relay that holds the credential and
    applies its own rate limit.
    """

    name = "relay"

    def __init__(self, relay_url: str, timeout: Optional[float] = None):
        if not relay_url:
            raise ConfigurationError("Relay URL is not configured. Set EVENTSNAP_RELAY_URL.")
        self.relay_url = relay_url
        self.timeout = timeout

    def submit_for_extraction(self, image_base64: str, mime_type: str) -> str:
        Log.section("Relay LLM Client")
        Log.info(f"Posting image to relay: {self.relay_url}")
        Log.kv({"stage": "llm", "provider": "relay", "status": "requesting", "image_base64_length": len(image_base64)})

        try:
            response = requests.post(
                self.relay_url,
                json={"base64Image": image_base64, "mimeType": mime_type},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            Log.error(f"Relay request failed: {e}")
            Log.kv({"stage": "llm", "provider": "relay", "result": "failed", "reason": "network_error", "error": str(e)})
            raise ExtractionFailed("Relay request failed", upstream_message=str(e)) from e

        if not response.ok:
            upstream = _error_message_from_response(response)
            Log.error(f"Relay error ({response.status_code}): {upstream}")
            Log.kv({"stage": "llm", "provider": "relay", "result": "failed", "status": response.status_code})
            raise ExtractionFailed(
                f"Relay request failed with status {response.status_code}",
                upstream_message=upstream,
                status_code=response.status_code,
            )

        content = response.text
        if not content:
            Log.warn("Empty response from relay")
            raise ExtractionFailed("Empty response from relay")

        Log.kv({"stage": "llm", "provider": "relay", "result": "success", "response_length": len(content)})
        return content


def get_llm_client(config=None) -> ImageLLMClient:
    """
    Factory function to get the configured LLM client.

    Args:
        config: AppConfig; loaded from settings and environment when None

    Returns:
        ImageLLMClient instance

    Raises:
        ConfigurationError: direct mode without an API key, or unknown transport
    """
    if config is None:
        config = get_app_config()

    if config.transport == "stub":
        Log.info("Stub transport selected - using stub client")
        return StubImageLLMClient()
    if config.transport == "relay":
        Log.info("Relay transport selected")
        return RelayImageLLMClient(config.relay_url, timeout=config.request_timeout)
    if config.transport == "direct":
        Log.info("Direct transport selected - using Gemini client")
        return GeminiImageLLMClient(config.api_key, config.model, timeout=config.request_timeout)
    raise ConfigurationError(f"Unknown transport: {config.transport}")
