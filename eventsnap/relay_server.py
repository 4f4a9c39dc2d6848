"""FastAPI relay that keeps the model credential server-side."""
import os
import threading
import time
from collections import defaultdict, deque
from datetime import datetime, timezone
from typing import Deque, Dict, List, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from eventsnap import __version__
from eventsnap.errors import ConfigurationError, EventSnapError
from eventsnap.extractor import EventExtractor
from eventsnap.image_llm_client import GeminiImageLLMClient, ImageLLMClient
from eventsnap.logging_helper import Log

DEFAULT_RATE_LIMIT = 10  # requests per client per window
RATE_LIMIT_WINDOW_SECONDS = 60.0
DEFAULT_MAX_IMAGE_BYTES = 10 * 1024 * 1024  # base64 text length

RATE_LIMIT_MESSAGE = "Too many requests. Please try again in a minute."


class ExtractPayload(BaseModel):
    """Relay request body."""
    base64Image: Optional[str] = None
    mimeType: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str
    timestamp: str
    version: str


class SlidingWindowRateLimiter:
    """Per-client request ceiling over a rolling time window."""

    def __init__(self, limit: int, window_seconds: float = RATE_LIMIT_WINDOW_SECONDS, clock=time.monotonic):
        self.limit = limit
        self.window_seconds = window_seconds
        self.clock = clock
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def allow(self, client_id: str) -> bool:
        now = self.clock()
        with self._lock:
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(now)
            hits = self._hits[client_id]
            while hits and now - hits[0] >= self.window_seconds:
                hits.popleft()
            if len(hits) >= self.limit:
                return False
            hits.append(now)
            return True

    def _sweep(self, now: float) -> None:
        """Forget clients with no hit inside the current window."""
        idle = [
            client_id for client_id, hits in self._hits.items()
            if not hits or now - hits[-1] >= self.window_seconds
        ]
        for client_id in idle:
            del self._hits[client_id]
        self._last_sweep = now

    def tracked_clients(self) -> List[str]:
        with self._lock:
            return list(self._hits)


def _error(status_code: int, message: str, details: Optional[str] = None) -> JSONResponse:
    body = {"error": message}
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=body)


def create_app(
    api_key: Optional[str] = None,
    client: Optional[ImageLLMClient] = None,
    rate_limit: Optional[int] = None,
    max_image_bytes: Optional[int] = None,
    frontend_url: Optional[str] = None,
) -> FastAPI:
    """
    Build the relay application.

    Raises:
        ConfigurationError: no API key and no injected client; raised before
            the app accepts any request
    """
    load_dotenv()

    if client is None:
        api_key = api_key or os.getenv("EVENTSNAP_API_KEY") or os.getenv("API_KEY")
        if not api_key:
            Log.error("FATAL: API key environment variable is missing.")
            raise ConfigurationError("API key environment variable is missing.")
        model = os.getenv("EVENTSNAP_MODEL", "gemini-2.5-flash")
        client = GeminiImageLLMClient(api_key, model)

    if rate_limit is None:
        rate_limit = int(os.getenv("EVENTSNAP_RATE_LIMIT", DEFAULT_RATE_LIMIT))
    if max_image_bytes is None:
        max_image_bytes = int(os.getenv("EVENTSNAP_MAX_IMAGE_BYTES", DEFAULT_MAX_IMAGE_BYTES))
    if frontend_url is None:
        frontend_url = os.getenv("FRONTEND_URL", "*")

    extractor = EventExtractor(client)
    limiter = SlidingWindowRateLimiter(rate_limit)

    app = FastAPI(
        title="EventSnap Relay",
        description="Relays flyer images to the vision model without exposing the API key",
        version=__version__,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[frontend_url],
        allow_methods=["POST"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def invalid_body(request: Request, exc: RequestValidationError) -> JSONResponse:
        client_id = request.client.host if request.client else "unknown"
        Log.kv({"stage": "relay", "result": "rejected", "reason": "invalid_body", "client": client_id})
        return _error(400, "Missing image data")

    @app.get("/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        return HealthResponse(
            status="healthy",
            timestamp=datetime.now(timezone.utc).isoformat(),
            version=__version__,
        )

    @app.post("/api/extract")
    def extract(payload: ExtractPayload, request: Request):
        client_id = request.client.host if request.client else "unknown"
        Log.section("Relay Request")

        if not limiter.allow(client_id):
            Log.kv({"stage": "relay", "result": "rate_limited", "client": client_id})
            return _error(429, RATE_LIMIT_MESSAGE)

        if not payload.base64Image or not payload.mimeType:
            Log.kv({"stage": "relay", "result": "rejected", "reason": "missing_image", "client": client_id})
            return _error(400, "Missing image data")

        if len(payload.base64Image) > max_image_bytes:
            Log.kv({"stage": "relay", "result": "rejected", "reason": "too_large", "length": len(payload.base64Image)})
            return _error(413, "Image too large")

        try:
            events = extractor.extract(payload.base64Image, payload.mimeType)
        except EventSnapError as e:
            Log.error(f"Relay extraction failed: {e}")
            Log.kv({"stage": "relay", "result": "failed", "error": str(e)})
            return _error(500, "Failed to process image via backend.", details=str(e))

        Log.kv({"stage": "relay", "result": "success", "client": client_id, "event_count": len(events)})
        return [event.to_wire() for event in events]

    return app
