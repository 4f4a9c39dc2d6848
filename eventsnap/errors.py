"""
Error taxonomy for the extraction pipeline.

Field-level problems inside a parsed candidate are never raised; they are
absorbed as defaults by the normalizer and the date codec.
"""

from typing import Optional


class EventSnapError(Exception):
    """Base class for all errors raised by eventsnap."""


class MalformedResponse(EventSnapError):
    """No JSON array or object could be recovered from the model text."""

    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text[:200] if raw_text else ""


class ExtractionFailed(EventSnapError):
    """Transport, network or relay failure. The whole batch is discarded."""

    def __init__(
        self,
        message: str,
        upstream_message: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.upstream_message = upstream_message
        self.status_code = status_code


class ConfigurationError(EventSnapError):
    """Missing credential or invalid static configuration."""
