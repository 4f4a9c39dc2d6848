"""EventSnap: turn a photo of an event flyer into calendar entries."""

__version__ = "0.1.0"
