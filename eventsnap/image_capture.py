"""
Image capture module.
Loads a flyer photo from disk or the clipboard and holds the local preview
copy for the lifetime of a scan.
"""

import base64
import io
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from PIL import Image, ImageGrab, UnidentifiedImageError

from eventsnap.logging_helper import Log

# Upper bound on the raw image bytes accepted for extraction
MAX_IMAGE_SIZE = 20 * 1024 * 1024
# Maximum image dimensions (prevent extremely large images)
MAX_IMAGE_DIMENSION = 10000

_FORMAT_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
    "image/heic": ".heic",
}


@dataclass
class CapturedImage:
    data: bytes
    mime_type: str
    width: int
    height: int

    @property
    def base64(self) -> str:
        return base64.b64encode(self.data).decode("utf-8")


class PreviewImage:
    """
    Local copy of a captured image shown while processing and during review.

    Must be released when the session resets or a new capture replaces it.
    """

    def __init__(self, image: CapturedImage):
        suffix = _FORMAT_EXTENSIONS.get(image.mime_type, ".img")
        fd, path = tempfile.mkstemp(prefix="eventsnap_preview_", suffix=suffix)
        with os.fdopen(fd, "wb") as handle:
            handle.write(image.data)
        self.path = Path(path)
        self.released = False
        Log.info(f"Preview saved: {self.path}")

    def release(self) -> None:
        if self.released:
            return
        self.released = True
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        Log.info(f"Preview released: {self.path}")


def _inspect(data: bytes) -> Image.Image:
    """Open and validate image bytes; raises ValueError for unusable images."""
    if not data:
        raise ValueError("Image is empty")
    if len(data) > MAX_IMAGE_SIZE:
        raise ValueError(f"Image too large: {len(data)} bytes (limit {MAX_IMAGE_SIZE})")

    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError(f"Not a readable image: {e}") from e

    width, height = image.size
    if width == 0 or height == 0:
        raise ValueError(f"Invalid image dimensions: {width}x{height}")
    if width > MAX_IMAGE_DIMENSION or height > MAX_IMAGE_DIMENSION:
        Log.warn(f"Image very large: {width}x{height}")
    return image


def load_image_bytes(data: bytes) -> CapturedImage:
    """Validate raw image bytes and detect their MIME type."""
    image = _inspect(data)
    mime_type = Image.MIME.get(image.format or "", "")
    if not mime_type:
        raise ValueError(f"Unsupported image format: {image.format}")
    return CapturedImage(data=data, mime_type=mime_type, width=image.size[0], height=image.size[1])


def load_image_file(path: Union[str, Path]) -> CapturedImage:
    """
    Load an image file for extraction.

    Raises:
        ValueError: the file is not a usable image
        OSError: the file cannot be read
    """
    Log.section("Image Capture")
    path = Path(path)
    Log.info(f"Loading image: {path}")

    captured = load_image_bytes(path.read_bytes())
    Log.kv({
        "stage": "capture",
        "result": "success",
        "source": "file",
        "mime_type": captured.mime_type,
        "size": f"{captured.width}x{captured.height}",
        "bytes": len(captured.data),
    })
    return captured


def grab_clipboard_image() -> Optional[CapturedImage]:
    """
    Capture an image pasted to the clipboard, re-encoded as PNG.

    Returns:
        CapturedImage, or None when the clipboard holds no image
    """
    Log.section("Image Capture")
    Log.info("Reading image from clipboard")

    try:
        content = ImageGrab.grabclipboard()
    except (OSError, NotImplementedError) as e:
        Log.error(f"Clipboard capture failed: {e}")
        Log.kv({"stage": "capture", "result": "failed", "source": "clipboard", "error": str(e)})
        return None

    # Some platforms return a list of copied file paths instead of pixels
    if isinstance(content, list):
        for item in content:
            if isinstance(item, str) and os.path.isfile(item):
                return load_image_file(item)
        content = None

    if not isinstance(content, Image.Image):
        Log.warn("Clipboard does not contain an image")
        Log.kv({"stage": "capture", "result": "failed", "source": "clipboard", "reason": "no_image"})
        return None

    buffer = io.BytesIO()
    content.save(buffer, format="PNG")
    captured = load_image_bytes(buffer.getvalue())
    Log.kv({"stage": "capture", "result": "success", "source": "clipboard", "size": f"{captured.width}x{captured.height}"})
    return captured
