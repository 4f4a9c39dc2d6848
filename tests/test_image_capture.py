import base64

import pytest
from PIL import Image

from eventsnap import image_capture
from eventsnap.image_capture import PreviewImage, grab_clipboard_image, load_image_bytes, load_image_file


def test_load_image_file_detects_mime_type(tmp_path, png_bytes):
    path = tmp_path / "flyer.png"
    path.write_bytes(png_bytes)
    captured = load_image_file(path)
    assert captured.mime_type == "image/png"
    assert (captured.width, captured.height) == (4, 3)
    assert base64.b64decode(captured.base64) == png_bytes


def test_jpeg_mime_type():
    import io

    buffer = io.BytesIO()
    Image.new("RGB", (2, 2)).save(buffer, format="JPEG")
    assert load_image_bytes(buffer.getvalue()).mime_type == "image/jpeg"


@pytest.mark.parametrize("data", [b"", b"definitely not an image"])
def test_invalid_bytes_are_rejected(data):
    with pytest.raises(ValueError):
        load_image_bytes(data)


def test_oversize_bytes_are_rejected(monkeypatch, png_bytes):
    monkeypatch.setattr(image_capture, "MAX_IMAGE_SIZE", 10)
    with pytest.raises(ValueError):
        load_image_bytes(png_bytes)


def test_missing_file_raises_os_error(tmp_path):
    with pytest.raises(OSError):
        load_image_file(tmp_path / "missing.png")


def test_preview_release_is_idempotent(captured_image):
    preview = PreviewImage(captured_image)
    assert preview.path.read_bytes() == captured_image.data
    assert preview.path.suffix == ".png"
    preview.release()
    preview.release()
    assert preview.released
    assert not preview.path.exists()


def test_clipboard_image_is_reencoded_as_png(monkeypatch):
    monkeypatch.setattr(image_capture.ImageGrab, "grabclipboard", lambda: Image.new("RGB", (5, 6)))
    captured = grab_clipboard_image()
    assert captured.mime_type == "image/png"
    assert (captured.width, captured.height) == (5, 6)


def test_clipboard_without_image(monkeypatch):
    monkeypatch.setattr(image_capture.ImageGrab, "grabclipboard", lambda: None)
    assert grab_clipboard_image() is None


def test_clipboard_with_copied_file(monkeypatch, tmp_path, png_bytes):
    path = tmp_path / "copied.png"
    path.write_bytes(png_bytes)
    monkeypatch.setattr(image_capture.ImageGrab, "grabclipboard", lambda: [str(path)])
    assert grab_clipboard_image().data == png_bytes
