import io
import os
import threading

import pytest
from PIL import Image

from eventsnap.image_capture import CapturedImage
from eventsnap.image_llm_client import ImageLLMClient


_CONFIG_ENV = (
    "API_KEY",
    "EVENTSNAP_API_KEY",
    "EVENTSNAP_TRANSPORT",
    "EVENTSNAP_MODEL",
    "EVENTSNAP_RELAY_URL",
    "EVENTSNAP_REQUEST_TIMEOUT",
    "EVENTSNAP_CALENDAR_HOST",
    "EVENTSNAP_RATE_LIMIT",
    "EVENTSNAP_MAX_IMAGE_BYTES",
    "FRONTEND_URL",
    "USE_STUB",
)


@pytest.fixture(scope="session", autouse=True)
def _log_dir(tmp_path_factory):
    os.environ["EVENTSNAP_LOG_DIR"] = str(tmp_path_factory.mktemp("logs"))


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch, tmp_path):
    for name in _CONFIG_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("EVENTSNAP_SETTINGS_DIR", str(tmp_path / "settings"))


class FakeLLMClient(ImageLLMClient):
    name = "fake"

    def __init__(self, response_text="", error=None, gate=None):
        self._response_text = response_text
        self._error = error
        self._gate = gate
        self.calls = []

    def submit_for_extraction(self, image_base64, mime_type):
        self.calls.append((image_base64, mime_type))
        if self._gate is not None:
            self._gate.wait(5)
        if self._error is not None:
            raise self._error
        return self._response_text


@pytest.fixture
def fake_client_factory():
    def _make(response_text="", error=None, gate=None):
        return FakeLLMClient(response_text, error=error, gate=gate)
    return _make


class ManualTimer:
    """threading.Timer stand-in that only runs when fired by the test."""

    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.function(*self.args, **self.kwargs)


class ManualTimerFactory:
    def __init__(self):
        self.timers = []

    def __call__(self, interval, function, args=None, kwargs=None):
        timer = ManualTimer(interval, function, args, kwargs)
        self.timers.append(timer)
        return timer


class ImmediateTimer(ManualTimer):
    def start(self):
        self.started = True
        self.fire()


@pytest.fixture
def manual_timers():
    return ManualTimerFactory()


@pytest.fixture
def immediate_timer():
    return ImmediateTimer


class RecordingOpener:
    def __init__(self):
        self.urls = []

    def __call__(self, url):
        self.urls.append(url)
        return True


@pytest.fixture
def link_opener():
    return RecordingOpener()


@pytest.fixture
def png_bytes():
    buffer = io.BytesIO()
    Image.new("RGB", (4, 3), color=(200, 30, 30)).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def captured_image(png_bytes):
    return CapturedImage(data=png_bytes, mime_type="image/png", width=4, height=3)


@pytest.fixture
def gate():
    return threading.Event()
