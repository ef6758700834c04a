"""Shared fakes for captcha_relay tests: clock, messaging backend, page."""

import io
import json
from unittest.mock import MagicMock, patch

import pytest
from PIL import Image

from captcha_relay._channel import ControlActivation, Update
from captcha_relay._errors import BackendError

CHAT = "42"

# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------


def make_png(width: int = 300, height: int = 300, color=(255, 255, 255)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, "PNG")
    return buf.getvalue()


def open_png(data: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(data))
    img.load()
    return img.convert("RGB")


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Stands in for the ``time`` module: ``sleep()`` advances ``monotonic()``."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    fake = FakeClock()
    with patch("captcha_relay._channel.time", fake):
        yield fake


# ---------------------------------------------------------------------------
# Messaging backend
# ---------------------------------------------------------------------------


def text_update(update_id: int, text: str, conversation: str = CHAT) -> Update:
    return Update(id=update_id, conversation=conversation, text=text)


def press(
    update_id: int,
    action: str,
    message_ref="m1",
    conversation: str = CHAT,
) -> Update:
    return Update(
        id=update_id,
        conversation=conversation,
        activation=ControlActivation(
            id=f"cb{update_id}",
            conversation=conversation,
            message_ref=message_ref,
            action=action,
        ),
    )


class FakeBackend:
    """In-memory ``MessagingBackend``.

    ``pending`` is what was queued before the exchange (returned to the
    flush call); ``batches`` are handed out one per regular fetch.
    """

    def __init__(self, pending=None, batches=None):
        self.pending = list(pending or [])
        self.batches = list(batches or [])
        self.sent: list[tuple] = []
        self.texts: list[tuple] = []
        self.acks: list[tuple] = []
        self.edits: list[tuple] = []
        self.fetches: list[tuple] = []
        self.fail_fetches = 0
        self.fail_flush = False
        self.fail_send = False
        self.fail_acks = False

    def send_image(self, conversation, image, caption, controls=None):
        if self.fail_send:
            raise BackendError("sendPhoto", "boom")
        self.sent.append((conversation, image, caption, controls))
        return f"m{len(self.sent)}"

    def send_text(self, conversation, text, controls=None):
        if self.fail_send:
            raise BackendError("sendMessage", "boom")
        self.texts.append((conversation, text, controls))
        return f"t{len(self.texts)}"

    def fetch_updates(self, cursor, kinds, wait=0):
        self.fetches.append((cursor, tuple(kinds), wait))
        if cursor < 0:
            if self.fail_flush:
                raise BackendError("getUpdates", "flush failed")
            return self.pending[-1:]
        if self.fail_fetches:
            self.fail_fetches -= 1
            raise BackendError("getUpdates", "boom")
        if self.batches:
            return self.batches.pop(0)
        return []

    def acknowledge(self, activation_id, feedback=""):
        if self.fail_acks:
            raise BackendError("answerCallbackQuery", "boom")
        self.acks.append((activation_id, feedback))

    def replace_controls(self, conversation, message_ref, controls):
        self.edits.append((conversation, message_ref, controls))


# ---------------------------------------------------------------------------
# Mock rnet types
# ---------------------------------------------------------------------------


class MockStatus:
    def __init__(self, code: int):
        self._code = code

    def as_int(self) -> int:
        return self._code


class MockResponse:
    def __init__(self, status_code: int = 200, body=None):
        self.status = MockStatus(status_code)
        self._body = body if isinstance(body, str) else json.dumps(body)

    def text(self):
        return self._body

    def json(self):
        return json.loads(self._body)


class MockClient:
    """Mock rnet blocking client that returns responses from a sequence."""

    def __init__(self, responses: list):
        self._responses = responses
        self._index = 0
        self.request_log: list[tuple] = []

    def request(self, method, url, **kwargs):
        resp = self._responses[min(self._index, len(self._responses) - 1)]
        self._index += 1
        self.request_log.append((method, url, kwargs))
        if isinstance(resp, Exception):
            raise resp
        return resp

    def get(self, url, **kwargs):
        return self.request("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self.request("POST", url, **kwargs)


def telegram_ok(result) -> MockResponse:
    return MockResponse(200, {"ok": True, "result": result})


# ---------------------------------------------------------------------------
# Browser page
# ---------------------------------------------------------------------------


class MockPage:
    """Page whose DOM is a dict of selector -> probe result.

    ``evaluate(js, selector)`` answers the detector's probe with the
    registered dict (or None), and its existence check with a bool.
    """

    def __init__(self, elements=None, open_selectors=(), shot=None):
        self.elements = dict(elements or {})
        self.open_selectors = set(open_selectors)
        self.shot = shot or make_png()
        self.screenshots: list[dict | None] = []
        self.frames: list = []
        self.handles: dict = {}
        self.evaluate_error: Exception | None = None

    def evaluate(self, js, arg=None):
        if self.evaluate_error is not None:
            raise self.evaluate_error
        if js.startswith("(sel) => !!"):
            return arg in self.open_selectors or arg in self.elements
        return self.elements.get(arg)

    def screenshot(self, clip=None, **kwargs):
        self.screenshots.append(clip)
        return self.shot

    def query_selector(self, selector):
        return self.handles.get(selector)


def probe(x=10, y=20, width=300, height=480, visible=True, src=None) -> dict:
    return {
        "found": True,
        "visible": visible,
        "rect": {"x": x, "y": y, "width": width, "height": height},
        "src": src,
    }


def frame_handle(frame) -> MagicMock:
    handle = MagicMock()
    handle.content_frame.return_value = frame
    return handle
