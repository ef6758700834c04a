"""Tests for the end-to-end CaptchaRelay.solve() pipeline."""

from unittest.mock import MagicMock, patch

import pytest

from captcha_relay._annotate import PROMPT_BANNER_HEIGHT, TEXT_BANNER_HEIGHT
from captcha_relay._challenge import (
    BoundingBox,
    ChallengeDescriptor,
    ChallengeKind,
    ParsedAnswer,
)
from captcha_relay._channel import RelayChannel
from captcha_relay._errors import BackendError
from captcha_relay._relay import CaptchaRelay, SolveResult
from captcha_relay.browser._inspect import GridInfo
from tests.conftest import (
    CHAT,
    FakeBackend,
    MockPage,
    make_png,
    open_png,
    press,
    text_update,
)

GRID = ChallengeDescriptor(
    "recaptcha-v2",
    box=BoundingBox(-4, 30, 300, 300),
    visible=True,
    has_open_challenge=True,
)
HIDDEN = ChallengeDescriptor("hidden", box=BoundingBox(0, 0, 0, 0))


@pytest.fixture
def pipeline():
    """Patch the page-side steps; yields the mocks."""
    with (
        patch("captcha_relay._relay.detect") as detect,
        patch("captcha_relay._relay.inject", return_value=True) as inject,
        patch("captcha_relay._relay.inspect_grid", return_value=None) as inspect,
    ):
        yield MagicMock(detect=detect, inject=inject, inspect=inspect)


def _mock_channel(reply="1 3 7") -> MagicMock:
    channel = MagicMock(spec=RelayChannel)
    channel.wait_for_text_reply.return_value = reply
    return channel


# ---------------------------------------------------------------------------
# End-to-end scenarios
# ---------------------------------------------------------------------------


class TestScenarios:
    def test_no_challenge(self, pipeline):
        pipeline.detect.return_value = []
        channel = _mock_channel()
        result = CaptchaRelay(channel).solve(MockPage())

        assert result.success is False
        assert result.error == "no challenge detected"
        assert result.to_dict()["error"] == "no challenge detected"
        channel.send_image_with_caption.assert_not_called()

    def test_human_timeout(self, pipeline):
        pipeline.detect.return_value = [GRID]
        channel = _mock_channel(reply=None)
        result = CaptchaRelay(channel, timeout=30).solve(MockPage())

        assert result.success is False
        assert result.error == "timeout waiting for human response"
        assert result.kind is ChallengeKind.GRID
        channel.send_image_with_caption.assert_called_once()
        channel.wait_for_text_reply.assert_called_once_with(30)
        pipeline.inject.assert_not_called()

    def test_grid_reply_injected(self, pipeline):
        pipeline.detect.return_value = [GRID]
        page = MockPage()
        result = CaptchaRelay(_mock_channel("1 3 7")).solve(page)

        pipeline.inject.assert_called_once_with(
            page, GRID, ParsedAnswer(cells=[1, 3, 7]), ChallengeKind.GRID,
        )
        assert result.success is True
        assert result.injected is True
        assert result.answer == "1 3 7"
        assert result.parsed.cells == [1, 3, 7]
        assert result.to_dict()["cells"] == [1, 3, 7]


# ---------------------------------------------------------------------------
# Capture and annotation
# ---------------------------------------------------------------------------


class TestCapture:
    def test_screenshot_clipped_to_box(self, pipeline):
        pipeline.detect.return_value = [GRID]
        page = MockPage()
        CaptchaRelay(_mock_channel()).solve(page)
        assert page.screenshots == [{"x": 0.0, "y": 30.0, "width": 300.0, "height": 300.0}]

    def test_full_page_without_box(self, pipeline):
        pipeline.detect.return_value = [HIDDEN]
        page = MockPage()
        CaptchaRelay(_mock_channel("abc")).solve(page)
        assert page.screenshots == [None]

    def test_default_grid_caption(self, pipeline):
        pipeline.detect.return_value = [GRID]
        channel = _mock_channel()
        CaptchaRelay(channel, timeout=120).solve(MockPage())
        image, caption = channel.send_image_with_caption.call_args.args
        assert "Grid: 3×3" in caption
        assert "Timeout: 120s" in caption
        assert open_png(image).size == (300, 300)

    def test_caller_dimensions(self, pipeline):
        pipeline.detect.return_value = [GRID]
        channel = _mock_channel()
        CaptchaRelay(channel).solve(MockPage(), columns=4, rows=2)
        caption = channel.send_image_with_caption.call_args.args[1]
        assert "Grid: 2×4" in caption

    def test_inspected_grid(self, pipeline):
        pipeline.detect.return_value = [GRID]
        pipeline.inspect.return_value = GridInfo(
            rows=4, columns=4, prompt="Select all squares with bicycles",
            box=BoundingBox(100, 200, 400, 400),
        )
        channel = _mock_channel()
        page = MockPage(shot=make_png(400, 400))
        CaptchaRelay(channel).solve(page)

        assert page.screenshots == [{"x": 100.0, "y": 200.0, "width": 400.0, "height": 400.0}]
        image, caption = channel.send_image_with_caption.call_args.args
        assert caption.startswith("🔓 Select all squares with bicycles")
        assert "Grid: 4×4" in caption
        assert open_png(image).size == (400, 400 + PROMPT_BANNER_HEIGHT)

    def test_inspection_only_for_recaptcha_grid(self, pipeline):
        pipeline.detect.return_value = [ChallengeDescriptor("hcaptcha", has_open_challenge=True)]
        CaptchaRelay(_mock_channel()).solve(MockPage())
        pipeline.inspect.assert_not_called()

    def test_text_challenge(self, pipeline):
        pipeline.detect.return_value = [HIDDEN]
        channel = _mock_channel("  xK9mP2 ")
        page = MockPage(shot=make_png(200, 80))
        result = CaptchaRelay(channel).solve(page)

        image, caption = channel.send_image_with_caption.call_args.args
        assert "Reply with the text you see" in caption
        assert open_png(image).size == (200, 80 + TEXT_BANNER_HEIGHT)
        pipeline.inject.assert_called_once_with(
            page, HIDDEN, ParsedAnswer(text="xK9mP2"), ChallengeKind.TEXT,
        )
        assert result.answer == "  xK9mP2 "

    def test_checkbox(self, pipeline):
        d = ChallengeDescriptor("recaptcha-v2", box=BoundingBox(0, 0, 300, 80))
        pipeline.detect.return_value = [d]
        channel = _mock_channel("ok")
        result = CaptchaRelay(channel).solve(MockPage())
        assert result.kind is ChallengeKind.CHECKBOX
        assert "checkbox" in channel.send_image_with_caption.call_args.args[1]

    def test_kind_override(self, pipeline):
        pipeline.detect.return_value = [GRID]
        page = MockPage()
        CaptchaRelay(_mock_channel("abc")).solve(page, kind="text")
        assert pipeline.inject.call_args.args[3] is ChallengeKind.TEXT

    def test_auto_kind(self, pipeline):
        pipeline.detect.return_value = [GRID]
        result = CaptchaRelay(_mock_channel()).solve(MockPage(), kind="auto")
        assert result.kind is ChallengeKind.GRID


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestFailures:
    def test_screenshot_failed(self, pipeline):
        pipeline.detect.return_value = [GRID]
        page = MockPage()
        page.screenshot = MagicMock(side_effect=RuntimeError("Target closed"))
        channel = _mock_channel()
        result = CaptchaRelay(channel).solve(page)
        assert result.error == "screenshot failed"
        channel.send_image_with_caption.assert_not_called()

    def test_send_failed(self, pipeline):
        pipeline.detect.return_value = [GRID]
        channel = _mock_channel()
        channel.send_image_with_caption.side_effect = BackendError("sendPhoto", "down")
        result = CaptchaRelay(channel).solve(MockPage())
        assert result.success is False
        assert result.error == "relay send failed"
        channel.wait_for_text_reply.assert_not_called()

    def test_injection_failed(self, pipeline):
        pipeline.detect.return_value = [GRID]
        pipeline.inject.return_value = False
        result = CaptchaRelay(_mock_channel()).solve(MockPage())
        assert result.success is False
        assert result.injected is False
        assert result.error == "injection failed"
        assert result.answer == "1 3 7"

    def test_inject_disabled(self, pipeline):
        pipeline.detect.return_value = [GRID]
        result = CaptchaRelay(_mock_channel(), inject=False).solve(MockPage())
        assert result.success is True
        assert result.injected is False
        assert result.parsed.cells == [1, 3, 7]
        pipeline.inject.assert_not_called()

    def test_grid_reply_without_numbers(self, pipeline):
        pipeline.detect.return_value = [GRID]
        result = CaptchaRelay(_mock_channel("idk")).solve(MockPage())
        assert result.success is False
        assert result.error == "no cells in reply"
        assert result.answer == "idk"
        assert result.injected is False
        pipeline.inject.assert_not_called()


# ---------------------------------------------------------------------------
# Interactive grid
# ---------------------------------------------------------------------------


class TestInteractive:
    def test_buttons_selection(self, pipeline, clock):
        pipeline.detect.return_value = [GRID]
        backend = FakeBackend(batches=[
            [press(1, "cell:8")],
            [press(2, "cell:2"), press(3, "submit")],
        ])
        page = MockPage()
        relay = CaptchaRelay(RelayChannel(backend, CHAT), interactive=True)
        result = relay.solve(page)

        assert result.success is True
        assert result.answer == "2 8"
        assert backend.sent[0][3] is not None
        pipeline.inject.assert_called_once_with(
            page, GRID, ParsedAnswer(cells=[2, 8]), ChallengeKind.GRID,
        )

    def test_buttons_skip(self, pipeline, clock):
        pipeline.detect.return_value = [GRID]
        backend = FakeBackend(batches=[[press(1, "skip")]])
        relay = CaptchaRelay(RelayChannel(backend, CHAT), interactive=True)
        result = relay.solve(MockPage())
        assert result.success is False
        assert result.error == "skipped by human"
        assert result.parsed.skipped is True
        pipeline.inject.assert_not_called()

    def test_buttons_timeout(self, pipeline, clock):
        pipeline.detect.return_value = [GRID]
        relay = CaptchaRelay(
            RelayChannel(FakeBackend(), CHAT), timeout=5, interactive=True,
        )
        assert relay.solve(MockPage()).error == "timeout waiting for human response"

    def test_text_kind_ignores_buttons(self, pipeline, clock):
        pipeline.detect.return_value = [HIDDEN]
        backend = FakeBackend(batches=[[text_update(1, "abc")]])
        relay = CaptchaRelay(RelayChannel(backend, CHAT), interactive=True)
        assert relay.solve(MockPage()).success is True
        assert backend.sent[0][3] is None


class TestSolveResult:
    def test_failure_dict(self):
        out = SolveResult(success=False, error="timeout waiting for human response").to_dict()
        assert out["success"] is False
        assert out["error"] == "timeout waiting for human response"
        assert out["kind"] is None

    def test_success_dict(self):
        out = SolveResult(
            success=True, answer="abc", kind=ChallengeKind.TEXT,
            parsed=ParsedAnswer(text="abc"), injected=True, widget="hidden",
        ).to_dict()
        assert out["kind"] == "text"
        assert out["text"] == "abc"
        assert "error" not in out
