"""One end-to-end relay attempt.

detect -> screenshot -> annotate -> relay to the human -> parse -> inject

Every failure past configuration ends in a ``SolveResult`` with
``success=False`` and a short ``error`` string; nothing is raised.
"""

import logging
from dataclasses import dataclass

from captcha_relay._annotate import (
    AnnotationSpec,
    AnnotationStyle,
    annotate,
    annotate_text,
    annotate_with_prompt,
)
from captcha_relay._answers import parse_answer
from captcha_relay._challenge import (
    ChallengeDescriptor,
    ChallengeKind,
    ParsedAnswer,
    infer_kind,
)
from captcha_relay._channel import RelayChannel
from captcha_relay.browser._detector import detect
from captcha_relay.browser._injector import inject
from captcha_relay.browser._inspect import inspect_grid

logger = logging.getLogger("captcha_relay")

DEFAULT_TIMEOUT = 120.0
DEFAULT_GRID = (3, 3)

ERR_NO_CHALLENGE = "no challenge detected"
ERR_TIMEOUT = "timeout waiting for human response"
ERR_SCREENSHOT = "screenshot failed"
ERR_SEND = "relay send failed"
ERR_INJECT = "injection failed"
ERR_SKIPPED = "skipped by human"
ERR_NO_CELLS = "no cells in reply"


@dataclass
class SolveResult:
    """Outcome of one ``CaptchaRelay.solve()`` call."""

    success: bool
    answer: str | None = None
    kind: ChallengeKind | None = None
    parsed: ParsedAnswer | None = None
    injected: bool = False
    error: str | None = None
    widget: str | None = None
    attempts: int = 1

    def to_dict(self) -> dict:
        out = {
            "success": self.success,
            "answer": self.answer,
            "kind": self.kind.value if self.kind else None,
            "widget": self.widget,
            "injected": self.injected,
            "attempts": self.attempts,
        }
        if self.parsed is not None:
            out.update(self.parsed.to_dict())
        if self.error:
            out["error"] = self.error
        return out


@dataclass
class _Capture:
    image: bytes
    columns: int
    rows: int
    prompt: str = ""


class CaptchaRelay:
    """Relays challenges found on a page to a human over ``channel``.

    Args:
        channel: Where the human is reached.
        timeout: Seconds to wait for the human per attempt.
        grid_style: Badge style for grid annotations.
        interactive: Use tappable cell controls for grid challenges
            instead of a typed reply.
        inject: Apply the answer to the page.  When False the parsed
            answer is only returned.
    """

    def __init__(
        self,
        channel: RelayChannel,
        timeout: float = DEFAULT_TIMEOUT,
        grid_style: AnnotationStyle | None = None,
        interactive: bool = False,
        inject: bool = True,
    ):
        self.channel = channel
        self.timeout = timeout
        self.grid_style = grid_style or AnnotationStyle()
        self.interactive = interactive
        self.inject = inject

    def solve(
        self,
        page,
        kind: ChallengeKind | str | None = None,
        columns: int | None = None,
        rows: int | None = None,
    ) -> SolveResult:
        found = detect(page)
        if not found:
            return SolveResult(success=False, error=ERR_NO_CHALLENGE)

        descriptor = found[0]
        kind = ChallengeKind.parse(kind) or infer_kind(descriptor)
        logger.info("Relaying %s challenge (%s)", kind.value, descriptor.widget)

        def failed(error: str, **kwargs) -> SolveResult:
            return SolveResult(
                success=False, kind=kind, widget=descriptor.widget,
                error=error, **kwargs,
            )

        try:
            capture = self._capture(page, descriptor, kind, columns, rows)
        except Exception:
            logger.warning("Could not capture challenge", exc_info=True)
            return failed(ERR_SCREENSHOT)

        grid_mode = kind is ChallengeKind.GRID
        try:
            if grid_mode and self.interactive:
                session = self.channel.send_image_with_selectable_grid(
                    capture.image,
                    self._instructions(kind, capture),
                    capture.columns,
                    capture.rows,
                )
            else:
                self.channel.send_image_with_caption(
                    capture.image, self._instructions(kind, capture),
                )
        except Exception:
            logger.warning("Could not send challenge to human", exc_info=True)
            return failed(ERR_SEND)

        if grid_mode and self.interactive:
            parsed = self.channel.wait_for_grid_selection(session, self.timeout)
            if parsed is None:
                return failed(ERR_TIMEOUT)
            reply = " ".join(map(str, parsed.cells))
        else:
            reply = self.channel.wait_for_text_reply(self.timeout)
            if reply is None:
                return failed(ERR_TIMEOUT)
            parsed = parse_answer(reply, kind)
            if grid_mode and not parsed.cells:
                logger.warning("No cell numbers in reply %r", reply)
                return failed(ERR_NO_CELLS, answer=reply, parsed=parsed)

        if parsed.skipped:
            return failed(ERR_SKIPPED, parsed=parsed)

        if not self.inject:
            return SolveResult(
                success=True, answer=reply, kind=kind, parsed=parsed,
                widget=descriptor.widget,
            )

        injected = inject(page, descriptor, parsed, kind)
        return SolveResult(
            success=injected,
            answer=reply,
            kind=kind,
            parsed=parsed,
            injected=injected,
            error=None if injected else ERR_INJECT,
            widget=descriptor.widget,
        )

    def _capture(
        self,
        page,
        descriptor: ChallengeDescriptor,
        kind: ChallengeKind,
        columns: int | None,
        rows: int | None,
    ) -> _Capture:
        box = descriptor.box
        prompt = ""
        default_columns, default_rows = DEFAULT_GRID

        if kind is ChallengeKind.GRID and descriptor.widget == "recaptcha-v2":
            grid = inspect_grid(page)
            if grid is not None:
                default_columns, default_rows = grid.columns, grid.rows
                prompt = grid.prompt
                if grid.box is not None:
                    box = grid.box

        if box is not None and not box.is_empty:
            shot = page.screenshot(clip=box.clip())
        else:
            shot = page.screenshot()

        if kind is not ChallengeKind.GRID:
            return _Capture(annotate_text(shot), 0, 0)

        spec = AnnotationSpec(
            columns=columns or default_columns,
            rows=rows or default_rows,
            style=self.grid_style,
        )
        if prompt:
            image = annotate_with_prompt(shot, prompt.upper(), spec)
        else:
            image = annotate(shot, spec)
        return _Capture(image, spec.columns, spec.rows, prompt)

    def _instructions(self, kind: ChallengeKind, capture: _Capture) -> str:
        limit = f"Timeout: {self.timeout:.0f}s."
        if kind is ChallengeKind.GRID:
            head = f"🔓 {capture.prompt}\n\n" if capture.prompt else "🔓 CAPTCHA detected! "
            if self.interactive:
                ask = "Tap the correct cells, then Submit (or reply with the numbers)."
            else:
                ask = 'Reply with the numbers of the correct cells (e.g. "1 3 5 8").'
            return f"{head}{ask}\nGrid: {capture.rows}×{capture.columns}. {limit}"
        if kind is ChallengeKind.CHECKBOX:
            return f"🔓 CAPTCHA checkbox detected! Reply with anything to tick it.\n{limit}"
        return f"🔓 CAPTCHA detected! Reply with the text you see in the image.\n{limit}"
