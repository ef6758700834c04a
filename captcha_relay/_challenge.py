"""Challenge descriptors and kind inference.

Pure data, no I/O. The browser-side detector (``captcha_relay.browser``)
produces ``ChallengeDescriptor`` values; the orchestrator turns them into
a ``ChallengeKind`` that selects the annotation, relay and injection
strategy.
"""

import enum
import logging
from dataclasses import dataclass, field

logger = logging.getLogger("captcha_relay")


class ChallengeKind(enum.Enum):
    """How a challenge is answered by the human."""

    GRID = "grid"
    TEXT = "text"
    CHECKBOX = "checkbox"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: "str | ChallengeKind | None") -> "ChallengeKind | None":
        """Coerce a caller-supplied override (``"grid"``, ``"auto"``...).

        ``None`` and ``"auto"`` mean "infer from the page".  Unrecognized
        strings map to ``UNKNOWN`` rather than raising.
        """
        if value is None or isinstance(value, ChallengeKind):
            return value
        value = value.strip().lower()
        if value in ("", "auto"):
            return None
        try:
            return cls(value)
        except ValueError:
            logger.warning("Unknown challenge kind override: %r", value)
            return cls.UNKNOWN


# Widgets that open an image sub-challenge after their checkbox is clicked.
INTERACTIVE_WIDGETS = frozenset({"recaptcha-v2", "hcaptcha"})


@dataclass(frozen=True)
class BoundingBox:
    """Element rectangle in page CSS pixels."""

    x: float
    y: float
    width: float
    height: float

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def clip(self) -> dict[str, float]:
        """Screenshot clip region, clamped to the page origin."""
        return {
            "x": max(0.0, self.x),
            "y": max(0.0, self.y),
            "width": self.width,
            "height": self.height,
        }

    @classmethod
    def from_rect(cls, rect: dict | None) -> "BoundingBox | None":
        """Build from a ``getBoundingClientRect()``-style dict."""
        if not rect:
            return None
        try:
            return cls(
                x=float(rect.get("x", 0)),
                y=float(rect.get("y", 0)),
                width=float(rect.get("width", rect.get("w", 0))),
                height=float(rect.get("height", rect.get("h", 0))),
            )
        except (TypeError, ValueError):
            return None


@dataclass
class ChallengeDescriptor:
    """One detected challenge widget on a page."""

    widget: str
    box: BoundingBox | None = None
    visible: bool = False
    has_open_challenge: bool = False
    source_ref: str | None = None

    @property
    def kind(self) -> ChallengeKind:
        return infer_kind(self)


def infer_kind(descriptor: ChallengeDescriptor) -> ChallengeKind:
    """Widget with an open sub-challenge is a grid, without one a
    checkbox; everything else is answered with free text."""
    if descriptor.widget in INTERACTIVE_WIDGETS:
        if descriptor.has_open_challenge:
            return ChallengeKind.GRID
        return ChallengeKind.CHECKBOX
    return ChallengeKind.TEXT


@dataclass
class ParsedAnswer:
    """Structured human answer.

    Grid answers carry ``cells`` (1-indexed); text answers carry ``text``.
    ``skipped`` is set when the human explicitly chose "skip".
    """

    cells: list[int] = field(default_factory=list)
    text: str | None = None
    skipped: bool = False

    def to_dict(self) -> dict:
        if self.text is not None:
            return {"text": self.text, "skipped": self.skipped}
        return {"cells": list(self.cells), "skipped": self.skipped}
