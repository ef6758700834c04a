"""Turn a human answer into clicks and keystrokes on the page.

``inject()`` never raises: every failure ends up as ``False`` plus a log
line, and the orchestrator reports it as an unsuccessful attempt.
"""

import logging
import random
import time
from dataclasses import dataclass

from captcha_relay._challenge import (
    ChallengeDescriptor,
    ChallengeKind,
    ParsedAnswer,
)

logger = logging.getLogger("captcha_relay")


@dataclass(frozen=True)
class GridTarget:
    """Where a widget keeps its image tiles and verify button."""

    frame: str
    cells: str
    verify: str


GRID_TARGETS = {
    "recaptcha-v2": GridTarget(
        frame='iframe[src*="recaptcha/api2/bframe"]',
        cells="td.rc-imageselect-tile",
        verify="#recaptcha-verify-button",
    ),
    "hcaptcha": GridTarget(
        frame='iframe[src*="hcaptcha.com/captcha"]',
        cells=".task-image .image-wrapper",
        verify=".button-submit",
    ),
}

# widget -> (anchor iframe, checkbox inside it)
CHECKBOX_TARGETS = {
    "recaptcha-v2": ('iframe[src*="recaptcha/api2/anchor"]', "#recaptcha-anchor"),
    "hcaptcha": ('iframe[src*="hcaptcha.com"][src*="frame=checkbox"]', "#checkbox"),
}


@dataclass(frozen=True)
class TextFieldRule:
    """``input`` whose ``attribute`` contains ``needle``."""

    attribute: str
    needle: str
    ignore_case: bool = False

    @property
    def selector(self) -> str:
        flag = " i" if self.ignore_case else ""
        return f'input[{self.attribute}*="{self.needle}"{flag}]'


# First match wins.
TEXT_FIELD_RULES: tuple[TextFieldRule, ...] = (
    TextFieldRule("name", "captcha"),
    TextFieldRule("id", "captcha"),
    TextFieldRule("class", "captcha"),
    TextFieldRule("placeholder", "captcha", ignore_case=True),
    TextFieldRule("placeholder", "code", ignore_case=True),
)

_VERIFY_SETTLE = 0.3


def _sub_frame(page, selector: str):
    handle = page.query_selector(selector)
    if handle is None:
        return None
    return handle.content_frame()


def inject_grid(page, descriptor: ChallengeDescriptor, cells: list[int]) -> bool:
    """Click the 1-indexed ``cells`` in the open challenge, then verify."""
    target = GRID_TARGETS.get(descriptor.widget)
    if target is None:
        logger.warning("No grid layout known for %s", descriptor.widget)
        return False

    frame = _sub_frame(page, target.frame)
    if frame is None:
        logger.warning("%s challenge frame not found", descriptor.widget)
        return False

    tiles = frame.query_selector_all(target.cells)
    if not tiles:
        logger.warning("%s challenge has no tiles", descriptor.widget)
        return False

    clicked = 0
    for number in cells:
        if not 1 <= number <= len(tiles):
            logger.debug("Cell %d out of range (%d tiles)", number, len(tiles))
            continue
        if clicked:
            time.sleep(random.uniform(0.15, 0.35))
        tiles[number - 1].click()
        clicked += 1

    time.sleep(_VERIFY_SETTLE)
    verify = frame.query_selector(target.verify)
    if verify is not None:
        verify.click()
    else:
        logger.debug("No verify button (%s)", target.verify)

    logger.info("Clicked %d/%d cells on %s", clicked, len(cells), descriptor.widget)
    return True


def inject_text(page, text: str) -> bool:
    """Type ``text`` into the first input matching ``TEXT_FIELD_RULES``."""
    for rule in TEXT_FIELD_RULES:
        field = page.query_selector(rule.selector)
        if field is None:
            continue
        field.click()
        field.fill(text)
        logger.info("Filled captcha answer into %s", rule.selector)
        return True
    logger.warning("No captcha text input found on page")
    return False


def inject_checkbox(page, descriptor: ChallengeDescriptor) -> bool:
    """Tick the widget's "I'm not a robot" box."""
    target = CHECKBOX_TARGETS.get(descriptor.widget)
    if target is None:
        logger.warning("No checkbox known for %s", descriptor.widget)
        return False
    frame_selector, checkbox_selector = target

    frame = _sub_frame(page, frame_selector)
    if frame is None:
        logger.warning("%s anchor frame not found", descriptor.widget)
        return False
    checkbox = frame.query_selector(checkbox_selector)
    if checkbox is None:
        logger.warning("%s checkbox not found", descriptor.widget)
        return False
    checkbox.click()
    logger.info("Clicked %s checkbox", descriptor.widget)
    return True


def inject(
    page,
    descriptor: ChallengeDescriptor,
    answer: ParsedAnswer,
    kind: ChallengeKind,
) -> bool:
    """Apply ``answer`` to ``page``.  Returns False on any failure."""
    try:
        if kind is ChallengeKind.GRID:
            return inject_grid(page, descriptor, answer.cells)
        if kind is ChallengeKind.CHECKBOX:
            return inject_checkbox(page, descriptor)
        return inject_text(page, answer.text or "")
    except Exception:
        logger.warning(
            "Injection into %s failed", descriptor.widget, exc_info=True,
        )
        return False
