"""Challenge widget detection on a live page.

Signatures are checked independently, in priority order, and every
match yields one descriptor, so a page may report both a reCAPTCHA
widget and a generic hidden captcha field.  Callers treat index 0 as
the primary detection.  No match is a normal outcome, not an error.
"""

import logging
import time
from dataclasses import dataclass

from captcha_relay._challenge import BoundingBox, ChallengeDescriptor

logger = logging.getLogger("captcha_relay")


@dataclass(frozen=True)
class ChallengeSignature:
    """DOM pattern for one widget type.

    ``open_selector`` matches the sub-challenge the widget opens once
    its checkbox is clicked (image grid iframe).
    """

    widget: str
    selector: str
    open_selector: str | None = None


SIGNATURES: tuple[ChallengeSignature, ...] = (
    ChallengeSignature(
        "recaptcha-v2",
        'iframe[src*="recaptcha"]',
        'iframe[src*="recaptcha/api2/bframe"]',
    ),
    ChallengeSignature(
        "hcaptcha",
        'iframe[src*="hcaptcha.com"]',
        'iframe[src*="hcaptcha.com/captcha"]',
    ),
    ChallengeSignature(
        "turnstile",
        'iframe[src*="challenges.cloudflare.com"]',
    ),
    ChallengeSignature(
        "hidden",
        'input[name*="captcha"][type="hidden"]',
    ),
)

_PROBE_JS = """(sel) => {
    const el = document.querySelector(sel);
    if (!el) return null;
    const rect = el.getBoundingClientRect();
    return {
        found: true,
        visible: rect.width > 0 && rect.height > 0,
        rect: {x: rect.x, y: rect.y, width: rect.width, height: rect.height},
        src: el.src || null,
    };
}"""

_EXISTS_JS = "(sel) => !!document.querySelector(sel)"


def _probe(page, selector: str) -> dict | None:
    try:
        return page.evaluate(_PROBE_JS, selector)
    except Exception:
        logger.debug("Probe failed for %s", selector, exc_info=True)
        return None


def _exists(page, selector: str) -> bool:
    try:
        return bool(page.evaluate(_EXISTS_JS, selector))
    except Exception:
        return False


def detect(
    page, signatures: tuple[ChallengeSignature, ...] = SIGNATURES
) -> list[ChallengeDescriptor]:
    """Scan ``page`` once for every signature, in order."""
    results = []
    for sig in signatures:
        found = _probe(page, sig.selector)
        if not found:
            continue
        has_open = bool(sig.open_selector) and _exists(page, sig.open_selector)
        results.append(
            ChallengeDescriptor(
                widget=sig.widget,
                box=BoundingBox.from_rect(found.get("rect")),
                visible=bool(found.get("visible")),
                has_open_challenge=has_open,
                source_ref=found.get("src"),
            )
        )

    if results:
        logger.info(
            "Detected challenge widgets: %s",
            ", ".join(
                f"{d.widget}{' (open)' if d.has_open_challenge else ''}"
                for d in results
            ),
        )
    return results


def wait_for_challenge(
    page, timeout: float = 30.0, poll_interval: float = 0.5
) -> ChallengeDescriptor | None:
    """Poll ``detect()`` until something shows up or ``timeout`` passes.

    Returns the primary descriptor, or None on timeout.
    """
    deadline = time.monotonic() + timeout
    while True:
        found = detect(page)
        if found:
            return found[0]
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            logger.info("No challenge appeared within %.0fs", timeout)
            return None
        time.sleep(min(poll_interval, remaining))
