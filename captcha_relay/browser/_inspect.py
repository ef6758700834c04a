"""Read grid dimensions and the prompt out of an open reCAPTCHA challenge."""

import logging
from dataclasses import dataclass

from captcha_relay._challenge import BoundingBox

logger = logging.getLogger("captcha_relay")

_TABLE = ".rc-imageselect-target table"

_GRID_JS = """() => {
    const table = document.querySelector('.rc-imageselect-target table');
    if (!table) return null;
    const rows = table.querySelectorAll('tr');
    const header = document.querySelector('.rc-imageselect-desc-wrapper');
    return {
        rows: rows.length,
        cols: rows.length ? rows[0].querySelectorAll('td').length : 0,
        prompt: header ? header.innerText.replace(/\\s+/g, ' ').trim() : '',
    };
}"""


@dataclass
class GridInfo:
    rows: int
    columns: int
    prompt: str = ""
    box: BoundingBox | None = None


def find_bframe(page):
    """Find the reCAPTCHA bframe (challenge iframe)."""
    for frame in page.frames:
        if "/recaptcha/api2/bframe" in frame.url:
            return frame
    return None


def inspect_grid(page) -> GridInfo | None:
    """Rows, columns, prompt and page-relative table box of the open grid.

    None when there is no readable reCAPTCHA grid on the page.
    """
    bframe = find_bframe(page)
    if bframe is None:
        return None

    try:
        info = bframe.evaluate(_GRID_JS)
    except Exception:
        logger.debug("Could not read reCAPTCHA grid", exc_info=True)
        return None
    if not info or info.get("rows", 0) < 1 or info.get("cols", 0) < 1:
        return None

    box = None
    try:
        box = BoundingBox.from_rect(
            bframe.locator(_TABLE).first.bounding_box(timeout=2000)
        )
    except Exception:
        logger.debug("reCAPTCHA grid table has no bounding box", exc_info=True)

    grid = GridInfo(
        rows=int(info["rows"]),
        columns=int(info["cols"]),
        prompt=info.get("prompt") or "",
        box=box if box is not None and not box.is_empty else None,
    )
    logger.debug(
        "reCAPTCHA grid %dx%d: %r", grid.columns, grid.rows, grid.prompt,
    )
    return grid
