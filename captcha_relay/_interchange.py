"""File-based relay for agents that drive the browser themselves.

The agent writes an input descriptor::

    {"screenshotPath": "/tmp/shot.png",
     "gridClip": {"x": 10, "y": 120, "w": 400, "h": 400},
     "prompt": "Select all images with buses",
     "rows": 3, "cols": 3}

``relay_file()`` crops the grid, relays it, and writes the answer::

    {"cells": [1, 4, 7], "raw": "1 4 7"}   or   {"error": "timeout"}

A missing or unreadable descriptor or screenshot raises (``OSError`` or
``ValueError``); everything after that is reported in the output file.
"""

import json
import logging
from pathlib import Path

from captcha_relay._annotate import AnnotationSpec, annotate_with_prompt, crop
from captcha_relay._answers import extract_cells
from captcha_relay._channel import RelayChannel
from captcha_relay._errors import BackendError
from captcha_relay._relay import ERR_NO_CELLS, ERR_SEND

logger = logging.getLogger("captcha_relay")

DEFAULT_INPUT = "/tmp/captcha-relay-input.json"
DEFAULT_OUTPUT = "/tmp/captcha-relay-answer.json"


def _write(path: Path, result: dict) -> dict:
    path.write_text(json.dumps(result), encoding="utf-8")
    return result


def relay_file(
    input_path: str = DEFAULT_INPUT,
    output_path: str = DEFAULT_OUTPUT,
    channel: RelayChannel | None = None,
    timeout: float = 120.0,
) -> dict:
    """Relay the challenge described in ``input_path``; returns what was
    written to ``output_path``."""
    if channel is None:
        raise ValueError("relay_file() needs a RelayChannel")

    descriptor = json.loads(Path(input_path).read_text(encoding="utf-8"))
    if not isinstance(descriptor, dict):
        raise ValueError(f"{input_path} is not a JSON object")
    prompt = descriptor.get("prompt") or ""
    spec = AnnotationSpec(
        columns=int(descriptor.get("cols") or 3),
        rows=int(descriptor.get("rows") or 3),
    )

    shot_path = descriptor.get("screenshotPath")
    if not shot_path:
        raise ValueError(f"{input_path} has no screenshotPath")
    shot = Path(shot_path).read_bytes()
    clip = descriptor.get("gridClip")
    if clip:
        shot = crop(shot, clip)
    image = annotate_with_prompt(shot, prompt.upper(), spec)

    caption = (
        f"🔓 {prompt}\n\n" if prompt else "🔓 CAPTCHA detected!\n\n"
    ) + f'Reply with cell numbers (e.g. "1 3 5"). Timeout: {timeout:.0f}s'
    out = Path(output_path)
    try:
        channel.send_image_with_caption(image, caption)
    except BackendError:
        logger.warning("Could not send %s to human", input_path, exc_info=True)
        return _write(out, {"error": ERR_SEND})
    logger.info("Sent %s to human, waiting for reply", input_path)

    reply = channel.wait_for_text_reply(timeout)
    if reply is None:
        return _write(out, {"error": "timeout"})

    cells = extract_cells(reply)
    if not cells:
        logger.warning("No cell numbers in reply %r", reply)
        return _write(out, {"error": ERR_NO_CELLS, "raw": reply})
    logger.info("Cells %s written to %s", cells, out)
    return _write(out, {"cells": cells, "raw": reply})
