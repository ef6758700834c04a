"""Page-side pieces: detection, grid inspection, injection, CDP attach.

Everything here takes a patchright/Playwright sync ``Page`` (or anything
with the same ``evaluate`` / ``query_selector`` surface).  Only
``connect_over_cdp`` imports patchright itself.
"""

from captcha_relay.browser._connect import (
    DEFAULT_CDP_PORT,
    cdp_endpoint,
    connect_over_cdp,
)
from captcha_relay.browser._detector import (
    SIGNATURES,
    ChallengeSignature,
    detect,
    wait_for_challenge,
)
from captcha_relay.browser._injector import (
    TEXT_FIELD_RULES,
    TextFieldRule,
    inject,
)
from captcha_relay.browser._inspect import GridInfo, find_bframe, inspect_grid

__all__ = [
    "DEFAULT_CDP_PORT",
    "SIGNATURES",
    "TEXT_FIELD_RULES",
    "ChallengeSignature",
    "GridInfo",
    "TextFieldRule",
    "cdp_endpoint",
    "connect_over_cdp",
    "detect",
    "find_bframe",
    "inject",
    "inspect_grid",
    "wait_for_challenge",
]
