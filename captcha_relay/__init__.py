"""captcha_relay -- Relay CAPTCHAs to a human and inject the answer."""

import logging
from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("captcha-relay")
except PackageNotFoundError:
    __version__ = "0.0.0"

from captcha_relay._annotate import (
    AnnotationSpec,
    AnnotationStyle,
    annotate,
    annotate_text,
    annotate_with_prompt,
    crop,
)
from captcha_relay._answers import extract_cells, parse_answer, parse_grid_answer
from captcha_relay._challenge import (
    BoundingBox,
    ChallengeDescriptor,
    ChallengeKind,
    ParsedAnswer,
    infer_kind,
)
from captcha_relay._channel import (
    Control,
    ControlActivation,
    MessagingBackend,
    RelayChannel,
    RelaySession,
    SessionState,
    Update,
)
from captcha_relay._config import RelayConfig
from captcha_relay._errors import (
    BackendError,
    BrowserUnavailable,
    ConfigurationError,
    RelayError,
    SessionClosed,
)
from captcha_relay._interchange import relay_file
from captcha_relay._relay import CaptchaRelay, SolveResult
from captcha_relay._retry import solve_with_retries
from captcha_relay._telegram import TelegramBackend

__all__ = [
    "__version__",
    "CaptchaRelay",
    "SolveResult",
    "RelayChannel",
    "RelaySession",
    "SessionState",
    "MessagingBackend",
    "TelegramBackend",
    "Control",
    "ControlActivation",
    "Update",
    "RelayConfig",
    "AnnotationSpec",
    "AnnotationStyle",
    "BoundingBox",
    "ChallengeDescriptor",
    "ChallengeKind",
    "ParsedAnswer",
    "RelayError",
    "ConfigurationError",
    "BackendError",
    "SessionClosed",
    "BrowserUnavailable",
    "annotate",
    "annotate_text",
    "annotate_with_prompt",
    "crop",
    "extract_cells",
    "infer_kind",
    "parse_answer",
    "parse_grid_answer",
    "relay_file",
    "solve_with_retries",
]

# Silent by default; callers opt in via logging.getLogger("captcha_relay").setLevel(...)
logging.getLogger("captcha_relay").addHandler(logging.NullHandler())
