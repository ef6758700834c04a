"""Retry strategy: backoff with jitter, rejected-answer detection."""

import logging
import random
import time

from captcha_relay._relay import ERR_NO_CHALLENGE, CaptchaRelay, SolveResult
from captcha_relay.browser._detector import detect

logger = logging.getLogger("captcha_relay")

ERR_REJECTED = "answer rejected"


def calculate_backoff(
    attempt: int,
    base: float = 1.0,
    max_delay: float = 30.0,
) -> float:
    """Exponential backoff with jitter.

    Returns delay in seconds: min(base * 2^attempt, max_delay) + jitter.
    Jitter is uniform random in [0, 0.5 * delay].
    """
    delay = min(base * (2**attempt), max_delay)
    jitter = random.uniform(0, delay * 0.5)
    return delay + jitter


class RetryState:
    """Counts relay attempts against a fixed budget."""

    def __init__(self, max_attempts: int):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.attempts = 0

    @property
    def can_retry(self) -> bool:
        return self.attempts < self.max_attempts

    def use_attempt(self) -> int:
        self.attempts += 1
        return self.attempts


def still_open(page, widget: str | None) -> bool:
    """True if ``widget`` still shows an open sub-challenge on ``page``."""
    return any(
        d.widget == widget and d.has_open_challenge for d in detect(page)
    )


def solve_with_retries(
    relay: CaptchaRelay,
    page,
    max_attempts: int = 5,
    settle: float = 2.0,
    backoff_base: float = 1.0,
    **solve_kwargs,
) -> SolveResult:
    """Run ``relay.solve()`` until the page accepts an answer.

    After an injected answer the page gets ``settle`` seconds to react;
    if the same widget still has its challenge open the answer counts as
    rejected (a new image round or "please try again") and another
    attempt is made.  Stops early when there is nothing left to solve.
    Returns the last result with ``attempts`` set.
    """
    state = RetryState(max_attempts)

    while True:
        attempt = state.use_attempt()
        logger.info("Relay attempt %d/%d", attempt, state.max_attempts)
        result = relay.solve(page, **solve_kwargs)
        result.attempts = attempt

        if result.error == ERR_NO_CHALLENGE:
            return result

        if result.success:
            if not result.injected:
                return result
            time.sleep(settle)
            if not still_open(page, result.widget):
                logger.info("Challenge cleared after %d attempt(s)", attempt)
                return result
            logger.info("%s challenge still open, answer rejected", result.widget)
            result.success = False
            result.error = ERR_REJECTED

        if not state.can_retry:
            logger.warning(
                "Giving up after %d attempts: %s", attempt, result.error,
            )
            return result

        delay = calculate_backoff(attempt - 1, base=backoff_base)
        logger.debug("Retrying in %.1fs", delay)
        time.sleep(delay)
