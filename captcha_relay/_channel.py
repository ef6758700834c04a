"""Messaging relay: send a challenge to a human and wait for the answer.

``RelayChannel`` is backend-agnostic.  It talks to anything implementing
the ``MessagingBackend`` protocol (the Telegram Bot API in production, an
in-memory fake in tests) and owns the update cursor for that backend.

Two waiting strategies:

- ``wait_for_text_reply()``: first text message in the conversation.
- ``wait_for_grid_selection()``: interactive toggle grid driven by
  inline controls, with a typed-digits fallback.

Both flush the backend's pending updates before waiting so replies that
were sent before the exchange started are never taken as the answer, and
both end with ``None`` once the deadline passes.  Backend failures while
polling count as an empty batch; only sends propagate.
"""

import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Protocol

from captcha_relay._answers import extract_cells
from captcha_relay._challenge import ParsedAnswer
from captcha_relay._errors import ConfigurationError, SessionClosed

logger = logging.getLogger("captcha_relay")

DEFAULT_POLL_INTERVAL = 0.5
DEFAULT_LONG_POLL = 2

UPDATE_MESSAGE = "message"
UPDATE_ACTIVATION = "activation"
ALL_UPDATE_KINDS = (UPDATE_MESSAGE, UPDATE_ACTIVATION)

ACTION_SUBMIT = "submit"
ACTION_SKIP = "skip"
_CELL_PREFIX = "cell:"


# ---------------------------------------------------------------------------
# Backend-facing types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Control:
    """One selectable inline control attached to a sent message."""

    label: str
    action: str


@dataclass(frozen=True)
class ControlActivation:
    """The human pressed a control."""

    id: str
    conversation: str
    message_ref: object
    action: str


@dataclass(frozen=True)
class Update:
    """One inbound backend event, in backend arrival order."""

    id: int
    conversation: str | None = None
    text: str | None = None
    activation: ControlActivation | None = None


class MessagingBackend(Protocol):
    """Capabilities a messaging service must provide to relay challenges."""

    def send_image(
        self,
        conversation: str,
        image: bytes,
        caption: str,
        controls: list[list[Control]] | None = None,
    ) -> object: ...

    def send_text(
        self,
        conversation: str,
        text: str,
        controls: list[list[Control]] | None = None,
    ) -> object: ...

    def fetch_updates(
        self, cursor: int, kinds: tuple[str, ...], wait: int = 0
    ) -> list[Update]:
        """Updates with ``id >= cursor``.  A negative cursor returns only
        the most recent outstanding update(s)."""
        ...

    def acknowledge(self, activation_id: str, feedback: str = "") -> None: ...

    def replace_controls(
        self,
        conversation: str,
        message_ref: object,
        controls: list[list[Control]] | None,
    ) -> None: ...


def build_grid_controls(
    columns: int, rows: int, selected=frozenset()
) -> list[list[Control]]:
    """Inline control layout for cell selection.

    Layout for 3x3 with cell 5 selected::

        [ 1 ] [ 2 ] [ 3 ]
        [ 4 ] [✅ 5] [ 6 ]
        [ 7 ] [ 8 ] [ 9 ]
        [⏭️ Skip] [✅ Submit (1)]
    """
    layout = []
    number = 1
    for _ in range(rows):
        row = []
        for _ in range(columns):
            label = f"✅ {number}" if number in selected else str(number)
            row.append(Control(label, f"{_CELL_PREFIX}{number}"))
            number += 1
        layout.append(row)
    layout.append([
        Control("⏭️ Skip", ACTION_SKIP),
        Control(f"✅ Submit ({len(selected)})", ACTION_SUBMIT),
    ])
    return layout


def parse_cell_action(action: str) -> int | None:
    """``"cell:7"`` -> ``7``; anything else -> ``None``."""
    if not action.startswith(_CELL_PREFIX):
        return None
    try:
        return int(action[len(_CELL_PREFIX):])
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Session state machine
# ---------------------------------------------------------------------------


class SessionState(enum.Enum):
    SENT = "sent"
    SELECTING = "selecting"
    TOGGLE_APPLIED = "toggle_applied"
    SUBMITTED = "submitted"
    SKIPPED = "skipped"
    TIMED_OUT = "timed_out"


TERMINAL_STATES = frozenset({
    SessionState.SUBMITTED,
    SessionState.SKIPPED,
    SessionState.TIMED_OUT,
})


@dataclass
class RelaySession:
    """One outstanding grid-selection exchange.

    ``selected`` is only meaningful until the session reaches a terminal
    state; a session produces exactly one terminal outcome.
    """

    conversation: str
    columns: int
    rows: int
    message_ref: object = None
    selected: set[int] = field(default_factory=set)
    deadline: float = 0.0
    state: SessionState = SessionState.SENT

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    def is_valid_cell(self, number: int) -> bool:
        return 1 <= number <= self.columns * self.rows

    def controls(self) -> list[list[Control]]:
        return build_grid_controls(self.columns, self.rows, self.selected)

    def toggle(self, number: int) -> bool:
        """Flip ``number``; returns True if it is now selected."""
        self._require_open()
        if number in self.selected:
            self.selected.discard(number)
            now_selected = False
        else:
            self.selected.add(number)
            now_selected = True
        self.state = SessionState.TOGGLE_APPLIED
        return now_selected

    def finish(self, state: SessionState) -> None:
        if state not in TERMINAL_STATES:
            raise ValueError(f"{state} is not a terminal state")
        self._require_open()
        self.state = state

    def _require_open(self) -> None:
        if self.finished:
            raise SessionClosed(self.state.value)


# ---------------------------------------------------------------------------
# Channel
# ---------------------------------------------------------------------------


class RelayChannel:
    """Relays challenges to one conversation on one messaging backend.

    Owns the backend update cursor.  Assumes it is the only consumer of
    that backend's updates while a wait is running.
    """

    def __init__(
        self,
        backend: MessagingBackend,
        conversation: str,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        long_poll: int = DEFAULT_LONG_POLL,
    ):
        if not conversation:
            raise ConfigurationError("chat_id", "target conversation is required")
        self._backend = backend
        self.conversation = str(conversation)
        self.poll_interval = poll_interval
        self.long_poll = long_poll
        self._cursor = 0

    @property
    def cursor(self) -> int:
        return self._cursor

    # -- sending ------------------------------------------------------------

    def send_image_with_caption(self, image: bytes, caption: str) -> object:
        return self._backend.send_image(self.conversation, image, caption)

    def send_text_message(self, text: str) -> object:
        return self._backend.send_text(self.conversation, text)

    def send_image_with_selectable_grid(
        self, image: bytes, caption: str, columns: int, rows: int
    ) -> RelaySession:
        """Send ``image`` with a toggle grid and return the live session."""
        session = RelaySession(self.conversation, columns, rows)
        session.message_ref = self._backend.send_image(
            self.conversation, image, caption, controls=session.controls(),
        )
        logger.debug(
            "Sent %dx%d selectable grid (message %r)",
            columns, rows, session.message_ref,
        )
        return session

    # -- cursor -------------------------------------------------------------

    def _advance(self, update_id: int) -> None:
        if update_id + 1 > self._cursor:
            self._cursor = update_id + 1

    def flush(self) -> None:
        """Skip everything already queued on the backend."""
        try:
            pending = self._backend.fetch_updates(-1, ALL_UPDATE_KINDS, wait=0)
        except Exception:
            logger.debug(
                "Update flush failed, cursor stays at %d",
                self._cursor, exc_info=True,
            )
            return
        for update in pending:
            self._advance(update.id)

    def _poll(self, kinds: tuple[str, ...], deadline: float) -> list[Update]:
        remaining = deadline - time.monotonic()
        wait = max(0, min(self.long_poll, int(remaining)))
        try:
            updates = self._backend.fetch_updates(self._cursor, kinds, wait=wait)
        except Exception:
            logger.debug(
                "Update fetch failed, treating as empty batch", exc_info=True,
            )
            return []
        fresh = sorted(
            (u for u in updates if u.id >= self._cursor), key=lambda u: u.id,
        )
        for update in fresh:
            self._advance(update.id)
        return fresh

    def _pause(self, deadline: float) -> None:
        remaining = deadline - time.monotonic()
        if remaining > 0:
            time.sleep(min(self.poll_interval, remaining))

    # -- text reply ---------------------------------------------------------

    def wait_for_text_reply(self, timeout: float) -> str | None:
        """First non-empty text message in the conversation, stripped.

        Returns None once ``timeout`` seconds have passed.
        """
        deadline = time.monotonic() + timeout
        self.flush()

        while time.monotonic() < deadline:
            for update in self._poll((UPDATE_MESSAGE,), deadline):
                if update.conversation != self.conversation or not update.text:
                    continue
                reply = update.text.strip()
                if reply:
                    logger.info("Text reply received (update %d)", update.id)
                    return reply
            self._pause(deadline)

        logger.info("No text reply within %.0fs", timeout)
        return None

    # -- grid selection -----------------------------------------------------

    def wait_for_grid_selection(
        self, session: RelaySession, timeout: float
    ) -> ParsedAnswer | None:
        """Drive ``session`` until submit, skip, typed digits or timeout.

        Returns the final selection (ascending for submit, as typed for
        the digits fallback) or None on timeout.
        """
        session.deadline = time.monotonic() + timeout
        self.flush()
        if session.finished:
            raise SessionClosed(session.state.value)
        session.state = SessionState.SELECTING

        while time.monotonic() < session.deadline:
            for update in self._poll(ALL_UPDATE_KINDS, session.deadline):
                answer = self._handle_update(session, update)
                if answer is not None:
                    return answer
            self._pause(session.deadline)

        session.finish(SessionState.TIMED_OUT)
        logger.info(
            "Grid selection timed out after %.0fs (%d cells selected)",
            timeout, len(session.selected),
        )
        return None

    def _handle_update(
        self, session: RelaySession, update: Update
    ) -> ParsedAnswer | None:
        # Typed fallback: digits in a plain message end the session
        if update.text is not None and update.conversation == session.conversation:
            cells = extract_cells(update.text)
            if not cells:
                return None
            session.finish(SessionState.SUBMITTED)
            self._clear_controls(session)
            logger.info("Grid answer typed as text: %s", cells)
            return ParsedAnswer(cells=cells)

        activation = update.activation
        if activation is None:
            return None
        if (
            activation.conversation != session.conversation
            or activation.message_ref != session.message_ref
        ):
            return None

        action = activation.action
        if action == ACTION_SUBMIT:
            cells = sorted(session.selected)
            session.finish(SessionState.SUBMITTED)
            self._acknowledge(
                activation, "✅ Submitting: " + ", ".join(map(str, cells)),
            )
            self._clear_controls(session)
            logger.info("Grid selection submitted: %s", cells)
            return ParsedAnswer(cells=cells)

        if action == ACTION_SKIP:
            session.finish(SessionState.SKIPPED)
            self._acknowledge(activation, "⏭️ Skipping")
            self._clear_controls(session)
            logger.info("Grid selection skipped")
            return ParsedAnswer(cells=[], skipped=True)

        number = parse_cell_action(action)
        if number is None or not session.is_valid_cell(number):
            logger.debug("Ignoring control action %r", action)
            self._acknowledge(activation, "")
            return None

        now_selected = session.toggle(number)
        self._acknowledge(
            activation,
            f"Selected {number}" if now_selected else f"Deselected {number}",
        )
        self._render(session)
        session.state = SessionState.SELECTING
        return None

    # -- best-effort backend calls -------------------------------------------

    def _acknowledge(self, activation: ControlActivation, feedback: str) -> None:
        try:
            self._backend.acknowledge(activation.id, feedback)
        except Exception:
            logger.warning(
                "Failed to acknowledge control activation %s",
                activation.id, exc_info=True,
            )

    def _render(self, session: RelaySession) -> None:
        try:
            self._backend.replace_controls(
                session.conversation, session.message_ref, session.controls(),
            )
        except Exception:
            logger.warning("Failed to re-render grid controls", exc_info=True)

    def _clear_controls(self, session: RelaySession) -> None:
        try:
            self._backend.replace_controls(
                session.conversation, session.message_ref, None,
            )
        except Exception:
            logger.warning("Failed to clear grid controls", exc_info=True)
