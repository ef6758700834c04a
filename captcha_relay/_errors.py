"""Typed exceptions for captcha_relay."""


class RelayError(Exception):
    """Base exception for all captcha_relay errors."""


class ConfigurationError(RelayError):
    """A required setting (bot token, chat id, ...) is missing or invalid."""

    def __init__(self, setting: str, hint: str | None = None):
        self.setting = setting
        self.hint = hint
        msg = f"Missing or invalid configuration: {setting}"
        if hint:
            msg += f" ({hint})"
        super().__init__(msg)


class BackendError(RelayError):
    """A call to the messaging backend failed (network or API error)."""

    def __init__(self, method: str, reason: str):
        self.method = method
        self.reason = reason
        super().__init__(f"Messaging backend call {method} failed: {reason}")


class SessionClosed(RelayError):
    """A relay session was asked for a second terminal outcome."""

    def __init__(self, state: str):
        self.state = state
        super().__init__(f"Relay session already finished ({state})")


class BrowserUnavailable(RelayError):
    """Could not attach to the automated browser."""

    def __init__(self, endpoint: str, reason: str):
        self.endpoint = endpoint
        self.reason = reason
        super().__init__(f"Cannot attach to browser at {endpoint}: {reason}")
