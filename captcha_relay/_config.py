"""Credentials and defaults from the environment or a JSON file.

Environment variables win over the file:

    TELEGRAM_BOT_TOKEN     bot token            (file key: botToken)
    TELEGRAM_CHAT_ID       target chat          (file key: chatId)
    CDP_URL                browser endpoint     (file key: cdpUrl)
    CAPTCHA_RELAY_TIMEOUT  seconds per human wait (file key: timeout)
    CAPTCHA_RELAY_CONFIG   path to the JSON file
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from captcha_relay._errors import ConfigurationError

logger = logging.getLogger("captcha_relay")

CONFIG_ENV = "CAPTCHA_RELAY_CONFIG"


def _load_file(path: str | None) -> dict:
    if not path:
        return {}
    p = Path(path).expanduser()
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise ConfigurationError(str(p), "config file not found") from None
    except (OSError, ValueError) as e:
        raise ConfigurationError(str(p), f"unreadable config file: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(str(p), "config file must hold a JSON object")
    logger.debug("Loaded config from %s", p)
    return data


def _as_timeout(value, setting: str) -> float | None:
    if value in (None, ""):
        return None
    try:
        timeout = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(setting, "must be a number of seconds") from None
    if timeout <= 0:
        raise ConfigurationError(setting, "must be positive")
    return timeout


@dataclass
class RelayConfig:
    bot_token: str | None = None
    chat_id: str | None = None
    cdp_url: str | None = None
    timeout: float = 120.0

    @classmethod
    def from_env(cls, path: str | None = None, environ=None) -> "RelayConfig":
        """Build from ``environ`` (default ``os.environ``) plus the JSON
        file at ``path`` or ``$CAPTCHA_RELAY_CONFIG``."""
        env = os.environ if environ is None else environ
        file_values = _load_file(path or env.get(CONFIG_ENV))

        chat_id = env.get("TELEGRAM_CHAT_ID") or file_values.get("chatId")
        timeout = (
            _as_timeout(env.get("CAPTCHA_RELAY_TIMEOUT"), "CAPTCHA_RELAY_TIMEOUT")
            or _as_timeout(file_values.get("timeout"), "timeout")
            or cls.timeout
        )
        return cls(
            bot_token=env.get("TELEGRAM_BOT_TOKEN") or file_values.get("botToken"),
            chat_id=str(chat_id) if chat_id not in (None, "") else None,
            cdp_url=env.get("CDP_URL") or file_values.get("cdpUrl"),
            timeout=timeout,
        )

    def require_credentials(self) -> None:
        """Raise ``ConfigurationError`` unless a token and chat are set."""
        if not self.bot_token:
            raise ConfigurationError(
                "TELEGRAM_BOT_TOKEN", "bot token for the relay channel",
            )
        if not self.chat_id:
            raise ConfigurationError(
                "TELEGRAM_CHAT_ID", "chat that receives the challenges",
            )
