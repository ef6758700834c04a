"""Telegram Bot API backend for ``RelayChannel``.

HTTP goes through ``rnet.blocking.Client``.  rnet has no ``params=``
kwarg, so query strings are built into the URL here.
"""

import datetime
import json
import logging
from urllib.parse import urlencode

import rnet.blocking
from rnet import Multipart, Part

from captcha_relay._channel import (
    UPDATE_ACTIVATION,
    UPDATE_MESSAGE,
    Control,
    ControlActivation,
    Update,
)
from captcha_relay._errors import BackendError, ConfigurationError

logger = logging.getLogger("captcha_relay")

TELEGRAM_API = "https://api.telegram.org"

# RelayChannel update kinds -> Telegram allowed_updates names
_KIND_TO_TELEGRAM = {
    UPDATE_MESSAGE: "message",
    UPDATE_ACTIVATION: "callback_query",
}


def inline_keyboard(controls: list[list[Control]] | None) -> dict:
    """Controls layout -> Telegram ``reply_markup``.

    ``None`` produces an empty keyboard, which removes the controls.
    """
    return {
        "inline_keyboard": [
            [{"text": c.label, "callback_data": c.action} for c in row]
            for row in (controls or [])
        ]
    }


def parse_update(raw: dict) -> Update | None:
    """Telegram update JSON -> ``Update``; None for unsupported kinds."""
    update_id = raw.get("update_id")
    if update_id is None:
        return None

    msg = raw.get("message")
    if msg:
        chat = msg.get("chat") or {}
        return Update(
            id=int(update_id),
            conversation=str(chat.get("id")) if "id" in chat else None,
            text=msg.get("text"),
        )

    cb = raw.get("callback_query")
    if cb:
        cb_msg = cb.get("message") or {}
        chat = cb_msg.get("chat") or {}
        conversation = str(chat.get("id")) if "id" in chat else None
        return Update(
            id=int(update_id),
            conversation=conversation,
            activation=ControlActivation(
                id=str(cb.get("id", "")),
                conversation=conversation,
                message_ref=cb_msg.get("message_id"),
                action=cb.get("data") or "",
            ),
        )

    return Update(id=int(update_id))


class TelegramBackend:
    """Messaging backend speaking the Telegram Bot API."""

    def __init__(
        self,
        bot_token: str,
        request_timeout: int = 30,
        api_base: str = TELEGRAM_API,
    ):
        if not bot_token:
            raise ConfigurationError(
                "bot_token", "set TELEGRAM_BOT_TOKEN or pass --bot-token",
            )
        self._base_url = f"{api_base}/bot{bot_token}"
        self._request_timeout = request_timeout
        self._client = rnet.blocking.Client(
            connect_timeout=datetime.timedelta(seconds=10),
            timeout=datetime.timedelta(seconds=request_timeout),
        )

    def _url(self, method: str, query: dict | None = None) -> str:
        url = f"{self._base_url}/{method}"
        if query:
            url += "?" + urlencode(query)
        return url

    def _unwrap(self, method: str, resp):
        try:
            data = resp.json()
        except Exception as e:
            raise BackendError(method, f"invalid JSON response: {e}") from e
        if not isinstance(data, dict) or not data.get("ok"):
            description = (
                data.get("description", "unknown error")
                if isinstance(data, dict) else "unexpected payload"
            )
            raise BackendError(method, description)
        return data.get("result")

    def _post(self, method: str, payload: dict):
        try:
            resp = self._client.post(self._url(method), json=payload)
        except Exception as e:
            raise BackendError(method, str(e)) from e
        return self._unwrap(method, resp)

    # -- MessagingBackend -----------------------------------------------------

    def send_image(self, conversation, image, caption, controls=None):
        fields = [
            Part("chat_id", str(conversation)),
            Part("caption", caption),
            Part("photo", image, filename="captcha.png", mime="image/png"),
        ]
        if controls is not None:
            fields.append(
                Part("reply_markup", json.dumps(inline_keyboard(controls)))
            )
        try:
            resp = self._client.post(
                self._url("sendPhoto"), multipart=Multipart(*fields),
            )
        except Exception as e:
            raise BackendError("sendPhoto", str(e)) from e
        result = self._unwrap("sendPhoto", resp)
        logger.debug("sendPhoto ok (message %s)", result.get("message_id"))
        return result.get("message_id")

    def send_text(self, conversation, text, controls=None):
        payload = {"chat_id": str(conversation), "text": text}
        if controls is not None:
            payload["reply_markup"] = inline_keyboard(controls)
        result = self._post("sendMessage", payload)
        return result.get("message_id")

    def fetch_updates(self, cursor, kinds, wait=0):
        query = {
            "offset": cursor,
            "timeout": max(0, int(wait)),
            "allowed_updates": json.dumps(
                [_KIND_TO_TELEGRAM.get(k, k) for k in kinds]
            ),
        }
        try:
            resp = self._client.get(
                self._url("getUpdates", query),
                timeout=datetime.timedelta(
                    seconds=self._request_timeout + int(wait)
                ),
            )
        except Exception as e:
            raise BackendError("getUpdates", str(e)) from e
        result = self._unwrap("getUpdates", resp) or []
        updates = []
        for raw in result:
            update = parse_update(raw)
            if update is not None:
                updates.append(update)
        return updates

    def acknowledge(self, activation_id, feedback=""):
        self._post(
            "answerCallbackQuery",
            {"callback_query_id": activation_id, "text": feedback},
        )

    def replace_controls(self, conversation, message_ref, controls):
        self._post(
            "editMessageReplyMarkup",
            {
                "chat_id": str(conversation),
                "message_id": message_ref,
                "reply_markup": inline_keyboard(controls),
            },
        )
