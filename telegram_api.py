# telegram_api.py — thin Telegram Bot API client (sendMessage, callbacks, webhook management)
from __future__ import annotations

import os
from typing import Any, Dict, List, Optional

import requests
from flask import current_app, has_app_context

from common import jlog

TELEGRAM_API_BASE = "https://api.telegram.org"
TELEGRAM_TIMEOUT = 12  # seconds


class TelegramError(Exception):
    pass


class TelegramClient:
    def __init__(self, token: str, timeout: float = TELEGRAM_TIMEOUT):
        if not token:
            raise TelegramError("TELEGRAM_BOT_TOKEN not configured")
        self.token = token
        self.timeout = timeout

    def _url(self, method: str) -> str:
        return f"{TELEGRAM_API_BASE}/bot{self.token}/{method}"

    def call(self, method: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            r = requests.post(self._url(method), json=payload or {}, timeout=self.timeout)
            data = r.json()
        except (requests.RequestException, ValueError) as e:
            jlog("telegram_http_error", method=method, error=str(e))
            raise TelegramError(f"Telegram request failed: {e}") from e

        if not data.get("ok"):
            jlog("telegram_api_error", method=method, response=data)
            raise TelegramError(data.get("description") or f"Telegram {method} failed")
        return data

    def send_message(self, chat_id, text: str, parse_mode: str = "HTML",
                     inline_keyboard: Optional[List[List[Dict[str, str]]]] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {"chat_id": chat_id, "text": text, "parse_mode": parse_mode}
        if inline_keyboard:
            body["reply_markup"] = {"inline_keyboard": inline_keyboard}
        return self.call("sendMessage", body)

    def edit_message_text(self, chat_id, message_id: int, text: str, parse_mode: str = "HTML"):
        return self.call("editMessageText", {
            "chat_id": chat_id,
            "message_id": message_id,
            "text": text,
            "parse_mode": parse_mode,
        })

    def answer_callback_query(self, callback_query_id: str, text: str, show_alert: bool = True):
        return self.call("answerCallbackQuery", {
            "callback_query_id": callback_query_id,
            "text": text,
            "show_alert": show_alert,
        })

    def set_webhook(self, url: str, secret_token: Optional[str] = None):
        body: Dict[str, Any] = {"url": url, "allowed_updates": ["callback_query", "message"]}
        if secret_token:
            body["secret_token"] = secret_token
        return self.call("setWebhook", body)

    def get_webhook_info(self):
        return self.call("getWebhookInfo")

    def delete_webhook(self):
        return self.call("deleteWebhook")


def get_client() -> TelegramClient:
    token = None
    if has_app_context():
        token = current_app.config.get("TELEGRAM_BOT_TOKEN")
    return TelegramClient(token or os.getenv("TELEGRAM_BOT_TOKEN", ""))
