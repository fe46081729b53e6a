# telegram_webhook.py — inline-button approvals from the admin chat + webhook management
from __future__ import annotations

import hmac
import traceback
from html import escape
from typing import Any, Dict

from flask import Blueprint, current_app, jsonify, request

import ledger
import settlement
from access import require_admin_json
from common import jlog
from notifications import admin_chat_id
from telegram_api import TelegramError, get_client

telegram_webhook_bp = Blueprint("telegram_webhook", __name__)

TELEGRAM_NOTES = "Processed via Telegram by admin"

# callback prefix -> (settlement function, action, label)
CALLBACK_ACTIONS = {
    "approve_order": (settlement.process_order, "approve", "Order"),
    "reject_order": (settlement.process_order, "reject", "Order"),
    "approve_payment": (settlement.process_payment_request, "approve", "Payment request"),
    "reject_payment": (settlement.process_payment_request, "reject", "Payment request"),
}


def _ok():
    # Telegram retries anything that is not a 2xx
    return jsonify({"ok": True}), 200


def _secret_ok() -> bool:
    expected = current_app.config.get("TELEGRAM_WEBHOOK_SECRET") or ""
    if not expected:
        return True
    got = request.headers.get("X-Telegram-Bot-Api-Secret-Token") or ""
    return hmac.compare_digest(got, expected)


def _answer(client, callback_id: str, text: str) -> None:
    try:
        client.answer_callback_query(callback_id, text)
    except TelegramError as e:
        jlog("telegram_answer_failed", error=str(e))


def handle_callback(cq: Dict[str, Any]) -> None:
    message = cq.get("message") or {}
    chat_id = str((message.get("chat") or {}).get("id") or "")
    message_id = message.get("message_id")
    data = cq.get("data") or ""
    callback_id = cq.get("id") or ""
    from_id = (cq.get("from") or {}).get("id")

    client = get_client()

    expected_chat = admin_chat_id()
    if not expected_chat or chat_id != expected_chat:
        jlog("telegram_callback_rejected", chat_id=chat_id, data=data, reason="not_admin_chat")
        _answer(client, callback_id, "❌ Not authorized")
        return

    prefix, _, target_id = data.partition(":")
    entry = CALLBACK_ACTIONS.get(prefix)
    if not entry or not target_id:
        jlog("telegram_callback_unknown", data=data)
        _answer(client, callback_id, "❌ Unknown action")
        return

    fn, action, label = entry
    actor = f"telegram:{from_id}" if from_id else "telegram"
    try:
        fn(target_id, action, actor, TELEGRAM_NOTES, source="telegram")
    except (settlement.SettlementError, ledger.LedgerError) as e:
        jlog("telegram_callback_failed", data=data, error=str(e))
        _answer(client, callback_id, f"❌ Error: {e}")
        return

    emoji = "✅" if action == "approve" else "❌"
    status_text = "APPROVED" if action == "approve" else "REJECTED"
    updated = f"{escape(message.get('text') or '')}\n\n{emoji} <b>{status_text}</b> via Telegram"
    if message_id is not None:
        try:
            client.edit_message_text(chat_id, message_id, updated)
        except TelegramError as e:
            jlog("telegram_edit_failed", data=data, error=str(e))
    _answer(client, callback_id, f"{emoji} {label} {status_text.lower()} successfully!")


@telegram_webhook_bp.route("/telegram/webhook", methods=["POST"])
def telegram_webhook():
    if not _secret_ok():
        jlog("telegram_webhook_bad_secret", ip=request.remote_addr)
        return jsonify({"ok": False}), 403

    update = request.get_json(silent=True) or {}
    cq = update.get("callback_query")
    if not cq:
        return _ok()

    try:
        handle_callback(cq)
    except TelegramError as e:
        jlog("telegram_webhook_error", error=str(e))
    except Exception:
        jlog("telegram_webhook_uncaught", error=traceback.format_exc())
    return _ok()


@telegram_webhook_bp.route("/admin/api/telegram/webhook", methods=["POST"])
def manage_webhook():
    """Body: {"action": "set_webhook" | "get_webhook_info" | "delete_webhook", "url"?: str}"""
    admin_id, resp = require_admin_json()
    if resp:
        return resp

    data = request.get_json(silent=True) or {}
    action = (data.get("action") or "").strip()
    try:
        client = get_client()
        if action == "set_webhook":
            url = (data.get("url") or current_app.config.get("TELEGRAM_WEBHOOK_URL") or "").strip()
            if not url:
                return jsonify({"success": False, "message": "Webhook URL is required"}), 400
            result = client.set_webhook(url, current_app.config.get("TELEGRAM_WEBHOOK_SECRET") or None)
            ledger.record_audit(admin_id, "set_telegram_webhook", "settings", "telegram_webhook", url)
        elif action == "get_webhook_info":
            result = client.get_webhook_info()
        elif action == "delete_webhook":
            result = client.delete_webhook()
            ledger.record_audit(admin_id, "delete_telegram_webhook", "settings", "telegram_webhook")
        else:
            return jsonify({"success": False, "message": "Unknown action"}), 400
    except TelegramError as e:
        return jsonify({"success": False, "message": str(e)}), 502

    return jsonify({"success": True, "result": result.get("result")})
