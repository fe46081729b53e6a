# notifications.py — admin-chat alerts for new orders / payment requests, user result messages
from __future__ import annotations

import threading
import traceback
from html import escape
from typing import Any, Callable, Dict, Optional

from flask import current_app, has_app_context

from common import jlog, short_id, to_object_id
from db import db
from settings import get_telegram_settings
from telegram_api import TelegramClient, TelegramError, get_client

profiles_col = db["user_profiles"]
products_col = db["products"]

NO_REASON = "No reason provided"


def _fmt_num(v) -> str:
    try:
        return f"{int(v or 0):,}"
    except (TypeError, ValueError):
        return str(v)


def _fmt_time(dt) -> str:
    try:
        return dt.strftime("%Y-%m-%d %H:%M UTC")
    except Exception:
        return ""


def admin_chat_id() -> Optional[str]:
    chat_id = get_telegram_settings().get("admin_chat_id")
    return str(chat_id).strip() if chat_id not in (None, "") else None


def _dispatch(fn: Callable[..., Any], *args) -> None:
    """Run a send in the background unless NOTIFY_SYNC is set; never raises."""
    def _run():
        try:
            fn(*args)
        except TelegramError as e:
            jlog("notify_failed", fn=fn.__name__, error=str(e))
        except Exception:
            jlog("notify_uncaught", fn=fn.__name__, error=traceback.format_exc())

    sync = bool(current_app.config.get("NOTIFY_SYNC")) if has_app_context() else True
    if sync:
        _run()
        return
    try:
        threading.Thread(target=_run, daemon=True).start()
    except Exception as e:
        jlog("notify_spawn_error", fn=fn.__name__, error=str(e))


def _client_or_none() -> Optional[TelegramClient]:
    try:
        return get_client()
    except TelegramError as e:
        jlog("notify_skipped", reason=str(e))
        return None


# ---------- message builders ----------
def new_order_message(order: Dict[str, Any], profile: Optional[dict], product: Optional[dict]) -> str:
    profile = profile or {}
    product = product or {}
    return (
        "🔔 <b>New Order Received!</b>\n\n"
        f"📦 Order ID: #{short_id(order.get('_id'))}\n"
        f"👤 Customer: {escape(profile.get('full_name') or 'Unknown')}\n"
        f"📧 Email: {escape(profile.get('email') or 'N/A')}\n"
        f"📱 Phone: {escape(order.get('phone_number') or 'N/A')}\n\n"
        f"🛍️ Product: {escape(product.get('name') or order.get('product_name') or 'Unknown')}\n"
        f"📡 Operator: {escape(product.get('operator') or order.get('operator') or 'N/A')}\n"
        f"🔢 Quantity: {order.get('quantity') or 1}\n"
        f"💰 Credits: {_fmt_num(order.get('credits_used'))}\n"
        f"💵 Total: {_fmt_num(order.get('total_amount'))} MMK\n\n"
        f"⏰ Time: {_fmt_time(order.get('created_at'))}"
    )


def new_payment_message(req: Dict[str, Any], profile: Optional[dict]) -> str:
    profile = profile or {}
    lines = [
        "💳 <b>New Payment Request!</b>\n",
        f"🧾 Request ID: #{short_id(req.get('_id'))}",
        f"👤 Customer: {escape(profile.get('full_name') or 'Unknown')}",
        f"📧 Email: {escape(profile.get('email') or 'N/A')}\n",
        f"💰 Credits: {_fmt_num(req.get('credits_requested'))}",
        f"💵 Amount: {_fmt_num(req.get('total_cost_mmk'))} MMK",
        f"🏦 Method: {escape(req.get('payment_method') or 'N/A')}",
    ]
    if req.get("payment_proof_url"):
        lines.append(f"🖼️ Proof: {escape(req['payment_proof_url'])}")
    lines.append(f"\n⏰ Time: {_fmt_time(req.get('created_at'))}")
    return "\n".join(lines)


def order_result_message(order_id, action: str, refund_amount: int, notes: Optional[str]) -> str:
    if action == "approve":
        return (
            "✅ <b>Order Completed!</b>\n\n"
            f"Order ID: #{short_id(order_id)}\n"
            "Status: Completed\n\n"
            "Your order has been successfully processed and completed."
        )
    refund_line = f"💰 Refunded: {_fmt_num(refund_amount)} credits\n\n" if refund_amount > 0 else ""
    return (
        "❌ <b>Order Rejected</b>\n\n"
        f"Order ID: #{short_id(order_id)}\n"
        "Status: Rejected\n\n"
        f"{refund_line}"
        f"Reason: {escape(notes or NO_REASON)}\n\n"
        "Please contact support if you have questions."
    )


def payment_result_message(credits_requested: int, action: str, new_balance: int, notes: Optional[str]) -> str:
    if action == "approve":
        return (
            "✅ <b>Payment Approved!</b>\n\n"
            f"Your payment request for {_fmt_num(credits_requested)} credits has been approved.\n\n"
            f"💰 Credits Added: {_fmt_num(credits_requested)}\n"
            f"🏦 New Balance: {_fmt_num(new_balance)} credits\n\n"
            "Thank you for your purchase!"
        )
    return (
        "❌ <b>Payment Rejected</b>\n\n"
        f"Your payment request for {_fmt_num(credits_requested)} credits has been rejected.\n\n"
        f"Reason: {escape(notes or NO_REASON)}\n\n"
        "Please contact support if you have questions."
    )


# ---------- senders ----------
def _send_admin(text: str, keyboard, kind: str, target_id) -> None:
    chat_id = admin_chat_id()
    if not chat_id:
        jlog("notify_admin_skipped", kind=kind, target_id=str(target_id), reason="no_admin_chat_id")
        return
    client = _client_or_none()
    if not client:
        return
    _dispatch(client.send_message, chat_id, text, "HTML", keyboard)


def notify_admin_new_order(order: Dict[str, Any]) -> None:
    profile = profiles_col.find_one({"user_id": order.get("user_id")}, {"full_name": 1, "email": 1})
    product = products_col.find_one({"_id": to_object_id(order.get("product_id"))}, {"name": 1, "operator": 1})
    oid = str(order["_id"])
    keyboard = [[
        {"text": "✅ Approve", "callback_data": f"approve_order:{oid}"},
        {"text": "❌ Reject", "callback_data": f"reject_order:{oid}"},
    ]]
    _send_admin(new_order_message(order, profile, product), keyboard, "order", oid)


def notify_admin_new_payment(req: Dict[str, Any]) -> None:
    profile = profiles_col.find_one({"user_id": req.get("user_id")}, {"full_name": 1, "email": 1})
    rid = str(req["_id"])
    keyboard = [[
        {"text": "✅ Approve", "callback_data": f"approve_payment:{rid}"},
        {"text": "❌ Reject", "callback_data": f"reject_payment:{rid}"},
    ]]
    _send_admin(new_payment_message(req, profile), keyboard, "payment_request", rid)


def notify_user(user_id, text: str) -> bool:
    """Send to the user's linked chat. Returns False when the user has none."""
    profile = profiles_col.find_one({"user_id": to_object_id(user_id)}, {"telegram_chat_id": 1})
    chat_id = (profile or {}).get("telegram_chat_id")
    if not chat_id:
        return False
    client = _client_or_none()
    if not client:
        return False
    _dispatch(client.send_message, chat_id, text, "HTML", None)
    return True
