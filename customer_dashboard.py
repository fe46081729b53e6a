# customer_dashboard.py — profile, balance and order stats for the logged-in customer
from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, jsonify, request

from access import current_user_id, has_role
from common import CHAT_ID_RE, _now, serialize
from db import db

customer_dashboard_bp = Blueprint("customer_dashboard", __name__)

profiles_col = db["user_profiles"]
orders_col = db["orders"]


def order_stats(user_id) -> Dict[str, Any]:
    pipeline = [
        {"$match": {"user_id": user_id}},
        {"$group": {"_id": "$status", "count": {"$sum": 1}, "credits": {"$sum": "$credits_used"}}},
    ]
    stats = {"total_orders": 0, "completed_orders": 0, "pending_orders": 0, "rejected_orders": 0, "total_spent": 0}
    for row in orders_col.aggregate(pipeline):
        status = row.get("_id") or "pending"
        count = int(row.get("count") or 0)
        stats["total_orders"] += count
        key = f"{status}_orders"
        if key in stats:
            stats[key] += count
        # rejected orders were refunded
        if status in ("completed", "pending"):
            stats["total_spent"] += int(row.get("credits") or 0)
    return stats


@customer_dashboard_bp.route("/api/me", methods=["GET"])
def me():
    user_id = current_user_id()
    if not user_id:
        return jsonify({"success": False, "message": "Not authorized"}), 401

    profile = profiles_col.find_one({"user_id": user_id})
    if not profile:
        return jsonify({"success": False, "message": "User profile not found"}), 404

    return jsonify({
        "success": True,
        "profile": serialize(profile),
        "balance": int(profile.get("credits_balance") or 0),
        "is_admin": has_role(user_id, "admin"),
        "stats": order_stats(user_id),
    })


@customer_dashboard_bp.route("/api/me", methods=["POST", "PUT"])
def update_me():
    user_id = current_user_id()
    if not user_id:
        return jsonify({"success": False, "message": "Not authorized"}), 401

    data = request.get_json(silent=True) or {}
    changes: Dict[str, Any] = {}
    if "full_name" in data:
        name = (data.get("full_name") or "").strip()
        if not name:
            return jsonify({"success": False, "message": "Full name cannot be empty"}), 400
        changes["full_name"] = name[:120]
    if "telegram_chat_id" in data:
        chat_id = str(data.get("telegram_chat_id") or "").strip()
        if chat_id and not CHAT_ID_RE.match(chat_id):
            return jsonify({"success": False, "message": "Invalid Telegram chat id"}), 400
        changes["telegram_chat_id"] = chat_id or None

    if not changes:
        return jsonify({"success": True, "message": "No changes detected"})

    changes["updated_at"] = _now()
    profiles_col.update_one({"user_id": user_id}, {"$set": changes})
    return jsonify({"success": True, "profile": serialize(profiles_col.find_one({"user_id": user_id}))})
