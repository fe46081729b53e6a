from datetime import datetime, timedelta
from typing import Any, Dict, List

from flask import Blueprint, jsonify

from access import require_admin_json
from common import serialize
from db import db

admin_dashboard_bp = Blueprint("admin_dashboard", __name__)

# Collections
profiles_col = db["user_profiles"]
products_col = db["products"]
orders_col = db["orders"]
payment_requests_col = db["payment_requests"]
credit_tx_col = db["credit_transactions"]
audit_logs_col = db["admin_audit_logs"]


# ----------------------------
# Helpers
# ----------------------------

def _sum(col, pipeline: List[Dict[str, Any]]) -> int:
    try:
        doc = next(col.aggregate(pipeline), None)
        return int((doc or {}).get("total", 0) or 0)
    except Exception:
        return 0


def compute_counts() -> Dict[str, int]:
    return {
        "total_users": profiles_col.count_documents({}),
        "banned_users": profiles_col.count_documents({"is_banned": True}),
        "total_products": products_col.count_documents({}),
        "active_products": products_col.count_documents({"is_active": True}),
        "pending_orders": orders_col.count_documents({"status": "pending"}),
        "completed_orders": orders_col.count_documents({"status": "completed"}),
        "rejected_orders": orders_col.count_documents({"status": "rejected"}),
        "pending_payment_requests": payment_requests_col.count_documents({"status": "pending"}),
    }


def compute_credit_totals() -> Dict[str, int]:
    """Outstanding credits across all users plus today's ledger flow."""
    today = datetime.utcnow().date()
    start = datetime.combine(today, datetime.min.time())
    end = start + timedelta(days=1)

    outstanding = _sum(profiles_col, [
        {"$group": {"_id": None, "total": {"$sum": "$credits_balance"}}}
    ])
    purchased_today = _sum(credit_tx_col, [
        {"$match": {"transaction_type": "purchase", "created_at": {"$gte": start, "$lt": end}}},
        {"$group": {"_id": None, "total": {"$sum": "$credit_amount"}}},
    ])
    spent_today = _sum(credit_tx_col, [
        {"$match": {"transaction_type": "spend", "created_at": {"$gte": start, "$lt": end}}},
        {"$group": {"_id": None, "total": {"$sum": "$credit_amount"}}},
    ])
    mmk_received = _sum(credit_tx_col, [
        {"$match": {"transaction_type": "purchase"}},
        {"$group": {"_id": None, "total": {"$sum": "$mmk_amount"}}},
    ])
    return {
        "total_outstanding_credits": outstanding,
        "credits_purchased_today": purchased_today,
        "credits_spent_today": spent_today,
        "total_mmk_received": mmk_received,
    }


def recent_activity(limit: int = 10) -> List[Dict[str, Any]]:
    rows = audit_logs_col.find({}).sort("created_at", -1).limit(limit)
    return [serialize(r) for r in rows]


@admin_dashboard_bp.route("/admin/api/stats", methods=["GET"])
def admin_stats():
    _, resp = require_admin_json()
    if resp:
        return resp

    stats = compute_counts()
    stats.update(compute_credit_totals())
    return jsonify({"success": True, "stats": stats, "recent_activity": recent_activity()})
