from flask import Blueprint, jsonify, request

from access import current_user_id
from common import page_args, serialize
from db import db

transactions_bp = Blueprint("transactions", __name__)
credit_tx_col = db["credit_transactions"]
payment_requests_col = db["payment_requests"]


def _sum_delta(match):
    """Aggregate helper to sum the signed 'delta' with a $match stage."""
    pipeline = [
        {"$match": match},
        {"$group": {"_id": None, "total": {"$sum": "$delta"}}},
    ]
    agg = list(credit_tx_col.aggregate(pipeline))
    return int(agg[0]["total"]) if agg else 0


@transactions_bp.route("/api/me/transactions", methods=["GET"])
def my_transactions():
    user_id = current_user_id()
    if not user_id:
        return jsonify({"success": False, "message": "Not authorized"}), 401

    query = {"user_id": user_id}
    tx_type = (request.args.get("type") or "").strip().lower()
    if tx_type:
        query["transaction_type"] = tx_type

    page, per_page, skip = page_args(request.args)
    total = credit_tx_col.count_documents(query)
    rows = list(credit_tx_col.find(query).sort("created_at", -1).skip(skip).limit(per_page))

    return jsonify({
        "success": True,
        "transactions": [serialize(t) for t in rows],
        "total": total,
        "page": page,
        "per_page": per_page,
        # lifetime totals, credits in vs credits spent
        "total_purchased": _sum_delta({"user_id": user_id, "transaction_type": "purchase"}),
        "total_spent": -_sum_delta({"user_id": user_id, "transaction_type": "spend"}),
        "total_refunded": _sum_delta({"user_id": user_id, "transaction_type": "refund"}),
    })


@transactions_bp.route("/api/me/payment-requests", methods=["GET"])
def my_payment_requests():
    user_id = current_user_id()
    if not user_id:
        return jsonify({"success": False, "message": "Not authorized"}), 401

    query = {"user_id": user_id}
    status = (request.args.get("status") or "").strip().lower()
    if status in ("pending", "approved", "rejected"):
        query["status"] = status

    rows = list(payment_requests_col.find(query).sort("created_at", -1).limit(100))
    return jsonify({"success": True, "payment_requests": [serialize(r) for r in rows]})
