# orders.py — the logged-in customer's own orders
from datetime import datetime, timedelta

from flask import Blueprint, jsonify, request

from access import current_user_id
from common import page_args, serialize
from db import db

orders_bp = Blueprint("orders", __name__)
orders_col = db["orders"]

ORDER_STATUSES = ["pending", "completed", "rejected"]


def _parse_ymd(s: str):
    if not s:
        return None
    return datetime.strptime(s, "%Y-%m-%d")


@orders_bp.route("/api/me/orders", methods=["GET"])
def my_orders():
    user_id = current_user_id()
    if not user_id:
        return jsonify({"success": False, "message": "Not authorized"}), 401

    status = (request.args.get("status") or "all").strip().lower()
    start_date_s = (request.args.get("start_date") or "").strip()
    end_date_s = (request.args.get("end_date") or "").strip()

    query = {"user_id": user_id}
    if status in ORDER_STATUSES:
        query["status"] = status

    date_filter = {}
    try:
        if start_date_s:
            date_filter["$gte"] = _parse_ymd(start_date_s)
        if end_date_s:
            date_filter["$lt"] = _parse_ymd(end_date_s) + timedelta(days=1)
    except ValueError:
        return jsonify({"success": False, "message": "Dates must be YYYY-MM-DD"}), 400
    if date_filter:
        query["created_at"] = date_filter

    page, per_page, skip = page_args(request.args, default_per_page=10)
    total_count = orders_col.count_documents(query)
    total_pages = max((total_count + per_page - 1) // per_page, 1)
    orders = list(orders_col.find(query).sort("created_at", -1).skip(skip).limit(per_page))

    return jsonify({
        "success": True,
        "orders": [serialize(o) for o in orders],
        "page": page,
        "per_page": per_page,
        "total_count": total_count,
        "total_pages": total_pages,
    })
