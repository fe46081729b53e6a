# admin_orders.py  — Admin order queue: list with filters, approve/reject through settlement
import re
import traceback
from datetime import datetime, timedelta

from flask import Blueprint, jsonify, request

import ledger
from access import require_admin_json
from common import jlog, page_args, serialize
from db import db
from settlement import NotFound, NotPending, SettlementError, process_order

admin_orders_bp = Blueprint("admin_orders", __name__)

orders_col = db["orders"]
profiles_col = db["user_profiles"]
products_col = db["products"]

ALLOWED_STATUSES = {"pending", "completed", "rejected"}


# --------- HELPERS ----------
def _parse_date(dstr):
    if not dstr:
        return None
    try:
        return datetime.strptime(dstr.strip(), "%Y-%m-%d")
    except Exception:
        return None


def _build_query_from_params(args):
    status_filter = (args.get("status") or "").strip().lower()
    phone_q = (args.get("phone") or "").strip()
    start = _parse_date(args.get("start_date"))
    end = _parse_date(args.get("end_date"))

    query = {}
    if status_filter in ALLOWED_STATUSES:
        query["status"] = status_filter
    if phone_q:
        query["phone_number"] = {"$regex": re.escape(phone_q)}
    if start or end:
        created = {}
        if start:
            created["$gte"] = start
        if end:
            created["$lt"] = end + timedelta(days=1)
        query["created_at"] = created
    return query


def _attach_refs(orders):
    user_ids = list({o["user_id"] for o in orders if o.get("user_id")})
    product_ids = list({o["product_id"] for o in orders if o.get("product_id")})
    users_map = {}
    if user_ids:
        for p in profiles_col.find({"user_id": {"$in": user_ids}}, {"user_id": 1, "full_name": 1, "email": 1}):
            users_map[p["user_id"]] = {"full_name": p.get("full_name"), "email": p.get("email")}
    products_map = {}
    if product_ids:
        for p in products_col.find({"_id": {"$in": product_ids}}, {"name": 1, "operator": 1, "category": 1}):
            products_map[p["_id"]] = {"name": p.get("name"), "operator": p.get("operator"),
                                      "category": p.get("category")}

    rows = []
    for o in orders:
        row = serialize(o)
        row["user"] = users_map.get(o.get("user_id")) or {}
        row["product"] = products_map.get(o.get("product_id")) or {}
        rows.append(row)
    return rows


@admin_orders_bp.route("/admin/api/orders", methods=["GET"])
def admin_list_orders():
    _, resp = require_admin_json()
    if resp:
        return resp

    query = _build_query_from_params(request.args)
    page, per_page, skip = page_args(request.args, default_per_page=10)
    total = orders_col.count_documents(query)
    orders = list(orders_col.find(query).sort("created_at", -1).skip(skip).limit(per_page))

    return jsonify({
        "success": True,
        "orders": _attach_refs(orders),
        "total": total,
        "page": page,
        "per_page": per_page,
        "total_pages": max((total + per_page - 1) // per_page, 1),
    })


@admin_orders_bp.route("/admin/api/orders/<order_id>/<action>", methods=["POST"])
def admin_settle_order(order_id, action):
    admin_id, resp = require_admin_json()
    if resp:
        return resp

    data = request.get_json(silent=True) or request.form.to_dict()
    notes = data.get("adminNotes") or data.get("notes")
    try:
        result = process_order(order_id, action, admin_id, notes, source="admin_web")
    except NotFound as e:
        return jsonify({"success": False, "message": str(e)}), 404
    except NotPending as e:
        return jsonify({"success": False, "message": str(e)}), 409
    except (SettlementError, ledger.LedgerError) as e:
        return jsonify({"success": False, "message": str(e)}), 400
    except Exception:
        jlog("admin_order_settle_uncaught", order_id=order_id, action=action, error=traceback.format_exc())
        return jsonify({"success": False, "message": "Server error"}), 500

    return jsonify({"success": True, "message": f"Order {result['status']}", "order": result})
