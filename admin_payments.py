# admin_payments.py — credit purchase requests awaiting verification
import traceback

from flask import Blueprint, jsonify, request

import ledger
from access import require_admin_json
from common import jlog, page_args, serialize
from db import db
from settlement import NotFound, NotPending, SettlementError, process_payment_request

admin_payments_bp = Blueprint("admin_payments", __name__)

payment_requests_col = db["payment_requests"]
profiles_col = db["user_profiles"]

ALLOWED_STATUSES = {"pending", "approved", "rejected"}


@admin_payments_bp.route("/admin/api/payment-requests", methods=["GET"])
def admin_list_payment_requests():
    _, resp = require_admin_json()
    if resp:
        return resp

    status = (request.args.get("status") or "").strip().lower()
    query = {"status": status} if status in ALLOWED_STATUSES else {}

    page, per_page, skip = page_args(request.args, default_per_page=10)
    total = payment_requests_col.count_documents(query)
    reqs = list(payment_requests_col.find(query).sort("created_at", -1).skip(skip).limit(per_page))

    user_ids = list({r["user_id"] for r in reqs if r.get("user_id")})
    users_map = {}
    if user_ids:
        for p in profiles_col.find({"user_id": {"$in": user_ids}}, {"user_id": 1, "full_name": 1, "email": 1}):
            users_map[p["user_id"]] = {"full_name": p.get("full_name"), "email": p.get("email")}

    rows = []
    for r in reqs:
        row = serialize(r)
        row["user"] = users_map.get(r.get("user_id")) or {}
        rows.append(row)

    return jsonify({"success": True, "requests": rows, "total": total, "page": page, "per_page": per_page})


@admin_payments_bp.route("/admin/api/payment-requests/<request_id>/<action>", methods=["POST"])
def admin_settle_payment_request(request_id, action):
    admin_id, resp = require_admin_json()
    if resp:
        return resp

    data = request.get_json(silent=True) or request.form.to_dict()
    notes = data.get("adminNotes") or data.get("notes")
    try:
        result = process_payment_request(request_id, action, admin_id, notes, source="admin_web")
    except NotFound as e:
        return jsonify({"success": False, "message": str(e)}), 404
    except NotPending as e:
        return jsonify({"success": False, "message": str(e)}), 409
    except (SettlementError, ledger.LedgerError) as e:
        return jsonify({"success": False, "message": str(e)}), 400
    except Exception:
        jlog("admin_payment_settle_uncaught", request_id=request_id, action=action, error=traceback.format_exc())
        return jsonify({"success": False, "message": "Server error"}), 500

    return jsonify({"success": True, "message": f"Payment request {result['status']}", "request": result})
