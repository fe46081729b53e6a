# admin_customers.py — user management: list, edit, ban/unban, roles, purge
from datetime import datetime, timedelta
import re

from flask import Blueprint, jsonify, request

from access import ALLOWED_ROLES, require_admin_json
from approvals import drop_workflows
from common import CHAT_ID_RE, _now, page_args, serialize, to_int, to_object_id
from db import db
from ledger import record_audit

admin_customers_bp = Blueprint("admin_customers", __name__)

users_col = db["users"]
profiles_col = db["user_profiles"]
user_roles_col = db["user_roles"]
orders_col = db["orders"]
payment_requests_col = db["payment_requests"]
credit_tx_col = db["credit_transactions"]


def _load_profile(user_id):
    uid = to_object_id(user_id)
    if not uid:
        return None, None
    return uid, profiles_col.find_one({"user_id": uid})


@admin_customers_bp.route("/admin/api/users", methods=["GET"])
def list_users():
    _, resp = require_admin_json()
    if resp:
        return resp

    q = (request.args.get("q") or "").strip()
    status = (request.args.get("status") or "").strip().lower()  # 'active' | 'banned' | ''

    conditions = []
    if q:
        regex = {"$regex": re.escape(q), "$options": "i"}
        conditions.append({"$or": [{"full_name": regex}, {"email": regex}, {"telegram_chat_id": regex}]})
    if status == "banned":
        conditions.append({"is_banned": True})
    elif status == "active":
        conditions.append({"$or": [{"is_banned": False}, {"is_banned": {"$exists": False}}]})

    query = {"$and": conditions} if len(conditions) > 1 else (conditions[0] if conditions else {})

    page, per_page, skip = page_args(request.args, default_per_page=15)
    total = profiles_col.count_documents(query)
    profiles = list(profiles_col.find(query).sort([("_id", -1)]).skip(skip).limit(per_page))

    roles_map = {}
    user_ids = [p["user_id"] for p in profiles if p.get("user_id")]
    if user_ids:
        for r in user_roles_col.find({"user_id": {"$in": user_ids}}, {"user_id": 1, "role": 1}):
            roles_map.setdefault(r["user_id"], []).append(r["role"])

    users = []
    for p in profiles:
        row = serialize(p)
        row["roles"] = sorted(roles_map.get(p.get("user_id"), []))
        users.append(row)

    return jsonify({"success": True, "users": users, "total": total, "page": page, "per_page": per_page})


@admin_customers_bp.route("/admin/api/users/<user_id>", methods=["POST", "PUT"])
def update_user(user_id):
    admin_id, resp = require_admin_json()
    if resp:
        return resp

    uid, profile = _load_profile(user_id)
    if not profile:
        return jsonify({"success": False, "message": "User not found"}), 404

    data = request.get_json(silent=True) or {}
    changes = {}
    if "full_name" in data and (data.get("full_name") or "").strip():
        changes["full_name"] = data["full_name"].strip()[:120]
    if "telegram_chat_id" in data:
        chat_id = str(data.get("telegram_chat_id") or "").strip()
        if chat_id and not CHAT_ID_RE.match(chat_id):
            return jsonify({"success": False, "message": "Invalid Telegram chat id"}), 400
        changes["telegram_chat_id"] = chat_id or None

    # balance is never editable here; it only moves through the ledger
    if not changes:
        return jsonify({"success": True, "status": "noop", "message": "No changes detected"})

    old = {k: profile.get(k) for k in changes}
    changes["updated_at"] = _now()
    profiles_col.update_one({"user_id": uid}, {"$set": changes})
    record_audit(admin_id, "update_user", "user", uid, "Updated user profile",
                 old_values=old, new_values={k: changes[k] for k in old})
    return jsonify({"success": True, "message": "User updated successfully"})


@admin_customers_bp.route("/admin/api/users/<user_id>/ban", methods=["POST"])
def ban_user(user_id):
    admin_id, resp = require_admin_json()
    if resp:
        return resp

    uid, profile = _load_profile(user_id)
    if not profile:
        return jsonify({"success": False, "message": "User not found"}), 404
    if uid == admin_id:
        return jsonify({"success": False, "message": "You cannot ban yourself"}), 400

    payload = request.get_json(silent=True) or {}
    reason = (payload.get("reason") or "").strip()
    if not reason:
        return jsonify({"success": False, "message": "A ban reason is required"}), 400

    days = to_int(payload.get("duration_days")) if payload.get("duration_days") not in (None, "") else None
    if days is not None and days <= 0:
        return jsonify({"success": False, "message": "Ban duration must be a positive number of days"}), 400
    ban_until = datetime.utcnow() + timedelta(days=days) if days else None

    profiles_col.update_one(
        {"user_id": uid},
        {"$set": {"is_banned": True, "ban_reason": reason[:240], "ban_until": ban_until, "updated_at": _now()}},
    )
    record_audit(admin_id, "ban_user", "user", uid, f"Banned user: {reason}",
                 old_values={"is_banned": bool(profile.get("is_banned"))},
                 new_values={"is_banned": True, "ban_reason": reason, "ban_until": ban_until})
    return jsonify({"success": True, "message": "User has been banned successfully",
                    "ban_until": ban_until.isoformat() if ban_until else None})


@admin_customers_bp.route("/admin/api/users/<user_id>/unban", methods=["POST"])
def unban_user(user_id):
    admin_id, resp = require_admin_json()
    if resp:
        return resp

    uid, profile = _load_profile(user_id)
    if not profile:
        return jsonify({"success": False, "message": "User not found"}), 404

    profiles_col.update_one(
        {"user_id": uid},
        {"$set": {"is_banned": False, "ban_reason": None, "ban_until": None, "updated_at": _now()}},
    )
    record_audit(admin_id, "unban_user", "user", uid, "Unbanned user")
    return jsonify({"success": True, "message": "User has been unbanned successfully"})


@admin_customers_bp.route("/admin/api/users/<user_id>/roles", methods=["POST"])
def grant_role(user_id):
    admin_id, resp = require_admin_json()
    if resp:
        return resp

    uid, profile = _load_profile(user_id)
    if not profile:
        return jsonify({"success": False, "message": "User not found"}), 404

    role = ((request.get_json(silent=True) or {}).get("role") or "").strip().lower()
    if role not in ALLOWED_ROLES:
        return jsonify({"success": False, "message": f"Role must be one of {', '.join(sorted(ALLOWED_ROLES))}"}), 400

    if user_roles_col.find_one({"user_id": uid, "role": role}):
        return jsonify({"success": False, "message": "User already has this role"}), 409

    user_roles_col.insert_one({"user_id": uid, "role": role, "granted_by": admin_id, "created_at": _now()})
    record_audit(admin_id, "grant_role", "user", uid, f"Granted {role} role")
    return jsonify({"success": True, "message": f"{role} role granted successfully"})


@admin_customers_bp.route("/admin/api/users/<user_id>/roles/<role>", methods=["DELETE"])
def revoke_role(user_id, role):
    admin_id, resp = require_admin_json()
    if resp:
        return resp

    uid = to_object_id(user_id)
    role = (role or "").strip().lower()
    if not uid or role not in ALLOWED_ROLES:
        return jsonify({"success": False, "message": "Invalid user or role"}), 400
    if uid == admin_id and role == "admin":
        return jsonify({"success": False, "message": "You cannot revoke your own admin role"}), 400

    res = user_roles_col.delete_one({"user_id": uid, "role": role})
    if not res.deleted_count:
        return jsonify({"success": False, "message": "User does not have this role"}), 404
    record_audit(admin_id, "revoke_role", "user", uid, f"Revoked {role} role")
    return jsonify({"success": True, "message": f"{role} role revoked"})


@admin_customers_bp.route("/admin/api/users/<user_id>/purge", methods=["POST"])
def purge_user(user_id):
    """Permanently delete the user and everything that references them."""
    admin_id, resp = require_admin_json()
    if resp:
        return resp

    uid, profile = _load_profile(user_id)
    if not profile:
        return jsonify({"success": False, "message": "User not found"}), 404
    if uid == admin_id:
        return jsonify({"success": False, "message": "You cannot purge your own account"}), 400

    order_ids = [o["_id"] for o in orders_col.find({"user_id": uid}, {"_id": 1})]
    request_ids = [r["_id"] for r in payment_requests_col.find({"user_id": uid}, {"_id": 1})]
    counts = {
        "approval_workflows": drop_workflows("order", order_ids) + drop_workflows("payment_request", request_ids),
        "orders": orders_col.delete_many({"user_id": uid}).deleted_count,
        "payment_requests": payment_requests_col.delete_many({"user_id": uid}).deleted_count,
        "credit_transactions": credit_tx_col.delete_many({"user_id": uid}).deleted_count,
        "roles": user_roles_col.delete_many({"user_id": uid}).deleted_count,
    }
    profiles_col.delete_one({"user_id": uid})
    users_col.delete_one({"_id": uid})
    record_audit(admin_id, "purge_user", "user", uid,
                 f"Purged all data for {profile.get('full_name') or profile.get('email')}",
                 old_values={"email": profile.get("email"), "credits_balance": profile.get("credits_balance")},
                 new_values=counts)
    return jsonify({"success": True, "message": "User data purged", "deleted": counts})
