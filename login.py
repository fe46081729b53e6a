# login.py
from flask import Blueprint, current_app, jsonify, request, session
from werkzeug.security import check_password_hash

from access import has_role, is_banned
from common import jlog
from db import db

login_bp = Blueprint("login", __name__)
users_col = db["users"]
profiles_col = db["user_profiles"]


def get_client_ip() -> str:
    """
    Try to get the real client IP honoring proxies.
    """
    xfwd = (request.headers.get("X-Forwarded-For") or "").strip()
    if xfwd:
        first = xfwd.split(",")[0].strip()
        if first:
            return first
    return (request.headers.get("X-Real-IP") or "").strip() or request.remote_addr or ""


@login_bp.before_app_request
def _keep_permanent_session():
    if session.get("user_id"):
        session.permanent = True


@login_bp.route("/login", methods=["POST"])
def login():
    data = request.get_json(silent=True) or request.form.to_dict()
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""

    user = users_col.find_one({"email": email})
    if (not user) or (not check_password_hash(user.get("password", ""), password)):
        jlog("login_failed", email=email, ip=get_client_ip(), reason="invalid_credentials")
        return jsonify({"success": False, "message": "Invalid email or password"}), 401

    profile = profiles_col.find_one({"user_id": user["_id"]}) or {}
    if is_banned(profile):
        jlog("login_failed", email=email, ip=get_client_ip(), reason="banned")
        return jsonify({
            "success": False,
            "message": "Your account is banned. Please contact support.",
            "ban_reason": profile.get("ban_reason"),
        }), 403

    session.clear()
    session["user_id"] = str(user["_id"])
    session["email"] = email
    session.permanent = True

    is_admin = has_role(user["_id"], "admin")
    jlog("login_ok", user_id=str(user["_id"]), ip=get_client_ip(), is_admin=is_admin)
    return jsonify({
        "success": True,
        "user_id": str(user["_id"]),
        "full_name": profile.get("full_name"),
        "is_admin": is_admin,
    })


@login_bp.route("/logout", methods=["POST"])
def logout():
    session.clear()
    resp = jsonify({"success": True, "message": "Logged out successfully"})
    resp.delete_cookie(current_app.config.get("SESSION_COOKIE_NAME", "session"))
    return resp
