import re
from datetime import datetime

from flask import Blueprint, jsonify, request
from pymongo.errors import DuplicateKeyError
from werkzeug.security import generate_password_hash

from common import jlog
from db import db

signup_bp = Blueprint("signup", __name__)
users_col = db["users"]
profiles_col = db["user_profiles"]

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LEN = 6


@signup_bp.route("/signup", methods=["POST"])
def signup():
    data = request.get_json(silent=True) or request.form.to_dict()

    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    full_name = (data.get("full_name") or "").strip()

    missing = [label for label, val in (("Email", email), ("Password", password), ("Full name", full_name)) if not val]
    if missing:
        return jsonify({"success": False, "message": f"Missing required fields: {', '.join(missing)}"}), 400
    if not EMAIL_RE.match(email):
        return jsonify({"success": False, "message": "Invalid email address"}), 400
    if len(password) < MIN_PASSWORD_LEN:
        return jsonify({"success": False,
                        "message": f"Password must be at least {MIN_PASSWORD_LEN} characters"}), 400

    if users_col.find_one({"email": email}, {"_id": 1}):
        return jsonify({"success": False, "message": "Email already exists"}), 409

    now = datetime.utcnow()
    try:
        res = users_col.insert_one({
            "email": email,
            "password": generate_password_hash(password),
            "created_at": now,
            "updated_at": now,
        })
    except DuplicateKeyError:
        return jsonify({"success": False, "message": "Email already exists"}), 409

    user_id = res.inserted_id
    try:
        profiles_col.insert_one({
            "user_id": user_id,
            "email": email,
            "full_name": full_name[:120],
            "credits_balance": 0,
            "telegram_chat_id": None,
            "is_banned": False,
            "ban_reason": None,
            "ban_until": None,
            "created_at": now,
            "updated_at": now,
        })
    except Exception:
        users_col.delete_one({"_id": user_id})
        raise

    jlog("signup", user_id=str(user_id), email=email)
    return jsonify({"success": True, "message": "Account created successfully! You can now log in.",
                    "user_id": str(user_id)}), 201
