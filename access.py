# access.py — session identity + the single role lookup used for admin gates
from __future__ import annotations

from datetime import datetime
from typing import Optional, Tuple

from bson import ObjectId
from flask import jsonify, session

from common import to_object_id
from db import db

user_roles_col = db["user_roles"]
profiles_col = db["user_profiles"]

ALLOWED_ROLES = {"admin", "moderator", "user"}


def has_role(user_id, role: str) -> bool:
    uid = to_object_id(user_id)
    if not uid:
        return False
    return user_roles_col.find_one({"user_id": uid, "role": role}, {"_id": 1}) is not None


def current_user_id() -> Optional[ObjectId]:
    return to_object_id(session.get("user_id")) if session.get("user_id") else None


def is_banned(profile: Optional[dict]) -> bool:
    """A ban with an elapsed ban_until no longer counts."""
    if not profile or not profile.get("is_banned"):
        return False
    until = profile.get("ban_until")
    if isinstance(until, datetime) and until <= datetime.utcnow():
        return False
    return True


def require_customer_json() -> Tuple[Optional[ObjectId], Optional[tuple]]:
    """Return (user_oid, None) for a logged-in, not-banned user, else (None, error response)."""
    uid = current_user_id()
    if not uid:
        return None, (jsonify({"success": False, "message": "Not authorized"}), 401)
    profile = profiles_col.find_one({"user_id": uid}, {"is_banned": 1, "ban_until": 1})
    if is_banned(profile):
        return None, (jsonify({"success": False, "message": "Your account is banned"}), 403)
    return uid, None


def require_admin_json() -> Tuple[Optional[ObjectId], Optional[tuple]]:
    uid = current_user_id()
    if not uid:
        return None, (jsonify({"success": False, "message": "Not authorized"}), 401)
    if not has_role(uid, "admin"):
        return None, (jsonify({"success": False, "message": "Admin privileges required"}), 403)
    return uid, None
