# settings.py — site settings (wallet accounts, credit rate, support contacts, Telegram admin chat)
from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, jsonify, request

from access import require_admin_json
from common import _now, to_int
from db import db
from ledger import record_audit

settings_bp = Blueprint("settings", __name__)
site_settings_col = db["site_settings"]

DEFAULT_SITE_CONFIG: Dict[str, Any] = {
    "kpay_account_name": "",
    "kpay_account_number": "",
    "wave_pay_account_name": "",
    "wave_pay_account_number": "",
    "support_email": "",
    "support_telegram": "",
    "support_phone": "",
    "credit_rate_mmk": 100,
}
DEFAULT_TELEGRAM_SETTINGS: Dict[str, Any] = {"admin_chat_id": ""}

_STR_KEYS = [k for k, v in DEFAULT_SITE_CONFIG.items() if isinstance(v, str)]


def _read(key: str, defaults: Dict[str, Any]) -> Dict[str, Any]:
    doc = site_settings_col.find_one({"setting_key": key}) or {}
    merged = dict(defaults)
    merged.update({k: v for k, v in (doc.get("setting_value") or {}).items() if k in defaults})
    return merged


def get_site_config() -> Dict[str, Any]:
    cfg = _read("site_config", DEFAULT_SITE_CONFIG)
    rate = to_int(cfg.get("credit_rate_mmk"))
    cfg["credit_rate_mmk"] = rate if rate and rate > 0 else DEFAULT_SITE_CONFIG["credit_rate_mmk"]
    return cfg


def get_telegram_settings() -> Dict[str, Any]:
    return _read("telegram_settings", DEFAULT_TELEGRAM_SETTINGS)


def _save(key: str, value: Dict[str, Any]) -> None:
    now = _now()
    site_settings_col.update_one(
        {"setting_key": key},
        {"$set": {"setting_value": value, "updated_at": now}, "$setOnInsert": {"created_at": now}},
        upsert=True,
    )


@settings_bp.route("/api/settings", methods=["GET"])
def public_settings():
    return jsonify({"success": True, "settings": get_site_config()})


@settings_bp.route("/admin/api/settings", methods=["GET"])
def admin_get_settings():
    _, resp = require_admin_json()
    if resp:
        return resp
    return jsonify({
        "success": True,
        "site_config": get_site_config(),
        "telegram_settings": get_telegram_settings(),
    })


@settings_bp.route("/admin/api/settings", methods=["PUT", "POST"])
def admin_save_settings():
    admin_id, resp = require_admin_json()
    if resp:
        return resp

    payload = request.get_json(silent=True) or {}
    site_in = payload.get("site_config") or {}
    tg_in = payload.get("telegram_settings") or {}
    if not isinstance(site_in, dict) or not isinstance(tg_in, dict):
        return jsonify({"success": False, "message": "Invalid settings payload"}), 400

    old_site = get_site_config()
    old_tg = get_telegram_settings()

    new_site = dict(old_site)
    for key in _STR_KEYS:
        if key in site_in:
            new_site[key] = str(site_in.get(key) or "").strip()
    if "credit_rate_mmk" in site_in:
        rate = to_int(site_in.get("credit_rate_mmk"))
        if not rate or rate <= 0:
            return jsonify({"success": False, "message": "Credit rate must be a positive whole number"}), 400
        new_site["credit_rate_mmk"] = rate

    new_tg = dict(old_tg)
    if "admin_chat_id" in tg_in:
        new_tg["admin_chat_id"] = str(tg_in.get("admin_chat_id") or "").strip()

    if new_site != old_site:
        _save("site_config", new_site)
        record_audit(admin_id, "update_settings", "site_settings", "site_config",
                     "Updated site settings", old_values=old_site, new_values=new_site)
    if new_tg != old_tg:
        _save("telegram_settings", new_tg)
        record_audit(admin_id, "update_settings", "site_settings", "telegram_settings",
                     "Updated Telegram settings", old_values=old_tg, new_values=new_tg)

    return jsonify({"success": True, "site_config": new_site, "telegram_settings": new_tg})
