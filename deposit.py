# deposit.py — buy credits: packages, wallet instructions, payment-proof upload, pending request
from __future__ import annotations

import os
import traceback
import uuid

from flask import Blueprint, current_app, jsonify, request, url_for
from werkzeug.utils import secure_filename

from access import require_customer_json
from approvals import open_workflow
from common import _now, jlog, serialize, to_int
from db import db
from ledger import ProfileNotFound, get_balance
from notifications import notify_admin_new_payment
from settings import get_site_config

deposit_bp = Blueprint("deposit", __name__)
payment_requests_col = db["payment_requests"]

CREDIT_PACKAGES = [
    {"credits": 100, "popular": False},
    {"credits": 500, "popular": True},
    {"credits": 1000, "popular": False},
    {"credits": 2000, "popular": False},
]
MIN_CREDITS = 1
MAX_CREDITS = 10000
PAYMENT_METHODS = {
    "kpay": {"label": "K Pay", "name_key": "kpay_account_name", "number_key": "kpay_account_number"},
    "wavepay": {"label": "Wave Pay", "name_key": "wave_pay_account_name", "number_key": "wave_pay_account_number"},
}
ALLOWED_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp"}
DEFAULT_MAX_PROOF_BYTES = 5 * 1024 * 1024


def _allowed_file(filename: str) -> bool:
    return "." in filename and filename.rsplit(".", 1)[1].lower() in ALLOWED_EXTENSIONS


def _file_size(storage) -> int:
    stream = storage.stream
    pos = stream.tell()
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(pos)
    return size


def _payment_methods(cfg):
    out = []
    for key, meta in PAYMENT_METHODS.items():
        out.append({
            "id": key,
            "label": meta["label"],
            "account_name": cfg.get(meta["name_key"], ""),
            "account_number": cfg.get(meta["number_key"], ""),
        })
    return out


@deposit_bp.route("/api/credits/packages", methods=["GET"])
def credit_packages():
    cfg = get_site_config()
    rate = cfg["credit_rate_mmk"]
    return jsonify({
        "success": True,
        "credit_rate_mmk": rate,
        "packages": [{**p, "price_mmk": p["credits"] * rate} for p in CREDIT_PACKAGES],
        "min_credits": MIN_CREDITS,
        "max_credits": MAX_CREDITS,
        "payment_methods": _payment_methods(cfg),
    })


@deposit_bp.route("/api/credits/requests", methods=["POST"])
def create_payment_request():
    user_id, resp = require_customer_json()
    if resp:
        return resp

    credits = to_int(request.form.get("credits"))
    method = (request.form.get("payment_method") or "").strip().lower()
    proof = request.files.get("payment_proof")

    if credits is None or credits < MIN_CREDITS or credits > MAX_CREDITS:
        return jsonify({"success": False,
                        "message": f"Please select between {MIN_CREDITS} and {MAX_CREDITS:,} credits"}), 400
    if method not in PAYMENT_METHODS:
        return jsonify({"success": False, "message": "Please select a payment method"}), 400
    if not proof or not proof.filename:
        return jsonify({"success": False, "message": "Payment proof image is required"}), 400
    if not _allowed_file(proof.filename):
        return jsonify({"success": False, "message": "Payment proof must be an image (png, jpg, gif, webp)"}), 400

    max_bytes = int(current_app.config.get("MAX_PROOF_BYTES") or DEFAULT_MAX_PROOF_BYTES)
    if _file_size(proof) > max_bytes:
        return jsonify({"success": False, "message": "File too large (max 5MB)"}), 400

    try:
        get_balance(user_id)
    except ProfileNotFound:
        return jsonify({"success": False, "message": "User profile not found"}), 404

    try:
        ext = proof.filename.rsplit(".", 1)[1].lower()
        filename = secure_filename(f"proof_{user_id}_{uuid.uuid4().hex}.{ext}")
        folder = os.path.join(current_app.config["UPLOAD_FOLDER"], "payment-proofs")
        os.makedirs(folder, exist_ok=True)
        proof.save(os.path.join(folder, filename))
        proof_url = url_for("uploaded_file", filename=f"payment-proofs/{filename}")

        rate = get_site_config()["credit_rate_mmk"]
        now = _now()
        doc = {
            "user_id": user_id,
            "credits_requested": credits,
            "total_cost_mmk": credits * rate,
            "credit_rate_mmk": rate,
            "payment_method": method,
            "payment_proof_url": proof_url,
            "status": "pending",
            "admin_notes": None,
            "created_at": now,
            "updated_at": now,
        }
        res = payment_requests_col.insert_one(doc)
        open_workflow("payment_request", res.inserted_id, user_id)
        jlog("payment_request_created", request_id=str(res.inserted_id), user_id=str(user_id),
             credits=credits, mmk=doc["total_cost_mmk"], method=method)
    except Exception:
        jlog("payment_request_uncaught", error=traceback.format_exc())
        return jsonify({"success": False, "message": "Failed to create payment request"}), 500

    try:
        notify_admin_new_payment(doc)
    except Exception:
        jlog("payment_request_notify_error", request_id=str(doc.get("_id")), error=traceback.format_exc())

    return jsonify({
        "success": True,
        "message": (f"Your request for {credits:,} credits ({doc['total_cost_mmk']:,} MMK) "
                    "has been submitted for admin approval."),
        "request": serialize(doc),
    }), 201
