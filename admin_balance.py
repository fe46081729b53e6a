from flask import Blueprint, jsonify, request

import ledger
from access import require_admin_json
from common import serialize, to_int, to_object_id

admin_balance_bp = Blueprint("admin_balance", __name__)

ADJUST_TYPES = {"add": "bonus", "deduct": "deduction"}


@admin_balance_bp.route("/admin/api/users/<user_id>/credits", methods=["POST"])
def adjust_credits(user_id):
    """
    Add or deduct credits by hand.
    Body: {"type": "add"|"deduct", "amount": int, "reason": str}
    Deductions never overdraw the balance.
    """
    admin_id, resp = require_admin_json()
    if resp:
        return resp

    uid = to_object_id(user_id)
    if not uid:
        return jsonify({"success": False, "message": "Invalid user id"}), 400

    payload = request.get_json(silent=True) or request.form.to_dict()
    kind = (payload.get("type") or "").strip().lower()
    amount = to_int(payload.get("amount"))
    reason = (payload.get("reason") or "").strip()

    if kind not in ADJUST_TYPES:
        return jsonify({"success": False, "message": "Type must be 'add' or 'deduct'"}), 400
    if amount is None or amount <= 0:
        return jsonify({"success": False, "message": "Amount must be greater than zero"}), 400
    if not reason:
        return jsonify({"success": False, "message": "A reason is required"}), 400

    tx_type = ADJUST_TYPES[kind]
    try:
        if kind == "add":
            tx = ledger.credit(uid, amount, tx_type, reference_type="admin_adjustment", notes=reason[:240],
                               actor_id=admin_id)
        else:
            tx = ledger.debit(uid, amount, tx_type, reference_type="admin_adjustment", notes=reason[:240],
                              actor_id=admin_id)
    except ledger.ProfileNotFound:
        return jsonify({"success": False, "message": "User not found"}), 404
    except ledger.InsufficientCredits as e:
        return jsonify({
            "success": False,
            "message": "Insufficient funds: cannot deduct more than the current balance.",
            "balance": e.balance,
        }), 400
    except ledger.LedgerError as e:
        return jsonify({"success": False, "message": str(e)}), 400

    verb = "Added" if kind == "add" else "Deducted"
    ledger.record_audit(
        admin_id, "credit_adjustment", "user", uid,
        f"{verb} {amount} credits: {reason}",
        old_values={"credits_balance": tx["previous_balance"]},
        new_values={"credits_balance": tx["new_balance"]},
    )
    return jsonify({
        "success": True,
        "message": f"Credits {'added' if kind == 'add' else 'deducted'} successfully",
        "new_balance": tx["new_balance"],
        "transaction": serialize(tx),
    })


@admin_balance_bp.route("/admin/api/users/<user_id>/credits/history", methods=["GET"])
def credit_history(user_id):
    _, resp = require_admin_json()
    if resp:
        return resp

    uid = to_object_id(user_id)
    if not uid:
        return jsonify({"success": False, "error": "Invalid user id"}), 400
    try:
        limit = max(1, min(int(request.args.get("limit", "200")), 1000))
    except ValueError:
        limit = 200
    return jsonify({"success": True, "logs": [serialize(t) for t in ledger.history(uid, limit)]})


@admin_balance_bp.route("/admin/api/users/<user_id>/credits/reconcile", methods=["GET"])
def reconcile_user(user_id):
    _, resp = require_admin_json()
    if resp:
        return resp

    uid = to_object_id(user_id)
    if not uid:
        return jsonify({"success": False, "error": "Invalid user id"}), 400
    try:
        result = ledger.reconcile(uid)
    except ledger.ProfileNotFound:
        return jsonify({"success": False, "error": "User not found"}), 404
    return jsonify({"success": True, **result})
