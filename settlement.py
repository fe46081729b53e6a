# settlement.py — approve/reject for orders and payment requests (balance + ledger + audit + notify)
from __future__ import annotations

import traceback
from typing import Any, Dict, Optional

from bson import ObjectId
from flask import Blueprint, jsonify, request
from pymongo import ReturnDocument

import ledger
import notifications
from access import require_admin_json
from approvals import resolve_workflow
from common import _now, jlog, to_int, to_object_id
from db import db

settlement_bp = Blueprint("settlement", __name__)

orders_col = db["orders"]
payment_requests_col = db["payment_requests"]

ACTIONS = {"approve", "reject"}
PAST_TENSE = {"approve": "approved", "reject": "rejected"}
ORDER_FINAL = {"approve": "completed", "reject": "rejected"}
PAYMENT_FINAL = {"approve": "approved", "reject": "rejected"}


class SettlementError(Exception):
    pass


class NotFound(SettlementError):
    pass


class NotPending(SettlementError):
    pass


def _check_action(action: str) -> str:
    a = (action or "").strip().lower()
    if a not in ACTIONS:
        raise SettlementError("Invalid action")
    return a


def _claim_pending(col, oid: ObjectId, new_status: str, update: Dict[str, Any]) -> Optional[dict]:
    """Atomically move a pending record to its final status. Returns the pre-image or None."""
    return col.find_one_and_update(
        {"_id": oid, "status": "pending"},
        {"$set": {"status": new_status, **update}},
        return_document=ReturnDocument.BEFORE,
    )


def _release_claim(col, oid: ObjectId, claimed_status: str, notes_field: str, previous: dict) -> None:
    col.update_one(
        {"_id": oid, "status": claimed_status},
        {"$set": {"status": "pending", notes_field: previous.get(notes_field), "updated_at": _now()},
         "$unset": {"processed_by": "", "processed_at": ""}},
    )


def _notify_user_safely(user_id, text: str) -> None:
    try:
        notifications.notify_user(user_id, text)
    except Exception:
        jlog("settlement_notify_error", user_id=str(user_id), error=traceback.format_exc())


def process_order(order_id, action: str, admin_id, admin_notes: Optional[str] = None,
                  source: str = "web") -> Dict[str, Any]:
    action = _check_action(action)
    oid = to_object_id(order_id)
    if not oid:
        raise NotFound("Order not found")

    notes = (admin_notes or "").strip() or None
    new_status = ORDER_FINAL[action]
    now = _now()
    order = _claim_pending(orders_col, oid, new_status, {
        "notes": notes,
        "updated_at": now,
        "processed_by": to_object_id(admin_id) or admin_id,
        "processed_at": now,
    })
    if order is None:
        existing = orders_col.find_one({"_id": oid}, {"status": 1})
        if not existing:
            raise NotFound("Order not found")
        jlog("order_status_blocked", order_id=str(oid), attempted_status=new_status,
             current_status=existing.get("status"), source=source)
        raise NotPending("Order is not pending")

    refunded = 0
    credits_used = to_int(order.get("credits_used"), 0) or 0
    if action == "reject" and credits_used > 0:
        try:
            ledger.credit(
                order["user_id"], credits_used, "refund",
                reference_type="order",
                reference_id=oid,
                notes=f"Order rejected: {notes or notifications.NO_REASON}",
                actor_id=admin_id,
            )
        except ledger.LedgerError:
            _release_claim(orders_col, oid, new_status, "notes", order)
            jlog("order_refund_failed", order_id=str(oid), user_id=str(order.get("user_id")), source=source)
            raise
        refunded = credits_used

    ledger.record_audit(
        admin_id, f"order_{action}", "order", oid,
        notes or f"Order {PAST_TENSE[action]}",
        old_values={"status": order.get("status")},
        new_values={"status": new_status, "refunded": refunded},
    )
    resolve_workflow("order", oid, PAST_TENSE[action], admin_id, notes)
    jlog("order_settled", order_id=str(oid), action=action, status=new_status, refunded=refunded, source=source)

    _notify_user_safely(order["user_id"], notifications.order_result_message(oid, action, refunded, notes))
    return {"id": str(oid), "status": new_status, "refunded": refunded}


def process_payment_request(request_id, action: str, admin_id, admin_notes: Optional[str] = None,
                            source: str = "web") -> Dict[str, Any]:
    action = _check_action(action)
    rid = to_object_id(request_id)
    if not rid:
        raise NotFound("Payment request not found")

    notes = (admin_notes or "").strip() or None
    new_status = PAYMENT_FINAL[action]
    now = _now()
    req = _claim_pending(payment_requests_col, rid, new_status, {
        "admin_notes": notes,
        "updated_at": now,
        "processed_by": to_object_id(admin_id) or admin_id,
        "processed_at": now,
    })
    if req is None:
        existing = payment_requests_col.find_one({"_id": rid}, {"status": 1})
        if not existing:
            raise NotFound("Payment request not found")
        jlog("payment_status_blocked", request_id=str(rid), attempted_status=new_status,
             current_status=existing.get("status"), source=source)
        raise NotPending("Payment request is not pending")

    credits_requested = to_int(req.get("credits_requested"), 0) or 0
    credits_added = 0
    new_balance = None
    if action == "approve":
        try:
            tx = ledger.credit(
                req["user_id"], credits_requested, "purchase",
                reference_type="payment_request",
                reference_id=rid,
                mmk_amount=to_int(req.get("total_cost_mmk"), 0),
                payment_method=req.get("payment_method"),
                notes=notes or "Payment approved",
                actor_id=admin_id,
            )
        except ledger.LedgerError:
            _release_claim(payment_requests_col, rid, new_status, "admin_notes", req)
            jlog("payment_credit_failed", request_id=str(rid), user_id=str(req.get("user_id")), source=source)
            raise
        credits_added = credits_requested
        new_balance = tx["new_balance"]
    else:
        try:
            new_balance = ledger.get_balance(req["user_id"])
        except ledger.ProfileNotFound:
            new_balance = None

    ledger.record_audit(
        admin_id, f"payment_{action}", "payment_request", rid,
        notes or f"Payment request {PAST_TENSE[action]}",
        old_values={"status": req.get("status")},
        new_values={"status": new_status, "credits_added": credits_added},
    )
    resolve_workflow("payment_request", rid, PAST_TENSE[action], admin_id, notes)
    jlog("payment_settled", request_id=str(rid), action=action, status=new_status,
         credits_added=credits_added, source=source)

    _notify_user_safely(
        req["user_id"],
        notifications.payment_result_message(credits_requested, action, new_balance or 0, notes),
    )
    return {"id": str(rid), "status": new_status, "creditsAdded": credits_added, "newBalance": new_balance}


# ---------- function-style endpoints (camelCase bodies, 400 on any failure) ----------
def _function_error(message: str, status: int = 400):
    return jsonify({"success": False, "error": message}), status


@settlement_bp.route("/functions/process-order", methods=["POST"])
def process_order_endpoint():
    admin_id, resp = require_admin_json()
    if resp:
        return resp
    data = request.get_json(silent=True) or {}
    try:
        result = process_order(data.get("orderId"), data.get("action"), admin_id, data.get("adminNotes"))
    except (SettlementError, ledger.LedgerError) as e:
        return _function_error(str(e))
    except Exception:
        jlog("process_order_uncaught", error=traceback.format_exc())
        return _function_error("Server error", 500)
    return jsonify({"success": True, "order": result})


@settlement_bp.route("/functions/process-payment-request", methods=["POST"])
def process_payment_request_endpoint():
    admin_id, resp = require_admin_json()
    if resp:
        return resp
    data = request.get_json(silent=True) or {}
    try:
        result = process_payment_request(data.get("requestId"), data.get("action"), admin_id, data.get("adminNotes"))
    except (SettlementError, ledger.LedgerError) as e:
        return _function_error(str(e))
    except Exception:
        jlog("process_payment_uncaught", error=traceback.format_exc())
        return _function_error("Server error", 500)
    return jsonify({"success": True, "request": result})
