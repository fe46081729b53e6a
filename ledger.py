# ledger.py — credit balance mutations, the append-only transaction log, and admin audit rows
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument

from common import _now, jlog, to_int, to_object_id
from db import db

profiles_col = db["user_profiles"]
credit_tx_col = db["credit_transactions"]
audit_logs_col = db["admin_audit_logs"]

# transaction_type -> sign of the balance change
CREDIT_TYPES = {"purchase", "refund", "bonus"}
DEBIT_TYPES = {"spend", "deduction"}


class LedgerError(Exception):
    pass


class ProfileNotFound(LedgerError):
    def __init__(self, user_id=None):
        super().__init__("User profile not found")
        self.user_id = user_id


class InsufficientCredits(LedgerError):
    def __init__(self, balance: int, amount: int):
        super().__init__("Insufficient balance")
        self.balance = balance
        self.amount = amount


def _positive_amount(amount) -> int:
    amt = to_int(amount)
    if amt is None or amt <= 0:
        raise LedgerError("Amount must be a positive whole number of credits")
    return amt


def get_balance(user_id) -> int:
    uid = to_object_id(user_id)
    prof = profiles_col.find_one({"user_id": uid}, {"credits_balance": 1}) if uid else None
    if not prof:
        raise ProfileNotFound(user_id)
    return int(prof.get("credits_balance") or 0)


def _apply(user_id, delta: int, transaction_type: str, *,
           reference_type: Optional[str] = None,
           reference_id: Any = None,
           mmk_amount: Optional[int] = None,
           payment_method: Optional[str] = None,
           notes: Optional[str] = None,
           actor_id: Any = None) -> Dict[str, Any]:
    uid = to_object_id(user_id)
    if not uid:
        raise ProfileNotFound(user_id)

    now = _now()
    filt: Dict[str, Any] = {"user_id": uid}
    if delta < 0:
        filt["credits_balance"] = {"$gte": -delta}

    before = profiles_col.find_one_and_update(
        filt,
        {"$inc": {"credits_balance": delta}, "$set": {"updated_at": now}},
        return_document=ReturnDocument.BEFORE,
    )
    if before is None:
        prof = profiles_col.find_one({"user_id": uid}, {"credits_balance": 1})
        if not prof:
            raise ProfileNotFound(user_id)
        jlog("ledger_insufficient", user_id=str(uid), balance=prof.get("credits_balance"), amount=-delta)
        raise InsufficientCredits(int(prof.get("credits_balance") or 0), -delta)

    previous = int(before.get("credits_balance") or 0)
    tx = {
        "user_id": uid,
        "transaction_type": transaction_type,
        "credit_amount": abs(delta),
        "delta": delta,
        "mmk_amount": mmk_amount,
        "previous_balance": previous,
        "new_balance": previous + delta,
        "payment_method": payment_method,
        "reference_type": reference_type,
        "reference_id": reference_id,
        "status": "completed",
        "admin_notes": notes,
        "actor_id": (to_object_id(actor_id) or actor_id) if actor_id else None,
        "processed_at": now,
        "created_at": now,
    }
    try:
        res = credit_tx_col.insert_one(tx)
        tx["_id"] = res.inserted_id
    except Exception as e:
        # the balance moved but no ledger row exists: put the balance back
        profiles_col.update_one({"user_id": uid}, {"$inc": {"credits_balance": -delta}, "$set": {"updated_at": _now()}})
        jlog("ledger_tx_insert_failed", user_id=str(uid), delta=delta, type=transaction_type, error=str(e))
        raise LedgerError("Failed to record credit transaction") from e

    jlog(
        "ledger_applied",
        user_id=str(uid),
        type=transaction_type,
        delta=delta,
        previous_balance=previous,
        new_balance=previous + delta,
        reference_type=reference_type,
        reference_id=str(reference_id) if reference_id is not None else None,
    )
    return tx


def credit(user_id, amount, transaction_type: str, **meta) -> Dict[str, Any]:
    if transaction_type not in CREDIT_TYPES:
        raise LedgerError(f"Not a credit transaction type: {transaction_type}")
    return _apply(user_id, _positive_amount(amount), transaction_type, **meta)


def debit(user_id, amount, transaction_type: str, **meta) -> Dict[str, Any]:
    if transaction_type not in DEBIT_TYPES:
        raise LedgerError(f"Not a debit transaction type: {transaction_type}")
    return _apply(user_id, -_positive_amount(amount), transaction_type, **meta)


def record_audit(admin_id, action_type: str, target_type: Optional[str], target_id: Any,
                 notes: Optional[str] = None, old_values: Optional[dict] = None,
                 new_values: Optional[dict] = None) -> Optional[Any]:
    """Insert one admin audit row. Failures are logged, never raised."""
    try:
        res = audit_logs_col.insert_one({
            "admin_id": to_object_id(admin_id) or admin_id,
            "action_type": action_type,
            "target_type": target_type,
            "target_id": str(target_id) if target_id is not None else None,
            "notes": notes,
            "old_values": old_values,
            "new_values": new_values,
            "created_at": _now(),
        })
        return res.inserted_id
    except Exception as e:
        jlog("audit_insert_failed", action_type=action_type, target_id=str(target_id), error=str(e))
        return None


def history(user_id, limit: int = 200) -> List[Dict[str, Any]]:
    uid = to_object_id(user_id)
    if not uid:
        return []
    return list(credit_tx_col.find({"user_id": uid}).sort("created_at", -1).limit(int(limit)))


def reconcile(user_id) -> Dict[str, Any]:
    uid = to_object_id(user_id)
    balance = get_balance(uid)
    agg = list(credit_tx_col.aggregate([
        {"$match": {"user_id": uid}},
        {"$group": {"_id": None, "total": {"$sum": "$delta"}}},
    ]))
    ledger_sum = int(agg[0]["total"]) if agg else 0
    return {
        "user_id": str(uid),
        "balance": balance,
        "ledger_sum": ledger_sum,
        "difference": balance - ledger_sum,
        "ok": balance == ledger_sum,
    }
